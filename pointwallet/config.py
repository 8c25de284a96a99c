"""
Settings for the points wallet, one class per environment.

Everything is read from the environment; a local .env file is loaded first.
"""
import os
from dotenv import load_dotenv

load_dotenv()

# Substrings that mark a placeholder SECRET_KEY
UNSAFE_SECRET_MARKERS = ('dev', 'change', 'default', 'test', 'secret', 'password')


def database_url(default: str = '') -> str:
    """DATABASE_URL, with the legacy postgres:// scheme renamed for SQLAlchemy."""
    url = os.getenv('DATABASE_URL', default)
    if url.startswith('postgres://'):
        url = 'postgresql://' + url[len('postgres://'):]
    return url


class BaseConfig:
    SECRET_KEY = os.getenv('SECRET_KEY', 'local-only-key')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_DATABASE_URI = database_url('sqlite:///pointwallet_dev.db')

    # Seconds to wait for a wallet lock before failing with WalletBusyError
    WALLET_LOCK_TIMEOUT = float(os.getenv('WALLET_LOCK_TIMEOUT', '5'))

    # Attempts at writing the transaction row once the ledger is updated
    TRANSACTION_RECORD_RETRIES = int(os.getenv('TRANSACTION_RECORD_RETRIES', '3'))

    # Window used by wallet statistics for "expiring soon"
    EXPIRING_SOON_DAYS = int(os.getenv('EXPIRING_SOON_DAYS', '30'))

    # Expiry sweep schedule (UTC)
    SWEEP_CRON_HOUR = int(os.getenv('SWEEP_CRON_HOUR', '0'))
    SWEEP_CRON_MINUTE = int(os.getenv('SWEEP_CRON_MINUTE', '15'))


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    SQLALCHEMY_ECHO = os.getenv('SQL_ECHO') == 'true'


class ProductionConfig(BaseConfig):
    DEBUG = False
    SECRET_KEY = os.getenv('SECRET_KEY', '')
    SQLALCHEMY_DATABASE_URI = database_url()

    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': int(os.getenv('DB_POOL_SIZE', '10')),
        'pool_recycle': 300,
        'pool_pre_ping': True,
    }


class TestingConfig(BaseConfig):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    WALLET_LOCK_TIMEOUT = 2.0


CONFIGS = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
}


def get_config(config_name: str = 'development'):
    """Config class for an environment name (development when unknown)."""
    return CONFIGS.get(config_name, DevelopmentConfig)


def check_secret_key(key: str) -> None:
    """
    Refuse to start production with a weak SECRET_KEY.

    Raises:
        RuntimeError: The key is missing, shorter than 32 characters or a placeholder
    """
    if not key:
        raise RuntimeError(
            "SECRET_KEY is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
        )
    if len(key) < 32:
        raise RuntimeError("SECRET_KEY must be at least 32 characters")

    lowered = key.lower()
    marker = next((m for m in UNSAFE_SECRET_MARKERS if m in lowered), None)
    if marker:
        raise RuntimeError(f"SECRET_KEY contains '{marker}' and looks like a placeholder")


def validate_config(config_name: str = 'development') -> None:
    """
    Check settings that must be right before the app starts.

    Raises:
        RuntimeError: Production is missing its secret key or database
    """
    if config_name != 'production':
        return
    check_secret_key(ProductionConfig.SECRET_KEY)
    if not ProductionConfig.SQLALCHEMY_DATABASE_URI:
        raise RuntimeError("DATABASE_URL is not set")
