"""
Points Wallet: loyalty points ledger service.

create_app() builds the Flask application; `flask --app pointwallet ledger ...`
exposes the maintenance commands.
"""
import os
import logging
from flask import Flask
from flask_cors import CORS

from .extensions import db, migrate
from .config import get_config, validate_config
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def _cors_origins() -> list:
    raw = os.getenv('CORS_ORIGINS', 'http://localhost:5173')
    return [origin.strip() for origin in raw.split(',') if origin.strip()]


def create_app(config_name: str = None, config_overrides: dict = None) -> Flask:
    """
    Build and wire a Flask app.

    Args:
        config_name: development, production or testing (default FLASK_ENV)
        config_overrides: Settings applied on top of the config class

    Returns:
        The application, with extensions, blueprints, CLI and scheduler set up
    """
    config_name = config_name or os.getenv('FLASK_ENV', 'development')

    setup_logging()
    validate_config(config_name)

    app = Flask(__name__)
    app.config.from_object(get_config(config_name))
    app.config.update(config_overrides or {})

    db.init_app(app)
    migrate.init_app(app, db)
    CORS(app, origins=_cors_origins(), allow_headers=['Content-Type', 'Authorization'])

    from .services import init_app as init_services
    from .commands import init_app as init_commands
    from .utils.scheduler import init_scheduler

    init_services(app)
    register_blueprints(app)
    register_error_handlers(app)
    init_commands(app)
    init_scheduler(app)

    @app.route('/health')
    def health_check():
        return {'status': 'healthy', 'service': 'pointwallet'}

    logger.debug(f"Points wallet app created ({config_name})")
    return app


def register_blueprints(app: Flask) -> None:
    from .api.transactions import transactions_bp
    from .api.wallet import wallet_bp
    from .api.services import services_bp

    app.register_blueprint(transactions_bp, url_prefix='/api/transactions')
    app.register_blueprint(wallet_bp, url_prefix='/api/wallet')
    app.register_blueprint(services_bp, url_prefix='/api/services')


def register_error_handlers(app: Flask) -> None:
    """Ledger exceptions and HTTP errors all answer in the same JSON shape."""
    from .utils.errors import error_response, ledger_error_response, ErrorCode
    from .utils.exceptions import PointWalletError

    @app.errorhandler(PointWalletError)
    def handle_ledger_error(error):
        return ledger_error_response(error)

    @app.errorhandler(400)
    def handle_bad_request(error):
        return error_response(str(error), ErrorCode.INVALID_REQUEST, 400, log_error=False)

    @app.errorhandler(404)
    def handle_not_found(error):
        return error_response(str(error), ErrorCode.NOT_FOUND, 404, log_error=False)

    @app.errorhandler(500)
    def handle_internal_error(error):
        return error_response('Internal server error', ErrorCode.INTERNAL_ERROR, 500)
