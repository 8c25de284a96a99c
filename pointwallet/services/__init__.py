"""
Ledger services for the points wallet.

Services are built per use from the app's configuration. The one piece of
shared state, the wallet lock registry, lives on the app so every service
and sweep in a process serializes on the same locks.
"""
from flask import current_app

from .batch_ledger import BatchLedger, DeductionResult
from .expiry_sweep import ExpirySweep, SweepResult
from .ledger_service import LedgerService, OperationState
from .rule_resolver import RuleResolver
from .rule_store import RuleStore
from .transaction_recorder import TransactionRecorder
from .wallet_locks import WalletLockRegistry, wallet_unit_of_work


def init_app(app):
    """Attach the wallet lock registry to the app."""
    app.extensions['wallet_locks'] = WalletLockRegistry(
        timeout=app.config.get('WALLET_LOCK_TIMEOUT', 5.0)
    )


def get_wallet_locks(app=None) -> WalletLockRegistry:
    app = app or current_app
    return app.extensions['wallet_locks']


def build_ledger_service(app=None, clock=None) -> LedgerService:
    """LedgerService wired from the app's configuration."""
    app = app or current_app
    return LedgerService(
        locks=get_wallet_locks(app),
        recorder=TransactionRecorder(app.config.get('TRANSACTION_RECORD_RETRIES', 3)),
        clock=clock,
        expiring_soon_days=app.config.get('EXPIRING_SOON_DAYS', 30),
    )


def build_expiry_sweep(app=None, clock=None) -> ExpirySweep:
    """ExpirySweep sharing the app's wallet locks."""
    app = app or current_app
    return ExpirySweep(
        locks=get_wallet_locks(app),
        recorder=TransactionRecorder(app.config.get('TRANSACTION_RECORD_RETRIES', 3)),
        clock=clock,
    )


def build_rule_store(app=None, clock=None) -> RuleStore:
    return RuleStore(clock=clock)


__all__ = [
    'BatchLedger',
    'DeductionResult',
    'ExpirySweep',
    'SweepResult',
    'LedgerService',
    'OperationState',
    'RuleResolver',
    'RuleStore',
    'TransactionRecorder',
    'WalletLockRegistry',
    'wallet_unit_of_work',
    'init_app',
    'get_wallet_locks',
    'build_ledger_service',
    'build_expiry_sweep',
    'build_rule_store',
]
