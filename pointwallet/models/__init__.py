"""
Database models for the points wallet.
"""
from .service import Service, ServiceConfig, ServiceCategory, RuleType
from .transaction import (
    Transaction,
    TransactionType,
    TransactionStatus,
    ALLOWED_STATUS_TRANSITIONS,
)
from .wallet import Wallet, PointBalance

__all__ = [
    'Service',
    'ServiceConfig',
    'ServiceCategory',
    'RuleType',
    'Transaction',
    'TransactionType',
    'TransactionStatus',
    'ALLOWED_STATUS_TRANSITIONS',
    'Wallet',
    'PointBalance',
]
