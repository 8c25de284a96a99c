"""
Utility modules for the points wallet.
"""
from .clock import Clock, utcnow
from .logging_config import setup_logging
from .errors import (
    ErrorCode,
    error_response,
    bad_request,
    ledger_error_response,
)
from .exceptions import (
    PointWalletError,
    NotFoundError,
    WalletNotFoundError,
    ServiceNotFoundError,
    RuleNotFoundError,
    TransactionNotFoundError,
    InactiveResourceError,
    ValidationError,
    BelowMinimumAmountError,
    InsufficientBalanceError,
    WalletBusyError,
    LedgerInvariantError,
    DuplicateError,
    InvalidStatusTransitionError,
)
