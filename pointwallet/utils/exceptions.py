"""
Exceptions raised by the points ledger.

Every ledger failure derives from PointWalletError so callers (the API
blueprints, CLI commands, the scheduler) can map them to a response with a
stable error code.
"""
from decimal import Decimal


class PointWalletError(Exception):
    """Base exception for all points wallet business errors."""

    retryable = False

    def __init__(self, message: str, code: str = "POINT_WALLET_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class NotFoundError(PointWalletError):
    """Resource not found."""

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with ID {identifier} not found"
        super().__init__(message, f"{resource.upper().replace(' ', '_')}_NOT_FOUND")


class WalletNotFoundError(NotFoundError):
    """No wallet for the user (or the wallet has been retired)."""

    def __init__(self, user_id=None):
        super().__init__("Wallet", None)
        if user_id:
            self.message = f"Wallet for user {user_id} not found"
            self.args = (self.message,)


class ServiceNotFoundError(NotFoundError):

    def __init__(self, identifier=None):
        super().__init__("Service", identifier)


class RuleNotFoundError(NotFoundError):
    """No earning/redemption rule is in effect for the service."""

    def __init__(self, service_id, rule_type: str):
        self.service_id = service_id
        self.rule_type = rule_type
        kind = 'earning' if rule_type == 'EARN' else 'redemption'
        super().__init__("Rule")
        self.message = f"No active {kind} rule configured for service {service_id}"
        self.args = (self.message,)


class TransactionNotFoundError(NotFoundError):

    def __init__(self, identifier=None):
        super().__init__("Transaction", identifier)


class InactiveResourceError(PointWalletError):
    """Resource exists but is disabled or outside its validity window."""

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} is not active"
        if identifier:
            message = f"{resource} {identifier} is not active"
        super().__init__(message, f"{resource.upper()}_NOT_ACTIVE")


class ValidationError(PointWalletError):
    """Invalid input data."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        code = f"INVALID_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(message, code)


class BelowMinimumAmountError(ValidationError):
    """The amount earns no points under the active rule."""

    def __init__(self, amount: Decimal, min_amount: Decimal = None):
        self.amount = amount
        self.min_amount = min_amount
        if min_amount is not None and amount < min_amount:
            message = f"Amount {amount} is below the minimum of {min_amount} for earning points"
        else:
            message = f"No points earned for amount {amount}"
        super().__init__(message, "amount")
        self.code = "BELOW_MINIMUM_AMOUNT"


class InsufficientBalanceError(PointWalletError):
    """Not enough points for the operation."""

    def __init__(self, current: Decimal, required: Decimal):
        self.current = current
        self.required = required
        message = f"Insufficient balance. Current: {current}, Required: {required}"
        super().__init__(message, "INSUFFICIENT_BALANCE")


class WalletBusyError(PointWalletError):
    """The wallet lock could not be acquired in time. Safe to retry."""

    retryable = True

    def __init__(self, wallet_key, timeout: float = None):
        self.wallet_key = wallet_key
        self.timeout = timeout
        message = f"Wallet {wallet_key} is busy, retry the operation"
        if timeout is not None:
            message = f"Wallet {wallet_key} is busy (lock wait exceeded {timeout}s), retry the operation"
        super().__init__(message, "WALLET_BUSY")


class LedgerInvariantError(PointWalletError):
    """A ledger invariant did not hold. Indicates a bug, never expected."""

    def __init__(self, message: str, details: dict = None):
        self.details = details or {}
        super().__init__(message, "LEDGER_INVARIANT_VIOLATION")


class DuplicateError(PointWalletError):
    """Resource already exists."""

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} already exists"
        if identifier:
            message = f"{resource} with {identifier} already exists"
        super().__init__(message, "DUPLICATE_ENTRY")


class InvalidStatusTransitionError(PointWalletError):
    """Invalid status transition for a resource."""

    def __init__(self, resource: str, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        message = f"Cannot change {resource} status from '{from_status}' to '{to_status}'"
        super().__init__(message, "INVALID_STATUS_TRANSITION")
