"""
JSON error responses for the points wallet API.

Body shape, for every error:
    {"error": {"message": "...", "code": "WALLET_NOT_FOUND"}}

Ledger exceptions carry their own code; ledger_error_response picks the
HTTP status from the exception class.
"""
import logging
from enum import Enum
from flask import jsonify
from typing import Optional, Union

from .exceptions import (
    PointWalletError,
    NotFoundError,
    ValidationError,
    InactiveResourceError,
    InsufficientBalanceError,
    WalletBusyError,
    LedgerInvariantError,
    DuplicateError,
    InvalidStatusTransitionError,
)

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Codes for errors raised outside the ledger services."""
    INVALID_REQUEST = "INVALID_REQUEST"
    NOT_FOUND = "NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# Checked in order; the first matching class decides the status
STATUS_BY_EXCEPTION = (
    (NotFoundError, 404),
    (DuplicateError, 409),
    (InvalidStatusTransitionError, 409),
    (InsufficientBalanceError, 422),
    (ValidationError, 400),
    (InactiveResourceError, 400),
    (WalletBusyError, 503),
    (LedgerInvariantError, 500),
)


def error_response(
    message: str,
    code: Union[ErrorCode, str] = ErrorCode.INTERNAL_ERROR,
    status_code: int = 500,
    log_error: bool = True,
    details: Optional[dict] = None
) -> tuple:
    """
    Build a (response, status) pair in the standard error shape.

    details is logged with the error but never sent to the client.
    """
    code = code.value if isinstance(code, ErrorCode) else code
    if log_error:
        level = logging.ERROR if status_code >= 500 else logging.WARNING
        logger.log(level, f"API error {status_code} [{code}]: {message}", extra={"details": details})

    return jsonify({"error": {"message": message, "code": code}}), status_code


def bad_request(message: str, code: Union[ErrorCode, str] = ErrorCode.INVALID_REQUEST) -> tuple:
    """400 without logging; for malformed requests caught in a blueprint."""
    return error_response(message, code, 400, log_error=False)


def status_for_exception(error: PointWalletError) -> int:
    for exc_class, status_code in STATUS_BY_EXCEPTION:
        if isinstance(error, exc_class):
            return status_code
    return 400


def ledger_error_response(error: PointWalletError) -> tuple:
    """Turn a PointWalletError into an error response. Busy wallets get Retry-After."""
    status_code = status_for_exception(error)
    response, status_code = error_response(
        error.message, error.code, status_code, details=getattr(error, 'details', None)
    )
    if isinstance(error, WalletBusyError):
        response.headers['Retry-After'] = '1'
    return response, status_code
