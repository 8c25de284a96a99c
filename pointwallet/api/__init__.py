"""
HTTP API for the points wallet.

Blueprints are thin: they parse the request, call a ledger service and
serialize the result. PointWalletError raised by a service is turned into
an error response by the handler registered in the app factory.
"""
from datetime import datetime
from decimal import Decimal

from ..utils.exceptions import ValidationError


def decimal_field(data: dict, name: str, required: bool = True):
    """
    Read a money or points value from a JSON body.

    JSON numbers arrive as floats; they are converted through their string
    form so 33.33 stays 33.33.
    """
    value = data.get(name)
    if value is None:
        if required:
            raise ValidationError(f'{name} is required', name)
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValidationError(f'{name} must be a number', name)
    if isinstance(value, float):
        return Decimal(repr(value))
    return value


def parse_datetime(value: str, name: str):
    """ISO 8601 string to naive UTC datetime (None passes through)."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f'{name} must be an ISO 8601 date', name)
    if parsed.tzinfo is not None:
        parsed = (parsed - parsed.utcoffset()).replace(tzinfo=None)
    return parsed
