"""
Points Calculator.

Pure conversions between money and points under a ServiceConfig rule.
No database access, no clock, no logging: callers pass everything in.

Rounding:
    Every result is quantized to 2 decimal places with ROUND_HALF_UP, on
    both the earn and the burn path. Earning on 33.33 at 1 point per 10
    gives 3.33 points; redeeming those 3.33 points at the same ratio gives
    33.30, not 33.33. The difference is the rounding, not lost precision.
"""
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

Number = Union[Decimal, int, str]

CENT = Decimal('0.01')
ZERO = Decimal('0.00')


def to_decimal(value: Number) -> Decimal:
    """Coerce an int, str or Decimal to Decimal. Floats are rejected."""
    if isinstance(value, float):
        raise TypeError('Use Decimal or str for points and amounts, not float')
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize(value: Decimal) -> Decimal:
    """Round to 2 decimal places, half-up."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_earned_points(amount: Number, rule) -> Decimal:
    """
    Points earned for spending amount under an EARN rule.

    Returns ZERO when the amount is below the rule's min_amount; the caller
    must treat that as "not eligible" rather than record a zero-point earn.

    Args:
        amount: Money spent
        rule: ServiceConfig (or any object with the same attributes)

    Returns:
        Points, rounded to 2 dp and clamped to max_points
    """
    amount = to_decimal(amount)

    if rule.min_amount is not None and amount < to_decimal(rule.min_amount):
        return ZERO

    points = (amount / to_decimal(rule.unit_amount)) * to_decimal(rule.points_per_unit)

    if rule.max_points is not None and points > to_decimal(rule.max_points):
        points = to_decimal(rule.max_points)

    return quantize(points)


def compute_redemption_value(points: Number, rule) -> Decimal:
    """
    Money value of redeeming points under a BURN rule.

    No min/max clamp here; the binding constraint on a burn is the wallet
    balance, which the ledger enforces.
    """
    points = to_decimal(points)
    value = (points / to_decimal(rule.points_per_unit)) * to_decimal(rule.unit_amount)
    return quantize(value)


def compute_expiry(earned_at: datetime, rule) -> Optional[datetime]:
    """Expiry of a batch earned at earned_at, or None if the rule never expires."""
    if not rule.expiry_days:
        return None
    return earned_at + timedelta(days=rule.expiry_days)
