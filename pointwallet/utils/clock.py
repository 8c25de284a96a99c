"""
Time source for the ledger.

Timestamps are stored as naive UTC datetimes. Services take a clock callable
so tests can move time forward without patching datetime.
"""
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
