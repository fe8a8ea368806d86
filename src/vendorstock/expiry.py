"""Expiry-date arithmetic for inventory batches.

All functions are pure: the reference date is always passed in, so the same
inputs give the same answer regardless of when they run.
"""

from collections.abc import Iterable
from datetime import date, datetime
from typing import Union

from dateutil import tz

from .schemas import Batch

DateLike = Union[date, datetime]

DEFAULT_NEAR_EXPIRY_THRESHOLD = 7

# Discount applied to stock that is expired or expires today
EXPIRED_DISCOUNT = 50

# Days left -> near-expiry markdown percentage. Anything past the last key gets 0.
NEAR_EXPIRY_DISCOUNTS: dict[int, int] = {
    1: 40,
    2: 30,
    3: 20,
    4: 15,
    5: 12,
    6: 10,
    7: 8,
}


def _as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def days_to_expiry(today: DateLike, expiry_date: DateLike) -> int:
    """Whole days from ``today`` until ``expiry_date``.

    Both values are truncated to calendar dates first, so the time of day
    never affects the result. Zero or negative means expired or expiring today.

    Examples:
        >>> days_to_expiry(date(2025, 3, 1), date(2025, 3, 8))
        7
        >>> days_to_expiry(datetime(2025, 3, 1, 23, 59), date(2025, 3, 1))
        0
    """
    return (_as_date(expiry_date) - _as_date(today)).days


def is_expired(days: int) -> bool:
    return days <= 0


def is_near_expiry(days: int, threshold: int = DEFAULT_NEAR_EXPIRY_THRESHOLD) -> bool:
    return 0 < days <= threshold


def near_expiry_discount(days: int) -> int:
    """Markdown percentage for a batch with ``days`` left before expiry."""
    if days <= 0:
        return EXPIRED_DISCOUNT
    return NEAR_EXPIRY_DISCOUNTS.get(days, 0)


def today_in(tz_name: str) -> date:
    """Current calendar date in the given IANA timezone."""
    zone = tz.gettz(tz_name)
    if zone is None:
        raise ValueError(f"Unknown timezone: {tz_name}")
    return datetime.now(zone).date()


def highest_near_expiry_discount(batches: Iterable[Batch]) -> int:
    """Largest discount among near-expiry batches that still have stock."""
    return max(
        (
            batch.near_expiry_discount
            for batch in batches
            if batch.is_near_expiry and batch.remaining_quantity > 0
        ),
        default=0,
    )
