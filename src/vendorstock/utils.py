"""Utility functions for vendorstock application."""

import asyncio
import math
import time
from typing import Any, Optional


def normalize_product_name(name: str) -> str:
    """Normalize a product name for matching bulk rows to inventory items.

    Examples:
        "Red Apples" -> "red apples"
        "  red apples " -> "red apples"
    """
    return name.strip().lower()


def is_blank(value: Any) -> bool:
    """True for None, empty/whitespace strings and NaN cells."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, float):
        return math.isnan(value)
    return False


def parse_number(value: Any) -> Optional[float]:
    """
    Parse a spreadsheet cell into a finite float.

    Accepts ints, floats and numeric strings (surrounding whitespace and
    thousands separators are ignored).

    Returns:
        The parsed number, or None if the cell is blank or not numeric

    Examples:
        >>> parse_number("25.99")
        25.99
        >>> parse_number(" 1,200 ")
        1200.0
        >>> parse_number("abc")
        None
    """
    if is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        try:
            number = float(str(value).strip().replace(",", ""))
        except ValueError:
            return None
    if not math.isfinite(number):
        return None
    return number


class Deadline:
    """Cooperative cancellation for long-running jobs.

    Expires when the optional event is set or the optional timeout (seconds)
    has elapsed since construction.
    """

    def __init__(self, cancel_event: Optional[asyncio.Event] = None, timeout: Optional[float] = None) -> None:
        self._cancel_event = cancel_event
        self._expires_at = time.monotonic() + timeout if timeout is not None else None

    def expired(self) -> bool:
        if self._cancel_event is not None and self._cancel_event.is_set():
            return True
        return self._expires_at is not None and time.monotonic() >= self._expires_at
