"""Batch reconciliation: merge incoming lots, refresh derived fields, FIFO order."""

import logging
from collections.abc import Iterable, Sequence
from datetime import date

from .expiry import (
    DEFAULT_NEAR_EXPIRY_THRESHOLD,
    days_to_expiry,
    is_expired,
    is_near_expiry,
    near_expiry_discount,
)
from .schemas import Batch, BatchInput

logger = logging.getLogger(__name__)

_CLEARABLE_FIELDS = ("manufacture_date", "expiry_date")


def refresh_batch(
    batch: Batch, today: date, threshold: int = DEFAULT_NEAR_EXPIRY_THRESHOLD
) -> Batch:
    """Recompute one batch's quantities and expiry classification."""
    quantity = max(0, batch.quantity)
    sold = min(max(0, batch.sold_quantity), quantity)
    updates: dict = {
        "quantity": quantity,
        "sold_quantity": sold,
        "remaining_quantity": quantity - sold,
    }
    if batch.expiry_date is not None:
        days = days_to_expiry(today, batch.expiry_date)
        updates.update(
            days_to_expiry=days,
            is_expired=is_expired(days),
            is_near_expiry=is_near_expiry(days, threshold),
            near_expiry_discount=near_expiry_discount(days),
        )
    else:
        updates.update(
            days_to_expiry=None,
            is_expired=False,
            is_near_expiry=False,
            near_expiry_discount=0,
        )
    return batch.model_copy(update=updates)


def fifo_order(batches: Iterable[Batch]) -> list[Batch]:
    """Sort by expiry date ascending; undated batches go last in their original order."""
    return sorted(
        batches,
        key=lambda b: (b.expiry_date is None, b.expiry_date or date.min),
    )


def refresh_batches(
    batches: Iterable[Batch], today: date, threshold: int = DEFAULT_NEAR_EXPIRY_THRESHOLD
) -> tuple[Batch, ...]:
    """Refresh every batch and return them FIFO-ordered."""
    return tuple(fifo_order(refresh_batch(b, today, threshold) for b in batches))


def merge_batches(existing: Sequence[Batch], incoming: Iterable[BatchInput]) -> list[Batch]:
    """Merge incoming batches into ``existing`` by batch number.

    Fields the caller set on an incoming batch overwrite the stored ones;
    anything left unset (``sold_quantity`` included) keeps its prior value.
    Unknown batch numbers are appended as new batches.
    """
    merged = list(existing)
    index = {batch.batch_number: pos for pos, batch in enumerate(merged)}
    for batch_in in incoming:
        # An explicit null clears a date but never a quantity
        changes = {
            k: v
            for k, v in batch_in.model_dump(exclude_unset=True).items()
            if v is not None or k in _CLEARABLE_FIELDS
        }
        pos = index.get(batch_in.batch_number)
        if pos is not None:
            merged[pos] = merged[pos].model_copy(update=changes)
        else:
            merged.append(Batch(**changes))
            index[batch_in.batch_number] = len(merged) - 1
    return merged


def reconcile_batches(
    existing: Sequence[Batch],
    incoming: Iterable[BatchInput],
    *,
    replace_all: bool = False,
    today: date,
    threshold: int = DEFAULT_NEAR_EXPIRY_THRESHOLD,
) -> tuple[Batch, ...]:
    """Apply incoming batch data to an item's batch list.

    Args:
        existing: The item's current batches
        incoming: Batch records supplied by the caller
        replace_all: Replace the whole list instead of merging by batch number
        today: Reference date for expiry calculations
        threshold: Near-expiry window in days

    Returns:
        The refreshed, FIFO-ordered batch list
    """
    if replace_all:
        batches = merge_batches([], incoming)
        logger.debug(f"Replacing {len(existing)} batches with {len(batches)}")
    else:
        batches = merge_batches(existing, incoming)
    return refresh_batches(batches, today, threshold)


def batch_stock(batches: Iterable[Batch]) -> int:
    """Total remaining units across all batches."""
    return sum(max(0, b.quantity - b.sold_quantity) for b in batches)


def expiry_classification(batch: Batch) -> tuple[bool, bool, int]:
    """The fields whose change marks an item dirty during the daily sweep."""
    return (batch.is_near_expiry, batch.is_expired, batch.near_expiry_discount)
