"""Derived-field pipeline for inventory items.

Every write path (manual edit, daily sweep, bulk update) runs ``recalculate``
before persisting. The passes run in a fixed order:

1. pricing       - clamp discount, final price, margin
2. batches       - remaining quantities, expiry fields, FIFO order, batch-driven stock
3. inventory     - non-negative stock, available stock
4. availability  - status state machine, hide-when-out-of-stock
5. clamp         - min <= max stock level, min <= max order quantity, reserved <= current

Each pass is a pure function returning a new model.
"""

import logging
from collections.abc import Iterable
from datetime import date
from typing import Any, Optional

from .batches import batch_stock, merge_batches, reconcile_batches, refresh_batches
from .exceptions import ItemNotFoundError
from .expiry import DEFAULT_NEAR_EXPIRY_THRESHOLD, highest_near_expiry_discount
from .schemas import (
    Availability,
    AvailabilityStatus,
    BatchInput,
    ExpiryTracking,
    InventoryItem,
    ItemSettings,
    Pricing,
    StockLevels,
)

logger = logging.getLogger(__name__)


# ===== Passes =====


def pricing_pass(pricing: Pricing) -> Pricing:
    discount = min(100.0, max(0.0, pricing.discount_percentage))
    selling = pricing.selling_price
    margin = round(selling - pricing.cost_price, 2)
    return pricing.model_copy(
        update={
            "discount_percentage": discount,
            "final_price": max(0.0, round(selling * (1 - discount / 100), 2)),
            "margin": margin,
            "margin_percentage": round(margin / selling * 100, 2) if selling > 0 else 0.0,
            "has_negative_margin": margin < 0,
        }
    )


def batch_pass(item: InventoryItem, today: date, threshold: int = DEFAULT_NEAR_EXPIRY_THRESHOLD) -> InventoryItem:
    tracking = item.expiry_tracking
    if not tracking.batches:
        return item
    batches = refresh_batches(tracking.batches, today, threshold)
    updates: dict[str, Any] = {"expiry_tracking": tracking.model_copy(update={"batches": batches})}
    # Batches are the source of truth for stock when expiry is tracked
    if tracking.has_expiry:
        updates["inventory"] = item.inventory.model_copy(update={"current_stock": batch_stock(batches)})
    return item.model_copy(update=updates)


def inventory_pass(stock: StockLevels) -> StockLevels:
    current = max(0, stock.current_stock)
    reserved = max(0, stock.reserved_stock)
    return stock.model_copy(
        update={
            "current_stock": current,
            "reserved_stock": reserved,
            "available_stock": max(0, current - reserved),
        }
    )


def availability_pass(item: InventoryItem) -> InventoryItem:
    current = item.inventory.current_stock
    out_of_stock = current <= 0

    if item.availability.availability_status == AvailabilityStatus.DISCONTINUED:
        # Only ever set by hand; the automatic pass keeps it
        status, available = AvailabilityStatus.DISCONTINUED, False
    elif out_of_stock:
        status, available = AvailabilityStatus.OUT_OF_STOCK, False
    elif current <= item.inventory.min_stock_level:
        status, available = AvailabilityStatus.LOW_STOCK, True
    else:
        status, available = AvailabilityStatus.AVAILABLE, True

    settings = item.settings
    if settings.hide_when_out_of_stock and out_of_stock:
        settings = settings.model_copy(update={"is_active": False})

    return item.model_copy(
        update={
            "availability": Availability(
                is_available=available,
                is_out_of_stock=out_of_stock,
                availability_status=status,
            ),
            "settings": settings,
        }
    )


def clamp_pass(item: InventoryItem) -> InventoryItem:
    stock = item.inventory
    settings = item.settings
    return item.model_copy(
        update={
            "inventory": stock.model_copy(
                update={
                    "min_stock_level": min(stock.min_stock_level, stock.max_stock_level),
                    "reserved_stock": min(stock.reserved_stock, stock.current_stock),
                }
            ),
            "settings": settings.model_copy(
                update={"min_order_quantity": min(settings.min_order_quantity, settings.max_order_quantity)}
            ),
        }
    )


def _stock_and_availability(item: InventoryItem) -> InventoryItem:
    item = item.model_copy(update={"inventory": inventory_pass(item.inventory)})
    return availability_pass(item)


def recalculate(
    item: InventoryItem, today: date, threshold: int = DEFAULT_NEAR_EXPIRY_THRESHOLD
) -> InventoryItem:
    """Run the full derived-field pipeline and return the canonical item state.

    Idempotent: ``recalculate(recalculate(x, d), d) == recalculate(x, d)``.

    Args:
        item: Item with possibly stale derived fields
        today: Reference date for expiry calculations
        threshold: Near-expiry window in days

    Returns:
        A new item with every derived field recomputed
    """
    item = item.model_copy(update={"pricing": pricing_pass(item.pricing)})
    item = batch_pass(item, today, threshold)
    item = _stock_and_availability(item)
    clamped = clamp_pass(item)
    if clamped.inventory != item.inventory:
        # Stock levels moved; status must reflect the clamped values
        clamped = _stock_and_availability(clamped)
    return clamped


# ===== Read-side queries =====


def effective_price(item: InventoryItem) -> float:
    """Customer-facing price after the best near-expiry markdown. Never persisted."""
    final_price = item.pricing.final_price
    if not item.expiry_tracking.has_expiry or not item.settings.auto_discount_near_expiry:
        return final_price
    discount = highest_near_expiry_discount(item.expiry_tracking.batches)
    if discount > 0:
        return round(final_price * (1 - discount / 100), 2)
    return final_price


def has_near_expiry_stock(item: InventoryItem) -> bool:
    if not item.expiry_tracking.has_expiry:
        return False
    return any(b.is_near_expiry and b.remaining_quantity > 0 for b in item.expiry_tracking.batches)


# ===== Single-item edits =====

_SECTIONS: dict[str, type] = {
    "pricing": Pricing,
    "inventory": StockLevels,
    "expiry_tracking": ExpiryTracking,
    "settings": ItemSettings,
}


def apply_update(
    item: InventoryItem,
    changes: dict[str, Any],
    today: date,
    threshold: int = DEFAULT_NEAR_EXPIRY_THRESHOLD,
) -> InventoryItem:
    """Sparse nested merge of ``changes`` into ``item``, then recalculate.

    ``changes`` may carry partial ``pricing``, ``inventory``, ``expiry_tracking``
    and ``settings`` dicts plus a top-level ``availability_status``.
    """
    updates: dict[str, Any] = {}
    for section, model in _SECTIONS.items():
        partial = changes.get(section)
        if partial:
            current = getattr(item, section)
            updates[section] = model.model_validate({**current.model_dump(), **partial})

    status = changes.get("availability_status")
    if status is not None:
        updates["availability"] = item.availability.model_copy(
            update={"availability_status": AvailabilityStatus(status)}
        )

    return recalculate(item.model_copy(update=updates), today, threshold)


def add_stock(
    item: InventoryItem,
    quantity: int,
    today: date,
    batch: Optional[BatchInput] = None,
    threshold: int = DEFAULT_NEAR_EXPIRY_THRESHOLD,
) -> InventoryItem:
    """Receive ``quantity`` units, optionally into a named batch.

    When expiry is tracked and a batch is given, the units land in that batch
    (added to it if the batch number already exists) and stock follows the
    batches. Otherwise ``current_stock`` is incremented directly.
    """
    if quantity <= 0:
        raise ValueError("Quantity must be positive")

    tracking = item.expiry_tracking
    if tracking.has_expiry and batch is not None:
        existing = {b.batch_number: b for b in tracking.batches}
        prior = existing.get(batch.batch_number)
        total = quantity + (prior.quantity if prior else 0)
        incoming = BatchInput(**{**batch.model_dump(exclude_unset=True), "quantity": total})
        batches = merge_batches(tracking.batches, [incoming])
        item = item.model_copy(
            update={"expiry_tracking": tracking.model_copy(update={"batches": tuple(batches)})}
        )
    else:
        item = item.model_copy(
            update={
                "inventory": item.inventory.model_copy(
                    update={"current_stock": item.inventory.current_stock + quantity}
                )
            }
        )
    return recalculate(item, today, threshold)


def apply_batch_update(
    item: InventoryItem,
    incoming: Iterable[BatchInput],
    today: date,
    replace_all: bool = False,
    threshold: int = DEFAULT_NEAR_EXPIRY_THRESHOLD,
) -> InventoryItem:
    """Merge (or replace) the item's batches and recalculate."""
    batches = reconcile_batches(
        item.expiry_tracking.batches,
        incoming,
        replace_all=replace_all,
        today=today,
        threshold=threshold,
    )
    item = item.model_copy(
        update={"expiry_tracking": item.expiry_tracking.model_copy(update={"batches": batches})}
    )
    return recalculate(item, today, threshold)


def update_batch(
    item: InventoryItem,
    batch_number: str,
    changes: dict[str, Any],
    today: date,
    threshold: int = DEFAULT_NEAR_EXPIRY_THRESHOLD,
) -> InventoryItem:
    """Edit one existing batch by number."""
    if not any(b.batch_number == batch_number for b in item.expiry_tracking.batches):
        raise ItemNotFoundError(f"Batch {batch_number} not found", item_id=item.id)
    batch_in = BatchInput(**{**changes, "batch_number": batch_number})
    return apply_batch_update(item, [batch_in], today, replace_all=False, threshold=threshold)


def deactivate(item: InventoryItem, today: date, threshold: int = DEFAULT_NEAR_EXPIRY_THRESHOLD) -> InventoryItem:
    """Soft-remove an item from the vendor's storefront."""
    item = item.model_copy(update={"settings": item.settings.model_copy(update={"is_active": False})})
    return recalculate(item, today, threshold)
