"""Inventory item store: the persistence boundary used by the engine and sweep.

Items cross this boundary as frozen ``InventoryItem`` models. Each store call
opens its own session, so callers may run several operations concurrently.
"""

import logging
from enum import Enum
from typing import Any, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from ..exceptions import (
    ConcurrentModificationError,
    DuplicateItemError,
    ItemNotFoundError,
    StoreWriteError,
)
from ..schemas import Batch, BulkPatchResult, InventoryItem, ItemPatch
from .models import ItemBatch, VendorProduct

logger = logging.getLogger(__name__)

BATCHES_PATH = "expiry_tracking.batches"

# Dotted item path -> vendor_products column
COLUMN_PATHS: dict[str, str] = {
    "pricing.cost_price": "cost_price",
    "pricing.selling_price": "selling_price",
    "pricing.discount_percentage": "discount_percentage",
    "pricing.final_price": "final_price",
    "pricing.margin": "margin",
    "pricing.margin_percentage": "margin_percentage",
    "pricing.has_negative_margin": "has_negative_margin",
    "inventory.current_stock": "current_stock",
    "inventory.min_stock_level": "min_stock_level",
    "inventory.max_stock_level": "max_stock_level",
    "inventory.reserved_stock": "reserved_stock",
    "inventory.available_stock": "available_stock",
    "expiry_tracking.has_expiry": "has_expiry",
    "availability.is_available": "is_available",
    "availability.is_out_of_stock": "is_out_of_stock",
    "availability.availability_status": "availability_status",
    "settings.hide_when_out_of_stock": "hide_when_out_of_stock",
    "settings.auto_discount_near_expiry": "auto_discount_near_expiry",
    "settings.min_order_quantity": "min_order_quantity",
    "settings.max_order_quantity": "max_order_quantity",
    "settings.is_active": "is_active",
}

_BATCH_FIELDS = tuple(Batch.model_fields)


class ItemStore(Protocol):
    """Persistence operations the inventory engine depends on."""

    async def find_by_vendor(self, vendor_id: int) -> list[InventoryItem]: ...

    async def find_by_id(self, item_id: int) -> Optional[InventoryItem]: ...

    async def find_expiry_tracked(self) -> list[InventoryItem]: ...

    async def bulk_patch(self, patches: list[ItemPatch]) -> BulkPatchResult: ...

    async def upsert(self, item: InventoryItem) -> InventoryItem: ...


def flatten_item(item: InventoryItem) -> dict[str, Any]:
    """Item as a flat mapping of dotted paths to stored values."""
    data: dict[str, Any] = {}
    for path in COLUMN_PATHS:
        section, field = path.split(".")
        value = getattr(getattr(item, section), field)
        data[path] = value.value if isinstance(value, Enum) else value
    data[BATCHES_PATH] = tuple(item.expiry_tracking.batches)
    return data


def diff_item(before: InventoryItem, after: InventoryItem) -> dict[str, Any]:
    """Paths whose stored value differs between two versions of an item."""
    old = flatten_item(before)
    return {path: value for path, value in flatten_item(after).items() if old[path] != value}


def to_domain(row: VendorProduct) -> InventoryItem:
    """Convert an ORM row (with product and batches loaded) to a domain item."""
    sections: dict[str, dict[str, Any]] = {
        "pricing": {},
        "inventory": {},
        "expiry_tracking": {},
        "availability": {},
        "settings": {},
    }
    for path, column in COLUMN_PATHS.items():
        section, field = path.split(".")
        sections[section][field] = getattr(row, column)
    sections["expiry_tracking"]["batches"] = [
        {field: getattr(b, field) for field in _BATCH_FIELDS} for b in row.batches
    ]
    return InventoryItem.model_validate(
        {
            "id": row.id,
            "vendor_id": row.vendor_id,
            "product_id": row.product_id,
            "product_name": row.product.name if row.product else "",
            "version": row.version,
            "updated_at": row.updated_at,
            **sections,
        }
    )


def _stored_batches(row: VendorProduct) -> tuple[Batch, ...]:
    return tuple(Batch(**{f: getattr(b, f) for f in _BATCH_FIELDS}) for b in row.batches)


def _sync_batches(row: VendorProduct, batches: tuple[Batch, ...]) -> None:
    # Update rows in place by batch number so the unique constraint never sees duplicates
    existing = {b.batch_number: b for b in row.batches}
    synced = []
    for position, batch in enumerate(batches):
        orm_batch = existing.pop(batch.batch_number, None) or ItemBatch()
        for field in _BATCH_FIELDS:
            setattr(orm_batch, field, getattr(batch, field))
        orm_batch.position = position
        synced.append(orm_batch)
    row.batches = synced


def apply_fields(row: VendorProduct, fields: dict[str, Any]) -> bool:
    """Write dotted-path values onto an ORM row. Returns True if anything changed."""
    changed = False
    for path, value in fields.items():
        if path == BATCHES_PATH:
            batches = tuple(Batch.model_validate(b) for b in value)
            if _stored_batches(row) != batches:
                _sync_batches(row, batches)
                changed = True
            continue
        column = COLUMN_PATHS.get(path)
        if column is None:
            raise KeyError(f"Unknown item field: {path}")
        if isinstance(value, Enum):
            value = value.value
        if getattr(row, column) != value:
            setattr(row, column, value)
            changed = True
    return changed


class SqlItemStore:
    """``ItemStore`` backed by async SQLAlchemy sessions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _select():
        return select(VendorProduct).execution_options(populate_existing=True)

    async def _load(self, session: AsyncSession, item_id: int) -> Optional[VendorProduct]:
        result = await session.execute(self._select().where(VendorProduct.id == item_id))
        return result.unique().scalar_one_or_none()

    async def find_by_vendor(self, vendor_id: int) -> list[InventoryItem]:
        """All items listed by a vendor, oldest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                self._select().where(VendorProduct.vendor_id == vendor_id).order_by(VendorProduct.id)
            )
            return [to_domain(row) for row in result.unique().scalars().all()]

    async def find_by_id(self, item_id: int) -> Optional[InventoryItem]:
        async with self._session_factory() as session:
            row = await self._load(session, item_id)
            return to_domain(row) if row else None

    async def find_expiry_tracked(self) -> list[InventoryItem]:
        """Active items with expiry tracking enabled and at least one batch."""
        async with self._session_factory() as session:
            result = await session.execute(
                self._select()
                .where(
                    VendorProduct.has_expiry.is_(True),
                    VendorProduct.is_active.is_(True),
                    VendorProduct.batches.any(),
                )
                .order_by(VendorProduct.id)
            )
            return [to_domain(row) for row in result.unique().scalars().all()]

    async def upsert(self, item: InventoryItem) -> InventoryItem:
        """Insert a new item or compare-and-swap an existing one.

        Args:
            item: Recalculated item; ``version`` must match the stored version

        Returns:
            The stored item with its new version

        Raises:
            ConcurrentModificationError: If the stored version moved on
            ItemNotFoundError: If ``item.id`` does not exist
            DuplicateItemError: If the vendor already lists this product
        """
        async with self._session_factory() as session:
            try:
                if item.id is None:
                    row = VendorProduct(vendor_id=item.vendor_id, product_id=item.product_id, version=1)
                    apply_fields(row, flatten_item(item))
                    session.add(row)
                else:
                    loaded = await self._load(session, item.id)
                    if loaded is None:
                        raise ItemNotFoundError(f"Item {item.id} not found", item_id=item.id)
                    row = loaded
                    if row.version != item.version:
                        raise ConcurrentModificationError(item.id, item.version, row.version)
                    apply_fields(row, flatten_item(item))
                    row.version = item.version + 1
                await session.commit()
            except StaleDataError as e:
                await session.rollback()
                raise ConcurrentModificationError(item.id or 0, item.version) from e
            except IntegrityError as e:
                await session.rollback()
                raise DuplicateItemError(
                    f"Vendor {item.vendor_id} already lists product {item.product_id}"
                ) from e

            stored = await self._load(session, row.id)
            if stored is None:
                raise ItemNotFoundError(f"Item {row.id} not found after write", item_id=row.id)
            logger.debug(f"Upserted item id={stored.id} version={stored.version}")
            return to_domain(stored)

    async def bulk_patch(self, patches: list[ItemPatch]) -> BulkPatchResult:
        """Apply many sparse patches in a single transaction.

        Patches whose ``expected_version`` is stale are skipped and reported as
        conflicts. Any database error aborts the whole batch.

        Raises:
            StoreWriteError: If the transaction fails; nothing is applied
        """
        if not patches:
            return BulkPatchResult()

        async with self._session_factory() as session:
            try:
                ids = [p.item_id for p in patches]
                result = await session.execute(self._select().where(VendorProduct.id.in_(ids)))
                rows = {row.id: row for row in result.unique().scalars().all()}

                modified = 0
                conflicts: list[int] = []
                for patch in patches:
                    row = rows.get(patch.item_id)
                    if row is None or row.version != patch.expected_version:
                        conflicts.append(patch.item_id)
                        continue
                    if apply_fields(row, patch.fields):
                        row.version = row.version + 1
                        modified += 1
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Bulk patch of {len(patches)} items failed: {e}")
                raise StoreWriteError(f"Failed to execute bulk update: {e}") from e

        if conflicts:
            logger.warning(f"Bulk patch skipped {len(conflicts)} stale items: {conflicts}")
        logger.info(f"Bulk patch completed: {modified} items modified")
        return BulkPatchResult(modified_count=modified, conflicts=conflicts)
