"""Single-item inventory operations and inventory insights.

Every write runs the item through ``recalculate`` before it reaches the store,
so derived fields are never persisted stale.
"""

import logging
from collections.abc import Iterable
from datetime import date
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import calculator
from .config import Settings
from .config import settings as default_settings
from .database.crud import get_product
from .database.store import ItemStore
from .exceptions import ConcurrentModificationError, DuplicateItemError, ItemNotFoundError
from .expiry import today_in
from .schemas import (
    BatchInput,
    InventoryItem,
    InventorySummary,
    LowStockSummary,
)

logger = logging.getLogger(__name__)


def summarize_inventory(items: Iterable[InventoryItem]) -> InventorySummary:
    """Totals shown above a vendor's inventory list."""
    summary = InventorySummary()
    for item in items:
        stock = item.inventory.current_stock
        summary.total_products += 1
        summary.total_value += item.pricing.selling_price * stock
        if stock <= item.inventory.min_stock_level:
            summary.low_stock_items += 1
        if stock == 0:
            summary.out_of_stock_items += 1
    summary.total_value = round(summary.total_value, 2)
    return summary


def summarize_low_stock(items: Iterable[InventoryItem]) -> LowStockSummary:
    summary = LowStockSummary()
    for item in items:
        stock = item.inventory.current_stock
        summary.total_low_stock_items += 1
        if stock == 0:
            summary.out_of_stock_items += 1
        elif stock <= item.inventory.min_stock_level * 0.5:
            summary.critical_stock_items += 1
    return summary


class InventoryService:
    """Vendor-scoped inventory operations on top of an ``ItemStore``."""

    def __init__(
        self,
        store: ItemStore,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.store = store
        self.session_factory = session_factory
        self.settings = settings or default_settings

    @property
    def threshold(self) -> int:
        return self.settings.near_expiry_threshold_days

    def _today(self, today: Optional[date]) -> date:
        return today or today_in(self.settings.sweep_timezone)

    async def _get_owned(self, vendor_id: int, item_id: int) -> InventoryItem:
        item = await self.store.find_by_id(item_id)
        if item is None or item.vendor_id != vendor_id:
            raise ItemNotFoundError("Product not found in inventory", item_id=item_id)
        return item

    async def _save(self, item: InventoryItem) -> InventoryItem:
        stored = await self.store.upsert(item)
        logger.info(f"Saved inventory item {stored.id} for vendor {stored.vendor_id} (version {stored.version})")
        return stored

    # ===== CRUD =====

    async def add_product(
        self,
        vendor_id: int,
        product_id: int,
        details: Optional[dict[str, Any]] = None,
        *,
        today: Optional[date] = None,
    ) -> InventoryItem:
        """List a catalog product in the vendor's inventory.

        Args:
            vendor_id: Vendor adding the product
            product_id: Catalog product ID
            details: Optional partial ``pricing``, ``inventory``,
                ``expiry_tracking`` and ``settings`` sections

        Returns:
            The stored, recalculated item

        Raises:
            ItemNotFoundError: If the catalog product does not exist
            DuplicateItemError: If the vendor already lists the product
        """
        if self.session_factory is None:
            raise RuntimeError("A session factory is required to look up catalog products")
        async with self.session_factory() as session:
            product = await get_product(session, product_id)
        if product is None:
            raise ItemNotFoundError(f"Product {product_id} not found")

        existing = await self.store.find_by_vendor(vendor_id)
        if any(item.product_id == product_id for item in existing):
            raise DuplicateItemError("Product already exists in your inventory")

        item = InventoryItem(vendor_id=vendor_id, product_id=product_id, product_name=product.name)
        item = calculator.apply_update(item, details or {}, self._today(today), self.threshold)
        stored = await self._save(item)
        logger.info(f"Product {product.name} added to inventory of vendor {vendor_id}")
        return stored

    async def list_items(
        self, vendor_id: int, include_inactive: bool = False
    ) -> tuple[list[InventoryItem], InventorySummary]:
        """Vendor inventory, most recently updated first, with totals."""
        items = await self.store.find_by_vendor(vendor_id)
        if not include_inactive:
            items = [item for item in items if item.settings.is_active]
        items.sort(key=lambda i: i.updated_at.timestamp() if i.updated_at else 0.0, reverse=True)
        return items, summarize_inventory(items)

    async def get_item(self, vendor_id: int, item_id: int) -> InventoryItem:
        return await self._get_owned(vendor_id, item_id)

    async def update_item(
        self,
        vendor_id: int,
        item_id: int,
        changes: dict[str, Any],
        *,
        expected_version: Optional[int] = None,
        today: Optional[date] = None,
    ) -> InventoryItem:
        """Sparse nested update of one item.

        Raises:
            ItemNotFoundError: If the item is not in the vendor's inventory
            ConcurrentModificationError: If ``expected_version`` is stale
        """
        item = await self._get_owned(vendor_id, item_id)
        if expected_version is not None and expected_version != item.version:
            raise ConcurrentModificationError(item_id, expected_version, item.version)
        updated = calculator.apply_update(item, changes, self._today(today), self.threshold)
        return await self._save(updated)

    async def remove_item(self, vendor_id: int, item_id: int, *, today: Optional[date] = None) -> InventoryItem:
        """Soft-remove an item; it stays in the store as inactive."""
        item = await self._get_owned(vendor_id, item_id)
        return await self._save(calculator.deactivate(item, self._today(today), self.threshold))

    # ===== Stock and batches =====

    async def add_stock(
        self,
        vendor_id: int,
        item_id: int,
        quantity: int,
        batch: Optional[BatchInput] = None,
        *,
        today: Optional[date] = None,
    ) -> InventoryItem:
        item = await self._get_owned(vendor_id, item_id)
        updated = calculator.add_stock(item, quantity, self._today(today), batch, self.threshold)
        return await self._save(updated)

    async def update_batches(
        self,
        vendor_id: int,
        item_id: int,
        batches: Iterable[BatchInput],
        replace_all: bool = False,
        *,
        today: Optional[date] = None,
    ) -> InventoryItem:
        """Merge incoming batches by number, or replace the whole set."""
        item = await self._get_owned(vendor_id, item_id)
        updated = calculator.apply_batch_update(
            item, batches, self._today(today), replace_all=replace_all, threshold=self.threshold
        )
        return await self._save(updated)

    async def update_batch(
        self,
        vendor_id: int,
        item_id: int,
        batch_number: str,
        changes: dict[str, Any],
        *,
        today: Optional[date] = None,
    ) -> InventoryItem:
        item = await self._get_owned(vendor_id, item_id)
        updated = calculator.update_batch(item, batch_number, changes, self._today(today), self.threshold)
        return await self._save(updated)

    # ===== Insights =====

    async def near_expiry_items(self, vendor_id: int) -> list[InventoryItem]:
        """Items holding stock in at least one near-expiry batch."""
        items = await self.store.find_by_vendor(vendor_id)
        return [item for item in items if calculator.has_near_expiry_stock(item)]

    async def out_of_stock_items(self, vendor_id: int) -> list[InventoryItem]:
        items = await self.store.find_by_vendor(vendor_id)
        return [item for item in items if item.availability.is_out_of_stock]

    async def low_stock_items(self, vendor_id: int) -> tuple[list[InventoryItem], LowStockSummary]:
        """Active items at or below their minimum level, lowest stock first."""
        items = await self.store.find_by_vendor(vendor_id)
        low = [
            item
            for item in items
            if item.settings.is_active and item.inventory.current_stock <= item.inventory.min_stock_level
        ]
        low.sort(key=lambda i: i.inventory.current_stock)
        logger.info(f"Low stock items fetched for vendor {vendor_id}: {len(low)} items")
        return low, summarize_low_stock(low)
