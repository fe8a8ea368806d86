"""Pydantic models for vendor inventory items and engine results.

Item models are frozen: every calculation returns a new instance via
``model_copy(update=...)`` instead of mutating the input.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class AvailabilityStatus(str, Enum):
    """Purchasability classification of an inventory item."""

    AVAILABLE = "available"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"
    DISCONTINUED = "discontinued"


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class Pricing(FrozenModel):
    cost_price: float = 0.0
    selling_price: float = 0.0
    discount_percentage: float = 0.0
    # Derived
    final_price: float = 0.0
    margin: float = 0.0
    margin_percentage: float = 0.0
    has_negative_margin: bool = False


class StockLevels(FrozenModel):
    current_stock: int = 0
    min_stock_level: int = 5
    max_stock_level: int = 100
    reserved_stock: int = 0
    # Derived
    available_stock: int = 0


class Batch(FrozenModel):
    """One expiry-dated lot within an item."""

    batch_number: str
    manufacture_date: Optional[date] = None
    expiry_date: Optional[date] = None
    quantity: int = 0
    sold_quantity: int = 0
    # Derived
    remaining_quantity: int = 0
    days_to_expiry: Optional[int] = None
    is_expired: bool = False
    is_near_expiry: bool = False
    near_expiry_discount: int = 0


class BatchInput(BaseModel):
    """Incoming batch data. Only fields that were explicitly set are merged."""

    batch_number: str = Field(..., min_length=1)
    manufacture_date: Optional[date] = None
    expiry_date: Optional[date] = None
    quantity: Optional[int] = Field(None, ge=0)
    sold_quantity: Optional[int] = Field(None, ge=0)


class ExpiryTracking(FrozenModel):
    has_expiry: bool = False
    batches: tuple[Batch, ...] = ()


class Availability(FrozenModel):
    is_available: bool = True
    is_out_of_stock: bool = False
    availability_status: AvailabilityStatus = AvailabilityStatus.AVAILABLE


class ItemSettings(FrozenModel):
    hide_when_out_of_stock: bool = False
    auto_discount_near_expiry: bool = True
    min_order_quantity: int = 1
    max_order_quantity: int = 10
    is_active: bool = True


class InventoryItem(FrozenModel):
    """One vendor's listing of one catalog product."""

    id: Optional[int] = None
    vendor_id: int
    product_id: int
    product_name: str = ""
    pricing: Pricing = Pricing()
    inventory: StockLevels = StockLevels()
    expiry_tracking: ExpiryTracking = ExpiryTracking()
    availability: Availability = Availability()
    settings: ItemSettings = ItemSettings()
    version: int = 0
    updated_at: Optional[datetime] = None


# ===== Store boundary =====


class ItemPatch(BaseModel):
    """Sparse write against one stored item.

    ``fields`` maps dotted item paths (``"pricing.selling_price"``) to new
    values; ``"expiry_tracking.batches"`` replaces the whole batch list.
    """

    item_id: int
    expected_version: int
    fields: dict[str, Any]


class BulkPatchResult(BaseModel):
    modified_count: int = 0
    conflicts: list[int] = Field(default_factory=list)


# ===== Bulk reconciliation =====

RawCell = Optional[Union[str, int, float]]


class BulkRow(BaseModel):
    """A normalized tabular row. Absent fields are never updated."""

    model_config = ConfigDict(populate_by_name=True)

    product_name: Optional[str] = Field(None, alias="productName")
    current_stock: RawCell = Field(None, alias="currentStock")
    selling_price: RawCell = Field(None, alias="sellingPrice")
    cost_price: RawCell = Field(None, alias="costPrice")
    min_stock_level: RawCell = Field(None, alias="minStockLevel")
    max_stock_level: RawCell = Field(None, alias="maxStockLevel")


class RollbackRecord(BaseModel):
    """Pre-update values of the fields a bulk patch touched on one item."""

    product_name: str
    item_id: int
    row: int
    original: dict[str, Union[int, float]]


class RowDetail(BaseModel):
    row: int
    status: Literal["processed", "skipped", "failed"]
    product_name: Optional[str] = None
    reason: Optional[str] = None
    updated_fields: list[str] = Field(default_factory=list)


class RecalculationFailure(BaseModel):
    item_id: int
    error: str


class BulkUpdateSummary(BaseModel):
    operation: str = "bulk_inventory_update"
    timestamp: datetime
    total_rows: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    actual_updated: int = 0
    conflicts: list[int] = Field(default_factory=list)
    recalculation_failures: list[RecalculationFailure] = Field(default_factory=list)
    details: list[RowDetail] = Field(default_factory=list)
    rollback: list[RollbackRecord] = Field(default_factory=list)
    partial: bool = False
    applied: bool = False


# ===== Expiry sweep =====


class SweepSummary(BaseModel):
    reference_date: date
    items_scanned: int = 0
    items_updated: int = 0
    batches_processed: int = 0
    near_expiry_batches: int = 0
    expired_batches: int = 0
    failed: int = 0
    partial: bool = False


# ===== Inventory insights =====


class InventorySummary(BaseModel):
    total_products: int = 0
    total_value: float = 0.0
    low_stock_items: int = 0
    out_of_stock_items: int = 0


class LowStockSummary(BaseModel):
    total_low_stock_items: int = 0
    out_of_stock_items: int = 0
    # In stock but at or below half the minimum level
    critical_stock_items: int = 0
