"""Bulk reconciliation engine: apply spreadsheet rows to a vendor's inventory.

Rows are matched to items by normalized product name and turned into sparse
patches. Before anything is written, a rollback record captures the pre-update
value of every field a patch touches, plus any bulk column recalculation moves
as a side effect.

Two write modes exist (``Settings.bulk_recalculate_before_write``):

* recalculate-then-write (default): each patched item runs through the derived
  field pipeline in-process and the full set of changed fields goes out in one
  batch write. Readers never see un-recalculated values.
* write-then-recalculate: raw patches go out in one batch write, then every
  patched item is re-fetched, recalculated and upserted. Between the two phases
  readers can observe stale derived fields; a failed recalculation leaves the
  raw write in place and is reported in ``recalculation_failures``.
"""

import asyncio
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, NamedTuple, Optional, Union

from .calculator import recalculate
from .config import Settings
from .config import settings as default_settings
from .database.store import ItemStore, diff_item
from .exceptions import ItemNotFoundError
from .expiry import today_in
from .schemas import (
    BulkRow,
    BulkUpdateSummary,
    InventoryItem,
    ItemPatch,
    RecalculationFailure,
    RollbackRecord,
    RowDetail,
)
from .utils import Deadline, is_blank, normalize_product_name, parse_number

logger = logging.getLogger(__name__)


class BulkField(NamedTuple):
    path: str
    minimum: float
    whole_number: bool


# Canonical bulk column -> item field and domain bounds
BULK_FIELDS: dict[str, BulkField] = {
    "current_stock": BulkField("inventory.current_stock", 0, True),
    "selling_price": BulkField("pricing.selling_price", 0, False),
    "cost_price": BulkField("pricing.cost_price", 0, False),
    "min_stock_level": BulkField("inventory.min_stock_level", 0, True),
    "max_stock_level": BulkField("inventory.max_stock_level", 1, True),
}

CONFLICT_REASON = "Item was modified concurrently; update not applied"
BATCH_STOCK_REASON = "Current stock is derived from batches; current_stock ignored"


def parse_bulk_value(value: Any, spec: BulkField) -> Optional[Union[int, float]]:
    """Parse one cell; None if blank, unparseable or out of bounds."""
    number = parse_number(value)
    if number is None or number < spec.minimum:
        return None
    if spec.whole_number:
        return int(number) if number.is_integer() else None
    return number


def build_patch(row: BulkRow) -> dict[str, Union[int, float]]:
    """Sparse patch keyed by bulk column. Bad cells are dropped silently."""
    patch: dict[str, Union[int, float]] = {}
    for key, spec in BULK_FIELDS.items():
        value = parse_bulk_value(getattr(row, key), spec)
        if value is not None:
            patch[key] = value
    return patch


def read_field(item: InventoryItem, path: str) -> Any:
    section, name = path.split(".")
    return getattr(getattr(item, section), name)


def stock_from_batches(item: InventoryItem) -> bool:
    """True when recalculation overwrites ``current_stock`` with the batch total."""
    return item.expiry_tracking.has_expiry and bool(item.expiry_tracking.batches)


def changed_bulk_fields(before: InventoryItem, after: InventoryItem) -> dict[str, Union[int, float]]:
    """Pre-update values of bulk columns that differ between two versions of an item."""
    changed = {
        key: read_field(before, spec.path)
        for key, spec in BULK_FIELDS.items()
        if read_field(before, spec.path) != read_field(after, spec.path)
    }
    if stock_from_batches(before):
        changed.pop("current_stock", None)
    return changed


def apply_patch(item: InventoryItem, patch: Mapping[str, Union[int, float]]) -> InventoryItem:
    """Write raw patch values onto an item without recalculating."""
    sections: dict[str, dict[str, Any]] = {}
    for key, value in patch.items():
        section, name = BULK_FIELDS[key].path.split(".")
        sections.setdefault(section, {})[name] = value
    return item.model_copy(
        update={
            section: getattr(item, section).model_copy(update=values)
            for section, values in sections.items()
        }
    )


def rollback_rows(records: Iterable[RollbackRecord]) -> list[BulkRow]:
    """Turn rollback records back into rows for another run of the engine."""
    return [BulkRow(product_name=r.product_name, **r.original) for r in records]


@dataclass
class _PendingItem:
    item: InventoryItem
    patch: dict[str, Union[int, float]] = field(default_factory=dict)
    rows: list[int] = field(default_factory=list)


class BulkReconciliationEngine:
    """Match bulk rows to a vendor's items and apply them as sparse patches."""

    def __init__(self, store: ItemStore, settings: Optional[Settings] = None) -> None:
        self.store = store
        self.settings = settings or default_settings

    async def run(
        self,
        vendor_id: int,
        rows: Iterable[Union[BulkRow, Mapping[str, Any]]],
        *,
        today: Optional[date] = None,
        cancel_event: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> BulkUpdateSummary:
        """Apply rows to the vendor's inventory.

        Args:
            vendor_id: Vendor whose items are updated
            rows: Normalized rows (``BulkRow`` or mappings with canonical keys)
            today: Reference date for recalculation (defaults to today in the business timezone)
            cancel_event: Set to stop the run early
            timeout: Seconds after which the run stops early

        Returns:
            Summary with per-row details and rollback records

        Raises:
            StoreWriteError: If the batch write fails; nothing was applied
        """
        rows = list(rows)
        today = today or today_in(self.settings.sweep_timezone)
        deadline = Deadline(cancel_event, timeout)
        summary = BulkUpdateSummary(timestamp=datetime.now(timezone.utc), total_rows=len(rows))
        logger.info(f"Starting bulk inventory update for vendor {vendor_id}: {len(rows)} rows")

        items = await self.store.find_by_vendor(vendor_id)
        lookup: dict[str, InventoryItem] = {}
        ambiguous: set[str] = set()
        for item in items:
            if item.id is None or not item.product_name:
                continue
            key = normalize_product_name(item.product_name)
            if key in lookup:
                ambiguous.add(key)
            lookup[key] = item
        for key in ambiguous:
            logger.warning(f'Vendor {vendor_id} lists several items named "{key}"; matching rows will be skipped')

        pending: dict[int, _PendingItem] = {}
        for number, row in enumerate(rows, start=1):
            if deadline.expired():
                summary.partial = True
                break
            try:
                self._process_row(number, row, lookup, ambiguous, pending, summary)
            except Exception as e:  # Intentionally broad: one bad row must not abort the run
                logger.error(f"Error processing row {number}: {e}")
                summary.failed += 1
                summary.details.append(RowDetail(row=number, status="failed", reason=str(e)))

        if summary.partial:
            logger.warning(
                f"Bulk update for vendor {vendor_id} cancelled after {len(summary.details)} rows; nothing written"
            )
            return summary

        if pending:
            if self.settings.bulk_recalculate_before_write:
                await self._recalculate_then_write(pending, summary, today)
            else:
                await self._write_then_recalculate(pending, summary, today, deadline)

        logger.info(
            f"Bulk inventory update completed for vendor {vendor_id}: "
            f"processed={summary.processed} skipped={summary.skipped} failed={summary.failed} "
            f"updated={summary.actual_updated} conflicts={len(summary.conflicts)} "
            f"recalculation_failures={len(summary.recalculation_failures)}"
        )
        return summary

    def _process_row(
        self,
        number: int,
        row: Union[BulkRow, Mapping[str, Any]],
        lookup: dict[str, InventoryItem],
        ambiguous: set[str],
        pending: dict[int, _PendingItem],
        summary: BulkUpdateSummary,
    ) -> None:
        if not isinstance(row, BulkRow):
            row = BulkRow.model_validate(row)

        if is_blank(row.product_name):
            self._skip(summary, number, "Missing product name")
            return

        name = str(row.product_name)
        key = normalize_product_name(name)
        if key in ambiguous:
            self._skip(summary, number, f'Product "{name.strip()}" matches more than one inventory item', name)
            return
        item = lookup.get(key)
        if item is None or item.id is None:
            self._skip(summary, number, f'Product "{name.strip()}" not found in vendor inventory', name)
            return

        patch = build_patch(row)
        note: Optional[str] = None
        if "current_stock" in patch and stock_from_batches(item):
            del patch["current_stock"]
            note = BATCH_STOCK_REASON
            logger.warning(f"Row {number}: {name.strip()} tracks stock by batch; current_stock ignored")
        if not patch:
            self._skip(summary, number, note or "No valid fields to update", name)
            return

        # Snapshot is always the pre-run item, so repeated rows record the original value
        summary.rollback.append(
            RollbackRecord(
                product_name=item.product_name,
                item_id=item.id,
                row=number,
                original={key: read_field(item, BULK_FIELDS[key].path) for key in patch},
            )
        )
        entry = pending.setdefault(item.id, _PendingItem(item=item))
        entry.patch.update(patch)
        entry.rows.append(number)

        summary.processed += 1
        summary.details.append(
            RowDetail(row=number, status="processed", product_name=name, reason=note, updated_fields=list(patch))
        )

    @staticmethod
    def _skip(summary: BulkUpdateSummary, number: int, reason: str, name: Optional[str] = None) -> None:
        summary.skipped += 1
        summary.details.append(RowDetail(row=number, status="skipped", product_name=name, reason=reason))

    @staticmethod
    def _fail_rows(summary: BulkUpdateSummary, rows: list[int], reason: str) -> None:
        """Demote already-processed rows to failed and drop their rollback records."""
        failed = set(rows)
        for detail in summary.details:
            if detail.row in failed and detail.status == "processed":
                detail.status = "failed"
                detail.reason = reason
                summary.processed -= 1
                summary.failed += 1
        summary.rollback = [r for r in summary.rollback if r.row not in failed]

    @staticmethod
    def _extend_rollback(
        summary: BulkUpdateSummary, item_id: int, before: InventoryItem, after: InventoryItem
    ) -> None:
        """Add bulk columns the pipeline changed (e.g. a clamped min level) to the item's records."""
        changed = changed_bulk_fields(before, after)
        for record in summary.rollback:
            if record.item_id == item_id:
                for key, value in changed.items():
                    record.original.setdefault(key, value)

    async def _recalculate_then_write(
        self, pending: dict[int, _PendingItem], summary: BulkUpdateSummary, today: date
    ) -> None:
        threshold = self.settings.near_expiry_threshold_days
        patches: list[ItemPatch] = []
        for item_id, entry in pending.items():
            try:
                updated = recalculate(apply_patch(entry.item, entry.patch), today, threshold)
            except Exception as e:  # Intentionally broad: isolate one item's failure
                logger.error(f"Error recalculating fields for item {item_id}: {e}")
                summary.recalculation_failures.append(RecalculationFailure(item_id=item_id, error=str(e)))
                self._fail_rows(summary, entry.rows, f"Recalculation failed: {e}")
                continue
            self._extend_rollback(summary, item_id, entry.item, updated)
            fields = diff_item(entry.item, updated)
            if fields:
                patches.append(ItemPatch(item_id=item_id, expected_version=entry.item.version, fields=fields))

        result = await self.store.bulk_patch(patches)
        summary.applied = True
        summary.actual_updated = result.modified_count
        self._record_conflicts(pending, summary, result.conflicts)

    async def _write_then_recalculate(
        self,
        pending: dict[int, _PendingItem],
        summary: BulkUpdateSummary,
        today: date,
        deadline: Deadline,
    ) -> None:
        patches = [
            ItemPatch(
                item_id=item_id,
                expected_version=entry.item.version,
                fields={BULK_FIELDS[key].path: value for key, value in entry.patch.items()},
            )
            for item_id, entry in pending.items()
        ]
        result = await self.store.bulk_patch(patches)
        summary.applied = True
        summary.actual_updated = result.modified_count
        self._record_conflicts(pending, summary, result.conflicts)

        # The batch write bypassed the pipeline; bring every written item back in line
        logger.info("Triggering field recalculations for updated items...")
        threshold = self.settings.near_expiry_threshold_days
        semaphore = asyncio.Semaphore(max(1, self.settings.sweep_concurrency))
        conflicted = set(result.conflicts)

        async def recalculate_one(item_id: int) -> None:
            async with semaphore:
                if deadline.expired():
                    summary.partial = True
                    return
                try:
                    stored = await self.store.find_by_id(item_id)
                    if stored is None:
                        raise ItemNotFoundError(f"Item {item_id} not found", item_id=item_id)
                    recalculated = recalculate(stored, today, threshold)
                    await self.store.upsert(recalculated)
                    self._extend_rollback(summary, item_id, pending[item_id].item, recalculated)
                except Exception as e:  # Intentionally broad: other items' writes stand
                    logger.error(f"Error recalculating fields for item {item_id}: {e}")
                    summary.recalculation_failures.append(
                        RecalculationFailure(item_id=item_id, error=str(e))
                    )

        await asyncio.gather(*(recalculate_one(i) for i in pending if i not in conflicted))
        logger.info(f"Field recalculations completed for {len(pending) - len(conflicted)} items")

    def _record_conflicts(
        self, pending: dict[int, _PendingItem], summary: BulkUpdateSummary, conflicts: list[int]
    ) -> None:
        summary.conflicts = list(conflicts)
        for item_id in conflicts:
            entry = pending.get(item_id)
            if entry is not None:
                self._fail_rows(summary, entry.rows, CONFLICT_REASON)
