"""Daily expiry sweep over every expiry-tracked inventory item."""

import asyncio
import logging
from datetime import date
from typing import Optional

from .batches import expiry_classification, refresh_batches
from .calculator import recalculate
from .config import Settings
from .config import settings as default_settings
from .database.store import ItemStore
from .expiry import today_in
from .schemas import InventoryItem, SweepSummary
from .utils import Deadline

logger = logging.getLogger(__name__)


class ExpirySweepJob:
    """Re-evaluate batch expiry status and persist only items whose status changed."""

    def __init__(self, store: ItemStore, settings: Optional[Settings] = None) -> None:
        self.store = store
        self.settings = settings or default_settings

    async def run(
        self,
        today: Optional[date] = None,
        *,
        cancel_event: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> SweepSummary:
        """Run one sweep.

        Args:
            today: Reference date (defaults to today in the business timezone)
            cancel_event: Set to stop the sweep early
            timeout: Seconds after which the sweep stops early

        Returns:
            Counts of scanned/updated items and near-expiry/expired batches.
            Items persisted before a cancellation stay persisted; ``partial``
            is set in that case.
        """
        today = today or today_in(self.settings.sweep_timezone)
        deadline = Deadline(cancel_event, timeout)
        summary = SweepSummary(reference_date=today)
        logger.info(f"Starting daily expiry check for {today.isoformat()}...")

        items = await self.store.find_expiry_tracked()
        semaphore = asyncio.Semaphore(max(1, self.settings.sweep_concurrency))

        async def sweep_one(item: InventoryItem) -> None:
            async with semaphore:
                if deadline.expired():
                    summary.partial = True
                    return
                await self._sweep_item(item, today, summary)

        await asyncio.gather(*(sweep_one(item) for item in items))

        logger.info(
            f"Daily expiry check completed: scanned={summary.items_scanned} "
            f"updated={summary.items_updated} batches={summary.batches_processed} "
            f"near_expiry={summary.near_expiry_batches} expired={summary.expired_batches} "
            f"failed={summary.failed}" + (" (partial)" if summary.partial else "")
        )
        return summary

    async def _sweep_item(self, item: InventoryItem, today: date, summary: SweepSummary) -> None:
        summary.items_scanned += 1
        threshold = self.settings.near_expiry_threshold_days
        before = item.expiry_tracking.batches
        previous = {b.batch_number: expiry_classification(b) for b in before}
        refreshed = refresh_batches(before, today, threshold)

        dirty = False
        for batch in refreshed:
            if batch.expiry_date is None:
                continue
            summary.batches_processed += 1
            if expiry_classification(batch) != previous.get(batch.batch_number):
                dirty = True
            if batch.is_near_expiry and batch.remaining_quantity > 0:
                summary.near_expiry_batches += 1
            if batch.is_expired and batch.remaining_quantity > 0:
                summary.expired_batches += 1

        if not dirty:
            return

        try:
            await self.store.upsert(recalculate(item, today, threshold))
        except Exception as e:  # Intentionally broad: one item must not stop the sweep
            logger.error(f"Failed to update expiry status for item {item.id}: {e}")
            summary.failed += 1
            return
        summary.items_updated += 1
        logger.info(f"Updated expiry status for item {item.id}")
