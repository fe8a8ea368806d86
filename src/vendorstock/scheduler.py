"""In-process daily job scheduler.

Runs alongside the FastAPI app in the same event loop; no external scheduler
service is needed. Time-of-day is evaluated in a configured IANA timezone so
a sweep set for 00:01 fires at local midnight regardless of the host's zone.
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, time, timedelta, timezone
from typing import Any, Optional, Protocol

from dateutil import tz

logger = logging.getLogger(__name__)

JobFactory = Callable[[], Awaitable[Any]]


class Scheduler(Protocol):
    """Triggers a job on demand and once a day at a local time."""

    async def run_now(self) -> Any: ...

    def run_daily_at(self, at: time, tz_name: str) -> None: ...

    async def stop(self) -> None: ...


def next_run_at(at: time, tz_name: str, now: Optional[datetime] = None) -> datetime:
    """Next occurrence of local time ``at`` in ``tz_name``, strictly after ``now``.

    Args:
        at: Local wall-clock time
        tz_name: IANA timezone name (e.g., "Asia/Kolkata")
        now: Aware reference instant (defaults to the current time)

    Returns:
        Aware datetime in ``tz_name``

    Raises:
        ValueError: If the timezone is unknown
    """
    zone = tz.gettz(tz_name)
    if zone is None:
        raise ValueError(f"Unknown timezone: {tz_name}")
    local_now = (now or datetime.now(timezone.utc)).astimezone(zone)
    candidate = tz.resolve_imaginary(datetime.combine(local_now.date(), at, tzinfo=zone))
    if candidate <= local_now:
        candidate = tz.resolve_imaginary(
            datetime.combine(local_now.date() + timedelta(days=1), at, tzinfo=zone)
        )
    return candidate


def seconds_until(at: time, tz_name: str, now: Optional[datetime] = None) -> float:
    now = now or datetime.now(timezone.utc)
    target = next_run_at(at, tz_name, now)
    # Compare in UTC; same-tzinfo subtraction ignores offset changes across DST
    return (target.astimezone(timezone.utc) - now.astimezone(timezone.utc)).total_seconds()


class DailyJobScheduler:
    """Run a coroutine factory on demand and daily in a background task.

    Runs never overlap: a manual ``run_now`` while the daily run is in
    progress waits for it to finish first.
    """

    def __init__(self, job_factory: JobFactory, name: str = "daily job") -> None:
        self._job_factory = job_factory
        self.name = name
        self._task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_now(self) -> Any:
        """Run the job immediately and return its result."""
        async with self._lock:
            return await self._job_factory()

    def run_daily_at(self, at: time, tz_name: str) -> None:
        """Start the background loop. Must be called from a running event loop.

        Raises:
            ValueError: If the timezone is unknown
            RuntimeError: If the loop is already running
        """
        if tz.gettz(tz_name) is None:
            raise ValueError(f"Unknown timezone: {tz_name}")
        if self.running:
            raise RuntimeError(f"{self.name} scheduler is already running")
        self._task = asyncio.create_task(self._loop(at, tz_name))
        logger.info(f"Scheduled {self.name} daily at {at.isoformat(timespec='minutes')} ({tz_name})")

    async def _loop(self, at: time, tz_name: str) -> None:
        while True:
            delay = seconds_until(at, tz_name)
            logger.debug(f"Next {self.name} run in {delay:.0f}s")
            await asyncio.sleep(delay)
            try:
                await self.run_now()
            except Exception as e:  # Intentionally broad: keep the daily loop alive
                logger.error(f"Scheduled {self.name} failed: {e}")

    async def stop(self) -> None:
        """Cancel the background loop, including a run in progress."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info(f"Stopped {self.name} scheduler")
