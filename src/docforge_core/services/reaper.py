"""
Reaper - periodic sweep that deletes expired files.

A file past expires_at that is not yet deleted is a pending reap; the sweep
deletes its storage objects and marks the record deleted. Safe to run
concurrently with itself and with manual deletes, since delete() is
idempotent. A processing file that expires is deleted too: expiry wins over
in-flight work.

Scheduling runs on APScheduler's AsyncIOScheduler with an IntervalTrigger.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from docforge_core.config import CoreConfig, core_config
from docforge_core.services.file_service import (
    FileLifecycleManager,
    file_lifecycle_manager,
)

logger = logging.getLogger(__name__)

REAPER_JOB_ID = "reaper_sweep"


@dataclass
class SweepResult:
    """Counts from one sweep."""

    scanned: int = 0
    deleted: int = 0
    failed: int = 0
    failed_ids: List[str] = field(default_factory=list)


class Reaper:
    def __init__(
        self,
        files: Optional[FileLifecycleManager] = None,
        config: Optional[CoreConfig] = None,
    ):
        config = config or core_config
        self._files = files or file_lifecycle_manager
        self.interval_seconds = config.REAPER_INTERVAL_SECONDS
        self.batch_size = config.REAPER_BATCH_SIZE
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._in_flight: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    async def sweep(self) -> SweepResult:
        """
        Delete every expired, non-deleted file, batch_size ids at a time.

        A failure on one file is logged and counted; the sweep moves on to
        the remaining files and the failed one is picked up again next cycle.
        """
        result = SweepResult()

        while True:
            batch = await self._files.list_expired(
                limit=self.batch_size, exclude_ids=result.failed_ids
            )
            if not batch:
                break
            result.scanned += len(batch)

            for file_id in batch:
                try:
                    outcome = await self._files.delete(file_id)
                except Exception as e:
                    logger.exception(f"Unexpected error reaping file {file_id}: {e}")
                    result.failed += 1
                    result.failed_ids.append(file_id)
                    continue

                if outcome.ok:
                    result.deleted += 1
                else:
                    logger.warning(
                        f"Could not reap file {file_id}: {outcome.error.value} - {outcome.message}"
                    )
                    result.failed += 1
                    result.failed_ids.append(file_id)

        if result.scanned:
            logger.info(
                f"Reaper sweep: scanned={result.scanned}, deleted={result.deleted}, "
                f"failed={result.failed}"
            )
        return result

    async def _scheduled_sweep(self) -> None:
        self._in_flight = asyncio.current_task()
        try:
            await self.sweep()
        except Exception as e:
            logger.exception(f"Reaper sweep failed: {e}")
        finally:
            self._in_flight = None

    def start(self) -> AsyncIOScheduler:
        """
        Schedule sweep() every interval_seconds on the running event loop.

        The first sweep runs immediately. Overlapping runs are skipped and
        missed runs coalesce into one.
        """
        if self.is_running:
            return self._scheduler

        scheduler = AsyncIOScheduler(timezone=timezone.utc)
        scheduler.add_job(
            self._scheduled_sweep,
            IntervalTrigger(seconds=self.interval_seconds),
            id=REAPER_JOB_ID,
            name="Expired file reaper",
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(timezone.utc),
            replace_existing=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(f"Reaper started (interval={self.interval_seconds}s)")
        return scheduler

    async def stop(self) -> None:
        """Stop scheduling sweeps and wait for a sweep already in progress."""
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        if self._in_flight is not None:
            await asyncio.gather(self._in_flight, return_exceptions=True)
        logger.info("Reaper stopped")
