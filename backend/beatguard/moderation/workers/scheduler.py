"""APScheduler wrapper for the moderation retry sweep."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from beatguard.moderation.exceptions import QuotaExhaustedError, StoreUnavailableError
from beatguard.moderation.infra import rate_limit
from beatguard.moderation.workers.retry_sweeper import RetrySweeper

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "moderation-retry-sweep"


class ModerationScheduler:
    """Runs the retry sweep on a fixed interval and on demand."""

    def __init__(
        self,
        sweeper: RetrySweeper,
        *,
        interval_minutes: int = 10,
        retry_min_daily: int = 3,
    ) -> None:
        self.sweeper = sweeper
        self.interval_minutes = interval_minutes
        self.retry_min_daily = retry_min_daily
        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._started = False
        self._manual: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._started

    @property
    def paused(self) -> bool:
        job = self._scheduler.get_job(SWEEP_JOB_ID)
        return job is not None and job.next_run_time is None

    def start(self) -> None:
        if self._started:
            return
        self._scheduler.add_job(
            self._run_scheduled,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=SWEEP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        self._started = True
        logger.info("Moderation retry sweep scheduled", extra={"interval_minutes": self.interval_minutes})

    def pause(self) -> None:
        if self._started:
            self._scheduler.pause_job(SWEEP_JOB_ID)
            logger.info("Moderation retry sweep paused")

    def resume(self) -> None:
        if self._started:
            self._scheduler.resume_job(SWEEP_JOB_ID)
            logger.info("Moderation retry sweep resumed")

    def shutdown(self) -> None:
        if self._started:
            self._scheduler.shutdown(wait=False)
            self._started = False
        if self._manual is not None and not self._manual.done():
            self._manual.cancel()

    async def run_now(self) -> asyncio.Task:
        """Start an out-of-band sweep; raises when it could not dispatch anything."""

        redis = self.sweeper.store()
        if redis is None:
            raise StoreUnavailableError("shared_store_unavailable")
        quota = await rate_limit.status(redis, self.sweeper.counters)
        if quota is None:
            raise StoreUnavailableError("shared_store_unavailable")
        if quota.daily.available < 1:
            raise QuotaExhaustedError()
        self._manual = asyncio.get_running_loop().create_task(
            self._run_manual(), name="moderation-retry-sweep-manual"
        )
        return self._manual

    async def _run_scheduled(self) -> None:
        try:
            await self.sweeper.run_once()
        except Exception:  # noqa: BLE001 - next interval retries
            logger.exception("Scheduled retry sweep failed")

    async def _run_manual(self) -> None:
        try:
            result = await self.sweeper.run_once(min_daily_available=self.retry_min_daily)
        except Exception:  # noqa: BLE001 - manual runs are fire and forget
            logger.exception("Manual retry sweep failed")
            return
        logger.info("Manual retry sweep finished", extra=result.as_dict())


__all__ = ["ModerationScheduler", "SWEEP_JOB_ID"]
