"""Periodic re-dispatch of reports stuck in Checking."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from beatguard.moderation.domain.pipeline import StoreProvider
from beatguard.moderation.domain.reports import ReportRepository
from beatguard.moderation.infra import rate_limit
from beatguard.obs import metrics
from beatguard.obs.logging import bind_context, reset_context

logger = logging.getLogger(__name__)

_JOB_NAME = "moderation-retry-sweep"
OLD_PENDING_SECONDS = 5 * 60

Clock = Callable[[], datetime]
Sleep = Callable[[float], Awaitable[None]]
Submit = Callable[[str], bool]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SweepResult:
    dispatched: int = 0
    skipped: int = 0
    aborted: Optional[str] = None

    def as_dict(self) -> dict:
        return {"dispatched": self.dispatched, "skipped": self.skipped, "aborted": self.aborted}


@dataclass
class RetrySweeper:
    """Finds stale Checking reports and hands them back to the dispatcher.

    A run is skipped outright when the shared store is down or the quota is too
    thin to be worth spending. Reports are submitted oldest first with a pause in
    between, and the run stops early once the daily quota is gone.
    """

    store: StoreProvider
    reports: ReportRepository
    submit: Submit
    counters: rate_limit.RateLimitCounters = rate_limit.DEFAULT_COUNTERS
    batch_size: int = 20
    staleness_seconds: float = 180
    dispatch_delay: float = 5.0
    min_daily_available: int = 5
    min_rpm_available: int = 1
    clock: Clock = _utcnow
    sleep: Sleep = asyncio.sleep

    async def run_once(self, *, min_daily_available: Optional[int] = None) -> SweepResult:
        started = time.perf_counter()
        threshold = self.min_daily_available if min_daily_available is None else min_daily_available
        tokens = bind_context(job=_JOB_NAME)
        try:
            result = await self._sweep(threshold)
        except Exception:
            metrics.record_job_run(_JOB_NAME, result="error")
            metrics.MOD_SWEEP_RUNS_TOTAL.labels(result="error").inc()
            logger.exception("Retry sweep failed")
            raise
        finally:
            reset_context(tokens)
        metrics.record_job_run(_JOB_NAME, result="success", duration_seconds=time.perf_counter() - started)
        metrics.MOD_SWEEP_RUNS_TOTAL.labels(result=result.aborted or "completed").inc()
        return result

    async def _sweep(self, min_daily: int) -> SweepResult:
        redis = self.store()
        if redis is None:
            logger.warning("Retry sweep skipped, shared store unavailable")
            return SweepResult(aborted="store_unavailable")

        quota = await rate_limit.status(redis, self.counters)
        if quota is None:
            return SweepResult(aborted="store_unavailable")
        if quota.daily.available < min_daily:
            logger.info("Retry sweep skipped, daily quota low", extra={"daily_available": quota.daily.available})
            return SweepResult(aborted="daily_quota_low")
        if quota.rpm.available < self.min_rpm_available:
            logger.info("Retry sweep skipped, minute quota exhausted", extra={"rpm_available": quota.rpm.available})
            return SweepResult(aborted="rpm_exhausted")

        cutoff = self.clock() - timedelta(seconds=self.staleness_seconds)
        stale = await self.reports.list_stale(older_than=cutoff, limit=self.batch_size)
        if not stale:
            logger.debug("Retry sweep found no stale reports")
            return SweepResult()

        logger.info("Retry sweep dispatching stale reports", extra={"count": len(stale)})
        result = SweepResult()
        for index, report in enumerate(stale):
            current = await rate_limit.status(redis, self.counters)
            if current is None or current.daily.available < 1:
                result.aborted = "daily_quota_exhausted"
                result.skipped += len(stale) - index
                metrics.MOD_SWEEP_REPORTS_TOTAL.labels(action="skipped").inc(len(stale) - index)
                logger.info("Retry sweep stopped, daily quota exhausted", extra={"remaining": len(stale) - index})
                break
            if self.submit(report.report_id):
                result.dispatched += 1
                metrics.MOD_SWEEP_REPORTS_TOTAL.labels(action="dispatched").inc()
            else:
                result.skipped += 1
                metrics.MOD_SWEEP_REPORTS_TOTAL.labels(action="skipped").inc()
            if index < len(stale) - 1 and self.dispatch_delay > 0:
                await self.sleep(self.dispatch_delay)
        return result

    async def pending_stats(self) -> dict[str, int]:
        """Checking reports split into older than five minutes and recent."""

        cutoff = self.clock() - timedelta(seconds=OLD_PENDING_SECONDS)
        total = await self.reports.count_checking()
        old_pending = await self.reports.count_checking(older_than=cutoff)
        return {"total": total, "old_pending": old_pending, "recent": total - old_pending}


__all__ = ["OLD_PENDING_SECONDS", "RetrySweeper", "SweepResult"]
