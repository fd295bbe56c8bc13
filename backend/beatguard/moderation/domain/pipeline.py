"""Moderation pipeline: single-flight processing of one report."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from beatguard.moderation.domain.classifier import REASON_RATE_LIMITED, TextClassifier, Verdict
from beatguard.moderation.domain.content import ContentStore, moderation_text
from beatguard.moderation.domain.reports import ModerationReport, ReportRepository, ReportState
from beatguard.moderation.domain.verdict_cache import VerdictCache
from beatguard.moderation.infra import rate_limit
from beatguard.moderation.infra.suspension import AccountSuspender
from beatguard.obs import metrics
from beatguard.obs.logging import bind_context, reset_context

logger = logging.getLogger(__name__)

LOCK_TTL_SECONDS = 30
ESCALATION_THRESHOLD = 5
SUSPENSION_MARKER_TTL_SECONDS = 60 * 60 * 24 * 30

StoreProvider = Callable[[], Optional[Redis]]


class ProcessingOutcome(str, Enum):
    LOCKED = "locked"
    SKIPPED = "skipped"
    UNAVAILABLE = "unavailable"
    CLOSED_MISSING = "closed_missing"
    PENDING = "pending"
    REJECTED = "rejected"
    ACCEPTED = "accepted"


def lock_key(report_id: str) -> str:
    return f"moderation:lock:{report_id}"


def suspension_marker_key(author_id: str) -> str:
    return f"moderation:suspended:{author_id}"


@dataclass
class ModerationPipeline:
    """Classifies a report's target and applies the outcome.

    Runs only while holding ``moderation:lock:<report_id>``; the lock is re-armed
    while the worker runs, released on every exit path, and expires on its own if
    the worker dies. Everything after
    the lock is safe to re-run: verdicts come back from cache, deleting missing
    content is a no-op, and report transitions only ever leave Checking.
    """

    store: StoreProvider
    reports: ReportRepository
    content: ContentStore
    classifier: TextClassifier
    suspender: AccountSuspender
    counters: rate_limit.RateLimitCounters = rate_limit.DEFAULT_COUNTERS
    lock_ttl: int = LOCK_TTL_SECONDS
    lock_refresh_interval: Optional[float] = None
    escalation_threshold: int = ESCALATION_THRESHOLD

    async def process(self, report_id: str) -> ProcessingOutcome:
        report_id = str(report_id)
        redis = self.store()
        if redis is None:
            logger.warning("Shared store unavailable, report left for retry", extra={"report_id": report_id})
            metrics.inc_report_outcome(ProcessingOutcome.UNAVAILABLE.value)
            return ProcessingOutcome.UNAVAILABLE

        tokens = bind_context(report_id=report_id)
        try:
            outcome = await self._process_locked(redis, report_id)
        finally:
            reset_context(tokens)
        metrics.inc_report_outcome(outcome.value)
        return outcome

    async def _process_locked(self, redis: Redis, report_id: str) -> ProcessingOutcome:
        key = lock_key(report_id)
        acquired = await redis.set(key, "1", nx=True, ex=self.lock_ttl)
        if not acquired:
            logger.info("Report already being processed")
            return ProcessingOutcome.LOCKED
        keeper = asyncio.create_task(self._keep_lock(redis, key), name=f"moderation-lock-{report_id}")
        try:
            return await self._run(redis, report_id)
        finally:
            keeper.cancel()
            await asyncio.gather(keeper, return_exceptions=True)
            await redis.delete(key)

    async def _keep_lock(self, redis: Redis, key: str) -> None:
        # Re-arm the TTL while this worker is alive; a dead worker's lock still lapses.
        interval = self.lock_refresh_interval or self.lock_ttl / 3
        while True:
            await asyncio.sleep(interval)
            try:
                await redis.expire(key, self.lock_ttl)
            except (RedisError, OSError):
                logger.warning("Failed to refresh processing lock", exc_info=True)

    async def _run(self, redis: Redis, report_id: str) -> ProcessingOutcome:
        report = await self.reports.get(report_id)
        if report is None or report.state != ReportState.CHECKING:
            logger.info("Report not in Checking state")
            return ProcessingOutcome.SKIPPED

        target = report.target
        record = await self.content.find_by_id(*target) if target else None
        text = moderation_text(record) if record is not None else None
        if target is None or text is None:
            await self.reports.transition(report.report_id, ReportState.ACCEPTED)
            logger.info("Report accepted, reported content no longer exists")
            return ProcessingOutcome.CLOSED_MISSING

        content_type, content_id = target
        verdict = await self.classify_content(redis, text, content_type, content_id)

        if verdict.is_pending:
            logger.warning("Report left pending", extra={"reason": verdict.reason})
            return ProcessingOutcome.PENDING

        if verdict.is_safe:
            if not await self.reports.transition(report.report_id, ReportState.REJECTED):
                logger.info("Report resolved concurrently")
                return ProcessingOutcome.SKIPPED
            logger.info("Report rejected, content is safe", extra={"cached": verdict.cached})
            return ProcessingOutcome.REJECTED

        return await self._enforce(redis, report, content_type, content_id, verdict)

    async def classify_content(self, redis: Redis, text: str, content_type: str, content_id: str) -> Verdict:
        """Verdict cache, then quota guard, then the external classifier."""

        cache = VerdictCache(redis)
        cached = await cache.lookup(text, content_type, content_id)
        if cached is not None:
            return cached

        if not await rate_limit.allow(redis, self.counters):
            return Verdict.pending(REASON_RATE_LIMITED)

        verdict = await self.classifier.classify(text)
        if not verdict.is_pending:
            await rate_limit.record_success(redis, self.counters)
            await cache.store(text, content_type, content_id, verdict)
        return verdict

    async def _enforce(
        self,
        redis: Redis,
        report: ModerationReport,
        content_type: str,
        content_id: str,
        verdict: Verdict,
    ) -> ProcessingOutcome:
        # The target may have been deleted while the classifier was running.
        if await self.content.find_by_id(content_type, content_id) is not None:
            if await self.content.delete(content_type, content_id):
                logger.info(
                    "Deleted reported content",
                    extra={"content_type": content_type, "content_id": content_id, "verdict": verdict.label},
                )

        if not await self.reports.transition(report.report_id, ReportState.ACCEPTED):
            logger.info("Report resolved concurrently")
            return ProcessingOutcome.SKIPPED

        await self._escalate(redis, report.author_id)
        logger.info(
            "Report accepted, content removed",
            extra={"verdict": verdict.label, "confidence": verdict.confidence, "cached": verdict.cached},
        )
        return ProcessingOutcome.ACCEPTED

    async def _escalate(self, redis: Redis, author_id: str) -> None:
        accepted = await self.reports.count_accepted(author_id)
        if accepted < self.escalation_threshold:
            return

        marker = suspension_marker_key(author_id)
        if not await redis.set(marker, str(accepted), nx=True, ex=SUSPENSION_MARKER_TTL_SECONDS):
            logger.debug("Author already escalated", extra={"author_id": author_id, "accepted": accepted})
            return

        try:
            await self.suspender.suspend(author_id)
        except Exception:  # noqa: BLE001 - escalation never rolls back content removal
            metrics.MOD_SUSPENSIONS_TOTAL.labels(result="error").inc()
            logger.exception(
                "Failed to suspend author after moderation threshold",
                extra={"author_id": author_id, "accepted": accepted},
            )
            await redis.delete(marker)
            return

        metrics.MOD_SUSPENSIONS_TOTAL.labels(result="ok").inc()
        logger.warning(
            "Author suspended after reaching accepted report threshold",
            extra={"author_id": author_id, "accepted": accepted},
        )


__all__ = [
    "ESCALATION_THRESHOLD",
    "LOCK_TTL_SECONDS",
    "ModerationPipeline",
    "ProcessingOutcome",
    "lock_key",
    "suspension_marker_key",
]
