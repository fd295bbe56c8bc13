"""Dual-window quota guard for the external classifier.

Two counters live in Redis and are shared by every worker process: a per-minute
counter that expires 60s after its first increment, and a daily counter that
expires at the next UTC midnight. ``allow`` counts admission attempts against the
minute window; ``record_success`` counts completed classifications against the day.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from redis.asyncio import Redis

from beatguard.obs import metrics

logger = logging.getLogger(__name__)

RPM_LIMIT = 18
DAILY_LIMIT = 45
RPM_WINDOW_SECONDS = 60


@dataclass(frozen=True)
class RateLimitCounters:
    """Key names and limits of one shared quota."""

    rpm_key: str = "openrouter:rpm"
    daily_key: str = "openrouter:daily"
    reset_key: str = "openrouter:daily:reset"
    rpm_limit: int = RPM_LIMIT
    daily_limit: int = DAILY_LIMIT
    window_seconds: int = RPM_WINDOW_SECONDS


DEFAULT_COUNTERS = RateLimitCounters()


@dataclass(frozen=True)
class WindowStatus:
    current: int
    limit: int

    @property
    def available(self) -> int:
        return max(0, self.limit - self.current)

    def as_dict(self) -> dict[str, int]:
        return {"current": self.current, "limit": self.limit, "available": self.available}


@dataclass(frozen=True)
class QuotaStatus:
    rpm: WindowStatus
    daily: WindowStatus
    reset_at: str | None

    def as_dict(self) -> dict[str, Any]:
        return {"rpm": self.rpm.as_dict(), "daily": self.daily.as_dict(), "reset_at": self.reset_at}


def _as_int(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def next_utc_midnight(now: datetime) -> datetime:
    current = now.astimezone(timezone.utc)
    return datetime(current.year, current.month, current.day, tzinfo=timezone.utc) + timedelta(days=1)


async def allow(redis: Redis, counters: RateLimitCounters = DEFAULT_COUNTERS) -> bool:
    """Return True when one more classifier call fits in both windows.

    An exhausted day short-circuits before touching the minute counter. A refused
    minute-window attempt still counts.
    """

    try:
        daily = _as_int(await redis.get(counters.daily_key))
        if daily >= counters.daily_limit:
            logger.warning(
                "Daily classifier quota exceeded",
                extra={"daily": daily, "daily_limit": counters.daily_limit},
            )
            metrics.inc_quota_rejection("daily")
            return False

        current = int(await redis.incr(counters.rpm_key))
        if current == 1:
            await redis.expire(counters.rpm_key, counters.window_seconds)

        if current > counters.rpm_limit:
            logger.warning(
                "Per-minute classifier quota exceeded",
                extra={"rpm": current, "rpm_limit": counters.rpm_limit},
            )
            metrics.inc_quota_rejection("rpm")
            return False

        logger.debug(
            "Classifier quota check passed",
            extra={"rpm": current, "daily": daily},
        )
        return True
    except Exception:  # noqa: BLE001 - fail closed, never exceed quota on store errors
        logger.exception("Classifier quota check failed")
        return False


async def record_success(
    redis: Redis,
    counters: RateLimitCounters = DEFAULT_COUNTERS,
    *,
    now: datetime | None = None,
) -> int:
    """Count one completed classification against the daily window.

    Returns the new daily count, or -1 when the store rejected the update.
    """

    try:
        current = int(await redis.incr(counters.daily_key))
        if current == 1:
            now = now or datetime.now(timezone.utc)
            reset_at = next_utc_midnight(now)
            ttl = max(1, int((reset_at - now).total_seconds()))
            reset_iso = reset_at.isoformat().replace("+00:00", "Z")
            await redis.expire(counters.daily_key, ttl)
            await redis.set(counters.reset_key, reset_iso, ex=ttl)
            logger.info("Daily classifier counter initialised", extra={"reset_at": reset_iso})
        logger.debug("Daily classifier requests", extra={"daily": current, "daily_limit": counters.daily_limit})
        return current
    except Exception:  # noqa: BLE001 - counting must not fail a finished classification
        logger.exception("Failed to record classifier usage")
        return -1


async def status(redis: Redis, counters: RateLimitCounters = DEFAULT_COUNTERS) -> QuotaStatus | None:
    try:
        rpm_raw, daily_raw, reset_raw = await redis.mget(
            [counters.rpm_key, counters.daily_key, counters.reset_key]
        )
    except Exception:  # noqa: BLE001 - status is advisory
        logger.exception("Failed to read classifier quota status")
        return None
    return QuotaStatus(
        rpm=WindowStatus(current=_as_int(rpm_raw), limit=counters.rpm_limit),
        daily=WindowStatus(current=_as_int(daily_raw), limit=counters.daily_limit),
        reset_at=reset_raw or None,
    )


async def reset(redis: Redis, counters: RateLimitCounters = DEFAULT_COUNTERS) -> None:
    """Administrative reset of both windows."""

    await redis.delete(counters.rpm_key, counters.daily_key, counters.reset_key)
    logger.warning("Classifier quota counters reset manually")


__all__ = [
    "DAILY_LIMIT",
    "DEFAULT_COUNTERS",
    "QuotaStatus",
    "RPM_LIMIT",
    "RateLimitCounters",
    "WindowStatus",
    "allow",
    "next_utc_midnight",
    "record_success",
    "reset",
    "status",
]
