"""Background workers for report moderation."""

from beatguard.moderation.workers.dispatcher import ModerationDispatcher
from beatguard.moderation.workers.retry_sweeper import RetrySweeper, SweepResult
from beatguard.moderation.workers.scheduler import ModerationScheduler

__all__ = ["ModerationDispatcher", "ModerationScheduler", "RetrySweeper", "SweepResult"]
