"""Moderation report model and storage contracts."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol, Sequence


class ReportState(str, Enum):
    CHECKING = "Checking"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ModerationReport:
    """A request to review one comment, rating or playlist.

    Exactly one of ``comment_id``, ``rating_id`` and ``playlist_id`` is set.
    """

    report_id: str
    reporter_id: str
    author_id: str
    comment_id: str | None = None
    rating_id: str | None = None
    playlist_id: str | None = None
    state: ReportState = ReportState.CHECKING
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime | None = None

    @property
    def target(self) -> tuple[str, str] | None:
        for content_type, content_id in (
            ("comment", self.comment_id),
            ("rating", self.rating_id),
            ("playlist", self.playlist_id),
        ):
            if content_id:
                return content_type, content_id
        return None


class ReportRepository(Protocol):
    """Persistence contract for moderation reports."""

    async def get(self, report_id: str) -> ModerationReport | None:
        """Fetch a report by identifier."""

    async def create(self, report: ModerationReport) -> ModerationReport:
        """Persist a new report in the Checking state."""

    async def transition(self, report_id: str, state: ReportState) -> bool:
        """Move a Checking report to ``state``; False if it was no longer Checking."""

    async def count_accepted(self, author_id: str) -> int:
        """Count Accepted reports against content of ``author_id``."""

    async def list_stale(self, *, older_than: datetime, limit: int) -> Sequence[ModerationReport]:
        """Checking reports created before ``older_than``, oldest first."""

    async def count_checking(self, *, older_than: datetime | None = None) -> int:
        """Count Checking reports, optionally only those created before ``older_than``."""

    async def find_open(self, content_type: str, content_id: str) -> ModerationReport | None:
        """Return the Checking report for a target, if any."""

    async def list_reports(self, *, author_id: str | None = None) -> Sequence[ModerationReport]:
        """All reports, or those against ``author_id``'s content, newest first."""


class InMemoryReportRepository(ReportRepository):
    def __init__(self) -> None:
        self.reports: dict[str, ModerationReport] = {}

    async def get(self, report_id: str) -> ModerationReport | None:
        report = self.reports.get(report_id)
        return replace(report) if report else None

    async def create(self, report: ModerationReport) -> ModerationReport:
        self.reports[report.report_id] = replace(report)
        return report

    async def transition(self, report_id: str, state: ReportState) -> bool:
        report = self.reports.get(report_id)
        if report is None or report.state != ReportState.CHECKING:
            return False
        report.state = state
        report.updated_at = _now()
        return True

    async def count_accepted(self, author_id: str) -> int:
        return sum(
            1
            for report in self.reports.values()
            if report.author_id == author_id and report.state == ReportState.ACCEPTED
        )

    async def list_stale(self, *, older_than: datetime, limit: int) -> Sequence[ModerationReport]:
        stale = [
            replace(report)
            for report in self.reports.values()
            if report.state == ReportState.CHECKING and report.created_at < older_than
        ]
        stale.sort(key=lambda report: report.created_at)
        return stale[:limit]

    async def count_checking(self, *, older_than: datetime | None = None) -> int:
        return sum(
            1
            for report in self.reports.values()
            if report.state == ReportState.CHECKING and (older_than is None or report.created_at < older_than)
        )

    async def find_open(self, content_type: str, content_id: str) -> ModerationReport | None:
        for report in self.reports.values():
            if report.state == ReportState.CHECKING and report.target == (content_type, content_id):
                return replace(report)
        return None

    async def list_reports(self, *, author_id: str | None = None) -> Sequence[ModerationReport]:
        matching = [
            replace(report)
            for report in self.reports.values()
            if author_id is None or report.author_id == author_id
        ]
        matching.sort(key=lambda report: report.created_at, reverse=True)
        return matching


__all__ = ["InMemoryReportRepository", "ModerationReport", "ReportRepository", "ReportState"]
