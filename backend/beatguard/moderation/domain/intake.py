"""Report intake: persist a new report and trigger immediate moderation."""

from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence
from uuid import uuid4

from beatguard.moderation.domain.content import ContentStore
from beatguard.moderation.domain.pipeline import StoreProvider
from beatguard.moderation.domain.reports import ModerationReport, ReportRepository
from beatguard.moderation.domain.verdict_cache import VerdictCache
from beatguard.moderation.exceptions import DuplicateReportError, NotFoundError, SelfReportError
from beatguard.moderation.workers.dispatcher import ModerationDispatcher

logger = logging.getLogger(__name__)

_TARGET_FIELDS = {"comment": "comment_id", "rating": "rating_id", "playlist": "playlist_id"}


def _new_report_id() -> str:
    return uuid4().hex


class ReportIntakeService:
    """Entry point used by the report endpoints of the host application."""

    def __init__(
        self,
        reports: ReportRepository,
        content: ContentStore,
        *,
        dispatcher: Optional[ModerationDispatcher] = None,
        store: Optional[StoreProvider] = None,
        id_factory: Callable[[], str] = _new_report_id,
    ) -> None:
        self.reports = reports
        self.content = content
        self.dispatcher = dispatcher
        self.store = store
        self.id_factory = id_factory

    async def report_comment(self, reporter_id: str, comment_id: str) -> ModerationReport:
        return await self._report(reporter_id, "comment", comment_id)

    async def report_rating(self, reporter_id: str, rating_id: str) -> ModerationReport:
        return await self._report(reporter_id, "rating", rating_id)

    async def report_playlist(self, reporter_id: str, playlist_id: str) -> ModerationReport:
        return await self._report(reporter_id, "playlist", playlist_id)

    async def _report(self, reporter_id: str, content_type: str, content_id: str) -> ModerationReport:
        record = await self.content.find_by_id(content_type, content_id)
        if record is None:
            raise NotFoundError(f"{content_type}_not_found")
        if str(record.author_id) == str(reporter_id):
            raise SelfReportError()
        if await self.reports.find_open(content_type, content_id) is not None:
            raise DuplicateReportError()

        report = ModerationReport(
            report_id=self.id_factory(),
            reporter_id=str(reporter_id),
            author_id=str(record.author_id),
            **{_TARGET_FIELDS[content_type]: content_id},
        )
        report = await self.reports.create(report)
        logger.info(
            "Report created",
            extra={"report_id": report.report_id, "content_type": content_type, "content_id": content_id},
        )

        if self.dispatcher is not None and not self.dispatcher.submit(report.report_id):
            logger.info("Report queued for retry sweep", extra={"report_id": report.report_id})
        return report

    async def get_report(self, report_id: str) -> ModerationReport:
        report = await self.reports.get(str(report_id))
        if report is None:
            raise NotFoundError("report_not_found")
        return report

    async def reports_for_author(self, author_id: str) -> Sequence[ModerationReport]:
        """Reports filed against ``author_id``'s content, newest first."""

        return await self.reports.list_reports(author_id=str(author_id))

    async def all_reports(self) -> Sequence[ModerationReport]:
        return await self.reports.list_reports()

    async def content_edited(self, content_type: str, content_id: str) -> None:
        """Drop the cached classification pointer so the next report re-checks the text."""

        redis = self.store() if self.store is not None else None
        if redis is None:
            return
        await VerdictCache(redis).invalidate(content_type, content_id)
        logger.debug("Verdict pointer invalidated", extra={"content_type": content_type, "content_id": content_id})


__all__ = ["ReportIntakeService"]
