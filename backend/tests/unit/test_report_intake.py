from datetime import datetime, timedelta, timezone

import pytest

from beatguard.infra.redis import get_redis
from beatguard.moderation.domain.classifier import Verdict
from beatguard.moderation.domain.content import ContentRecord
from beatguard.moderation.domain.intake import ReportIntakeService
from beatguard.moderation.domain.reports import ModerationReport, ReportState
from beatguard.moderation.domain.verdict_cache import VerdictCache
from beatguard.moderation.exceptions import DuplicateReportError, NotFoundError, SelfReportError


class FakeDispatcher:
    def __init__(self, *, accept: bool = True) -> None:
        self.accept = accept
        self.submitted: list[str] = []

    def submit(self, report_id: str) -> bool:
        self.submitted.append(report_id)
        return self.accept


def _service(reports, content, dispatcher=None) -> ReportIntakeService:
    ids = iter(f"report-{index}" for index in range(100))
    return ReportIntakeService(reports, content, dispatcher=dispatcher, store=get_redis, id_factory=lambda: next(ids))


@pytest.mark.asyncio
async def test_report_comment_persists_and_dispatches(reports, content):
    content.add(ContentRecord("comment", "c1", "author-1", {"text": "hello"}))
    dispatcher = FakeDispatcher()

    report = await _service(reports, content, dispatcher).report_comment("reporter-1", "c1")

    assert report.report_id == "report-0"
    assert report.author_id == "author-1"
    assert report.target == ("comment", "c1")
    stored = await reports.get("report-0")
    assert stored is not None and stored.state is ReportState.CHECKING
    assert dispatcher.submitted == ["report-0"]


@pytest.mark.asyncio
async def test_rating_and_playlist_targets(reports, content):
    content.add(ContentRecord("rating", "r1", "author-1", {"comment": "meh"}))
    content.add(ContentRecord("playlist", "p1", "author-2", {"name": "Mix"}))
    service = _service(reports, content)

    rating_report = await service.report_rating("reporter", "r1")
    playlist_report = await service.report_playlist("reporter", "p1")

    assert rating_report.rating_id == "r1"
    assert playlist_report.playlist_id == "p1"
    assert playlist_report.author_id == "author-2"


@pytest.mark.asyncio
async def test_missing_target_is_not_found(reports, content):
    with pytest.raises(NotFoundError) as exc_info:
        await _service(reports, content).report_rating("reporter", "nope")
    assert exc_info.value.status_code == 404
    assert exc_info.value.detail == "rating_not_found"


@pytest.mark.asyncio
async def test_self_report_is_rejected(reports, content):
    content.add(ContentRecord("comment", "c1", "author-1", {"text": "mine"}))

    with pytest.raises(SelfReportError):
        await _service(reports, content).report_comment("author-1", "c1")
    assert reports.reports == {}


@pytest.mark.asyncio
async def test_second_open_report_conflicts(reports, content):
    content.add(ContentRecord("comment", "c1", "author-1", {"text": "hello"}))
    service = _service(reports, content)
    first = await service.report_comment("reporter-1", "c1")

    with pytest.raises(DuplicateReportError) as exc_info:
        await service.report_comment("reporter-2", "c1")
    assert exc_info.value.status_code == 409

    await reports.transition(first.report_id, ReportState.REJECTED)
    again = await service.report_comment("reporter-2", "c1")
    assert again.report_id == "report-1"


@pytest.mark.asyncio
async def test_full_dispatch_queue_still_persists_report(reports, content):
    content.add(ContentRecord("comment", "c1", "author-1", {"text": "hello"}))

    report = await _service(reports, content, FakeDispatcher(accept=False)).report_comment("reporter", "c1")

    assert (await reports.get(report.report_id)).state is ReportState.CHECKING


@pytest.mark.asyncio
async def test_content_edited_drops_cached_pointer(fake_redis, reports, content):
    cache = VerdictCache(fake_redis)
    await cache.store("old text", "comment", "c1", Verdict(label="safe", confidence=0.9))

    await _service(reports, content).content_edited("comment", "c1")

    assert await fake_redis.exists(cache.pointer_key("comment", "c1")) == 0


@pytest.mark.asyncio
async def test_read_side_lists_newest_first_and_filters_by_author(reports, content):
    base = datetime(2024, 5, 1, tzinfo=timezone.utc)
    for index, author in enumerate(["author-1", "author-2", "author-1"]):
        await reports.create(
            ModerationReport(
                report_id=f"r{index}",
                reporter_id="reporter-1",
                author_id=author,
                comment_id=f"c{index}",
                created_at=base + timedelta(minutes=index),
            )
        )
    service = _service(reports, content)

    assert [report.report_id for report in await service.all_reports()] == ["r2", "r1", "r0"]
    assert [report.report_id for report in await service.reports_for_author("author-1")] == ["r2", "r0"]
    assert await service.reports_for_author("nobody") == []
    assert (await service.get_report("r1")).author_id == "author-2"


@pytest.mark.asyncio
async def test_unknown_report_is_not_found(reports, content):
    with pytest.raises(NotFoundError) as exc:
        await _service(reports, content).get_report("missing")

    assert exc.value.status_code == 404
    assert exc.value.detail == "report_not_found"
