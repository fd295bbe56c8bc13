from __future__ import annotations

import asyncio
from itertools import count

import pytest

from beatguard.infra.redis import set_redis_client
from beatguard.moderation.domain.classifier import Verdict
from beatguard.moderation.domain.content import ContentRecord
from beatguard.moderation.domain.pipeline import ProcessingOutcome, lock_key, suspension_marker_key
from beatguard.moderation.domain.reports import ModerationReport, ReportState
from beatguard.moderation.infra.rate_limit import DAILY_LIMIT, DEFAULT_COUNTERS

ABUSIVE = Verdict(label="harassment", confidence=0.91)
SAFE = Verdict(label="safe", confidence=0.97)

_ids = count(1)


async def _report_comment(reports, content, *, text="you are the worst", author="author-1", state=ReportState.CHECKING):
    comment_id = f"c{next(_ids)}"
    content.add(ContentRecord("comment", comment_id, author, {"text": text}))
    report = ModerationReport(
        report_id=f"r{next(_ids)}",
        reporter_id="reporter-1",
        author_id=author,
        comment_id=comment_id,
        state=state,
    )
    await reports.create(report)
    return report


async def _accepted_history(reports, author: str, total: int) -> None:
    for _ in range(total):
        await reports.create(
            ModerationReport(
                report_id=f"old{next(_ids)}",
                reporter_id="reporter-2",
                author_id=author,
                comment_id=f"gone{next(_ids)}",
                state=ReportState.ACCEPTED,
            )
        )


@pytest.mark.asyncio
async def test_abusive_comment_is_removed_and_report_accepted(fake_redis, pipeline, reports, content, classifier):
    classifier.default = Verdict(label="hate", confidence=0.9)
    report = await _report_comment(reports, content, text="buy followers now hate you")

    outcome = await pipeline.process(report.report_id)

    assert outcome is ProcessingOutcome.ACCEPTED
    assert (await reports.get(report.report_id)).state is ReportState.ACCEPTED
    assert content.deleted == [("comment", report.comment_id)]
    assert classifier.calls == ["buy followers now hate you"]
    assert int(await fake_redis.get(DEFAULT_COUNTERS.daily_key)) == 1
    assert await fake_redis.exists(lock_key(report.report_id)) == 0


@pytest.mark.asyncio
async def test_safe_comment_is_kept_and_report_rejected(fake_redis, pipeline, reports, content, classifier):
    classifier.default = SAFE
    report = await _report_comment(reports, content, text="nice beat!")

    outcome = await pipeline.process(report.report_id)

    assert outcome is ProcessingOutcome.REJECTED
    assert (await reports.get(report.report_id)).state is ReportState.REJECTED
    assert content.deleted == []


@pytest.mark.asyncio
async def test_pending_verdict_leaves_report_checking(fake_redis, pipeline, reports, content, classifier):
    classifier.default = Verdict.pending("timeout")
    report = await _report_comment(reports, content)

    outcome = await pipeline.process(report.report_id)

    assert outcome is ProcessingOutcome.PENDING
    assert (await reports.get(report.report_id)).state is ReportState.CHECKING
    assert content.deleted == []
    assert await fake_redis.get(DEFAULT_COUNTERS.daily_key) is None
    assert await fake_redis.keys("moderation:hash:*") == []


@pytest.mark.asyncio
async def test_exhausted_quota_skips_classifier(fake_redis, pipeline, reports, content, classifier):
    await fake_redis.set(DEFAULT_COUNTERS.daily_key, DAILY_LIMIT)
    report = await _report_comment(reports, content)

    outcome = await pipeline.process(report.report_id)

    assert outcome is ProcessingOutcome.PENDING
    assert classifier.calls == []
    assert (await reports.get(report.report_id)).state is ReportState.CHECKING
    verdict = await pipeline.classify_content(fake_redis, "fresh text", "comment", "other")
    assert verdict == Verdict.pending("rate_limited")


@pytest.mark.asyncio
async def test_missing_target_closes_report_without_classifying(fake_redis, pipeline, reports, content, classifier):
    report = await _report_comment(reports, content)
    await content.delete("comment", report.comment_id)

    outcome = await pipeline.process(report.report_id)

    assert outcome is ProcessingOutcome.CLOSED_MISSING
    assert (await reports.get(report.report_id)).state is ReportState.ACCEPTED
    assert classifier.calls == []


@pytest.mark.asyncio
async def test_playlist_text_combines_name_and_description(fake_redis, pipeline, reports, content, classifier):
    content.add(ContentRecord("playlist", "p1", "author-9", {"name": "Chill", "description": "late night"}))
    await reports.create(ModerationReport(report_id="rp1", reporter_id="u", author_id="author-9", playlist_id="p1"))

    assert await pipeline.process("rp1") is ProcessingOutcome.REJECTED
    assert classifier.calls == ["Title: Chill\nDescription: late night"]


@pytest.mark.asyncio
async def test_resolved_or_absent_reports_are_skipped(fake_redis, pipeline, reports, content, classifier):
    report = await _report_comment(reports, content, state=ReportState.REJECTED)

    assert await pipeline.process(report.report_id) is ProcessingOutcome.SKIPPED
    assert await pipeline.process("does-not-exist") is ProcessingOutcome.SKIPPED
    assert classifier.calls == []


@pytest.mark.asyncio
async def test_held_lock_short_circuits(fake_redis, pipeline, reports, content, classifier):
    report = await _report_comment(reports, content)
    await fake_redis.set(lock_key(report.report_id), "1", ex=30)

    assert await pipeline.process(report.report_id) is ProcessingOutcome.LOCKED
    assert classifier.calls == []
    # a foreign lock is left for its holder
    assert await fake_redis.exists(lock_key(report.report_id)) == 1


@pytest.mark.asyncio
async def test_lock_is_released_when_processing_raises(fake_redis, pipeline, reports, content, classifier):
    async def explode(text):
        raise RuntimeError("boom")

    classifier.classify = explode
    report = await _report_comment(reports, content)

    with pytest.raises(RuntimeError):
        await pipeline.process(report.report_id)
    assert await fake_redis.exists(lock_key(report.report_id)) == 0


@pytest.mark.asyncio
async def test_lock_is_held_through_a_classification_longer_than_its_ttl(fake_redis, pipeline, reports, content):
    report = await _report_comment(reports, content)
    key = lock_key(report.report_id)
    held_after_ttl: list[int] = []

    async def slow_classify(text):
        await asyncio.sleep(1.5)
        held_after_ttl.append(await fake_redis.exists(key))
        return SAFE

    pipeline.classifier.classify = slow_classify
    pipeline.lock_ttl = 1
    pipeline.lock_refresh_interval = 0.05

    assert await pipeline.process(report.report_id) is ProcessingOutcome.REJECTED
    assert held_after_ttl == [1]
    assert await fake_redis.exists(key) == 0


@pytest.mark.asyncio
async def test_concurrent_invocations_classify_once(fake_redis, pipeline, reports, content, classifier):
    classifier.default = ABUSIVE
    report = await _report_comment(reports, content)

    outcomes = await asyncio.gather(pipeline.process(report.report_id), pipeline.process(report.report_id))

    assert outcomes.count(ProcessingOutcome.ACCEPTED) == 1
    assert set(outcomes) - {ProcessingOutcome.ACCEPTED} <= {ProcessingOutcome.LOCKED, ProcessingOutcome.SKIPPED}
    assert len(classifier.calls) == 1


@pytest.mark.asyncio
async def test_reprocessing_a_finished_report_is_a_no_op(fake_redis, pipeline, reports, content, classifier):
    classifier.default = ABUSIVE
    report = await _report_comment(reports, content)
    await pipeline.process(report.report_id)

    assert await pipeline.process(report.report_id) is ProcessingOutcome.SKIPPED
    assert len(classifier.calls) == 1


@pytest.mark.asyncio
async def test_cached_verdict_is_reused_across_targets(fake_redis, pipeline, reports, content, classifier):
    classifier.default = ABUSIVE
    first = await _report_comment(reports, content, text="copy pasted insult")
    second = await _report_comment(reports, content, text="copy  pasted insult")

    await pipeline.process(first.report_id)
    outcome = await pipeline.process(second.report_id)

    assert outcome is ProcessingOutcome.ACCEPTED
    assert len(classifier.calls) == 1
    assert int(await fake_redis.get(DEFAULT_COUNTERS.daily_key)) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(("previous", "expected_calls"), [(3, 0), (4, 1), (5, 1)])
async def test_escalation_starts_at_threshold(fake_redis, pipeline, reports, content, classifier, suspender, previous, expected_calls):
    classifier.default = ABUSIVE
    await _accepted_history(reports, "author-7", previous)
    report = await _report_comment(reports, content, author="author-7")

    assert await pipeline.process(report.report_id) is ProcessingOutcome.ACCEPTED
    assert suspender.calls == ["author-7"] * expected_calls


@pytest.mark.asyncio
async def test_consecutive_acceptances_escalate_once(fake_redis, pipeline, reports, content, classifier, suspender):
    classifier.default = ABUSIVE
    await _accepted_history(reports, "author-8", 4)
    fifth = await _report_comment(reports, content, text="insult five", author="author-8")
    sixth = await _report_comment(reports, content, text="insult six", author="author-8")

    await pipeline.process(fifth.report_id)
    await pipeline.process(sixth.report_id)

    assert suspender.calls == ["author-8"]


@pytest.mark.asyncio
async def test_failed_suspension_keeps_acceptance_and_retries_later(fake_redis, pipeline, reports, content, classifier, suspender):
    classifier.default = ABUSIVE
    suspender.fail = True
    await _accepted_history(reports, "author-5", 4)
    fifth = await _report_comment(reports, content, text="insult five", author="author-5")

    assert await pipeline.process(fifth.report_id) is ProcessingOutcome.ACCEPTED
    assert (await reports.get(fifth.report_id)).state is ReportState.ACCEPTED
    assert content.deleted == [("comment", fifth.comment_id)]
    assert await fake_redis.exists(suspension_marker_key("author-5")) == 0

    suspender.fail = False
    sixth = await _report_comment(reports, content, text="insult six", author="author-5")
    await pipeline.process(sixth.report_id)
    assert suspender.calls == ["author-5", "author-5"]


@pytest.mark.asyncio
async def test_unavailable_store_leaves_report_checking(fake_redis, pipeline, reports, content, classifier):
    report = await _report_comment(reports, content)
    set_redis_client(None)

    assert await pipeline.process(report.report_id) is ProcessingOutcome.UNAVAILABLE
    assert (await reports.get(report.report_id)).state is ReportState.CHECKING
    assert classifier.calls == []
