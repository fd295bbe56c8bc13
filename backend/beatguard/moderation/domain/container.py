"""Lightweight service container shared by moderation modules."""

from __future__ import annotations

from typing import Optional

import asyncpg
import httpx

from beatguard.infra.redis import get_redis
from beatguard.moderation.domain.classifier import OpenRouterClassifier, TextClassifier
from beatguard.moderation.domain.content import ContentStore, InMemoryContentStore
from beatguard.moderation.domain.intake import ReportIntakeService
from beatguard.moderation.domain.pipeline import ModerationPipeline, StoreProvider
from beatguard.moderation.domain.reports import InMemoryReportRepository, ReportRepository
from beatguard.moderation.infra.postgres_repo import PostgresContentStore, PostgresReportRepository
from beatguard.moderation.infra.suspension import AccountSuspender, HttpAccountSuspender
from beatguard.moderation.workers.dispatcher import ModerationDispatcher
from beatguard.moderation.workers.retry_sweeper import RetrySweeper
from beatguard.moderation.workers.scheduler import ModerationScheduler
from beatguard.settings import settings

_http: Optional[httpx.AsyncClient] = None
_store: StoreProvider = get_redis
_reports: ReportRepository = InMemoryReportRepository()
_content: ContentStore = InMemoryContentStore()
_classifier: Optional[TextClassifier] = None
_suspender: Optional[AccountSuspender] = None
_pipeline: Optional[ModerationPipeline] = None
_dispatcher: Optional[ModerationDispatcher] = None
_sweeper: Optional[RetrySweeper] = None
_scheduler: Optional[ModerationScheduler] = None
_intake: Optional[ReportIntakeService] = None


def _http_client() -> httpx.AsyncClient:
    global _http
    if _http is None:
        _http = httpx.AsyncClient()
    return _http


def configure(
    *,
    reports: Optional[ReportRepository] = None,
    content: Optional[ContentStore] = None,
    classifier: Optional[TextClassifier] = None,
    suspender: Optional[AccountSuspender] = None,
    store: Optional[StoreProvider] = None,
    enable_dispatch: Optional[bool] = None,
) -> None:
    """(Re)build the moderation object graph.

    Collaborators not passed keep their current value; the first build creates
    them from settings.
    """

    global _store, _reports, _content, _classifier, _suspender, _pipeline, _dispatcher, _sweeper, _scheduler, _intake
    if reports is not None:
        _reports = reports
    if content is not None:
        _content = content
    if store is not None:
        _store = store
    if classifier is not None:
        _classifier = classifier
    elif _classifier is None:
        _classifier = OpenRouterClassifier(
            http=_http_client(),
            api_key=settings.openrouter_api_key,
            url=settings.openrouter_url,
            model=settings.openrouter_model,
            timeout=settings.classifier_timeout_seconds,
            max_attempts=settings.classifier_max_attempts,
            backoff_seconds=settings.classifier_backoff_seconds,
        )
    if suspender is not None:
        _suspender = suspender
    elif _suspender is None:
        _suspender = HttpAccountSuspender(
            http=_http_client(),
            base_url=settings.auth_service_url,
            api_key=settings.internal_api_key,
            timeout=settings.suspension_timeout_seconds,
        )
    _pipeline = ModerationPipeline(
        store=_store,
        reports=_reports,
        content=_content,
        classifier=_classifier,
        suspender=_suspender,
        escalation_threshold=settings.moderation_escalation_threshold,
    )

    dispatch = settings.enable_redis if enable_dispatch is None else enable_dispatch
    _dispatcher = (
        ModerationDispatcher(
            _pipeline.process,
            concurrency=settings.moderation_dispatch_concurrency,
            max_pending=settings.moderation_dispatch_queue_size,
        )
        if dispatch
        else None
    )
    _sweeper = RetrySweeper(
        store=_store,
        reports=_reports,
        submit=_submit,
        batch_size=settings.moderation_sweep_batch_size,
        staleness_seconds=settings.moderation_staleness_seconds,
        dispatch_delay=settings.moderation_dispatch_delay_seconds,
        min_daily_available=settings.moderation_sweep_min_daily,
    )
    _scheduler = ModerationScheduler(
        _sweeper,
        interval_minutes=settings.moderation_sweep_interval_minutes,
        retry_min_daily=settings.moderation_retry_min_daily,
    )
    _intake = ReportIntakeService(_reports, _content, dispatcher=_dispatcher, store=_store)


def configure_postgres(pool: asyncpg.Pool) -> None:
    configure(reports=PostgresReportRepository(pool), content=PostgresContentStore(pool))


def _submit(report_id: str) -> bool:
    if _dispatcher is None:
        return False
    return _dispatcher.submit(report_id)


def _ensure_configured() -> None:
    if _pipeline is None:
        configure()


def get_reports() -> ReportRepository:
    return _reports


def get_content_store() -> ContentStore:
    return _content


def get_pipeline() -> ModerationPipeline:
    _ensure_configured()
    assert _pipeline is not None
    return _pipeline


def get_dispatcher() -> Optional[ModerationDispatcher]:
    _ensure_configured()
    return _dispatcher


def get_sweeper() -> RetrySweeper:
    _ensure_configured()
    assert _sweeper is not None
    return _sweeper


def get_scheduler() -> ModerationScheduler:
    _ensure_configured()
    assert _scheduler is not None
    return _scheduler


def get_intake_service() -> ReportIntakeService:
    _ensure_configured()
    assert _intake is not None
    return _intake


async def aclose() -> None:
    global _http, _classifier, _suspender
    client, _http = _http, None
    # HTTP-backed collaborators are rebuilt with a fresh client on the next configure().
    if isinstance(_classifier, OpenRouterClassifier):
        _classifier = None
    if isinstance(_suspender, HttpAccountSuspender):
        _suspender = None
    if client is not None:
        await client.aclose()


__all__ = [
    "aclose",
    "configure",
    "configure_postgres",
    "get_content_store",
    "get_dispatcher",
    "get_intake_service",
    "get_pipeline",
    "get_reports",
    "get_scheduler",
    "get_sweeper",
]
