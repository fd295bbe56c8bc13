"""Central registry for Prometheus metrics used by the moderation service."""

from __future__ import annotations

import logging

from prometheus_client import Counter, Gauge, Histogram

log = logging.getLogger(__name__)


MOD_REPORTS_PROCESSED_TOTAL = Counter(
	"beatguard_mod_reports_processed_total",
	"Moderation pipeline invocations by outcome",
	["outcome"],
)

MOD_CLASSIFIER_CALLS_TOTAL = Counter(
	"beatguard_mod_classifier_calls_total",
	"External classifier calls by result",
	["result"],
)

MOD_CLASSIFIER_LATENCY_SECONDS = Histogram(
	"beatguard_mod_classifier_latency_seconds",
	"External classifier latency in seconds",
	buckets=(0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 45.0),
)

MOD_VERDICT_CACHE_TOTAL = Counter(
	"beatguard_mod_verdict_cache_total",
	"Verdict cache lookups by result",
	["result"],
)

MOD_QUOTA_REJECTIONS_TOTAL = Counter(
	"beatguard_mod_quota_rejections_total",
	"Classifier admissions refused by the quota guard",
	["window"],
)

MOD_SWEEP_RUNS_TOTAL = Counter(
	"beatguard_mod_sweep_runs_total",
	"Retry sweep executions by result",
	["result"],
)

MOD_SWEEP_REPORTS_TOTAL = Counter(
	"beatguard_mod_sweep_reports_total",
	"Reports handled by the retry sweep",
	["action"],
)

MOD_SUSPENSIONS_TOTAL = Counter(
	"beatguard_mod_suspensions_total",
	"Account suspension requests by result",
	["result"],
)

MOD_DISPATCH_QUEUE_DEPTH = Gauge(
	"beatguard_mod_dispatch_queue_depth",
	"Reports waiting in the dispatch queue",
)

REDIS_RECONNECT_ATTEMPTS = Counter(
	"beatguard_redis_reconnect_attempts_total",
	"Shared store connection attempts by result",
	["result"],
)

REDIS_UP = Gauge(
	"beatguard_redis_up",
	"Whether the shared store is reachable",
)

REDIS_LATENCY = Histogram(
	"beatguard_redis_latency_seconds",
	"Shared store ping latency",
	buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25),
)

POSTGRES_UP = Gauge(
	"beatguard_postgres_up",
	"Whether Postgres is reachable",
)

POSTGRES_LATENCY = Histogram(
	"beatguard_postgres_latency_seconds",
	"Postgres readiness query latency",
	buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25),
)

BACKGROUND_RUNS = Counter(
	"beatguard_jobs_runs_total",
	"Background job executions",
	["name", "result"],
)

BACKGROUND_DURATION = Histogram(
	"beatguard_jobs_duration_seconds",
	"Background job duration",
	["name"],
	buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 15.0, 30.0, 60.0, 180.0),
)


def mark_redis(ok: bool, *, latency_seconds: float | None = None) -> None:
	REDIS_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		REDIS_LATENCY.observe(latency_seconds)


def mark_postgres(ok: bool, *, latency_seconds: float | None = None) -> None:
	POSTGRES_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		POSTGRES_LATENCY.observe(latency_seconds)


def record_job_run(name: str, *, result: str, duration_seconds: float | None = None) -> None:
	BACKGROUND_RUNS.labels(name=name, result=result).inc()
	if duration_seconds is not None:
		BACKGROUND_DURATION.labels(name=name).observe(duration_seconds)


def inc_report_outcome(outcome: str) -> None:
	try:
		MOD_REPORTS_PROCESSED_TOTAL.labels(outcome=outcome).inc()
	except Exception:  # pragma: no cover - metrics must never break the pipeline
		log.debug("failed to record report outcome", exc_info=True)


def inc_classifier_call(result: str, *, latency_seconds: float | None = None) -> None:
	MOD_CLASSIFIER_CALLS_TOTAL.labels(result=result).inc()
	if latency_seconds is not None:
		MOD_CLASSIFIER_LATENCY_SECONDS.observe(latency_seconds)


def inc_cache_lookup(result: str) -> None:
	MOD_VERDICT_CACHE_TOTAL.labels(result=result).inc()


def inc_quota_rejection(window: str) -> None:
	MOD_QUOTA_REJECTIONS_TOTAL.labels(window=window).inc()
