"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Summary


REQUEST_COUNTER = Counter(
	"matchcore_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"matchcore_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

STORE_ATTEMPTS = Counter(
	"matchcore_store_attempts_total",
	"Persistence client attempts by operation and result",
	["operation", "result"],
)

STORE_RETRIES = Counter(
	"matchcore_store_retries_total",
	"Persistence client retries scheduled after a retryable failure",
	["operation", "kind"],
)

STORE_EXHAUSTED = Counter(
	"matchcore_store_exhausted_total",
	"Persistence client calls that used their whole retry budget",
	["operation"],
)

STORE_FALLBACKS = Counter(
	"matchcore_store_fallbacks_total",
	"Secondary transport invocations by outcome",
	["operation", "result"],
)

FEED_BUILDS = Counter(
	"matchcore_feed_builds_total",
	"Discovery feed builds by outcome",
	["result"],
)

FEED_CANDIDATES = Counter(
	"matchcore_feed_candidates_total",
	"Feed candidates by stage (fetched, kept, skipped reason)",
	["stage"],
)

FEED_DURATION = Histogram(
	"matchcore_feed_build_duration_seconds",
	"Discovery feed build latency",
	buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0),
)

FEED_EXCLUSION_DEGRADED = Counter(
	"matchcore_feed_exclusion_degraded_total",
	"Feed builds that fell back to self-only exclusion",
)

SWIPES = Counter(
	"matchcore_swipes_total",
	"Swipe actions recorded",
	["type", "result"],
)

SWIPES_RATE_LIMITED = Counter(
	"matchcore_swipes_rate_limited_total",
	"Swipe actions rejected by the per-minute limiter",
)

MATCHES = Counter(
	"matchcore_matches_total",
	"Match creation outcomes",
	["result"],
)

NOTIFICATION_FAILURES = Counter(
	"matchcore_notification_failures_total",
	"Best-effort notifications that failed",
	["type"],
)

POSTGRES_UP = Gauge("matchcore_postgres_up", "Postgres availability (1=up,0=down)")
POSTGRES_LATENCY = Summary("matchcore_postgres_latency_seconds", "Postgres ping latency (seconds)")


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def inc_store_attempt(operation: str, result: str) -> None:
	STORE_ATTEMPTS.labels(operation=operation, result=result).inc()


def inc_store_retry(operation: str, kind: str) -> None:
	STORE_RETRIES.labels(operation=operation, kind=kind).inc()


def inc_store_exhausted(operation: str) -> None:
	STORE_EXHAUSTED.labels(operation=operation).inc()


def inc_store_fallback(operation: str, result: str) -> None:
	STORE_FALLBACKS.labels(operation=operation, result=result).inc()


def record_feed_build(result: str, *, duration_seconds: float | None = None) -> None:
	FEED_BUILDS.labels(result=result).inc()
	if duration_seconds is not None:
		FEED_DURATION.observe(duration_seconds)


def inc_feed_candidates(stage: str, count: int = 1) -> None:
	if count:
		FEED_CANDIDATES.labels(stage=stage).inc(count)


def inc_feed_exclusion_degraded() -> None:
	FEED_EXCLUSION_DEGRADED.inc()


def inc_swipe(kind: str, result: str) -> None:
	SWIPES.labels(type=kind, result=result).inc()


def inc_swipe_rate_limited() -> None:
	SWIPES_RATE_LIMITED.inc()


def inc_match(result: str) -> None:
	MATCHES.labels(result=result).inc()


def inc_notification_failure(kind: str) -> None:
	NOTIFICATION_FAILURES.labels(type=kind).inc()


def mark_postgres(ok: bool, *, latency_seconds: float | None = None) -> None:
	POSTGRES_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		POSTGRES_LATENCY.observe(latency_seconds)
