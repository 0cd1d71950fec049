"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

REQUEST_COUNTER = Counter(
	"nearu_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"nearu_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

LOCATION_SAMPLES = Counter(
	"nearu_location_samples_total",
	"Raw location samples seen by the sampler",
	["result"],
)

TRACKING_SESSIONS = Gauge(
	"nearu_tracking_sessions_active",
	"Server-side tracking sessions currently running",
)

LOCATION_CYCLE_FAILURES = Counter(
	"nearu_location_cycle_failures_total",
	"Location processing cycles that failed",
	["reason"],
)

CROSSING_EVALUATIONS = Counter(
	"nearu_crossing_evaluations_total",
	"Path-crossing evaluations by outcome",
	["outcome"],
)

CHAT_UNLOCKS = Counter(
	"nearu_chat_unlocks_total",
	"User pairs whose chat was unlocked by path crossings",
)

NEARBY_QUERIES = Counter(
	"nearu_nearby_queries_total",
	"Nearby user listings computed",
)

NEARBY_RESULTS = Histogram(
	"nearu_nearby_results",
	"Number of nearby users returned per listing",
	buckets=(0, 1, 2, 5, 10, 25, 50, 100),
)

STORAGE_ERRORS = Counter(
	"nearu_storage_errors_total",
	"Document store operations that failed",
	["operation"],
)

PUSH_SENDS = Counter(
	"nearu_push_sends_total",
	"Push notifications attempted",
	["result"],
)

CHAT_MESSAGES = Counter(
	"nearu_chat_messages_total",
	"Chat messages written",
)

MATCH_REQUESTS = Counter(
	"nearu_match_requests_total",
	"Match request transitions",
	["status"],
)

AUTH_FAILURES = Counter(
	"nearu_auth_failures_total",
	"Rejected authentication attempts",
	["reason"],
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def inc_location_sample(result: str) -> None:
	LOCATION_SAMPLES.labels(result=result).inc()


def set_tracking_sessions(count: int) -> None:
	TRACKING_SESSIONS.set(float(count))


def inc_location_cycle_failure(reason: str) -> None:
	LOCATION_CYCLE_FAILURES.labels(reason=reason).inc()


def inc_crossing_evaluation(outcome: str) -> None:
	CROSSING_EVALUATIONS.labels(outcome=outcome).inc()


def inc_chat_unlock() -> None:
	CHAT_UNLOCKS.inc()


def observe_nearby(count: int) -> None:
	NEARBY_QUERIES.inc()
	NEARBY_RESULTS.observe(count)


def inc_storage_error(operation: str) -> None:
	STORAGE_ERRORS.labels(operation=operation).inc()


def inc_push_send(result: str) -> None:
	PUSH_SENDS.labels(result=result).inc()


def inc_chat_message() -> None:
	CHAT_MESSAGES.inc()


def inc_match_request(status: str) -> None:
	MATCH_REQUESTS.labels(status=status).inc()


def inc_auth_failure(reason: str) -> None:
	AUTH_FAILURES.labels(reason=reason).inc()
