"""Prometheus metrics definitions and helpers."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests processed",
    ("method", "route", "status"),
)

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ("method", "route"),
    buckets=(
        0.005,
        0.01,
        0.025,
        0.05,
        0.1,
        0.25,
        0.5,
        1.0,
        2.5,
        5.0,
        10.0,
    ),
)

ERROR_COUNTER = Counter(
    "app_internal_errors_total",
    "Number of requests ending in internal server error responses",
    ("method", "route"),
)

RUN_OUTCOMES = Counter(
    "script_runs_total",
    "Script generation runs by terminal outcome",
    ("outcome",),
)

STAGE_DURATION = Histogram(
    "script_stage_duration_seconds",
    "Wall-clock duration of one content stage call, retries included",
    ("stage",),
    buckets=(1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0),
)

STAGE_FAILURES = Counter(
    "script_stage_failures_total",
    "Stage calls that failed the run",
    ("stage",),
)

INDEX_DEGRADATIONS = Counter(
    "script_index_degradations_total",
    "Runs that continued without a retrieval index",
    ("step",),
)

ENQUEUE_FAILURES = Counter(
    "script_enqueue_failures_total",
    "Finished scripts that could not be placed on the render queue",
)


def observe_request(
    method: str,
    route: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """Record metrics for a completed HTTP request."""

    safe_route = route or "unknown"
    safe_method = method or "UNKNOWN"
    status_label = str(status_code)
    observed_duration = duration_seconds if duration_seconds >= 0 else 0

    REQUEST_COUNT.labels(
        method=safe_method,
        route=safe_route,
        status=status_label,
    ).inc()
    REQUEST_LATENCY.labels(
        method=safe_method,
        route=safe_route,
    ).observe(observed_duration)

    if status_code >= 500:
        ERROR_COUNTER.labels(
            method=safe_method,
            route=safe_route,
        ).inc()


def observe_stage(stage: str, duration_seconds: float, *, failed: bool = False) -> None:
    """Record one stage call."""

    STAGE_DURATION.labels(stage=stage).observe(max(duration_seconds, 0))
    if failed:
        STAGE_FAILURES.labels(stage=stage).inc()


def record_run_outcome(outcome: str) -> None:
    RUN_OUTCOMES.labels(outcome=outcome).inc()


def record_index_degradation(step: str) -> None:
    INDEX_DEGRADATIONS.labels(step=step).inc()


def record_enqueue_failure() -> None:
    ENQUEUE_FAILURES.inc()
