"""Telemetry helpers and metrics."""

from .metrics import (
    ENQUEUE_FAILURES,
    ERROR_COUNTER,
    INDEX_DEGRADATIONS,
    REQUEST_COUNT,
    REQUEST_LATENCY,
    RUN_OUTCOMES,
    STAGE_DURATION,
    STAGE_FAILURES,
    observe_request,
    observe_stage,
    record_enqueue_failure,
    record_index_degradation,
    record_run_outcome,
)

__all__ = [
    "ENQUEUE_FAILURES",
    "ERROR_COUNTER",
    "INDEX_DEGRADATIONS",
    "REQUEST_COUNT",
    "REQUEST_LATENCY",
    "RUN_OUTCOMES",
    "STAGE_DURATION",
    "STAGE_FAILURES",
    "observe_request",
    "observe_stage",
    "record_enqueue_failure",
    "record_index_degradation",
    "record_run_outcome",
]
