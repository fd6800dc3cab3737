"""Telemetry helpers and metrics."""

from .metrics import (
    DISPATCH_FAILURES,
    ERROR_COUNTER,
    JOB_TRANSITIONS,
    JOBS_CREATED,
    REQUEST_COUNT,
    REQUEST_LATENCY,
    WEBHOOKS_RECEIVED,
    observe_request,
    record_dispatch_failure,
    record_job_created,
    record_job_transition,
    record_webhook,
)

__all__ = [
    "DISPATCH_FAILURES",
    "ERROR_COUNTER",
    "JOB_TRANSITIONS",
    "JOBS_CREATED",
    "REQUEST_COUNT",
    "REQUEST_LATENCY",
    "WEBHOOKS_RECEIVED",
    "observe_request",
    "record_dispatch_failure",
    "record_job_created",
    "record_job_transition",
    "record_webhook",
]
