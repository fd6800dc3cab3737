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

JOBS_CREATED = Counter(
    "pipeline_jobs_created_total",
    "Pipeline jobs created",
    ("job_type",),
)

JOB_TRANSITIONS = Counter(
    "pipeline_job_transitions_total",
    "Job status transitions recorded by the orchestrator",
    ("job_type", "status"),
)

DISPATCH_FAILURES = Counter(
    "pipeline_dispatch_failures_total",
    "Jobs that could not be handed to their queue",
    ("job_type",),
)

WEBHOOKS_RECEIVED = Counter(
    "pipeline_webhooks_total",
    "Worker webhook calls by stage and outcome",
    ("stage", "outcome"),
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


def record_job_created(job_type: str) -> None:
    JOBS_CREATED.labels(job_type=job_type).inc()


def record_job_transition(job_type: str, status: str) -> None:
    JOB_TRANSITIONS.labels(job_type=job_type, status=status).inc()


def record_dispatch_failure(job_type: str) -> None:
    DISPATCH_FAILURES.labels(job_type=job_type).inc()


def record_webhook(stage: str, outcome: str) -> None:
    """Count a webhook call; ``outcome`` is success, failed or error."""

    WEBHOOKS_RECEIVED.labels(stage=stage, outcome=outcome).inc()
