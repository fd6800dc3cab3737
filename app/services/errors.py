"""Exception taxonomy shared by the pipeline services and HTTP layer."""

from __future__ import annotations

from typing import Any, Optional


class PipelineError(RuntimeError):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500
    code = "pipeline_error"

    def __init__(self, detail: str, *, extra: Optional[dict[str, Any]] = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.extra = extra or {}


class ValidationError(PipelineError):
    """Raised when request or webhook fields are malformed or inconsistent."""

    status_code = 400
    code = "validation_error"


class NotFoundError(PipelineError):
    status_code = 404
    code = "not_found"


class AuthError(PipelineError):
    """Raised when a webhook credential is missing (401) or wrong (403)."""

    code = "auth_error"

    def __init__(self, detail: str, *, missing: bool = True) -> None:
        super().__init__(detail)
        self.status_code = 401 if missing else 403


class ConflictError(PipelineError):
    status_code = 409
    code = "conflict"


class DispatchError(PipelineError):
    """Raised when a job message cannot be handed to its queue."""

    status_code = 503
    code = "dispatch_error"


class ConfigurationError(DispatchError):
    """Raised when a job type has no queue address configured."""

    code = "configuration_error"


class IngestionError(PipelineError):
    """Raised when applying a webhook fails for an unexpected reason."""

    status_code = 500
    code = "ingestion_error"


class TransientWorkerFailure(PipelineError):
    """A worker reported failure for a job that may be retried."""

    code = "worker_failure"

    def __init__(self, job_id: int, error: Optional[str] = None) -> None:
        super().__init__(error or "Worker reported failure")
        self.job_id = job_id


class PermanentFailure(PipelineError):
    """The retry budget for a job is exhausted."""

    code = "permanent_failure"

    def __init__(self, job_id: int, retry_count: int, detail: str) -> None:
        super().__init__(detail)
        self.job_id = job_id
        self.retry_count = retry_count


__all__ = [
    "PipelineError",
    "ValidationError",
    "NotFoundError",
    "AuthError",
    "ConflictError",
    "DispatchError",
    "ConfigurationError",
    "IngestionError",
    "TransientWorkerFailure",
    "PermanentFailure",
]
