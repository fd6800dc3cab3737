"""Pydantic schemas for job management endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import Field

from app.domain.models import JobRecord
from app.models.job import JobStatus, JobType
from app.views.common import CamelModel


class JobResponse(CamelModel):
    id: int
    presentation_id: int
    job_type: JobType
    status: JobStatus
    queue_message_id: Optional[str] = None
    worker_name: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    metadata: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: JobRecord) -> "JobResponse":
        return cls.model_validate(record.model_dump())


class JobStatisticsResponse(CamelModel):
    total: int
    queued: int
    running: int
    completed: int
    failed: int
    success_rate: float


class ProcessSlidesRequest(CamelModel):
    """Slides to OCR; omitted means every slide without extracted text."""

    slide_ids: Optional[list[int]] = Field(default=None, min_length=1)


class CleanupRequest(CamelModel):
    days: Optional[int] = Field(default=None, ge=1)


class ResetStuckRequest(CamelModel):
    hours: Optional[float] = Field(default=None, gt=0)


class MaintenanceResponse(CamelModel):
    message: str
    count: int


class QueueChannelStatus(CamelModel):
    configured: bool
    reachable: Optional[bool] = None
    error: Optional[str] = None


__all__ = [
    "JobResponse",
    "JobStatisticsResponse",
    "ProcessSlidesRequest",
    "CleanupRequest",
    "ResetStuckRequest",
    "MaintenanceResponse",
    "QueueChannelStatus",
]
