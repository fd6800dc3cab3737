"""SQLAlchemy model for pipeline jobs dispatched to external workers."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)

from app.models.base import Base, enum_values, utcnow


class JobType(str, Enum):
    """Pipeline stage handled by a job; one worker type per stage."""

    ASR = "asr"
    ANALYSIS = "analysis"
    REPORT = "report"
    SLIDES = "slides"


class JobStatus(str, Enum):
    """Lifecycle of a single job attempt."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_JOB_STATUSES = (JobStatus.QUEUED, JobStatus.RUNNING)
TERMINAL_JOB_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)

# Rendered verbatim into the partial index; must match the stored enum values.
_ACTIVE_PREDICATE = "status IN ('queued', 'running')"


class Job(Base):
    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, index=True)
    presentation_id = Column(
        Integer,
        ForeignKey("presentations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    job_type = Column(
        SqlEnum(JobType, name="job_type", values_callable=enum_values),
        nullable=False,
        index=True,
    )
    status = Column(
        SqlEnum(JobStatus, name="job_status", values_callable=enum_values),
        nullable=False,
        default=JobStatus.QUEUED,
        index=True,
    )
    queue_message_id = Column(String(255), nullable=True)
    worker_name = Column(String(100), nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    job_metadata = Column("metadata", JSON, key="job_metadata", nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index(
            "uq_jobs_active_presentation_type",
            "presentation_id",
            "job_type",
            unique=True,
            postgresql_where=text(_ACTIVE_PREDICATE),
            sqlite_where=text(_ACTIVE_PREDICATE),
        ),
    )


__all__ = [
    "Job",
    "JobType",
    "JobStatus",
    "ACTIVE_JOB_STATUSES",
    "TERMINAL_JOB_STATUSES",
]
