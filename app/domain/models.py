from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, Field, TypeAdapter

from app.models.job import JobStatus, JobType


class _JobMetadataBase(BaseModel):
    """Fields shared by every job metadata variant"""
    result: Optional[dict[str, Any]] = None
    manual_retries: int = 0

    class Config:
        extra = "allow"


class AsrJobMetadata(_JobMetadataBase):
    kind: Literal["asr"] = "asr"
    requested_by: Optional[int] = None


class AnalysisJobMetadata(_JobMetadataBase):
    kind: Literal["analysis"] = "analysis"
    triggered_by: Optional[str] = None
    previous_job_type: Optional[JobType] = None


class ReportJobMetadata(_JobMetadataBase):
    kind: Literal["report"] = "report"
    triggered_by: Optional[str] = None
    previous_job_type: Optional[JobType] = None


class SlidesJobMetadata(_JobMetadataBase):
    kind: Literal["slides"] = "slides"
    slide_ids: list[int] = Field(default_factory=list)


JobMetadata = Annotated[
    Union[AsrJobMetadata, AnalysisJobMetadata, ReportJobMetadata, SlidesJobMetadata],
    Field(discriminator="kind"),
]

_job_metadata_adapter = TypeAdapter(JobMetadata)


def parse_job_metadata(job_type: JobType, raw: Optional[dict[str, Any]]) -> JobMetadata:
    """Validate raw metadata against the variant for ``job_type``.

    Missing ``kind`` is filled in from the job type; a different ``kind``
    raises ``ValueError``.
    """
    job_type = JobType(job_type)
    payload = dict(raw or {})
    kind = payload.setdefault("kind", job_type.value)
    if kind != job_type.value:
        raise ValueError(
            f"Metadata kind '{kind}' does not match job type '{job_type.value}'"
        )
    return _job_metadata_adapter.validate_python(payload)


def dump_job_metadata(metadata: JobMetadata) -> dict[str, Any]:
    return metadata.model_dump(mode="json")


class JobRecord(BaseModel):
    """Domain model for a pipeline job"""
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
    metadata: Optional[dict[str, Any]] = Field(
        default=None,
        validation_alias=AliasChoices("job_metadata", "metadata"),
    )
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
        frozen = True

    @property
    def is_active(self) -> bool:
        return self.status in (JobStatus.QUEUED, JobStatus.RUNNING)

    def typed_metadata(self) -> JobMetadata:
        return parse_job_metadata(self.job_type, self.metadata)


class JobStatistics(BaseModel):
    """Counts of jobs per status"""
    total: int = 0
    queued: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    success_rate: float = 0.0

    class Config:
        frozen = True


class DispatchContext(BaseModel):
    """Stage-specific references a worker needs to fetch its inputs"""
    audio_url: Optional[str] = None
    transcript_id: Optional[int] = None
    analysis_result_id: Optional[int] = None
    slide_ids: list[int] = Field(default_factory=list)
    slide_urls: list[str] = Field(default_factory=list)


class SpeakerRecord(BaseModel):
    """Domain model for a detected speaker"""
    id: int
    presentation_id: int
    ai_speaker_label: str
    student_id: Optional[int] = None
    student_name: Optional[str] = None
    total_duration_seconds: float = 0.0
    segment_count: int = 0
    metadata: Optional[dict[str, Any]] = Field(
        default=None,
        validation_alias=AliasChoices("speaker_metadata", "metadata"),
    )
    is_mapped: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
        frozen = True
