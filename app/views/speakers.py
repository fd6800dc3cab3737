"""Pydantic schemas for speaker mapping endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import Field

from app.domain.models import SpeakerRecord
from app.views.common import CamelModel


class SpeakerResponse(CamelModel):
    id: int
    presentation_id: int
    ai_speaker_label: str
    student_id: Optional[int] = None
    student_name: Optional[str] = None
    is_mapped: bool
    total_duration_seconds: float
    segment_count: int
    metadata: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: SpeakerRecord) -> "SpeakerResponse":
        return cls.model_validate(record.model_dump())


class MapSpeakerRequest(CamelModel):
    student_id: int = Field(..., ge=1)


class SpeakerMappingItem(CamelModel):
    speaker_id: int = Field(..., ge=1)
    student_id: int = Field(..., ge=1)


class BatchMapRequest(CamelModel):
    mappings: list[SpeakerMappingItem] = Field(..., min_length=1)


class BatchMapFailure(CamelModel):
    speaker_id: int
    student_id: int
    error: str


class BatchMapResponse(CamelModel):
    success: list[SpeakerResponse]
    failed: list[BatchMapFailure]


__all__ = [
    "SpeakerResponse",
    "MapSpeakerRequest",
    "SpeakerMappingItem",
    "BatchMapRequest",
    "BatchMapFailure",
    "BatchMapResponse",
]
