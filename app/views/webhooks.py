"""Pydantic schemas for worker webhook callbacks."""

from __future__ import annotations

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class WebhookPayload(_CamelModel):
    """Fields every stage callback carries."""

    job_id: int = Field(..., ge=1)
    presentation_id: int = Field(..., ge=1)
    status: Literal["success", "failed"]
    error: Optional[str] = None


class TranscriptSegmentPayload(_CamelModel):
    order: int
    start_timestamp: float
    end_timestamp: float
    text: str
    confidence: Optional[float] = None


class TranscriptPayload(_CamelModel):
    full_text: Optional[str] = None
    language: Optional[str] = None
    segments: list[TranscriptSegmentPayload] = Field(default_factory=list)


class SpeakerSegmentPayload(_CamelModel):
    start_time: Optional[float] = None
    end_time: Optional[float] = None


class DiarizedSpeakerPayload(_CamelModel):
    ai_speaker_label: Optional[str] = None
    segments: list[SpeakerSegmentPayload] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class SegmentSpeakerLinkPayload(_CamelModel):
    """Links a segment, by ``order`` or by id, to a speaker label."""

    order: Optional[int] = None
    segment_id: Optional[int] = None
    ai_speaker_label: str


class DiarizationPayload(_CamelModel):
    speakers: list[DiarizedSpeakerPayload] = Field(default_factory=list)
    segment_speaker_mappings: list[SegmentSpeakerLinkPayload] = Field(default_factory=list)


class AsrWebhookPayload(WebhookPayload):
    transcript: Optional[TranscriptPayload] = None
    diarization: Optional[DiarizationPayload] = None


class SegmentAnalysisPayload(_CamelModel):
    segment_id: int
    relevance_score: Optional[float] = None
    semantic_score: Optional[float] = None
    alignment_score: Optional[float] = None
    slide_id: Optional[int] = None
    issues: list[str] = Field(default_factory=list)


class OverallScoresPayload(_CamelModel):
    content_relevance: Optional[float] = None
    semantic_similarity: Optional[float] = None
    slide_alignment: Optional[float] = None


class AnalysisPayload(_CamelModel):
    segment_analyses: list[SegmentAnalysisPayload] = Field(default_factory=list)
    overall_scores: Optional[OverallScoresPayload] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class AnalysisWebhookPayload(WebhookPayload):
    analysis: Optional[AnalysisPayload] = None


class FeedbackItemPayload(_CamelModel):
    level: Literal["presentation", "segment"] = "presentation"
    target_id: Optional[int] = None
    category: Optional[str] = None
    severity: Optional[Literal["info", "warning", "critical"]] = None
    message: str
    suggestions: Optional[Union[str, list[str]]] = None
    evidence: Optional[dict[str, Any]] = None


class ReportSummaryPayload(_CamelModel):
    overall_score: Optional[float] = None
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class ReportPayload(_CamelModel):
    feedback_items: list[FeedbackItemPayload] = Field(default_factory=list)
    summary: Optional[ReportSummaryPayload] = None


class ReportWebhookPayload(WebhookPayload):
    report: Optional[ReportPayload] = None


class SlidePagePayload(_CamelModel):
    page_number: int
    text: str = ""


class SlideResultPayload(_CamelModel):
    extracted_text: Optional[str] = None
    pages: list[SlidePagePayload] = Field(default_factory=list)
    embedding: Optional[list[float]] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class SlidesWebhookPayload(WebhookPayload):
    slide_id: int = Field(..., ge=1)
    result: Optional[SlideResultPayload] = None


class JobStartedPayload(_CamelModel):
    job_id: int = Field(..., ge=1)
    worker_name: str = Field(..., min_length=1, max_length=100)


class WebhookResponse(BaseModel):
    success: bool = True
    message: str
    data: Optional[dict[str, Any]] = None


__all__ = [
    "WebhookPayload",
    "AsrWebhookPayload",
    "AnalysisWebhookPayload",
    "ReportWebhookPayload",
    "SlidesWebhookPayload",
    "JobStartedPayload",
    "WebhookResponse",
    "TranscriptPayload",
    "TranscriptSegmentPayload",
    "DiarizationPayload",
    "DiarizedSpeakerPayload",
    "SegmentSpeakerLinkPayload",
    "SegmentAnalysisPayload",
    "FeedbackItemPayload",
    "SlideResultPayload",
]
