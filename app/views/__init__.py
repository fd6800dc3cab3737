"""Pydantic schemas used as views in the MVC architecture."""

from .common import CamelModel, ErrorResponse, SuccessResponse
from .jobs import (
    CleanupRequest,
    JobResponse,
    JobStatisticsResponse,
    MaintenanceResponse,
    ProcessSlidesRequest,
    QueueChannelStatus,
    ResetStuckRequest,
)
from .speakers import (
    BatchMapFailure,
    BatchMapRequest,
    BatchMapResponse,
    MapSpeakerRequest,
    SpeakerMappingItem,
    SpeakerResponse,
)
from .webhooks import (
    AnalysisWebhookPayload,
    AsrWebhookPayload,
    JobStartedPayload,
    ReportWebhookPayload,
    SlidesWebhookPayload,
    WebhookResponse,
)

__all__ = [
    "CamelModel",
    "ErrorResponse",
    "SuccessResponse",
    "JobResponse",
    "JobStatisticsResponse",
    "ProcessSlidesRequest",
    "CleanupRequest",
    "ResetStuckRequest",
    "MaintenanceResponse",
    "QueueChannelStatus",
    "SpeakerResponse",
    "MapSpeakerRequest",
    "SpeakerMappingItem",
    "BatchMapRequest",
    "BatchMapFailure",
    "BatchMapResponse",
    "AsrWebhookPayload",
    "AnalysisWebhookPayload",
    "ReportWebhookPayload",
    "SlidesWebhookPayload",
    "JobStartedPayload",
    "WebhookResponse",
]
