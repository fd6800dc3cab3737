"""Service layer for the presentation review pipeline."""

from .errors import (
    AuthError,
    ConfigurationError,
    ConflictError,
    DispatchError,
    IngestionError,
    NotFoundError,
    PermanentFailure,
    PipelineError,
    TransientWorkerFailure,
    ValidationError,
)
from .maintenance import PipelineMaintenance
from .orchestrator import FailureOutcome, PipelineOrchestrator
from .queue_dispatcher import QueueDispatcher
from .speaker_mapping import SpeakerMappingService
from .storage import AssetUrlResolver, StorageError
from .webhook_ingestion import WebhookIngestionService

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
    "PipelineOrchestrator",
    "FailureOutcome",
    "PipelineMaintenance",
    "QueueDispatcher",
    "SpeakerMappingService",
    "WebhookIngestionService",
    "AssetUrlResolver",
    "StorageError",
]
