"""Construction of the pipeline services and their shared resources."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.application.interfaces import MessageQueueInterface
from app.database import build_engine, build_session_factory, dispose_engine, init_models
from app.infrastructure.persistence.repositories_sqlalchemy import (
    SQLAlchemyJobRepository,
    SQLAlchemyPresentationRepository,
)
from app.services.maintenance import PipelineMaintenance
from app.services.orchestrator import PipelineOrchestrator
from app.services.queue_dispatcher import QueueDispatcher
from app.services.speaker_mapping import SpeakerMappingService
from app.services.storage import AssetUrlResolver
from app.services.webhook_ingestion import WebhookIngestionService

from .settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


def build_queue_backend(config: Settings) -> MessageQueueInterface:
    """Select the transport named by ``QUEUE_BACKEND``."""

    if config.queue.backend == "rabbitmq":
        from app.infrastructure.external.mq_adapter import RabbitMQAdapter

        return RabbitMQAdapter(
            host=config.queue.rabbitmq_host,
            port=config.queue.rabbitmq_port,
            username=config.queue.rabbitmq_username,
            password=config.queue.rabbitmq_password.get_secret_value(),
        )

    from app.infrastructure.external.sqs_adapter import SqsQueueAdapter

    return SqsQueueAdapter(region=config.queue.region)


@dataclass
class PipelineServices:
    """Everything request handlers and scripts need, built once per process."""

    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    jobs: SQLAlchemyJobRepository
    presentations: SQLAlchemyPresentationRepository
    dispatcher: QueueDispatcher
    orchestrator: PipelineOrchestrator
    ingestion: WebhookIngestionService
    speakers: SpeakerMappingService
    maintenance: PipelineMaintenance

    async def init_models(self) -> None:
        await init_models(self.engine)

    async def dispose(self) -> None:
        self.maintenance.stop()
        await dispose_engine(self.engine)


def build_pipeline_services(
    config: Optional[Settings] = None,
    *,
    engine: Optional[AsyncEngine] = None,
    queue_backend: Optional[MessageQueueInterface] = None,
) -> PipelineServices:
    config = config or default_settings
    engine = engine or build_engine(config.database.url)
    session_factory = build_session_factory(engine)

    jobs = SQLAlchemyJobRepository(session_factory, max_retry=config.pipeline.max_retry)
    presentations = SQLAlchemyPresentationRepository(session_factory)
    dispatcher = QueueDispatcher(
        queue_backend or build_queue_backend(config),
        config.queue.channels(),
    )
    orchestrator = PipelineOrchestrator(
        jobs,
        presentations,
        dispatcher,
        config.pipeline,
        urls=AssetUrlResolver(config.s3),
    )
    ingestion = WebhookIngestionService(
        session_factory,
        orchestrator,
        default_language=config.pipeline.default_language,
    )

    logger.info(
        "Pipeline services ready (queue backend %s, channels %s)",
        config.queue.backend,
        dispatcher.status(),
    )
    return PipelineServices(
        settings=config,
        engine=engine,
        session_factory=session_factory,
        jobs=jobs,
        presentations=presentations,
        dispatcher=dispatcher,
        orchestrator=orchestrator,
        ingestion=ingestion,
        speakers=SpeakerMappingService(session_factory),
        maintenance=PipelineMaintenance(
            orchestrator,
            interval_seconds=config.pipeline.sweep_interval_seconds,
        ),
    )


__all__ = ["PipelineServices", "build_pipeline_services", "build_queue_backend"]
