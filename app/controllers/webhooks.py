"""Callbacks from the pipeline workers."""

from __future__ import annotations

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from app.controllers.dependencies import ServicesDep, WebhookAuthDep
from app.database import ping
from app.views import (
    AnalysisWebhookPayload,
    AsrWebhookPayload,
    JobResponse,
    JobStartedPayload,
    ReportWebhookPayload,
    SlidesWebhookPayload,
    WebhookResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post(
    "/asr-complete",
    response_model=WebhookResponse,
    dependencies=[WebhookAuthDep],
)
async def asr_complete(payload: AsrWebhookPayload, services: ServicesDep) -> WebhookResponse:
    data = await services.ingestion.ingest_asr(payload)
    message = (
        "ASR failure recorded" if payload.status == "failed" else "ASR results processed"
    )
    return WebhookResponse(message=message, data=data)


@router.post(
    "/analysis-complete",
    response_model=WebhookResponse,
    dependencies=[WebhookAuthDep],
)
async def analysis_complete(
    payload: AnalysisWebhookPayload, services: ServicesDep
) -> WebhookResponse:
    data = await services.ingestion.ingest_analysis(payload)
    message = (
        "Analysis failure recorded"
        if payload.status == "failed"
        else "Analysis results processed"
    )
    return WebhookResponse(message=message, data=data)


@router.post(
    "/report-complete",
    response_model=WebhookResponse,
    dependencies=[WebhookAuthDep],
)
async def report_complete(
    payload: ReportWebhookPayload, services: ServicesDep
) -> WebhookResponse:
    data = await services.ingestion.ingest_report(payload)
    message = (
        "Report failure recorded" if payload.status == "failed" else "Report processed"
    )
    return WebhookResponse(message=message, data=data)


@router.post(
    "/slides-complete",
    response_model=WebhookResponse,
    dependencies=[WebhookAuthDep],
)
async def slides_complete(
    payload: SlidesWebhookPayload, services: ServicesDep
) -> WebhookResponse:
    data = await services.ingestion.ingest_slides(payload)
    message = (
        "Slide failure recorded" if payload.status == "failed" else "Slide processed"
    )
    return WebhookResponse(message=message, data=data)


@router.post(
    "/job-started",
    response_model=WebhookResponse,
    dependencies=[WebhookAuthDep],
)
async def job_started(payload: JobStartedPayload, services: ServicesDep) -> WebhookResponse:
    job = await services.ingestion.job_started(payload)
    return WebhookResponse(
        message="Job marked as running",
        data=JobResponse.from_record(job).model_dump(mode="json", by_alias=True),
    )


@router.get("/health")
async def webhook_health(services: ServicesDep):
    try:
        await ping(services.engine)
    except Exception as exc:
        logger.error("Webhook health check failed: %s", exc)
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "unreachable"},
        )
    return {"status": "healthy", "database": "connected"}


__all__ = ["router"]
