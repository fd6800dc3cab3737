"""Endpoints for inspecting and steering pipeline jobs."""

from __future__ import annotations

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Query, status

from app.controllers.dependencies import AdminDep, CurrentUserDep, ServicesDep
from app.models.job import JobType
from app.services.errors import NotFoundError
from app.views import (
    CleanupRequest,
    JobResponse,
    JobStatisticsResponse,
    MaintenanceResponse,
    ProcessSlidesRequest,
    QueueChannelStatus,
    ResetStuckRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])

JobTypeQuery = Annotated[Optional[JobType], Query(alias="jobType")]


@router.get("/statistics", response_model=JobStatisticsResponse)
async def job_statistics(
    services: ServicesDep,
    _: CurrentUserDep,
    presentation_id: Annotated[Optional[int], Query(alias="presentationId")] = None,
) -> JobStatisticsResponse:
    stats = await services.jobs.statistics(presentation_id)
    return JobStatisticsResponse.model_validate(stats.model_dump())


@router.get("/pending", response_model=list[JobResponse])
async def pending_jobs(
    services: ServicesDep,
    _: CurrentUserDep,
    job_type: JobTypeQuery = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
) -> list[JobResponse]:
    jobs = await services.jobs.pending(job_type, limit=limit)
    return [JobResponse.from_record(job) for job in jobs]


@router.get("/running", response_model=list[JobResponse])
async def running_jobs(
    services: ServicesDep,
    _: CurrentUserDep,
    job_type: JobTypeQuery = None,
) -> list[JobResponse]:
    jobs = await services.jobs.running(job_type)
    return [JobResponse.from_record(job) for job in jobs]


@router.get("/queues", response_model=dict[str, QueueChannelStatus])
async def queue_status(services: ServicesDep, _: AdminDep) -> dict[str, QueueChannelStatus]:
    channels = services.dispatcher.status()
    result: dict[str, QueueChannelStatus] = {}
    for queue_type, info in channels.items():
        if not info["configured"]:
            result[queue_type] = QueueChannelStatus(configured=False)
            continue
        probe = await services.dispatcher.check(queue_type)
        result[queue_type] = QueueChannelStatus(
            configured=True,
            reachable=probe["success"],
            error=probe.get("error"),
        )
    return result


@router.post("/cleanup", response_model=MaintenanceResponse)
async def cleanup_jobs(
    services: ServicesDep,
    user: AdminDep,
    payload: Optional[CleanupRequest] = None,
) -> MaintenanceResponse:
    days = payload.days if payload else None
    deleted = await services.orchestrator.cleanup_old_jobs(days)
    logger.info("User %s purged %s old jobs", user.id, deleted)
    return MaintenanceResponse(message=f"Deleted {deleted} old jobs", count=deleted)


@router.post("/reset-stuck", response_model=MaintenanceResponse)
async def reset_stuck_jobs(
    services: ServicesDep,
    user: AdminDep,
    payload: Optional[ResetStuckRequest] = None,
) -> MaintenanceResponse:
    hours = payload.hours if payload else None
    reset = await services.orchestrator.reset_stuck_jobs(hours)
    logger.info("User %s reset %s stuck jobs", user.id, reset)
    return MaintenanceResponse(message=f"Reset {reset} stuck jobs", count=reset)


@router.get("/presentation/{presentation_id}", response_model=list[JobResponse])
async def presentation_jobs(
    presentation_id: int,
    services: ServicesDep,
    _: CurrentUserDep,
    job_type: JobTypeQuery = None,
) -> list[JobResponse]:
    jobs = await services.jobs.by_presentation(presentation_id, job_type)
    return [JobResponse.from_record(job) for job in jobs]


@router.get("/presentation/{presentation_id}/history", response_model=list[JobResponse])
async def presentation_job_history(
    presentation_id: int,
    services: ServicesDep,
    _: CurrentUserDep,
) -> list[JobResponse]:
    jobs = await services.jobs.history(presentation_id)
    return [JobResponse.from_record(job) for job in jobs]


@router.post(
    "/presentation/{presentation_id}/submit",
    response_model=JobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_presentation(
    presentation_id: int,
    services: ServicesDep,
    user: CurrentUserDep,
) -> JobResponse:
    job = await services.orchestrator.submit_presentation(
        presentation_id, requested_by=user.id
    )
    return JobResponse.from_record(job)


@router.post(
    "/presentation/{presentation_id}/slides",
    response_model=JobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def process_slides(
    presentation_id: int,
    services: ServicesDep,
    _: CurrentUserDep,
    payload: Optional[ProcessSlidesRequest] = None,
) -> JobResponse:
    slide_ids = payload.slide_ids if payload else None
    job = await services.orchestrator.process_slides(presentation_id, slide_ids)
    return JobResponse.from_record(job)


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(job_id: int, services: ServicesDep, _: CurrentUserDep) -> JobResponse:
    job = await services.jobs.get(job_id)
    if job is None:
        raise NotFoundError(f"Job {job_id} not found")
    return JobResponse.from_record(job)


@router.post("/{job_id}/retry", response_model=JobResponse)
async def retry_job(job_id: int, services: ServicesDep, user: CurrentUserDep) -> JobResponse:
    job = await services.orchestrator.retry_job(job_id)
    logger.info("User %s retried job %s", user.id, job_id)
    return JobResponse.from_record(job)


__all__ = ["router"]
