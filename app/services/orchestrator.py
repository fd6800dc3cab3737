"""Pipeline progression: stage chaining, retry policy and liveness sweeps."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

from app.application.interfaces import (
    JobRepositoryInterface,
    PresentationRepositoryInterface,
)
from app.config.settings import PipelineConfig
from app.domain.models import (
    JobRecord,
    SlidesJobMetadata,
    dump_job_metadata,
    parse_job_metadata,
)
from app.models.base import utcnow
from app.models.job import JobStatus, JobType
from app.models.presentation import PresentationStatus
from app.services.errors import (
    ConflictError,
    DispatchError,
    NotFoundError,
    PermanentFailure,
    ValidationError,
)
from app.services.queue_dispatcher import QueueDispatcher
from app.services.storage import AssetUrlResolver, StorageError
from app.telemetry import (
    record_dispatch_failure,
    record_job_created,
    record_job_transition,
)

logger = logging.getLogger(__name__)

NEXT_STAGE = {
    JobType.ASR: JobType.ANALYSIS,
    JobType.ANALYSIS: JobType.REPORT,
}

# Stages whose permanent failure fails the whole presentation.
PRESENTATION_STAGES = (JobType.ASR, JobType.ANALYSIS, JobType.REPORT)


@dataclass(frozen=True)
class FailureOutcome:
    """Result of ``fail_job``: the job as stored and whether it was requeued."""

    job: JobRecord
    retried: bool

    @property
    def permanent(self) -> bool:
        return not self.retried


class PipelineOrchestrator:
    """Drive jobs through the asr -> analysis -> report pipeline."""

    def __init__(
        self,
        jobs: JobRepositoryInterface,
        presentations: PresentationRepositoryInterface,
        dispatcher: QueueDispatcher,
        config: PipelineConfig,
        urls: Optional[AssetUrlResolver] = None,
    ) -> None:
        self.jobs = jobs
        self.presentations = presentations
        self.dispatcher = dispatcher
        self.config = config
        self._urls = urls

    async def submit_presentation(
        self, presentation_id: int, requested_by: Optional[int] = None
    ) -> JobRecord:
        """Start the pipeline: presentation -> processing and an ASR job."""

        if not await self.presentations.exists(presentation_id):
            raise NotFoundError(f"Presentation {presentation_id} not found")

        await self.presentations.set_status(
            presentation_id, PresentationStatus.PROCESSING, submitted=True
        )
        return await self.create_job(
            presentation_id, JobType.ASR, {"requested_by": requested_by}
        )

    async def process_slides(
        self, presentation_id: int, slide_ids: Optional[list[int]] = None
    ) -> JobRecord:
        """Queue OCR for the given slides, or for every slide without text."""

        if not await self.presentations.exists(presentation_id):
            raise NotFoundError(f"Presentation {presentation_id} not found")

        if slide_ids:
            context = await self.presentations.dispatch_context(
                presentation_id, JobType.SLIDES, slide_ids
            )
            missing = sorted(set(slide_ids) - set(context.slide_ids))
            if missing:
                raise NotFoundError(
                    f"Slides {missing} do not belong to presentation {presentation_id}"
                )
        else:
            slide_ids = await self.presentations.unprocessed_slide_ids(presentation_id)
            if not slide_ids:
                raise ValidationError(
                    f"Presentation {presentation_id} has no slides awaiting text extraction"
                )

        return await self.create_job(
            presentation_id, JobType.SLIDES, {"slide_ids": list(slide_ids)}
        )

    async def create_job(
        self,
        presentation_id: int,
        job_type: JobType,
        metadata: Optional[dict[str, Any]] = None,
    ) -> JobRecord:
        """Create and dispatch a job; an existing active job is returned as is."""

        job_type = JobType(job_type)
        try:
            typed = parse_job_metadata(job_type, metadata)
        except ValueError as exc:
            raise ValidationError(f"Invalid metadata for {job_type.value} job: {exc}") from exc

        job, created = await self.jobs.create(
            presentation_id, job_type, dump_job_metadata(typed)
        )
        if not created:
            return job

        record_job_created(job_type.value)
        logger.info(
            "Created %s job %s for presentation %s",
            job_type.value,
            job.id,
            presentation_id,
        )
        return await self._dispatch(job)

    async def mark_running(self, job_id: int, worker_name: str) -> JobRecord:
        job = await self.jobs.mark_running(job_id, worker_name)
        record_job_transition(job.job_type.value, JobStatus.RUNNING.value)
        logger.info("Job %s claimed by %s", job_id, worker_name)
        return job

    async def complete_job(
        self, job_id: int, result: Optional[dict[str, Any]] = None
    ) -> JobRecord:
        """Mark a job completed and, on its first completion, start the next stage.

        Chaining problems are logged; the completed job is never reverted.
        """

        job, first_completion = await self.jobs.mark_completed(job_id, result)
        record_job_transition(job.job_type.value, JobStatus.COMPLETED.value)

        if not first_completion:
            logger.info("Job %s was already completed; not chaining again", job_id)
            return job

        next_type = NEXT_STAGE.get(job.job_type)
        if next_type is None:
            logger.info("Job %s (%s) completed; no further stage", job_id, job.job_type.value)
            return job

        try:
            await self.create_job(
                job.presentation_id,
                next_type,
                {
                    "triggered_by": f"{job.job_type.value}_completion",
                    "previous_job_type": job.job_type.value,
                },
            )
        except Exception:
            logger.exception(
                "Failed to start %s stage after job %s for presentation %s",
                next_type.value,
                job_id,
                job.presentation_id,
            )
        return job

    async def fail_job(
        self, job_id: int, error: Optional[str] = None, should_retry: bool = True
    ) -> FailureOutcome:
        """Record a failure and requeue the job while its retry budget lasts."""

        job = await self.jobs.mark_failed(job_id, error or "Job failed")
        record_job_transition(job.job_type.value, JobStatus.FAILED.value)

        try:
            self._check_retry_budget(job, should_retry)
        except PermanentFailure as exc:
            logger.warning("Job %s failed permanently: %s", job_id, exc.detail)
            if job.job_type in PRESENTATION_STAGES:
                await self.presentations.set_status(
                    job.presentation_id, PresentationStatus.FAILED
                )
            return FailureOutcome(job=job, retried=False)

        reopened = await self.jobs.reopen(job_id)
        record_job_transition(job.job_type.value, JobStatus.QUEUED.value)
        logger.info(
            "Retrying job %s (attempt %s of %s)",
            job_id,
            job.retry_count,
            self.config.max_retry,
        )
        try:
            return FailureOutcome(job=await self._dispatch(reopened), retried=True)
        except DispatchError:
            return FailureOutcome(job=await self._require(job_id), retried=False)

    async def retry_job(self, job_id: int) -> JobRecord:
        """Operator retry of a failed job; resets the automatic retry budget."""

        job = await self._require(job_id)
        if job.status != JobStatus.FAILED:
            raise ConflictError(
                f"Only failed jobs can be retried; job {job_id} is {job.status.value}"
            )

        metadata = dict(job.metadata or {})
        metadata["manual_retries"] = int(metadata.get("manual_retries") or 0) + 1
        reopened = await self.jobs.reopen(job_id, reset_retries=True, metadata=metadata)
        record_job_transition(job.job_type.value, JobStatus.QUEUED.value)

        if job.job_type in PRESENTATION_STAGES:
            status = await self.presentations.get_status(job.presentation_id)
            if status == PresentationStatus.FAILED:
                await self.presentations.set_status(
                    job.presentation_id, PresentationStatus.PROCESSING
                )

        logger.info("Manual retry of job %s", job_id)
        return await self._dispatch(reopened)

    async def reset_stuck_jobs(self, hours: Optional[float] = None) -> int:
        """Requeue jobs running for longer than ``hours`` and dispatch them again."""

        hours = self.config.stuck_after_hours if hours is None else hours
        cutoff = utcnow() - timedelta(hours=hours)
        note = f"Auto-reset: stuck for more than {hours:g} hours"

        reset = 0
        for job in await self.jobs.stuck(cutoff):
            requeued = await self.jobs.requeue_if_running(job.id, note)
            if requeued is None:
                continue
            reset += 1
            record_job_transition(job.job_type.value, JobStatus.QUEUED.value)
            logger.warning(
                "Reset stuck %s job %s (worker %s, started %s)",
                job.job_type.value,
                job.id,
                job.worker_name,
                job.started_at,
            )
            try:
                await self._dispatch(requeued)
            except DispatchError:
                logger.error("Stuck job %s could not be re-dispatched", job.id)

        if reset:
            logger.info("Reset %s stuck jobs", reset)
        return reset

    async def cleanup_old_jobs(self, days: Optional[int] = None) -> int:
        """Delete finished jobs older than the retention period."""

        days = self.config.cleanup_after_days if days is None else days
        deleted = await self.jobs.purge_terminal(utcnow() - timedelta(days=days))
        logger.info("Cleaned up %s jobs older than %s days", deleted, days)
        return deleted

    async def _require(self, job_id: int) -> JobRecord:
        job = await self.jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    def _check_retry_budget(self, job: JobRecord, should_retry: bool) -> None:
        if not should_retry:
            raise PermanentFailure(job.id, job.retry_count, "Retry disabled for this failure")
        if job.retry_count >= self.config.max_retry:
            raise PermanentFailure(
                job.id,
                job.retry_count,
                f"Retry limit of {self.config.max_retry} reached",
            )

    async def _dispatch(self, job: JobRecord) -> JobRecord:
        """Publish a queued job; a failed publish marks the job failed and re-raises."""

        try:
            fields = await self._envelope_fields(job)
            message_id = await self.dispatcher.dispatch(job, fields)
        except DispatchError as exc:
            record_dispatch_failure(job.job_type.value)
            logger.error("Dispatch of job %s failed: %s", job.id, exc.detail)
            await self.jobs.mark_failed(job.id, f"Dispatch failed: {exc.detail}")
            record_job_transition(job.job_type.value, JobStatus.FAILED.value)
            raise

        return await self.jobs.set_message_id(job.id, message_id)

    async def _envelope_fields(self, job: JobRecord) -> dict[str, Any]:
        slide_ids = None
        if job.job_type == JobType.SLIDES:
            try:
                typed = job.typed_metadata()
            except ValueError:
                typed = SlidesJobMetadata()
            slide_ids = typed.slide_ids or None

        context = await self.presentations.dispatch_context(
            job.presentation_id, job.job_type, slide_ids
        )
        try:
            if job.job_type == JobType.ASR:
                return {"audioUrl": await self._resolve(context.audio_url)}
            if job.job_type == JobType.ANALYSIS:
                return {
                    "transcriptId": context.transcript_id,
                    "slideUrls": await self._resolve_many(context.slide_urls),
                }
            if job.job_type == JobType.REPORT:
                return {"analysisResultId": context.analysis_result_id}
            return {
                "slideIds": context.slide_ids,
                "slideUrls": await self._resolve_many(context.slide_urls),
            }
        except StorageError as exc:
            raise DispatchError(str(exc)) from exc

    async def _resolve(self, path: Optional[str]) -> Optional[str]:
        if self._urls is None:
            return path
        return await self._urls.resolve(path)

    async def _resolve_many(self, paths: list[str]) -> list[str]:
        if self._urls is None:
            return list(paths)
        return await self._urls.resolve_many(paths)


__all__ = ["PipelineOrchestrator", "FailureOutcome", "NEXT_STAGE"]
