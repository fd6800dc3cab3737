"""Apply worker callbacks to durable state and drive the orchestrator."""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Iterable

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import session_scope
from app.domain.models import JobRecord
from app.models.analysis import (
    AlignmentCheck,
    AnalysisResult,
    AnalysisType,
    ContentRelevance,
    SegmentAnalysis,
    SemanticSimilarity,
)
from app.models.base import utcnow
from app.models.feedback import Feedback
from app.models.job import JobType
from app.models.presentation import AudioRecord, Presentation, PresentationStatus, Slide
from app.models.transcript import Transcript, TranscriptSegment
from app.services.errors import (
    IngestionError,
    NotFoundError,
    PipelineError,
    TransientWorkerFailure,
    ValidationError,
)
from app.services.orchestrator import PipelineOrchestrator
from app.services.speaker_mapping import (
    link_segments_to_speakers,
    upsert_speakers_from_diarization,
)
from app.telemetry import record_webhook
from app.views.webhooks import (
    AnalysisWebhookPayload,
    AsrWebhookPayload,
    JobStartedPayload,
    ReportWebhookPayload,
    SlidesWebhookPayload,
    WebhookPayload,
)

logger = logging.getLogger(__name__)

Applier = Callable[[AsyncSession, JobRecord, Any], Awaitable[dict[str, Any]]]


async def _segments_outside_presentation(
    session: AsyncSession, presentation_id: int, segment_ids: Iterable[int]
) -> list[int]:
    wanted = set(segment_ids)
    if not wanted:
        return []
    owned = await session.execute(
        select(TranscriptSegment.id)
        .join(Transcript, Transcript.id == TranscriptSegment.transcript_id)
        .where(
            Transcript.presentation_id == presentation_id,
            TranscriptSegment.id.in_(wanted),
        )
    )
    return sorted(wanted - set(owned.scalars().all()))


def combine_pages(pages: Iterable[Any]) -> str:
    """Join OCR pages in page order as ``[Page N]`` blocks."""

    ordered = sorted(pages, key=lambda page: page.page_number)
    return "\n\n".join(f"[Page {page.page_number}]\n{page.text}" for page in ordered)


class WebhookIngestionService:
    """One entry point per pipeline stage callback.

    Business writes for a callback share a single transaction; the job is
    completed through the orchestrator only after that transaction commits.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        orchestrator: PipelineOrchestrator,
        default_language: str = "vi",
    ) -> None:
        self._session_factory = session_factory
        self._orchestrator = orchestrator
        self._default_language = default_language

    async def job_started(self, payload: JobStartedPayload) -> JobRecord:
        return await self._orchestrator.mark_running(payload.job_id, payload.worker_name)

    async def ingest_asr(self, payload: AsrWebhookPayload) -> dict[str, Any]:
        return await self._handle(JobType.ASR, payload, self._apply_asr)

    async def ingest_analysis(self, payload: AnalysisWebhookPayload) -> dict[str, Any]:
        return await self._handle(JobType.ANALYSIS, payload, self._apply_analysis)

    async def ingest_report(self, payload: ReportWebhookPayload) -> dict[str, Any]:
        return await self._handle(JobType.REPORT, payload, self._apply_report)

    async def ingest_slides(self, payload: SlidesWebhookPayload) -> dict[str, Any]:
        return await self._handle(JobType.SLIDES, payload, self._apply_slides)

    async def _load_job(self, payload: WebhookPayload, stage: JobType) -> JobRecord:
        job = await self._orchestrator.jobs.get(payload.job_id)
        if job is None:
            raise NotFoundError(f"Job not found: {payload.job_id}")
        if job.presentation_id != payload.presentation_id:
            raise ValidationError(
                f"Job {job.id} belongs to presentation {job.presentation_id}, "
                f"not {payload.presentation_id}"
            )
        if job.job_type != stage:
            raise ValidationError(
                f"Job {job.id} is a {job.job_type.value} job, not {stage.value}"
            )
        return job

    async def _handle(
        self, stage: JobType, payload: WebhookPayload, apply: Applier
    ) -> dict[str, Any]:
        logger.info(
            "Webhook %s for job %s, presentation %s, status %s",
            stage.value,
            payload.job_id,
            payload.presentation_id,
            payload.status,
        )
        job = await self._load_job(payload, stage)

        if payload.status == "failed":
            failure = TransientWorkerFailure(job.id, payload.error or f"{stage.value} failed")
            outcome = await self._orchestrator.fail_job(
                failure.job_id, failure.detail, should_retry=True
            )
            record_webhook(stage.value, "failed")
            return {
                "jobId": job.id,
                "presentationId": job.presentation_id,
                "failureRecorded": True,
                "retried": outcome.retried,
                "retryCount": outcome.job.retry_count,
                "jobStatus": outcome.job.status.value,
            }

        try:
            async with session_scope(self._session_factory) as session:
                summary = await apply(session, job, payload)
        except PipelineError:
            record_webhook(stage.value, "error")
            raise
        except Exception as exc:
            record_webhook(stage.value, "error")
            logger.exception("Failed to apply %s webhook for job %s", stage.value, job.id)
            try:
                await self._orchestrator.fail_job(
                    job.id, f"Webhook processing error: {exc}", should_retry=False
                )
            except Exception:
                logger.exception("Failed to mark job %s as failed", job.id)
            raise IngestionError(f"Failed to process {stage.value} webhook: {exc}") from exc

        # A slides job finishes once every slide it covers has text.
        if summary.get("remainingSlides", 0) == 0:
            await self._orchestrator.complete_job(job.id, summary)

        record_webhook(stage.value, "success")
        logger.info("Webhook %s processed for job %s", stage.value, job.id)
        return {"jobId": job.id, "presentationId": job.presentation_id, **summary}

    async def _apply_asr(
        self, session: AsyncSession, job: JobRecord, payload: AsrWebhookPayload
    ) -> dict[str, Any]:
        transcript_payload = payload.transcript
        speakers_processed = 0
        linked = 0
        segment_count = 0

        if transcript_payload is not None:
            transcript = await session.scalar(
                select(Transcript).where(Transcript.presentation_id == job.presentation_id)
            )
            if transcript is None:
                transcript = Transcript(
                    presentation_id=job.presentation_id,
                    generated_at=utcnow(),
                )
                session.add(transcript)

            transcript.audio_id = await session.scalar(
                select(AudioRecord.id).where(AudioRecord.presentation_id == job.presentation_id)
            )
            transcript.full_text = transcript_payload.full_text
            transcript.language = transcript_payload.language or self._default_language
            transcript.processing_status = "completed"
            await session.flush()

            await session.execute(
                delete(TranscriptSegment)
                .where(TranscriptSegment.transcript_id == transcript.id)
                .execution_options(synchronize_session=False)
            )
            segments = [
                TranscriptSegment(
                    transcript_id=transcript.id,
                    order=segment.order,
                    start_timestamp=segment.start_timestamp,
                    end_timestamp=segment.end_timestamp,
                    text=segment.text,
                    confidence=segment.confidence,
                )
                for segment in sorted(transcript_payload.segments, key=lambda s: s.order)
            ]
            session.add_all(segments)
            await session.flush()
            segment_count = len(segments)
            logger.info("Stored transcript %s with %s segments", transcript.id, segment_count)

            diarization = payload.diarization
            if diarization is not None and diarization.speakers:
                speakers = await upsert_speakers_from_diarization(
                    session,
                    job.presentation_id,
                    [speaker.model_dump() for speaker in diarization.speakers],
                )
                speakers_processed = len(speakers)

                ids_by_order = {segment.order: segment.id for segment in segments}
                new_ids = set(ids_by_order.values())
                links = []
                for link in diarization.segment_speaker_mappings:
                    segment_id = ids_by_order.get(link.order) if link.order is not None else None
                    if segment_id is None and link.segment_id in new_ids:
                        segment_id = link.segment_id
                    if segment_id is None:
                        continue
                    links.append((segment_id, link.ai_speaker_label))
                linked = await link_segments_to_speakers(session, job.presentation_id, links)

        return {
            "transcriptCreated": transcript_payload is not None,
            "segmentCount": segment_count,
            "speakerCount": speakers_processed,
            "linkedSegments": linked,
        }

    async def _apply_analysis(
        self, session: AsyncSession, job: JobRecord, payload: AnalysisWebhookPayload
    ) -> dict[str, Any]:
        analysis = payload.analysis
        if analysis is None:
            return {"analysisCreated": False, "segmentAnalysisCount": 0}

        unknown = await _segments_outside_presentation(
            session,
            job.presentation_id,
            (item.segment_id for item in analysis.segment_analyses),
        )
        if unknown:
            raise ValidationError(
                f"Segments {unknown} do not belong to presentation {job.presentation_id}"
            )

        for item in analysis.segment_analyses:
            record = SegmentAnalysis(
                segment_id=item.segment_id,
                job_id=job.id,
                analysis_type="content",
                score=item.relevance_score,
                issues=item.issues,
            )
            if item.relevance_score is not None:
                record.relevance = ContentRelevance(relevance_score=item.relevance_score)
            if item.semantic_score is not None:
                record.similarity = SemanticSimilarity(similarity_score=item.semantic_score)
            if item.alignment_score is not None:
                record.alignment = AlignmentCheck(
                    alignment_score=item.alignment_score,
                    slide_id=item.slide_id,
                )
            session.add(record)

        await session.execute(
            delete(AnalysisResult)
            .where(
                AnalysisResult.presentation_id == job.presentation_id,
                AnalysisResult.analysis_type == AnalysisType.CONTENT,
            )
            .execution_options(synchronize_session=False)
        )
        overall = analysis.overall_scores
        result = AnalysisResult(
            presentation_id=job.presentation_id,
            job_id=job.id,
            analysis_type=AnalysisType.CONTENT,
            overall_score=overall.content_relevance if overall else None,
            detailed_scores=overall.model_dump(by_alias=True) if overall else {},
            insights=json.dumps(analysis.metadata) if analysis.metadata else None,
            analyzed_at=utcnow(),
        )
        session.add(result)
        await session.flush()

        return {
            "analysisCreated": True,
            "segmentAnalysisCount": len(analysis.segment_analyses),
            "analysisResultId": result.id,
        }

    async def _apply_report(
        self, session: AsyncSession, job: JobRecord, payload: ReportWebhookPayload
    ) -> dict[str, Any]:
        report = payload.report
        feedback_count = 0
        summary_saved = False

        if report is not None:
            items = report.feedback_items
            unknown = await _segments_outside_presentation(
                session,
                job.presentation_id,
                (
                    item.target_id
                    for item in items
                    if item.level == "segment" and item.target_id is not None
                ),
            )
            if unknown:
                raise ValidationError(
                    f"Feedback targets segments {unknown} outside presentation "
                    f"{job.presentation_id}"
                )

            session.add_all(
                [
                    Feedback(
                        presentation_id=job.presentation_id,
                        segment_id=item.target_id if item.level == "segment" else None,
                        job_id=job.id,
                        level=item.level,
                        category=item.category,
                        severity=item.severity,
                        message=item.message,
                        suggestions=item.suggestions,
                        evidence=item.evidence,
                        generated_at=utcnow(),
                    )
                    for item in items
                ]
            )
            feedback_count = len(items)

            if report.summary is not None:
                await session.execute(
                    delete(AnalysisResult)
                    .where(
                        AnalysisResult.presentation_id == job.presentation_id,
                        AnalysisResult.analysis_type == AnalysisType.SUMMARY,
                    )
                    .execution_options(synchronize_session=False)
                )
                session.add(
                    AnalysisResult(
                        presentation_id=job.presentation_id,
                        job_id=job.id,
                        analysis_type=AnalysisType.SUMMARY,
                        overall_score=report.summary.overall_score,
                        detailed_scores={
                            "strengths": report.summary.strengths,
                            "weaknesses": report.summary.weaknesses,
                        },
                        insights=json.dumps(
                            {"recommendations": report.summary.recommendations}
                        ),
                        analyzed_at=utcnow(),
                    )
                )
                summary_saved = True

        await session.execute(
            update(Presentation)
            .where(Presentation.id == job.presentation_id)
            .values(
                status=PresentationStatus.COMPLETED,
                completed_at=utcnow(),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await session.flush()

        return {
            "reportGenerated": True,
            "feedbackCount": feedback_count,
            "summarySaved": summary_saved,
        }

    async def _apply_slides(
        self, session: AsyncSession, job: JobRecord, payload: SlidesWebhookPayload
    ) -> dict[str, Any]:
        slide = await session.scalar(
            select(Slide).where(
                Slide.id == payload.slide_id,
                Slide.presentation_id == job.presentation_id,
            )
        )
        if slide is None:
            raise NotFoundError(
                f"Slide {payload.slide_id} not found in presentation {job.presentation_id}"
            )

        try:
            covered = job.typed_metadata().slide_ids
        except ValueError:
            covered = []
        if covered and slide.id not in covered:
            raise ValidationError(f"Slide {slide.id} is not part of job {job.id}")

        result = payload.result
        has_embedding = False
        if result is None:
            text = ""
        elif result.pages:
            text = combine_pages(result.pages)
            logger.info("Extracted text from %s pages of slide %s", len(result.pages), slide.id)
        else:
            text = result.extracted_text or ""

        if result is not None and result.embedding:
            has_embedding = True
            logger.info(
                "Received embedding vector of length %s for slide %s",
                len(result.embedding),
                slide.id,
            )

        slide.extracted_text = text
        await session.flush()

        remaining = 0
        if covered:
            remaining = await session.scalar(
                select(func.count(Slide.id)).where(
                    Slide.id.in_(covered),
                    Slide.extracted_text.is_(None),
                )
            )

        return {
            "slideProcessed": True,
            "slideId": slide.id,
            "extractedTextLength": len(text),
            "hasEmbedding": has_embedding,
            "remainingSlides": remaining or 0,
        }


__all__ = ["WebhookIngestionService", "combine_pages"]
