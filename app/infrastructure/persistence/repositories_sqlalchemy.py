from datetime import datetime
import logging
from typing import Any, List, Optional, Tuple

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.application.interfaces import (
    JobRepositoryInterface,
    PresentationRepositoryInterface,
)
from app.domain.models import DispatchContext, JobRecord, JobStatistics
from app.models.analysis import AnalysisResult, AnalysisType
from app.models.base import utcnow
from app.models.job import (
    ACTIVE_JOB_STATUSES,
    TERMINAL_JOB_STATUSES,
    Job,
    JobStatus,
    JobType,
)
from app.models.presentation import AudioRecord, Presentation, PresentationStatus, Slide
from app.models.transcript import Transcript
from app.services.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)


class SQLAlchemyJobRepository(JobRepositoryInterface):
    """SQLAlchemy implementation of the job store.

    Every operation runs in its own short transaction and returns a
    detached ``JobRecord``; state transitions are single conditional
    UPDATE statements.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], max_retry: int = 3):
        self._session_factory = session_factory
        self._max_retry = max_retry

    @staticmethod
    async def _load(session: AsyncSession, job_id: int) -> Job:
        result = await session.execute(
            select(Job).where(Job.id == job_id).execution_options(populate_existing=True)
        )
        job = result.scalar_one_or_none()
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    @staticmethod
    async def _active(
        session: AsyncSession, presentation_id: int, job_type: JobType
    ) -> Optional[Job]:
        result = await session.execute(
            select(Job)
            .where(
                Job.presentation_id == presentation_id,
                Job.job_type == job_type,
                Job.status.in_(ACTIVE_JOB_STATUSES),
            )
            .order_by(Job.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        presentation_id: int,
        job_type: JobType,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Tuple[JobRecord, bool]:
        job_type = JobType(job_type)
        try:
            async with self._session_factory.begin() as session:
                presentation = await session.scalar(
                    select(Presentation.id).where(Presentation.id == presentation_id)
                )
                if presentation is None:
                    raise NotFoundError(f"Presentation {presentation_id} not found")

                existing = await self._active(session, presentation_id, job_type)
                if existing is not None:
                    logger.info(
                        "Active %s job %s already exists for presentation %s",
                        job_type.value,
                        existing.id,
                        presentation_id,
                    )
                    return JobRecord.model_validate(existing), False

                job = Job(
                    presentation_id=presentation_id,
                    job_type=job_type,
                    status=JobStatus.QUEUED,
                    retry_count=0,
                    job_metadata=metadata,
                )
                session.add(job)
                await session.flush()
                record = JobRecord.model_validate(job)
        except IntegrityError:
            # Lost the race against the partial unique index; hand back the winner.
            async with self._session_factory() as session:
                winner = await self._active(session, presentation_id, job_type)
            if winner is None:
                raise
            logger.info(
                "Concurrent create of %s job for presentation %s resolved to job %s",
                job_type.value,
                presentation_id,
                winner.id,
            )
            return JobRecord.model_validate(winner), False

        return record, True

    async def get(self, job_id: int) -> Optional[JobRecord]:
        async with self._session_factory() as session:
            job = await session.get(Job, job_id)
            return JobRecord.model_validate(job) if job else None

    async def set_message_id(self, job_id: int, message_id: str) -> JobRecord:
        async with self._session_factory.begin() as session:
            await self._load(session, job_id)
            await session.execute(
                update(Job)
                .where(Job.id == job_id)
                .values(queue_message_id=message_id, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            return JobRecord.model_validate(await self._load(session, job_id))

    async def mark_running(self, job_id: int, worker_name: str) -> JobRecord:
        async with self._session_factory.begin() as session:
            await self._load(session, job_id)
            result = await session.execute(
                update(Job)
                .where(Job.id == job_id, Job.status.in_(ACTIVE_JOB_STATUSES))
                .values(
                    status=JobStatus.RUNNING,
                    worker_name=worker_name,
                    started_at=utcnow(),
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            job = await self._load(session, job_id)
            if result.rowcount == 0:
                raise ConflictError(
                    f"Job {job_id} is {job.status.value} and cannot be claimed"
                )
            return JobRecord.model_validate(job)

    async def mark_completed(
        self, job_id: int, result: Optional[dict[str, Any]] = None
    ) -> Tuple[JobRecord, bool]:
        async with self._session_factory.begin() as session:
            job = await self._load(session, job_id)
            metadata = dict(job.job_metadata or {})
            if result is not None:
                metadata["result"] = result
            values = {
                "status": JobStatus.COMPLETED,
                "completed_at": utcnow(),
                "job_metadata": metadata,
                "updated_at": utcnow(),
            }

            transition = await session.execute(
                update(Job)
                .where(Job.id == job_id, Job.status != JobStatus.COMPLETED)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            first_completion = transition.rowcount == 1
            if not first_completion:
                # Duplicate delivery: last write wins on the row.
                await session.execute(
                    update(Job)
                    .where(Job.id == job_id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
            return JobRecord.model_validate(await self._load(session, job_id)), first_completion

    async def mark_failed(self, job_id: int, error_message: str) -> JobRecord:
        async with self._session_factory.begin() as session:
            await self._load(session, job_id)
            await session.execute(
                update(Job)
                .where(Job.id == job_id)
                .values(
                    status=JobStatus.FAILED,
                    completed_at=utcnow(),
                    error_message=error_message,
                    retry_count=case(
                        (Job.retry_count < self._max_retry, Job.retry_count + 1),
                        else_=Job.retry_count,
                    ),
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            return JobRecord.model_validate(await self._load(session, job_id))

    async def reopen(
        self,
        job_id: int,
        reset_retries: bool = False,
        metadata: Optional[dict[str, Any]] = None,
    ) -> JobRecord:
        values: dict[str, Any] = {
            "status": JobStatus.QUEUED,
            "worker_name": None,
            "started_at": None,
            "completed_at": None,
            "queue_message_id": None,
            "updated_at": utcnow(),
        }
        if reset_retries:
            values["retry_count"] = 0
        if metadata is not None:
            values["job_metadata"] = metadata

        async with self._session_factory.begin() as session:
            job = await self._load(session, job_id)
            result = await session.execute(
                update(Job)
                .where(Job.id == job_id, Job.status == JobStatus.FAILED)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise ConflictError(
                    f"Job {job_id} is {job.status.value}; only failed jobs can be reopened"
                )
            return JobRecord.model_validate(await self._load(session, job_id))

    async def requeue_if_running(self, job_id: int, note: str) -> Optional[JobRecord]:
        async with self._session_factory.begin() as session:
            result = await session.execute(
                update(Job)
                .where(Job.id == job_id, Job.status == JobStatus.RUNNING)
                .values(
                    status=JobStatus.QUEUED,
                    worker_name=None,
                    started_at=None,
                    queue_message_id=None,
                    error_message=note,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                return None
            return JobRecord.model_validate(await self._load(session, job_id))

    async def by_presentation(
        self, presentation_id: int, job_type: Optional[JobType] = None
    ) -> List[JobRecord]:
        stmt = select(Job).where(Job.presentation_id == presentation_id)
        if job_type is not None:
            stmt = stmt.where(Job.job_type == JobType(job_type))
        stmt = stmt.order_by(Job.created_at.desc(), Job.id.desc())
        return await self._fetch(stmt)

    async def history(self, presentation_id: int) -> List[JobRecord]:
        return await self._fetch(
            select(Job)
            .where(Job.presentation_id == presentation_id)
            .order_by(Job.created_at.asc(), Job.id.asc())
        )

    async def pending(
        self, job_type: Optional[JobType] = None, limit: int = 50
    ) -> List[JobRecord]:
        stmt = select(Job).where(Job.status == JobStatus.QUEUED)
        if job_type is not None:
            stmt = stmt.where(Job.job_type == JobType(job_type))
        return await self._fetch(stmt.order_by(Job.created_at.asc(), Job.id.asc()).limit(limit))

    async def running(self, job_type: Optional[JobType] = None) -> List[JobRecord]:
        stmt = select(Job).where(Job.status == JobStatus.RUNNING)
        if job_type is not None:
            stmt = stmt.where(Job.job_type == JobType(job_type))
        return await self._fetch(stmt.order_by(Job.started_at.asc(), Job.id.asc()))

    async def stuck(self, cutoff: datetime) -> List[JobRecord]:
        return await self._fetch(
            select(Job)
            .where(Job.status == JobStatus.RUNNING, Job.started_at < cutoff)
            .order_by(Job.started_at.asc())
        )

    async def statistics(self, presentation_id: Optional[int] = None) -> JobStatistics:
        stmt = select(Job.status, func.count(Job.id)).group_by(Job.status)
        if presentation_id is not None:
            stmt = stmt.where(Job.presentation_id == presentation_id)

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()

        counts = {JobStatus(status).value: count for status, count in rows}
        total = sum(counts.values())
        completed = counts.get(JobStatus.COMPLETED.value, 0)
        success_rate = round(completed / total * 100, 2) if total else 0.0
        return JobStatistics(
            total=total,
            queued=counts.get(JobStatus.QUEUED.value, 0),
            running=counts.get(JobStatus.RUNNING.value, 0),
            completed=completed,
            failed=counts.get(JobStatus.FAILED.value, 0),
            success_rate=success_rate,
        )

    async def purge_terminal(self, cutoff: datetime) -> int:
        async with self._session_factory.begin() as session:
            result = await session.execute(
                delete(Job)
                .where(
                    Job.status.in_(TERMINAL_JOB_STATUSES),
                    Job.completed_at < cutoff,
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0

    async def _fetch(self, stmt) -> List[JobRecord]:
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [JobRecord.model_validate(job) for job in result.scalars().all()]


class SQLAlchemyPresentationRepository(PresentationRepositoryInterface):
    """Presentation lookups needed by the orchestrator"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def exists(self, presentation_id: int) -> bool:
        async with self._session_factory() as session:
            found = await session.scalar(
                select(Presentation.id).where(Presentation.id == presentation_id)
            )
            return found is not None

    async def get_status(self, presentation_id: int) -> Optional[PresentationStatus]:
        async with self._session_factory() as session:
            return await session.scalar(
                select(Presentation.status).where(Presentation.id == presentation_id)
            )

    async def set_status(
        self,
        presentation_id: int,
        status: PresentationStatus,
        *,
        submitted: bool = False,
        completed: bool = False,
    ) -> None:
        values: dict[str, Any] = {"status": status, "updated_at": utcnow()}
        if submitted:
            values["submitted_at"] = utcnow()
        if completed:
            values["completed_at"] = utcnow()

        async with self._session_factory.begin() as session:
            result = await session.execute(
                update(Presentation)
                .where(Presentation.id == presentation_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise NotFoundError(f"Presentation {presentation_id} not found")

    async def unprocessed_slide_ids(self, presentation_id: int) -> List[int]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Slide.id)
                .where(
                    Slide.presentation_id == presentation_id,
                    Slide.extracted_text.is_(None),
                )
                .order_by(Slide.slide_number, Slide.id)
            )
            return list(result.scalars().all())

    async def dispatch_context(
        self,
        presentation_id: int,
        job_type: JobType,
        slide_ids: Optional[List[int]] = None,
    ) -> DispatchContext:
        """Collect raw storage paths and row ids for a stage's envelope."""

        job_type = JobType(job_type)
        context: dict[str, Any] = {}

        async with self._session_factory() as session:
            if job_type == JobType.ASR:
                context["audio_url"] = await session.scalar(
                    select(AudioRecord.file_path).where(
                        AudioRecord.presentation_id == presentation_id
                    )
                )
            elif job_type == JobType.ANALYSIS:
                context["transcript_id"] = await session.scalar(
                    select(Transcript.id).where(Transcript.presentation_id == presentation_id)
                )
                slides = await session.execute(
                    select(Slide.id, Slide.file_path)
                    .where(Slide.presentation_id == presentation_id)
                    .order_by(Slide.slide_number, Slide.id)
                )
                rows = slides.all()
                context["slide_ids"] = [row.id for row in rows]
                context["slide_urls"] = [row.file_path for row in rows]
            elif job_type == JobType.REPORT:
                context["analysis_result_id"] = await session.scalar(
                    select(AnalysisResult.id).where(
                        AnalysisResult.presentation_id == presentation_id,
                        AnalysisResult.analysis_type == AnalysisType.CONTENT,
                    )
                )
            elif job_type == JobType.SLIDES:
                stmt = (
                    select(Slide.id, Slide.file_path)
                    .where(Slide.presentation_id == presentation_id)
                    .order_by(Slide.slide_number, Slide.id)
                )
                if slide_ids:
                    stmt = stmt.where(Slide.id.in_(slide_ids))
                rows = (await session.execute(stmt)).all()
                context["slide_ids"] = [row.id for row in rows]
                context["slide_urls"] = [row.file_path for row in rows]

        return DispatchContext(**context)
