"""Reconcile diarization speaker labels with enrolled students."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.domain.models import SpeakerRecord
from app.models.base import utcnow
from app.models.course import Enrollment, EnrollmentStatus
from app.models.presentation import Presentation
from app.models.speaker import Speaker
from app.models.transcript import Transcript, TranscriptSegment
from app.models.user import User
from app.services.errors import ConflictError, NotFoundError, PipelineError

logger = logging.getLogger(__name__)


def _dialect_insert(session: AsyncSession):
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert
    return sqlite_insert


def _speaking_time(segments: Iterable[Mapping[str, Any]]) -> float:
    return sum(
        max(0.0, (segment.get("end_time") or 0) - (segment.get("start_time") or 0))
        for segment in segments
    )


async def upsert_speakers_from_diarization(
    session: AsyncSession,
    presentation_id: int,
    speakers: Iterable[Mapping[str, Any]],
) -> list[Speaker]:
    """Create or update one speaker per diarization label.

    Runs inside the caller's transaction. Stats are replaced, metadata is
    merged; the (presentation, label) unique constraint absorbs races.
    """

    result = await session.execute(
        select(Speaker).where(Speaker.presentation_id == presentation_id)
    )
    existing = {speaker.ai_speaker_label: speaker for speaker in result.scalars()}

    table = Speaker.__table__
    insert = _dialect_insert(session)
    now = utcnow()
    labels: list[str] = []

    for data in speakers:
        label = data.get("ai_speaker_label")
        if not label:
            logger.warning(
                "Skipping diarization speaker without label for presentation %s",
                presentation_id,
            )
            continue

        segments = data.get("segments") or []
        prior = existing.get(label)
        metadata = dict(prior.speaker_metadata or {}) if prior is not None else {
            "createdFrom": "diarization"
        }
        metadata.update(data.get("metadata") or {})
        metadata["lastUpdated"] = now.isoformat()

        stmt = insert(table).values(
            {
                table.c.presentation_id: presentation_id,
                table.c.ai_speaker_label: label,
                table.c.total_duration_seconds: _speaking_time(segments),
                table.c.segment_count: len(segments),
                table.c.speaker_metadata: metadata,
                table.c.created_at: now,
                table.c.updated_at: now,
            }
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.presentation_id, table.c.ai_speaker_label],
            set_={
                table.c.total_duration_seconds: stmt.excluded.total_duration_seconds,
                table.c.segment_count: stmt.excluded.segment_count,
                table.c.speaker_metadata: stmt.excluded.speaker_metadata,
                table.c.updated_at: stmt.excluded.updated_at,
            },
        )
        await session.execute(stmt)
        labels.append(label)

    if not labels:
        return []

    refreshed = await session.execute(
        select(Speaker)
        .where(
            Speaker.presentation_id == presentation_id,
            Speaker.ai_speaker_label.in_(labels),
        )
        .order_by(Speaker.id)
        .execution_options(populate_existing=True)
    )
    processed = list(refreshed.scalars().all())
    logger.info("Processed %s speakers for presentation %s", len(processed), presentation_id)
    return processed


async def link_segments_to_speakers(
    session: AsyncSession,
    presentation_id: int,
    links: Iterable[tuple[int, str]],
) -> int:
    """Attribute segments to speakers by label; returns the rows updated.

    Links to unknown labels or to segments outside the presentation are
    skipped.
    """

    labels = await session.execute(
        select(Speaker.ai_speaker_label, Speaker.id).where(
            Speaker.presentation_id == presentation_id
        )
    )
    speaker_ids = {label: speaker_id for label, speaker_id in labels.all()}

    owned = await session.execute(
        select(TranscriptSegment.id)
        .join(Transcript, Transcript.id == TranscriptSegment.transcript_id)
        .where(Transcript.presentation_id == presentation_id)
    )
    owned_segments = set(owned.scalars().all())

    by_speaker: dict[int, list[int]] = defaultdict(list)
    for segment_id, label in links:
        speaker_id = speaker_ids.get(label)
        if speaker_id is None:
            logger.warning("Speaker not found for label %s", label)
            continue
        if segment_id not in owned_segments:
            continue
        by_speaker[speaker_id].append(segment_id)

    updated = 0
    for speaker_id, segment_ids in by_speaker.items():
        result = await session.execute(
            update(TranscriptSegment)
            .where(TranscriptSegment.id.in_(segment_ids))
            .values(speaker_id=speaker_id)
            .execution_options(synchronize_session=False)
        )
        updated += result.rowcount or 0

    logger.info("Linked %s segments to speakers for presentation %s", updated, presentation_id)
    return updated


def _percentage(part: float, whole: float) -> float:
    return round(part / whole * 100, 2) if whole > 0 else 0.0


class SpeakerMappingService:
    """Manual and suggested speaker to student mapping."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _record(speaker: Speaker, student_name: Optional[str] = None) -> SpeakerRecord:
        return SpeakerRecord.model_validate(speaker).model_copy(
            update={"student_name": student_name}
        )

    @staticmethod
    async def _speaker_or_404(session: AsyncSession, speaker_id: int) -> Speaker:
        speaker = await session.get(Speaker, speaker_id)
        if speaker is None:
            raise NotFoundError(f"Speaker {speaker_id} not found")
        return speaker

    async def map_to_student(self, speaker_id: int, student_id: int) -> SpeakerRecord:
        try:
            async with self._session_factory.begin() as session:
                speaker = await self._speaker_or_404(session, speaker_id)
                student = await session.get(User, student_id)
                if student is None:
                    raise NotFoundError(f"Student {student_id} not found")

                taken_by = await session.scalar(
                    select(Speaker.ai_speaker_label).where(
                        Speaker.presentation_id == speaker.presentation_id,
                        Speaker.student_id == student_id,
                        Speaker.id != speaker_id,
                    )
                )
                if taken_by is not None:
                    raise ConflictError(
                        f"Student {student_id} is already mapped to speaker {taken_by} "
                        f"in presentation {speaker.presentation_id}"
                    )

                speaker.student_id = student_id
                await session.flush()
                record = self._record(speaker, student.full_name)
        except IntegrityError as exc:
            raise ConflictError(
                f"Student {student_id} is already mapped in this presentation"
            ) from exc

        logger.info("Mapped speaker %s to student %s", speaker_id, student_id)
        return record

    async def unmap(self, speaker_id: int) -> SpeakerRecord:
        async with self._session_factory.begin() as session:
            speaker = await self._speaker_or_404(session, speaker_id)
            speaker.student_id = None
            await session.flush()
            return self._record(speaker)

    async def batch_map(self, mappings: Iterable[Mapping[str, int]]) -> dict[str, list[Any]]:
        """Apply each mapping on its own; failures do not undo successes."""

        results: dict[str, list[Any]] = {"success": [], "failed": []}
        for mapping in mappings:
            speaker_id = mapping["speaker_id"]
            student_id = mapping["student_id"]
            try:
                results["success"].append(await self.map_to_student(speaker_id, student_id))
            except PipelineError as exc:
                results["failed"].append(
                    {"speakerId": speaker_id, "studentId": student_id, "error": exc.detail}
                )
        return results

    async def list_by_presentation(
        self, presentation_id: int, mapped: Optional[bool] = None
    ) -> list[SpeakerRecord]:
        stmt = (
            select(Speaker, User.full_name)
            .outerjoin(User, User.id == Speaker.student_id)
            .where(Speaker.presentation_id == presentation_id)
            .order_by(Speaker.ai_speaker_label, Speaker.id)
        )
        if mapped is True:
            stmt = stmt.where(Speaker.is_mapped)
        elif mapped is False:
            stmt = stmt.where(~Speaker.is_mapped)

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return [self._record(speaker, name) for speaker, name in rows]

    async def get(self, speaker_id: int) -> SpeakerRecord:
        async with self._session_factory() as session:
            row = (
                await session.execute(
                    select(Speaker, User.full_name)
                    .outerjoin(User, User.id == Speaker.student_id)
                    .where(Speaker.id == speaker_id)
                )
            ).first()
        if row is None:
            raise NotFoundError(f"Speaker {speaker_id} not found")
        return self._record(row[0], row[1])

    async def suggest_mappings(self, presentation_id: int) -> list[dict[str, Any]]:
        """Pair unmapped speakers with available enrolled students, in order.

        No scoring is attempted; every suggestion has low confidence.
        """

        async with self._session_factory() as session:
            presentation = await session.get(Presentation, presentation_id)
            if presentation is None:
                raise NotFoundError(f"Presentation {presentation_id} not found")

            speakers = (
                await session.execute(
                    select(Speaker)
                    .where(
                        Speaker.presentation_id == presentation_id,
                        Speaker.student_id.is_(None),
                    )
                    .order_by(Speaker.id)
                )
            ).scalars().all()

            mapped_students = (
                select(Speaker.student_id)
                .where(
                    Speaker.presentation_id == presentation_id,
                    Speaker.student_id.is_not(None),
                )
                .scalar_subquery()
            )
            students = (
                await session.execute(
                    select(User)
                    .join(Enrollment, Enrollment.student_id == User.id)
                    .where(
                        Enrollment.course_id == presentation.course_id,
                        Enrollment.status == EnrollmentStatus.ENROLLED,
                        User.id.not_in(mapped_students),
                    )
                    .order_by(Enrollment.id)
                )
            ).scalars().all()

        suggestions = [
            {
                "speakerId": speaker.id,
                "aiSpeakerLabel": speaker.ai_speaker_label,
                "suggestedStudent": {
                    "userId": student.id,
                    "fullName": student.full_name,
                    "email": student.email,
                },
                "confidence": "low",
                "reason": "Enrolled in course",
            }
            for speaker, student in zip(speakers, students)
        ]
        logger.info(
            "Generated %s speaker-student mapping suggestions for presentation %s",
            len(suggestions),
            presentation_id,
        )
        return suggestions

    async def statistics(self, presentation_id: int) -> dict[str, Any]:
        speakers = await self.list_by_presentation(presentation_id)

        total = len(speakers)
        mapped = sum(1 for speaker in speakers if speaker.is_mapped)
        total_duration = sum(speaker.total_duration_seconds for speaker in speakers)

        return {
            "presentationId": presentation_id,
            "totalSpeakers": total,
            "mappedSpeakers": mapped,
            "unmappedSpeakers": total - mapped,
            "mappingProgress": _percentage(mapped, total),
            "totalDurationSeconds": total_duration,
            "totalSegments": sum(speaker.segment_count for speaker in speakers),
            "speakers": [
                {
                    "speakerId": speaker.id,
                    "aiSpeakerLabel": speaker.ai_speaker_label,
                    "studentName": speaker.student_name or "Unmapped",
                    "isMapped": speaker.is_mapped,
                    "totalDurationSeconds": speaker.total_duration_seconds,
                    "segmentCount": speaker.segment_count,
                    "percentage": _percentage(speaker.total_duration_seconds, total_duration),
                }
                for speaker in speakers
            ],
        }

    async def refresh_stats(self, speaker_id: int) -> SpeakerRecord:
        """Recompute duration and segment count from linked segments."""

        async with self._session_factory.begin() as session:
            speaker = await self._speaker_or_404(session, speaker_id)
            duration, count = (
                await session.execute(
                    select(
                        func.coalesce(
                            func.sum(
                                TranscriptSegment.end_timestamp
                                - TranscriptSegment.start_timestamp
                            ),
                            0.0,
                        ),
                        func.count(TranscriptSegment.id),
                    ).where(TranscriptSegment.speaker_id == speaker_id)
                )
            ).one()
            speaker.total_duration_seconds = float(duration)
            speaker.segment_count = count
            await session.flush()
            return self._record(speaker)

    async def student_summary(self, student_id: int) -> dict[str, Any]:
        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(Speaker, Presentation.title, Presentation.created_at)
                    .join(Presentation, Presentation.id == Speaker.presentation_id)
                    .where(Speaker.student_id == student_id)
                    .order_by(Presentation.created_at.desc())
                )
            ).all()

        presentations = {speaker.presentation_id for speaker, _, _ in rows}
        total_duration = sum(speaker.total_duration_seconds for speaker, _, _ in rows)
        return {
            "studentId": student_id,
            "totalPresentations": len(presentations),
            "totalSpeakingTimeSeconds": total_duration,
            "totalSegments": sum(speaker.segment_count for speaker, _, _ in rows),
            "averageSpeakingTimePerPresentation": (
                total_duration / len(presentations) if presentations else 0.0
            ),
            "presentations": [
                {
                    "presentationId": speaker.presentation_id,
                    "title": title,
                    "aiSpeakerLabel": speaker.ai_speaker_label,
                    "durationSeconds": speaker.total_duration_seconds,
                    "segmentCount": speaker.segment_count,
                    "date": created_at,
                }
                for speaker, title, created_at in rows
            ],
        }

    async def delete(self, speaker_id: int) -> None:
        """Delete a speaker; its segments stay, detached."""

        async with self._session_factory.begin() as session:
            speaker = await self._speaker_or_404(session, speaker_id)
            await session.execute(
                update(TranscriptSegment)
                .where(TranscriptSegment.speaker_id == speaker_id)
                .values(speaker_id=None)
                .execution_options(synchronize_session=False)
            )
            await session.delete(speaker)
        logger.info("Deleted speaker %s", speaker_id)


__all__ = [
    "SpeakerMappingService",
    "upsert_speakers_from_diarization",
    "link_segments_to_speakers",
]
