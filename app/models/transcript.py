"""SQLAlchemy models for transcripts and their timed segments."""

from __future__ import annotations

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from app.models.base import Base, utcnow


class Transcript(Base):
    """ASR output for a presentation; one per presentation, replaced on re-run."""

    __tablename__ = "transcripts"

    id = Column(Integer, primary_key=True, index=True)
    presentation_id = Column(
        Integer,
        ForeignKey("presentations.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    audio_id = Column(
        Integer,
        ForeignKey("audio_records.id", ondelete="SET NULL"),
        nullable=True,
    )
    full_text = Column(Text, nullable=True)
    language = Column(String(10), nullable=True)
    processing_status = Column(String(20), nullable=False, default="completed")
    generated_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    segments = relationship(
        "TranscriptSegment",
        back_populates="transcript",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="TranscriptSegment.order",
    )


class TranscriptSegment(Base):
    """Timed utterance, attributed to a speaker once diarization links it."""

    __tablename__ = "transcript_segments"

    id = Column(Integer, primary_key=True, index=True)
    transcript_id = Column(
        Integer,
        ForeignKey("transcripts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    speaker_id = Column(
        Integer,
        ForeignKey("speakers.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    order = Column("segment_order", Integer, key="order", nullable=False)
    start_timestamp = Column(Float, nullable=False)
    end_timestamp = Column(Float, nullable=False)
    text = Column(Text, nullable=False)
    confidence = Column(Float, nullable=True)

    transcript = relationship("Transcript", back_populates="segments")
    speaker = relationship("Speaker", back_populates="segments")


__all__ = ["Transcript", "TranscriptSegment"]
