"""SQLAlchemy models for presentations and their uploaded media."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from app.models.base import Base, enum_values, utcnow


class PresentationStatus(str, Enum):
    """Lifecycle of a submitted presentation."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Presentation(Base):
    """Aggregate root for everything the review pipeline produces."""

    __tablename__ = "presentations"

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    course_id = Column(
        Integer,
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title = Column(String(255), nullable=False)
    status = Column(
        SqlEnum(PresentationStatus, name="presentation_status", values_callable=enum_values),
        nullable=False,
        default=PresentationStatus.DRAFT,
    )
    submitted_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    course = relationship("Course")
    audio_record = relationship(
        "AudioRecord",
        back_populates="presentation",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    slides = relationship(
        "Slide",
        back_populates="presentation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Slide.slide_number",
    )
    jobs = relationship("Job", cascade="all, delete-orphan", passive_deletes=True)
    speakers = relationship("Speaker", cascade="all, delete-orphan", passive_deletes=True)
    transcript = relationship(
        "Transcript",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    analysis_results = relationship(
        "AnalysisResult",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    feedback = relationship("Feedback", cascade="all, delete-orphan", passive_deletes=True)


class AudioRecord(Base):
    """Recorded audio for a presentation; the blob itself lives in object storage."""

    __tablename__ = "audio_records"

    id = Column(Integer, primary_key=True, index=True)
    presentation_id = Column(
        Integer,
        ForeignKey("presentations.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    file_path = Column(Text, nullable=False)
    file_format = Column(String(20), nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    uploaded_at = Column(DateTime, nullable=False, default=utcnow)

    presentation = relationship("Presentation", back_populates="audio_record")


class Slide(Base):
    """One uploaded slide deck file; OCR text is filled in by the slides worker."""

    __tablename__ = "slides"

    id = Column(Integer, primary_key=True, index=True)
    presentation_id = Column(
        Integer,
        ForeignKey("presentations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    slide_number = Column(Integer, nullable=False)
    file_path = Column(Text, nullable=False)
    file_name = Column(Text, nullable=True)
    file_size_bytes = Column(BigInteger, nullable=True)
    extracted_text = Column(Text, nullable=True)
    uploaded_at = Column(DateTime, nullable=False, default=utcnow)

    presentation = relationship("Presentation", back_populates="slides")


__all__ = ["Presentation", "PresentationStatus", "AudioRecord", "Slide"]
