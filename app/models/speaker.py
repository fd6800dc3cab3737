"""SQLAlchemy model for AI-detected speakers within a presentation."""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import relationship

from app.models.base import Base, utcnow


class Speaker(Base):
    """Voice cluster emitted by diarization, optionally mapped to a student."""

    __tablename__ = "speakers"

    id = Column(Integer, primary_key=True, index=True)
    presentation_id = Column(
        Integer,
        ForeignKey("presentations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    ai_speaker_label = Column(String(50), nullable=False)
    student_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    total_duration_seconds = Column(Float, nullable=False, default=0.0)
    segment_count = Column(Integer, nullable=False, default=0)
    speaker_metadata = Column("metadata", JSON, key="speaker_metadata", nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "presentation_id",
            "ai_speaker_label",
            name="uq_speakers_presentation_label",
        ),
        UniqueConstraint(
            "presentation_id",
            "student_id",
            name="uq_speakers_presentation_student",
        ),
    )

    student = relationship("User")
    segments = relationship(
        "TranscriptSegment",
        back_populates="speaker",
        passive_deletes=True,
        order_by="TranscriptSegment.order",
    )

    @hybrid_property
    def is_mapped(self) -> bool:
        return self.student_id is not None

    @is_mapped.expression
    def is_mapped(cls):
        return cls.student_id.is_not(None)


__all__ = ["Speaker"]
