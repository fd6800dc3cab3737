"""SQLAlchemy model for report feedback items."""

from __future__ import annotations

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text

from app.models.base import Base, utcnow


class Feedback(Base):
    """Append-only feedback item produced by the report worker."""

    __tablename__ = "feedback"

    id = Column(Integer, primary_key=True, index=True)
    presentation_id = Column(
        Integer,
        ForeignKey("presentations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    segment_id = Column(
        Integer,
        ForeignKey("transcript_segments.id", ondelete="SET NULL"),
        nullable=True,
    )
    job_id = Column(
        Integer,
        ForeignKey("jobs.id", ondelete="SET NULL"),
        nullable=True,
    )
    level = Column(String(20), nullable=False, default="presentation")
    category = Column(String(50), nullable=True)
    severity = Column(String(20), nullable=True)
    message = Column(Text, nullable=False)
    suggestions = Column(JSON, nullable=True)
    evidence = Column(JSON, nullable=True)
    generated_at = Column(DateTime, nullable=False, default=utcnow)


__all__ = ["Feedback"]
