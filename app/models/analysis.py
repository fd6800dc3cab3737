"""SQLAlchemy models for per-segment analysis and presentation-level results."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum as SqlEnum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.models.base import Base, enum_values, utcnow


class AnalysisType(str, Enum):
    """Kinds of presentation-level results; one row per kind is kept."""

    CONTENT = "content"
    SUMMARY = "summary"


class SegmentAnalysis(Base):
    __tablename__ = "segment_analyses"

    id = Column(Integer, primary_key=True, index=True)
    segment_id = Column(
        Integer,
        ForeignKey("transcript_segments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    job_id = Column(
        Integer,
        ForeignKey("jobs.id", ondelete="SET NULL"),
        nullable=True,
    )
    analysis_type = Column(String(50), nullable=False, default="content")
    score = Column(Float, nullable=True)
    issues = Column(JSON, nullable=True)
    analyzed_at = Column(DateTime, nullable=False, default=utcnow)

    relevance = relationship(
        "ContentRelevance",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    similarity = relationship(
        "SemanticSimilarity",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    alignment = relationship(
        "AlignmentCheck",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class ContentRelevance(Base):
    __tablename__ = "content_relevance"

    id = Column(Integer, primary_key=True, index=True)
    segment_analysis_id = Column(
        Integer,
        ForeignKey("segment_analyses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    relevance_score = Column(Float, nullable=False)
    details = Column(JSON, nullable=True)


class SemanticSimilarity(Base):
    __tablename__ = "semantic_similarity"

    id = Column(Integer, primary_key=True, index=True)
    segment_analysis_id = Column(
        Integer,
        ForeignKey("segment_analyses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    similarity_score = Column(Float, nullable=False)
    details = Column(JSON, nullable=True)


class AlignmentCheck(Base):
    """Whether a segment matches the slide shown while it was spoken."""

    __tablename__ = "alignment_checks"

    id = Column(Integer, primary_key=True, index=True)
    segment_analysis_id = Column(
        Integer,
        ForeignKey("segment_analyses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    slide_id = Column(
        Integer,
        ForeignKey("slides.id", ondelete="SET NULL"),
        nullable=True,
    )
    alignment_score = Column(Float, nullable=False)
    is_aligned = Column(Boolean, nullable=True)
    details = Column(JSON, nullable=True)


class AnalysisResult(Base):
    """Presentation-level result; replaced wholesale on each completion."""

    __tablename__ = "analysis_results"

    id = Column(Integer, primary_key=True, index=True)
    presentation_id = Column(
        Integer,
        ForeignKey("presentations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    job_id = Column(
        Integer,
        ForeignKey("jobs.id", ondelete="SET NULL"),
        nullable=True,
    )
    analysis_type = Column(
        SqlEnum(AnalysisType, name="analysis_type", values_callable=enum_values),
        nullable=False,
    )
    overall_score = Column(Float, nullable=True)
    detailed_scores = Column(JSON, nullable=True)
    insights = Column(Text, nullable=True)
    analyzed_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "presentation_id",
            "analysis_type",
            name="uq_analysis_results_presentation_type",
        ),
    )


__all__ = [
    "AnalysisType",
    "SegmentAnalysis",
    "ContentRelevance",
    "SemanticSimilarity",
    "AlignmentCheck",
    "AnalysisResult",
]
