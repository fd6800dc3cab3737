"""SQLAlchemy models for the presentation review pipeline."""

from .base import Base
from .analysis import (  # noqa: F401
    AlignmentCheck,
    AnalysisResult,
    AnalysisType,
    ContentRelevance,
    SegmentAnalysis,
    SemanticSimilarity,
)
from .course import Course, Enrollment, EnrollmentStatus  # noqa: F401
from .feedback import Feedback  # noqa: F401
from .job import Job, JobStatus, JobType  # noqa: F401
from .presentation import (  # noqa: F401
    AudioRecord,
    Presentation,
    PresentationStatus,
    Slide,
)
from .speaker import Speaker  # noqa: F401
from .transcript import Transcript, TranscriptSegment  # noqa: F401
from .user import User, UserRole  # noqa: F401

__all__ = [
    "Base",
    "User",
    "UserRole",
    "Course",
    "Enrollment",
    "EnrollmentStatus",
    "Presentation",
    "PresentationStatus",
    "AudioRecord",
    "Slide",
    "Job",
    "JobType",
    "JobStatus",
    "Speaker",
    "Transcript",
    "TranscriptSegment",
    "SegmentAnalysis",
    "ContentRelevance",
    "SemanticSimilarity",
    "AlignmentCheck",
    "AnalysisResult",
    "AnalysisType",
    "Feedback",
]
