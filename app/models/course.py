"""SQLAlchemy models for courses and student enrollments."""

from __future__ import annotations

from enum import Enum

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.models.base import Base, enum_values, utcnow


class EnrollmentStatus(str, Enum):
    """Lifecycle of a student's enrollment in a course."""

    ENROLLED = "enrolled"
    DROPPED = "dropped"
    COMPLETED = "completed"


class Course(Base):
    __tablename__ = "courses"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, nullable=False)
    title = Column(String(255), nullable=False)

    enrollments = relationship(
        "Enrollment",
        back_populates="course",
        cascade="all, delete-orphan",
        order_by="Enrollment.id",
    )


class Enrollment(Base):
    """Association between a student and a course."""

    __tablename__ = "enrollments"

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
    status = Column(
        SqlEnum(EnrollmentStatus, name="enrollment_status", values_callable=enum_values),
        nullable=False,
        default=EnrollmentStatus.ENROLLED,
    )
    enrolled_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "student_id",
            "course_id",
            name="uq_enrollments_student_course",
        ),
    )

    student = relationship("User", back_populates="enrollments")
    course = relationship("Course", back_populates="enrollments")


__all__ = ["Course", "Enrollment", "EnrollmentStatus"]
