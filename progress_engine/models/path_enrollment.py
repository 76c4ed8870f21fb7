import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    SmallInteger,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from shared.database.postgres import Base

from .enums import (
    CourseProgressState,
    PathEnrollmentState,
    course_progress_state_enum,
    path_enrollment_state_enum,
)


class LearningPathEnrollment(Base):
    __tablename__ = "learning_path_enrollments"

    path_enrollment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    # Soft reference, users live in the identity service
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    learning_path_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("learning_paths.learning_path_id", ondelete="CASCADE"),
        nullable=False,
    )
    state: Mapped[PathEnrollmentState] = mapped_column(
        path_enrollment_state_enum, nullable=False, default=PathEnrollmentState.ACTIVE
    )
    progress_pct: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    enrolled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    dropped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    drop_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "user_id", "learning_path_id", name="uq_learning_path_enrollments_user_path"
        ),
        Index("ix_learning_path_enrollments_state", "state"),
    )


class LearningPathCourseProgress(Base):
    """Per path enrollment unlock/completion state of one course."""

    __tablename__ = "learning_path_course_progress"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    path_enrollment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("learning_path_enrollments.path_enrollment_id", ondelete="CASCADE"),
        nullable=False,
    )
    course_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("courses.course_id", ondelete="CASCADE"),
        nullable=False,
    )
    # Copied from learning_path_courses.position when the row is created
    position: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    state: Mapped[CourseProgressState] = mapped_column(
        course_progress_state_enum, nullable=False, default=CourseProgressState.LOCKED
    )
    # Set once the underlying course enrollment exists
    course_enrollment_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("enrollments.enrollment_id", ondelete="SET NULL"),
        nullable=True,
    )
    unlocked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "path_enrollment_id", "course_id", name="uq_learning_path_course_progress_enrollment_course"
        ),
        Index("ix_learning_path_course_progress_course_enrollment_id", "course_enrollment_id"),
    )
