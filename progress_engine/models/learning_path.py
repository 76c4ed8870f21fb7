import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
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


class LearningPath(Base):
    __tablename__ = "learning_paths"

    learning_path_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Evaluator name; NULL falls back to the configured default
    prerequisite_mode: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )


class LearningPathCourse(Base):
    """Ordered membership of a course in a learning path."""

    __tablename__ = "learning_path_courses"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    learning_path_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("learning_paths.learning_path_id", ondelete="CASCADE"),
        nullable=False,
    )
    course_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("courses.course_id", ondelete="CASCADE"),
        nullable=False,
    )
    # 1-based
    position: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    min_completion_pct: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Free-form conditions attached by authors: [{"type": ..., ...}]
    prerequisites: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        UniqueConstraint("learning_path_id", "course_id", name="uq_learning_path_courses_path_course"),
        UniqueConstraint(
            "learning_path_id", "position", name="uq_learning_path_courses_path_position"
        ),
        Index("ix_learning_path_courses_course_id", "course_id"),
    )
