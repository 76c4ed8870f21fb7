import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from shared.database.postgres import Base


class LessonProgress(Base):
    __tablename__ = "lesson_progress"

    progress_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    enrollment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("enrollments.enrollment_id", ondelete="CASCADE"),
        nullable=False,
    )
    lesson_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("lessons.lesson_id", ondelete="CASCADE"),
        nullable=False,
    )
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    time_spent_secs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Paged content (documents, slide decks)
    current_page: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_pages: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Monotonic: only ever raised, never lowered
    highest_page_reached: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pagination_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    # Timed media (video, audio)
    media_position_secs: Mapped[int | None] = mapped_column(Integer, nullable=True)
    media_duration_secs: Mapped[int | None] = mapped_column(Integer, nullable=True)
    media_progress_pct: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    last_viewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        UniqueConstraint(
            "enrollment_id", "lesson_id", name="uq_lesson_progress_enrollment_lesson"
        ),
        Index("ix_lesson_progress_lesson_id", "lesson_id"),
    )
