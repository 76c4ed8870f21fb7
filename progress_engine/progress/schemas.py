"""Progress tracking schemas (Pydantic V2)."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from progress_engine.models.lesson_progress import LessonProgress


class ProgressUpdate(BaseModel):
    """One progress report for a lesson.

    Carries either paging fields (documents) or media fields (video/audio),
    plus the seconds spent since the previous report.
    """

    model_config = ConfigDict(frozen=True)

    enrollment_id: UUID
    lesson_id: UUID
    time_spent_secs: int = Field(default=0, ge=0)

    current_page: int | None = Field(default=None, ge=1)
    total_pages: int | None = Field(default=None, ge=1)
    pagination_metadata: dict[str, Any] | None = None

    position_secs: int | None = Field(default=None, ge=0)
    duration_secs: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _one_kind(self) -> ProgressUpdate:
        if self.is_pagination and self.is_media:
            raise ValueError("progress update cannot carry both page and media fields")
        return self

    @property
    def is_pagination(self) -> bool:
        return self.current_page is not None

    @property
    def is_media(self) -> bool:
        return self.position_secs is not None


class AssessmentStats(BaseModel):
    """Counts over a course's published assessments for one learner."""

    model_config = ConfigDict(frozen=True)

    total: int = 0
    passed: int = 0
    pending: int = 0
    required_total: int = 0
    required_passed: int = 0

    @classmethod
    def empty(cls) -> AssessmentStats:
        return cls()

    @property
    def all_required_passed(self) -> bool:
        return self.required_total == 0 or self.required_passed >= self.required_total

    @property
    def required_pending(self) -> int:
        return max(0, self.required_total - self.required_passed)


class ProgressResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    progress: LessonProgress
    course_percentage: float
    lesson_completed: bool
    course_completed: bool
    assessment_stats: AssessmentStats | None = None
    total_time_spent_secs: int = 0
