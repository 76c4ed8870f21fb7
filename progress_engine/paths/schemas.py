"""Learning path schemas (Pydantic V2)."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from progress_engine.models.enums import CourseProgressState


class MissingPrerequisite(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    title: str


class PrerequisiteCheckResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_met: bool
    missing_prerequisites: list[MissingPrerequisite] = Field(default_factory=list)
    reason: str | None = None

    @classmethod
    def met(cls) -> PrerequisiteCheckResult:
        return cls(is_met=True)

    @classmethod
    def not_met(
        cls, missing: list[MissingPrerequisite], reason: str
    ) -> PrerequisiteCheckResult:
        return cls(is_met=False, missing_prerequisites=missing, reason=reason)

    @property
    def missing_titles(self) -> str:
        return ", ".join(m.title for m in self.missing_prerequisites)


class CourseProgressItem(BaseModel):
    course_id: UUID
    course_title: str
    state: CourseProgressState
    position: int
    is_required: bool
    completion_pct: int = 0
    min_required_pct: int | None = None
    course_enrollment_id: UUID | None = None
    unlocked_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


class PathProgressResult(BaseModel):
    path_enrollment_id: UUID
    overall_pct: int
    total_courses: int
    completed_courses: int
    in_progress_courses: int
    locked_courses: int
    available_courses: int
    courses: list[CourseProgressItem]
    is_completed: bool
    required_courses: int = 0
    completed_required_courses: int = 0
    required_pct: float | None = None

    def next_course(self) -> CourseProgressItem | None:
        """First in-progress course, else the first available one."""
        for state in (CourseProgressState.IN_PROGRESS, CourseProgressState.AVAILABLE):
            for item in self.courses:
                if item.state == state:
                    return item
        return None
