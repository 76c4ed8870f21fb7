"""Prerequisite evaluators for courses inside a learning path.

An evaluator decides whether a course in a path may be unlocked for one
path enrollment. Position-based evaluators read the path's course order
and the enrollment's per-course progress rows; "completed" always means
the path course-progress row, not the underlying course enrollment.
"""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from progress_engine.exceptions import UnknownStrategyError
from progress_engine.models.course import Course
from progress_engine.models.enrollment import Enrollment
from progress_engine.models.enums import CourseProgressState
from progress_engine.models.learning_path import LearningPath
from progress_engine.models.path_enrollment import LearningPathEnrollment
from progress_engine.paths import queries
from progress_engine.paths.schemas import MissingPrerequisite, PrerequisiteCheckResult

COURSE_NOT_IN_PATH = "Course not found in path"


class PrerequisiteEvaluator(Protocol):
    name: str

    async def evaluate(
        self,
        db: AsyncSession,
        path_enrollment: LearningPathEnrollment,
        course_id: UUID,
    ) -> PrerequisiteCheckResult: ...


class NoPrerequisiteEvaluator:
    name = "none"

    async def evaluate(
        self,
        db: AsyncSession,
        path_enrollment: LearningPathEnrollment,
        course_id: UUID,
    ) -> PrerequisiteCheckResult:
        return PrerequisiteCheckResult.met()


async def _completed_course_ids(
    db: AsyncSession, path_enrollment: LearningPathEnrollment
) -> set[UUID]:
    rows = await queries.get_course_progress_rows(
        db, path_enrollment.path_enrollment_id, state=CourseProgressState.COMPLETED
    )
    return {row.course_id for row in rows}


class _PositionBasedEvaluator:
    """Shared lookup: the target's position and the courses before it."""

    async def _predecessors(
        self,
        db: AsyncSession,
        path_enrollment: LearningPathEnrollment,
        course_id: UUID,
    ) -> tuple[int, list[tuple[int, Course]]] | None:
        members = await queries.get_path_courses(db, path_enrollment.learning_path_id)
        position = next(
            (m.position for m, _ in members if m.course_id == course_id), None
        )
        if position is None:
            return None
        before = [(m.position, course) for m, course in members if m.position < position]
        return position, before


class ImmediatePreviousEvaluator(_PositionBasedEvaluator):
    name = "immediate_previous"

    async def evaluate(
        self,
        db: AsyncSession,
        path_enrollment: LearningPathEnrollment,
        course_id: UUID,
    ) -> PrerequisiteCheckResult:
        found = await self._predecessors(db, path_enrollment, course_id)
        if found is None:
            return PrerequisiteCheckResult.not_met([], COURSE_NOT_IN_PATH)
        position, before = found
        if position == 1:
            return PrerequisiteCheckResult.met()

        previous = next((c for pos, c in before if pos == position - 1), None)
        # A gap in positions leaves nothing to wait for
        if previous is None:
            return PrerequisiteCheckResult.met()

        if previous.course_id in await _completed_course_ids(db, path_enrollment):
            return PrerequisiteCheckResult.met()
        return PrerequisiteCheckResult.not_met(
            [MissingPrerequisite(id=previous.course_id, title=previous.title)],
            "Previous course must be completed",
        )


class SequentialEvaluator(_PositionBasedEvaluator):
    name = "sequential"

    async def evaluate(
        self,
        db: AsyncSession,
        path_enrollment: LearningPathEnrollment,
        course_id: UUID,
    ) -> PrerequisiteCheckResult:
        found = await self._predecessors(db, path_enrollment, course_id)
        if found is None:
            return PrerequisiteCheckResult.not_met([], COURSE_NOT_IN_PATH)
        position, before = found
        if position == 1:
            return PrerequisiteCheckResult.met()

        completed = await _completed_course_ids(db, path_enrollment)
        missing = [
            MissingPrerequisite(id=course.course_id, title=course.title)
            for _, course in before
            if course.course_id not in completed
        ]
        if not missing:
            return PrerequisiteCheckResult.met()
        return PrerequisiteCheckResult.not_met(missing, "Previous courses must be completed")


class PricingAwareEvaluator:
    """Gates paid courses behind a confirmed payment in commercial mode.

    A payment counts as confirmed when the learner's enrollment in that
    course carries a ``payment_id``.
    """

    name = "pricing_aware"

    def __init__(self, lms_mode: str):
        self.lms_mode = lms_mode

    async def evaluate(
        self,
        db: AsyncSession,
        path_enrollment: LearningPathEnrollment,
        course_id: UUID,
    ) -> PrerequisiteCheckResult:
        if self.lms_mode == "internal":
            return PrerequisiteCheckResult.met()

        course = await db.get(Course, course_id)
        if course is None:
            return PrerequisiteCheckResult.not_met([], COURSE_NOT_IN_PATH)
        if not course.is_paid:
            return PrerequisiteCheckResult.met()

        stmt = select(Enrollment.payment_id).where(
            Enrollment.user_id == path_enrollment.user_id,
            Enrollment.course_id == course_id,
        )
        payment_id = (await db.execute(stmt)).scalar_one_or_none()
        if payment_id is not None:
            return PrerequisiteCheckResult.met()
        return PrerequisiteCheckResult.not_met([], "payment required")


class EvaluatorRegistry:
    """Name to evaluator map, resolved per learning path."""

    def __init__(self, evaluators: list[PrerequisiteEvaluator], default_mode: str):
        self._evaluators = {e.name: e for e in evaluators}
        # Fail at startup rather than on the first unlock
        self.get(default_mode)
        self.default_mode = default_mode

    @property
    def names(self) -> list[str]:
        return sorted(self._evaluators)

    def get(self, name: str) -> PrerequisiteEvaluator:
        try:
            return self._evaluators[name]
        except KeyError:
            raise UnknownStrategyError("prerequisite evaluator", name, self.names) from None

    def for_path(self, path: LearningPath) -> PrerequisiteEvaluator:
        return self.get(path.prerequisite_mode or self.default_mode)


def build_evaluators(lms_mode: str, default_mode: str) -> EvaluatorRegistry:
    return EvaluatorRegistry(
        [
            NoPrerequisiteEvaluator(),
            ImmediatePreviousEvaluator(),
            SequentialEvaluator(),
            PricingAwareEvaluator(lms_mode),
        ],
        default_mode=default_mode,
    )
