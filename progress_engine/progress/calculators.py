"""Pluggable course progress calculators.

Every calculator answers two questions about a course enrollment: how far
along it is (an exact 0..100 ``Decimal``) and whether it is complete.
They only read; persisting the result is the tracking service's job.

One calculator is active system-wide, chosen by name from
``Settings.progress_calculator``.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from progress_engine.exceptions import UnknownStrategyError
from progress_engine.models.enrollment import Enrollment
from progress_engine.percent import HUNDRED, ZERO, ratio_percent
from progress_engine.progress import queries


class ProgressCalculator(Protocol):
    name: str

    async def calculate(self, db: AsyncSession, enrollment: Enrollment) -> Decimal: ...

    async def is_complete(self, db: AsyncSession, enrollment: Enrollment) -> bool: ...


class LessonBasedCalculator:
    """Completed lessons over live lessons. No lessons means 0%, never complete."""

    name = "lesson_based"

    async def calculate(self, db: AsyncSession, enrollment: Enrollment) -> Decimal:
        total = await queries.count_lessons(db, enrollment.course_id)
        completed = await queries.count_completed_lessons(db, enrollment)
        return ratio_percent(completed, total)

    async def is_complete(self, db: AsyncSession, enrollment: Enrollment) -> bool:
        total = await queries.count_lessons(db, enrollment.course_id)
        if total == 0:
            return False
        completed = await queries.count_completed_lessons(db, enrollment)
        return completed >= total


class WeightedCalculator:
    """Like lesson-based, but each lesson weighs its estimated minutes.

    When no lesson has a duration the weights are meaningless and the
    calculator counts lessons instead.
    """

    name = "weighted"

    def __init__(self) -> None:
        self._fallback = LessonBasedCalculator()

    async def calculate(self, db: AsyncSession, enrollment: Enrollment) -> Decimal:
        weights = await queries.lesson_weights(db, enrollment)
        total_weight = sum(minutes for minutes, _ in weights)
        if total_weight == 0:
            return await self._fallback.calculate(db, enrollment)
        earned = sum(minutes for minutes, done in weights if done)
        return ratio_percent(earned, total_weight)

    async def is_complete(self, db: AsyncSession, enrollment: Enrollment) -> bool:
        return await self.calculate(db, enrollment) >= HUNDRED


class AssessmentInclusiveCalculator:
    """Blend of lesson completion (70%) and required assessments passed (30%).

    A course without required assessments gets the full assessment share,
    so a course with no lessons and no assessments reads 30.0.
    """

    name = "assessment_inclusive"
    lesson_weight = Decimal("0.7")
    assessment_weight = Decimal("0.3")

    async def calculate(self, db: AsyncSession, enrollment: Enrollment) -> Decimal:
        lesson_pct = await self._lesson_pct(db, enrollment)
        assessment_pct = await self._assessment_pct(db, enrollment)
        return lesson_pct * self.lesson_weight + assessment_pct * self.assessment_weight

    async def is_complete(self, db: AsyncSession, enrollment: Enrollment) -> bool:
        total = await queries.count_lessons(db, enrollment.course_id)
        if total == 0:
            return False
        if await queries.count_completed_lessons(db, enrollment) < total:
            return False
        required = await queries.required_assessment_ids(db, enrollment.course_id)
        if not required:
            return True
        passed = await queries.passed_assessment_ids(db, enrollment.user_id, required)
        return set(required) <= passed

    async def _lesson_pct(self, db: AsyncSession, enrollment: Enrollment) -> Decimal:
        total = await queries.count_lessons(db, enrollment.course_id)
        if total == 0:
            return ZERO
        completed = await queries.count_completed_lessons(db, enrollment)
        return ratio_percent(completed, total)

    async def _assessment_pct(self, db: AsyncSession, enrollment: Enrollment) -> Decimal:
        required = await queries.required_assessment_ids(db, enrollment.course_id)
        if not required:
            return HUNDRED
        passed = await queries.passed_assessment_ids(db, enrollment.user_id, required)
        return ratio_percent(len(passed), len(required))


CALCULATORS: dict[str, type[ProgressCalculator]] = {
    LessonBasedCalculator.name: LessonBasedCalculator,
    WeightedCalculator.name: WeightedCalculator,
    AssessmentInclusiveCalculator.name: AssessmentInclusiveCalculator,
}


def get_calculator(name: str) -> ProgressCalculator:
    try:
        return CALCULATORS[name]()
    except KeyError:
        raise UnknownStrategyError("progress calculator", name, list(CALCULATORS)) from None
