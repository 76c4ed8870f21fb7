"""Read-only aggregate queries the calculators and services share.

Lessons belong to a course through their module; soft-deleted lessons are
excluded everywhere.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from progress_engine.models.assessment import Assessment, AssessmentAttempt
from progress_engine.models.course_module import CourseModule
from progress_engine.models.enrollment import Enrollment
from progress_engine.models.lesson import Lesson
from progress_engine.models.lesson_progress import LessonProgress
from progress_engine.progress.schemas import AssessmentStats


def _course_lessons(course_id: UUID):
    return (
        select(Lesson.lesson_id)
        .join(CourseModule, Lesson.module_id == CourseModule.module_id)
        .where(CourseModule.course_id == course_id, Lesson.deleted_at.is_(None))
    )


async def count_lessons(db: AsyncSession, course_id: UUID) -> int:
    stmt = select(func.count()).select_from(_course_lessons(course_id).subquery())
    return await db.scalar(stmt) or 0


async def count_completed_lessons(db: AsyncSession, enrollment: Enrollment) -> int:
    stmt = select(func.count()).where(
        LessonProgress.enrollment_id == enrollment.enrollment_id,
        LessonProgress.is_completed.is_(True),
        LessonProgress.lesson_id.in_(_course_lessons(enrollment.course_id)),
    )
    return await db.scalar(stmt) or 0


async def lesson_weights(
    db: AsyncSession, enrollment: Enrollment
) -> list[tuple[int, bool]]:
    """(duration_mins, is_completed) for every live lesson in the course."""
    stmt = (
        select(Lesson.duration_mins, func.coalesce(LessonProgress.is_completed, False))
        .join(CourseModule, Lesson.module_id == CourseModule.module_id)
        .outerjoin(
            LessonProgress,
            (LessonProgress.lesson_id == Lesson.lesson_id)
            & (LessonProgress.enrollment_id == enrollment.enrollment_id),
        )
        .where(CourseModule.course_id == enrollment.course_id, Lesson.deleted_at.is_(None))
    )
    result = await db.execute(stmt)
    return [(duration or 0, bool(done)) for duration, done in result.all()]


async def total_time_spent(db: AsyncSession, enrollment_id: UUID) -> int:
    stmt = select(func.coalesce(func.sum(LessonProgress.time_spent_secs), 0)).where(
        LessonProgress.enrollment_id == enrollment_id,
    )
    return int(await db.scalar(stmt) or 0)


async def get_assessment_stats(db: AsyncSession, enrollment: Enrollment) -> AssessmentStats:
    assessments = (
        await db.execute(
            select(Assessment.assessment_id, Assessment.is_required).where(
                Assessment.course_id == enrollment.course_id,
                Assessment.is_published.is_(True),
            )
        )
    ).all()
    if not assessments:
        return AssessmentStats.empty()

    passed_ids = await passed_assessment_ids(
        db, enrollment.user_id, [a.assessment_id for a in assessments]
    )
    required = [a.assessment_id for a in assessments if a.is_required]
    return AssessmentStats(
        total=len(assessments),
        passed=len(passed_ids),
        pending=len(assessments) - len(passed_ids),
        required_total=len(required),
        required_passed=sum(1 for a in required if a in passed_ids),
    )


async def required_assessment_ids(db: AsyncSession, course_id: UUID) -> list[UUID]:
    stmt = select(Assessment.assessment_id).where(
        Assessment.course_id == course_id,
        Assessment.is_published.is_(True),
        Assessment.is_required.is_(True),
    )
    return list((await db.scalars(stmt)).all())


async def passed_assessment_ids(
    db: AsyncSession, user_id: UUID, assessment_ids: list[UUID]
) -> set[UUID]:
    if not assessment_ids:
        return set()
    stmt = select(distinct(AssessmentAttempt.assessment_id)).where(
        AssessmentAttempt.user_id == user_id,
        AssessmentAttempt.assessment_id.in_(assessment_ids),
        AssessmentAttempt.passed.is_(True),
    )
    return set((await db.scalars(stmt)).all())
