from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from progress_engine.models.course import Course
from progress_engine.models.enums import CourseProgressState
from progress_engine.models.learning_path import LearningPathCourse
from progress_engine.models.path_enrollment import LearningPathCourseProgress


async def get_path_courses(
    db: AsyncSession, learning_path_id: UUID
) -> list[tuple[LearningPathCourse, Course]]:
    """Path memberships with their course, in position order."""
    stmt = (
        select(LearningPathCourse, Course)
        .join(Course, Course.course_id == LearningPathCourse.course_id)
        .where(LearningPathCourse.learning_path_id == learning_path_id)
        .order_by(LearningPathCourse.position)
    )
    result = await db.execute(stmt)
    return [(membership, course) for membership, course in result.all()]


async def get_path_course(
    db: AsyncSession, learning_path_id: UUID, course_id: UUID
) -> LearningPathCourse | None:
    stmt = select(LearningPathCourse).where(
        LearningPathCourse.learning_path_id == learning_path_id,
        LearningPathCourse.course_id == course_id,
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_course_progress_rows(
    db: AsyncSession,
    path_enrollment_id: UUID,
    *,
    state: CourseProgressState | None = None,
) -> list[LearningPathCourseProgress]:
    stmt = select(LearningPathCourseProgress).where(
        LearningPathCourseProgress.path_enrollment_id == path_enrollment_id,
    )
    if state is not None:
        stmt = stmt.where(LearningPathCourseProgress.state == state)
    stmt = stmt.order_by(LearningPathCourseProgress.position)
    return list((await db.scalars(stmt)).all())


async def get_course_progress_row(
    db: AsyncSession, path_enrollment_id: UUID, course_id: UUID
) -> LearningPathCourseProgress | None:
    stmt = select(LearningPathCourseProgress).where(
        LearningPathCourseProgress.path_enrollment_id == path_enrollment_id,
        LearningPathCourseProgress.course_id == course_id,
    )
    return (await db.execute(stmt)).scalar_one_or_none()
