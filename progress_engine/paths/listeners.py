"""Keep path progress in step with course enrollment events.

Listeners run out of band, one ``UnitOfWork`` each, and may see the same
event more than once. Each one re-reads current state and does nothing
when the change it reacts to has already been applied or undone.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select

from progress_engine.context import EngineContext
from progress_engine.models.enrollment import Enrollment
from progress_engine.models.enums import CourseProgressState, EnrollmentStatus, PathEnrollmentState
from progress_engine.models.path_enrollment import (
    LearningPathCourseProgress,
    LearningPathEnrollment,
)
from progress_engine.paths import service as path_service
from progress_engine.unit_of_work import UnitOfWork
from shared.events.schemas import CourseStarted, EnrollmentCompleted, UserDropped

logger = logging.getLogger(__name__)


async def _linked_rows(
    uow: UnitOfWork, course_enrollment_id: UUID
) -> list[tuple[LearningPathCourseProgress, LearningPathEnrollment]]:
    stmt = (
        select(LearningPathCourseProgress, LearningPathEnrollment)
        .join(
            LearningPathEnrollment,
            LearningPathEnrollment.path_enrollment_id == LearningPathCourseProgress.path_enrollment_id,
        )
        .where(LearningPathCourseProgress.course_enrollment_id == course_enrollment_id)
        .order_by(LearningPathEnrollment.enrolled_at)
        .with_for_update()
    )
    return [(row, pe) for row, pe in (await uow.session.execute(stmt)).all()]


async def update_path_progress_on_course_completion(
    uow: UnitOfWork, ctx: EngineContext, event: EnrollmentCompleted
) -> None:
    course_enrollment = await uow.session.get(Enrollment, event.aggregate_id)
    if course_enrollment is None or course_enrollment.status != EnrollmentStatus.COMPLETED:
        return

    for _, path_enrollment in await _linked_rows(uow, course_enrollment.enrollment_id):
        if path_enrollment.state != PathEnrollmentState.ACTIVE:
            continue
        await path_service.on_course_completed(uow, ctx, path_enrollment, course_enrollment)


async def update_path_progress_on_course_drop(
    uow: UnitOfWork, ctx: EngineContext, event: UserDropped
) -> None:
    course_enrollment = await uow.session.get(Enrollment, event.aggregate_id)
    # Reactivated since the drop: nothing to revert
    if course_enrollment is None or course_enrollment.status != EnrollmentStatus.DROPPED:
        return

    linked = await _linked_rows(uow, course_enrollment.enrollment_id)
    if not linked:
        return
    logger.info(
        "Course enrollment %s dropped, updating %d path(s)",
        course_enrollment.enrollment_id, len(linked),
    )
    for row, path_enrollment in linked:
        if path_enrollment.state == PathEnrollmentState.DROPPED:
            continue
        await path_service.on_course_dropped(uow, path_enrollment, row)


async def start_path_course_on_course_started(
    uow: UnitOfWork, ctx: EngineContext, event: CourseStarted
) -> None:
    for row, path_enrollment in await _linked_rows(uow, event.aggregate_id):
        if path_enrollment.state != PathEnrollmentState.ACTIVE:
            continue
        if row.state == CourseProgressState.AVAILABLE:
            await path_service.start_course(uow, path_enrollment, row.course_id)
