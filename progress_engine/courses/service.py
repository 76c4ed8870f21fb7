"""Course catalog writes that the progress engine reacts to."""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select

from progress_engine.enrollment.service import get_course_by_id
from progress_engine.exceptions import LessonNotFoundError
from progress_engine.models.course import Course
from progress_engine.models.course_module import CourseModule
from progress_engine.models.enums import CourseStatus
from progress_engine.models.lesson import Lesson
from progress_engine.states import COURSE_STATES
from progress_engine.unit_of_work import UnitOfWork
from shared.events.schemas import CourseArchived, CoursePublished, CourseUnpublished, LessonDeleted

logger = logging.getLogger(__name__)


async def transition_course(uow: UnitOfWork, course_id: UUID, target: CourseStatus) -> Course:
    course = await get_course_by_id(uow.session, course_id)
    previous = course.status
    COURSE_STATES.assert_transition(previous, target, entity_id=course_id)
    course.status = target
    await uow.session.flush()

    event_cls = None
    if target == CourseStatus.PUBLISHED:
        event_cls = CoursePublished
    elif target == CourseStatus.ARCHIVED:
        event_cls = CourseArchived
    elif previous == CourseStatus.PUBLISHED:
        event_cls = CourseUnpublished
    if event_cls is not None:
        uow.record(
            event_cls(
                aggregate_id=course_id,
                actor_id=uow.actor_id,
                occurred_at=uow.now(),
                previous_status=previous.value,
            )
        )
    logger.info("Course %s: %s -> %s", course_id, previous.value, target.value)
    return course


async def delete_lesson(uow: UnitOfWork, lesson_id: UUID) -> bool:
    """Soft-delete a lesson. Returns False if it was already deleted."""
    db = uow.session
    stmt = (
        select(Lesson, CourseModule.course_id)
        .join(CourseModule, Lesson.module_id == CourseModule.module_id)
        .where(Lesson.lesson_id == lesson_id)
    )
    row = (await db.execute(stmt)).one_or_none()
    if row is None:
        raise LessonNotFoundError(str(lesson_id))
    lesson, course_id = row
    if lesson.deleted_at is not None:
        return False

    lesson.deleted_at = uow.now()
    await db.flush()
    uow.record(
        LessonDeleted(
            aggregate_id=course_id,
            actor_id=uow.actor_id,
            occurred_at=lesson.deleted_at,
            lesson_id=lesson_id,
        )
    )
    logger.info("Lesson %s deleted from course %s", lesson_id, course_id)
    return True
