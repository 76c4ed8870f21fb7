"""Learning path enrollment lifecycle.

Enrolling in a path creates one course-progress row per path course. The
first course (or every course, for paths without prerequisites) starts
``available`` and gets a course enrollment right away; the rest start
``locked`` until the path progress service unlocks them.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from progress_engine.context import EngineContext
from progress_engine.enrollment import service as enrollment_service
from progress_engine.exceptions import (
    AlreadyEnrolledInPathError,
    LearningPathNotFoundError,
    PathEnrollmentNotFoundError,
    PathNotPublishedError,
)
from progress_engine.models.enrollment import Enrollment
from progress_engine.models.enums import CourseProgressState, EnrollmentStatus, PathEnrollmentState
from progress_engine.models.learning_path import LearningPath
from progress_engine.models.path_enrollment import (
    LearningPathCourseProgress,
    LearningPathEnrollment,
)
from progress_engine.paths import queries
from progress_engine.states import COURSE_PROGRESS_STATES, PATH_ENROLLMENT_STATES
from progress_engine.unit_of_work import UnitOfWork
from shared.events.schemas import PathCompleted, PathDropped, PathEnrollmentCreated

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def get_learning_path(db: AsyncSession, learning_path_id: UUID) -> LearningPath:
    path = await db.get(LearningPath, learning_path_id)
    if path is None:
        raise LearningPathNotFoundError(str(learning_path_id))
    return path


async def get_path_enrollment_by_id(
    db: AsyncSession, path_enrollment_id: UUID
) -> LearningPathEnrollment:
    enrollment = await db.get(LearningPathEnrollment, path_enrollment_id)
    if enrollment is None:
        raise PathEnrollmentNotFoundError(str(path_enrollment_id))
    return enrollment


async def _get_path_enrollment(
    db: AsyncSession,
    user_id: UUID,
    learning_path_id: UUID,
    states: tuple[PathEnrollmentState, ...],
) -> LearningPathEnrollment | None:
    stmt = select(LearningPathEnrollment).where(
        LearningPathEnrollment.user_id == user_id,
        LearningPathEnrollment.learning_path_id == learning_path_id,
        LearningPathEnrollment.state.in_(states),
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_active_path_enrollment(
    db: AsyncSession, user_id: UUID, learning_path_id: UUID
) -> LearningPathEnrollment | None:
    return await _get_path_enrollment(
        db,
        user_id,
        learning_path_id,
        (PathEnrollmentState.ACTIVE, PathEnrollmentState.COMPLETED),
    )


async def get_dropped_path_enrollment(
    db: AsyncSession, user_id: UUID, learning_path_id: UUID
) -> LearningPathEnrollment | None:
    return await _get_path_enrollment(
        db, user_id, learning_path_id, (PathEnrollmentState.DROPPED,)
    )


async def can_enroll_in_path(db: AsyncSession, user_id: UUID, path: LearningPath) -> bool:
    if await get_active_path_enrollment(db, user_id, path.learning_path_id):
        return False
    return path.is_published


# ---------------------------------------------------------------------------
# Course enrollments behind path courses
# ---------------------------------------------------------------------------


async def ensure_course_enrollment(uow: UnitOfWork, user_id: UUID, course_id: UUID) -> Enrollment:
    """Reuse the learner's active/completed enrollment, or enroll (reactivating a dropped one)."""
    existing = await enrollment_service.get_active_enrollment(uow.session, user_id, course_id)
    if existing is not None:
        logger.info(
            "Reusing enrollment %s for user %s in course %s",
            existing.enrollment_id, user_id, course_id,
        )
        return existing
    result = await enrollment_service.enroll(uow, user_id, course_id)
    return result.enrollment


async def _initialize_course_progress(
    uow: UnitOfWork,
    ctx: EngineContext,
    path_enrollment: LearningPathEnrollment,
    path: LearningPath,
) -> None:
    db = uow.session
    now = uow.now()
    no_prerequisites = ctx.evaluators.for_path(path).name == "none"
    members = await queries.get_path_courses(db, path.learning_path_id)

    for index, (membership, course) in enumerate(members):
        available = index == 0 or no_prerequisites
        row = LearningPathCourseProgress(
            path_enrollment_id=path_enrollment.path_enrollment_id,
            course_id=course.course_id,
            position=membership.position,
            state=COURSE_PROGRESS_STATES.initial,
        )
        if available:
            course_enrollment = await ensure_course_enrollment(
                uow, path_enrollment.user_id, course.course_id
            )
            row.state = CourseProgressState.AVAILABLE
            row.unlocked_at = now
            row.course_enrollment_id = course_enrollment.enrollment_id
        db.add(row)
    await db.flush()


async def _relink_course_enrollments(
    uow: UnitOfWork, path_enrollment: LearningPathEnrollment
) -> None:
    db = uow.session
    rows = await queries.get_course_progress_rows(db, path_enrollment.path_enrollment_id)
    for row in rows:
        if row.state == CourseProgressState.LOCKED:
            continue
        if row.course_enrollment_id is not None:
            linked = await db.get(Enrollment, row.course_enrollment_id)
            if linked is not None and linked.status != EnrollmentStatus.DROPPED:
                continue
        course_enrollment = await ensure_course_enrollment(
            uow, path_enrollment.user_id, row.course_id
        )
        row.course_enrollment_id = course_enrollment.enrollment_id
    await db.flush()


# ---------------------------------------------------------------------------
# Enroll / reactivate
# ---------------------------------------------------------------------------


async def enroll_in_path(
    uow: UnitOfWork,
    ctx: EngineContext,
    user_id: UUID,
    learning_path_id: UUID,
    *,
    preserve_progress: bool = True,
) -> LearningPathEnrollment:
    db = uow.session
    path = await get_learning_path(db, learning_path_id)

    if await get_active_path_enrollment(db, user_id, learning_path_id):
        raise AlreadyEnrolledInPathError(user_id, learning_path_id)
    if not path.is_published:
        raise PathNotPublishedError(learning_path_id)

    dropped = await get_dropped_path_enrollment(db, user_id, learning_path_id)
    if dropped is not None:
        return await reactivate_path_enrollment(
            uow, ctx, dropped, path, preserve_progress=preserve_progress
        )

    path_enrollment = LearningPathEnrollment(
        user_id=user_id,
        learning_path_id=learning_path_id,
        state=PATH_ENROLLMENT_STATES.initial,
        progress_pct=0,
        enrolled_at=uow.now(),
    )
    try:
        async with db.begin_nested():
            db.add(path_enrollment)
            await db.flush()
    except IntegrityError:
        raise AlreadyEnrolledInPathError(user_id, learning_path_id) from None

    await _initialize_course_progress(uow, ctx, path_enrollment, path)

    uow.record(
        PathEnrollmentCreated(
            aggregate_id=path_enrollment.path_enrollment_id,
            actor_id=uow.actor_id,
            occurred_at=uow.now(),
            user_id=user_id,
            learning_path_id=learning_path_id,
        )
    )
    logger.info(
        "Path enrollment %s created for user %s in path %s",
        path_enrollment.path_enrollment_id, user_id, learning_path_id,
    )
    return path_enrollment


async def reactivate_path_enrollment(
    uow: UnitOfWork,
    ctx: EngineContext,
    path_enrollment: LearningPathEnrollment,
    path: LearningPath,
    *,
    preserve_progress: bool = True,
) -> LearningPathEnrollment:
    PATH_ENROLLMENT_STATES.assert_transition(
        path_enrollment.state,
        PathEnrollmentState.ACTIVE,
        entity_id=path_enrollment.path_enrollment_id,
        reason="Only dropped path enrollments can be reactivated",
    )
    db = uow.session
    path_enrollment.state = PathEnrollmentState.ACTIVE
    path_enrollment.enrolled_at = uow.now()
    path_enrollment.dropped_at = None
    path_enrollment.drop_reason = None
    path_enrollment.completed_at = None
    await db.flush()

    if preserve_progress:
        await _relink_course_enrollments(uow, path_enrollment)
    else:
        await db.execute(
            delete(LearningPathCourseProgress).where(
                LearningPathCourseProgress.path_enrollment_id
                == path_enrollment.path_enrollment_id
            )
        )
        path_enrollment.progress_pct = 0
        await _initialize_course_progress(uow, ctx, path_enrollment, path)

    uow.record(
        PathEnrollmentCreated(
            aggregate_id=path_enrollment.path_enrollment_id,
            actor_id=uow.actor_id,
            occurred_at=uow.now(),
            user_id=path_enrollment.user_id,
            learning_path_id=path_enrollment.learning_path_id,
            reactivated=True,
        )
    )
    logger.info(
        "Path enrollment %s reactivated (progress %s)",
        path_enrollment.path_enrollment_id, "preserved" if preserve_progress else "reset",
    )
    return path_enrollment


# ---------------------------------------------------------------------------
# Lifecycle transitions
# ---------------------------------------------------------------------------


async def drop_path(
    uow: UnitOfWork, path_enrollment: LearningPathEnrollment, reason: str | None = None
) -> LearningPathEnrollment:
    PATH_ENROLLMENT_STATES.assert_transition(
        path_enrollment.state,
        PathEnrollmentState.DROPPED,
        entity_id=path_enrollment.path_enrollment_id,
        reason="Only active path enrollments can be dropped",
    )
    now = uow.now()
    path_enrollment.state = PathEnrollmentState.DROPPED
    path_enrollment.dropped_at = now
    path_enrollment.drop_reason = reason
    await uow.session.flush()

    uow.record(
        PathDropped(
            aggregate_id=path_enrollment.path_enrollment_id,
            actor_id=uow.actor_id,
            occurred_at=now,
            user_id=path_enrollment.user_id,
            learning_path_id=path_enrollment.learning_path_id,
            reason=reason,
        )
    )
    logger.info("Path enrollment %s dropped: %s", path_enrollment.path_enrollment_id, reason or "-")
    return path_enrollment


async def complete_path(uow: UnitOfWork, path_enrollment: LearningPathEnrollment) -> bool:
    """Mark the path enrollment completed. Returns False if it already was."""
    if path_enrollment.state == PathEnrollmentState.COMPLETED:
        return False
    PATH_ENROLLMENT_STATES.assert_transition(
        path_enrollment.state,
        PathEnrollmentState.COMPLETED,
        entity_id=path_enrollment.path_enrollment_id,
    )
    db = uow.session
    now = uow.now()
    path_enrollment.state = PathEnrollmentState.COMPLETED
    path_enrollment.completed_at = now
    path_enrollment.progress_pct = 100
    await db.flush()

    completed = await queries.get_course_progress_rows(
        db, path_enrollment.path_enrollment_id, state=CourseProgressState.COMPLETED
    )
    uow.record(
        PathCompleted(
            aggregate_id=path_enrollment.path_enrollment_id,
            actor_id=uow.actor_id,
            occurred_at=now,
            user_id=path_enrollment.user_id,
            learning_path_id=path_enrollment.learning_path_id,
            completed_courses=len(completed),
        )
    )
    logger.info("Path enrollment %s completed", path_enrollment.path_enrollment_id)
    return True
