"""Path progress: unlock cascades, completion detection and drop reverts.

Every function here runs inside the caller's ``UnitOfWork`` so a cascade
either lands completely or not at all. Rows are flushed after each unlock
so the next evaluation in the same walk sees them.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from progress_engine.context import EngineContext
from progress_engine.exceptions import CourseNotInPathError, PrerequisitesNotMetError
from progress_engine.models.course import Course
from progress_engine.models.enrollment import Enrollment
from progress_engine.models.enums import CourseProgressState, PathEnrollmentState
from progress_engine.models.learning_path import LearningPathCourse
from progress_engine.models.path_enrollment import (
    LearningPathCourseProgress,
    LearningPathEnrollment,
)
from progress_engine.paths import enrollment_service as path_enrollment_service
from progress_engine.paths import queries
from progress_engine.paths.schemas import (
    CourseProgressItem,
    PathProgressResult,
    PrerequisiteCheckResult,
)
from progress_engine.percent import fraction_percent
from progress_engine.states import COURSE_PROGRESS_STATES, PATH_ENROLLMENT_STATES
from progress_engine.unit_of_work import UnitOfWork
from shared.events.schemas import CourseUnlockedInPath, PathProgressUpdated

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Percentages
# ---------------------------------------------------------------------------


async def _required_course_stats(
    db: AsyncSession, path_enrollment: LearningPathEnrollment
) -> tuple[int, int]:
    """(total, completed) over required courses, or over all courses if none is required."""
    base = (
        select(
            func.count(),
            func.count().filter(LearningPathCourseProgress.state == CourseProgressState.COMPLETED),
        )
        .select_from(LearningPathCourseProgress)
        .join(
            LearningPathCourse,
            and_(
                LearningPathCourse.learning_path_id == path_enrollment.learning_path_id,
                LearningPathCourse.course_id == LearningPathCourseProgress.course_id,
            ),
        )
        .where(LearningPathCourseProgress.path_enrollment_id == path_enrollment.path_enrollment_id)
    )
    total, completed = (
        await db.execute(base.where(LearningPathCourse.is_required.is_(True)))
    ).one()
    if total:
        return total, completed
    total, completed = (await db.execute(base)).one()
    return total, completed


async def calculate_progress_percentage(
    db: AsyncSession, path_enrollment: LearningPathEnrollment
) -> int:
    total, completed = await _required_course_stats(db, path_enrollment)
    return fraction_percent(completed, total)


async def is_path_completed(db: AsyncSession, path_enrollment: LearningPathEnrollment) -> bool:
    total, completed = await _required_course_stats(db, path_enrollment)
    # Nothing required means nothing left to do
    if total == 0:
        return True
    return completed >= total


async def _refresh_percentage(
    uow: UnitOfWork, path_enrollment: LearningPathEnrollment, course_id: UUID | None = None
) -> int:
    db = uow.session
    await db.flush()
    previous = path_enrollment.progress_pct
    pct = await calculate_progress_percentage(db, path_enrollment)
    path_enrollment.progress_pct = pct
    await db.flush()

    if pct != previous:
        uow.record(
            PathProgressUpdated(
                aggregate_id=path_enrollment.path_enrollment_id,
                actor_id=uow.actor_id,
                occurred_at=uow.now(),
                user_id=path_enrollment.user_id,
                learning_path_id=path_enrollment.learning_path_id,
                previous_percentage=previous,
                new_percentage=pct,
                metadata={"course_id": str(course_id)} if course_id else {},
            )
        )
    return pct


# ---------------------------------------------------------------------------
# Prerequisites and unlocking
# ---------------------------------------------------------------------------


async def check_prerequisites(
    db: AsyncSession,
    ctx: EngineContext,
    path_enrollment: LearningPathEnrollment,
    course_id: UUID,
) -> PrerequisiteCheckResult:
    path = await path_enrollment_service.get_learning_path(db, path_enrollment.learning_path_id)
    evaluator = ctx.evaluators.for_path(path)
    return await evaluator.evaluate(db, path_enrollment, course_id)


async def is_course_unlocked(
    db: AsyncSession, path_enrollment: LearningPathEnrollment, course_id: UUID
) -> bool:
    row = await queries.get_course_progress_row(db, path_enrollment.path_enrollment_id, course_id)
    return row is not None and row.state != CourseProgressState.LOCKED


async def _unlock_course(
    uow: UnitOfWork, path_enrollment: LearningPathEnrollment, row: LearningPathCourseProgress
) -> None:
    COURSE_PROGRESS_STATES.assert_transition(
        row.state, CourseProgressState.AVAILABLE, entity_id=row.id
    )
    course_enrollment = await path_enrollment_service.ensure_course_enrollment(
        uow, path_enrollment.user_id, row.course_id
    )
    row.state = CourseProgressState.AVAILABLE
    row.unlocked_at = uow.now()
    row.course_enrollment_id = course_enrollment.enrollment_id
    await uow.session.flush()


async def unlock_next_courses(
    uow: UnitOfWork, ctx: EngineContext, path_enrollment: LearningPathEnrollment
) -> list[LearningPathCourseProgress]:
    """Re-evaluate every locked row in position order; return the rows unlocked now.

    Running it again without an intervening change unlocks nothing.
    """
    if not PATH_ENROLLMENT_STATES.traits(path_enrollment.state).can_unlock_courses:
        return []

    db = uow.session
    path = await path_enrollment_service.get_learning_path(db, path_enrollment.learning_path_id)
    evaluator = ctx.evaluators.for_path(path)
    locked = await queries.get_course_progress_rows(
        db, path_enrollment.path_enrollment_id, state=CourseProgressState.LOCKED
    )

    unlocked = []
    for row in locked:
        result = await evaluator.evaluate(db, path_enrollment, row.course_id)
        if not result.is_met:
            continue
        await _unlock_course(uow, path_enrollment, row)
        unlocked.append(row)
        uow.record(
            CourseUnlockedInPath(
                aggregate_id=path_enrollment.path_enrollment_id,
                actor_id=uow.actor_id,
                occurred_at=uow.now(),
                user_id=path_enrollment.user_id,
                learning_path_id=path_enrollment.learning_path_id,
                course_id=row.course_id,
                position=row.position,
            )
        )
        logger.info(
            "Unlocked course %s (position %d) in path enrollment %s",
            row.course_id, row.position, path_enrollment.path_enrollment_id,
        )
    return unlocked


# ---------------------------------------------------------------------------
# Cascades
# ---------------------------------------------------------------------------


async def on_course_completed(
    uow: UnitOfWork,
    ctx: EngineContext,
    path_enrollment: LearningPathEnrollment,
    course_enrollment: Enrollment,
) -> None:
    db = uow.session
    logger.info(
        "Course %s completed in path enrollment %s",
        course_enrollment.course_id, path_enrollment.path_enrollment_id,
    )
    row = await queries.get_course_progress_row(
        db, path_enrollment.path_enrollment_id, course_enrollment.course_id
    )
    if row is not None and row.state != CourseProgressState.COMPLETED:
        COURSE_PROGRESS_STATES.assert_transition(
            row.state, CourseProgressState.COMPLETED, entity_id=row.id
        )
        row.state = CourseProgressState.COMPLETED
        row.completed_at = uow.now()
        await db.flush()

    await _refresh_percentage(uow, path_enrollment, course_enrollment.course_id)
    await unlock_next_courses(uow, ctx, path_enrollment)

    if await is_path_completed(db, path_enrollment):
        await path_enrollment_service.complete_path(uow, path_enrollment)


async def on_course_dropped(
    uow: UnitOfWork,
    path_enrollment: LearningPathEnrollment,
    row: LearningPathCourseProgress,
) -> None:
    """Undo what a dropped course contributed to the path.

    A completed row goes back to ``available`` and a completed path goes
    back to ``active``. Downstream rows stay unlocked. These reverts sit
    outside the forward transition graphs.
    """
    db = uow.session
    if row.state == CourseProgressState.COMPLETED:
        row.state = CourseProgressState.AVAILABLE
        row.completed_at = None
        logger.info(
            "Reverted course %s to available in path enrollment %s",
            row.course_id, path_enrollment.path_enrollment_id,
        )
    await db.flush()

    if path_enrollment.state == PathEnrollmentState.COMPLETED:
        path_enrollment.state = PathEnrollmentState.ACTIVE
        path_enrollment.completed_at = None
        logger.info(
            "Path enrollment %s reverted to active after a course drop",
            path_enrollment.path_enrollment_id,
        )
    await _refresh_percentage(uow, path_enrollment, row.course_id)


async def start_course(
    uow: UnitOfWork, path_enrollment: LearningPathEnrollment, course_id: UUID
) -> bool:
    """Move an available row to ``in_progress``. Returns False when nothing changed."""
    row = await queries.get_course_progress_row(
        uow.session, path_enrollment.path_enrollment_id, course_id
    )
    if row is None or row.state != CourseProgressState.AVAILABLE:
        return False
    row.state = CourseProgressState.IN_PROGRESS
    row.started_at = uow.now()
    await uow.session.flush()
    logger.info(
        "Course %s started in path enrollment %s", course_id, path_enrollment.path_enrollment_id
    )
    return True


# ---------------------------------------------------------------------------
# Read model
# ---------------------------------------------------------------------------


async def get_progress(
    db: AsyncSession, path_enrollment: LearningPathEnrollment
) -> PathProgressResult:
    stmt = (
        select(LearningPathCourseProgress, Course, LearningPathCourse, Enrollment.progress_pct)
        .join(Course, Course.course_id == LearningPathCourseProgress.course_id)
        .outerjoin(
            LearningPathCourse,
            and_(
                LearningPathCourse.learning_path_id == path_enrollment.learning_path_id,
                LearningPathCourse.course_id == LearningPathCourseProgress.course_id,
            ),
        )
        .outerjoin(Enrollment, Enrollment.enrollment_id == LearningPathCourseProgress.course_enrollment_id)
        .where(LearningPathCourseProgress.path_enrollment_id == path_enrollment.path_enrollment_id)
        .order_by(LearningPathCourseProgress.position)
    )
    items = []
    for row, course, membership, enrollment_pct in (await db.execute(stmt)).all():
        items.append(
            CourseProgressItem(
                course_id=row.course_id,
                course_title=course.title,
                state=row.state,
                position=row.position,
                is_required=membership.is_required if membership is not None else True,
                completion_pct=enrollment_pct or 0,
                min_required_pct=membership.min_completion_pct if membership is not None else None,
                course_enrollment_id=row.course_enrollment_id,
                unlocked_at=row.unlocked_at,
                started_at=row.started_at,
                completed_at=row.completed_at,
            )
        )

    def count(state: CourseProgressState) -> int:
        return sum(1 for item in items if item.state == state)

    completed = count(CourseProgressState.COMPLETED)
    required = [item for item in items if item.is_required]
    completed_required = sum(1 for item in required if item.state == CourseProgressState.COMPLETED)

    return PathProgressResult(
        path_enrollment_id=path_enrollment.path_enrollment_id,
        overall_pct=fraction_percent(completed, len(items)),
        total_courses=len(items),
        completed_courses=completed,
        in_progress_courses=count(CourseProgressState.IN_PROGRESS),
        locked_courses=count(CourseProgressState.LOCKED),
        available_courses=count(CourseProgressState.AVAILABLE),
        courses=items,
        is_completed=completed == len(items) and completed_required == len(required),
        required_courses=len(required),
        completed_required_courses=completed_required,
        required_pct=completed_required / len(required) * 100 if required else None,
    )


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------


async def validate_course_in_path_or_fail(
    db: AsyncSession, path_enrollment: LearningPathEnrollment, course_id: UUID
) -> None:
    row = await queries.get_course_progress_row(db, path_enrollment.path_enrollment_id, course_id)
    if row is None:
        raise CourseNotInPathError(course_id, path_enrollment.learning_path_id)


async def validate_prerequisites_or_fail(
    db: AsyncSession,
    ctx: EngineContext,
    path_enrollment: LearningPathEnrollment,
    course_id: UUID,
) -> None:
    await validate_course_in_path_or_fail(db, path_enrollment, course_id)
    result = await check_prerequisites(db, ctx, path_enrollment, course_id)
    if not result.is_met:
        raise PrerequisitesNotMetError(
            path_enrollment.path_enrollment_id,
            course_id,
            [m.model_dump(mode="json") for m in result.missing_prerequisites],
            reason=result.reason,
        )
