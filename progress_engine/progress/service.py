"""Progress tracking service: lesson progress in, course progress out.

A progress report updates (or lazily creates) the learner's row for one
lesson, auto-completes the lesson once its threshold is crossed, and then
recomputes the course percentage with the configured calculator. Reaching
completion drives the enrollment state machine to ``completed``.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from progress_engine.context import EngineContext
from progress_engine.enrollment import service as enrollment_service
from progress_engine.exceptions import EnrollmentNotActiveError, LessonNotFoundError
from progress_engine.models.course_module import CourseModule
from progress_engine.models.enrollment import Enrollment
from progress_engine.models.enums import EnrollmentStatus
from progress_engine.models.lesson import Lesson
from progress_engine.models.lesson_progress import LessonProgress
from progress_engine.percent import to_display_percent, to_whole_percent
from progress_engine.progress import queries
from progress_engine.progress.schemas import AssessmentStats, ProgressResult, ProgressUpdate
from progress_engine.states import ENROLLMENT_STATES
from progress_engine.unit_of_work import UnitOfWork
from shared.events.schemas import LessonCompleted

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def _get_course_lesson(db: AsyncSession, course_id: UUID, lesson_id: UUID) -> Lesson:
    stmt = (
        select(Lesson)
        .join(CourseModule, Lesson.module_id == CourseModule.module_id)
        .where(
            Lesson.lesson_id == lesson_id,
            CourseModule.course_id == course_id,
            Lesson.deleted_at.is_(None),
        )
    )
    lesson = (await db.execute(stmt)).scalar_one_or_none()
    if lesson is None:
        raise LessonNotFoundError(str(lesson_id))
    return lesson


async def _get_or_create_progress(
    db: AsyncSession, enrollment_id: UUID, lesson_id: UUID
) -> LessonProgress:
    stmt = select(LessonProgress).where(
        LessonProgress.enrollment_id == enrollment_id,
        LessonProgress.lesson_id == lesson_id,
    )
    progress = (await db.execute(stmt)).scalar_one_or_none()
    if progress is not None:
        return progress

    progress = LessonProgress(
        enrollment_id=enrollment_id,
        lesson_id=lesson_id,
        is_completed=False,
        time_spent_secs=0,
        highest_page_reached=0,
    )
    try:
        async with db.begin_nested():
            db.add(progress)
            await db.flush()
    except IntegrityError:
        # A concurrent first report created the row
        return (await db.execute(stmt)).scalar_one()
    return progress


async def _load_for_update(
    db: AsyncSession, enrollment_id: UUID, lesson_id: UUID
) -> tuple[Enrollment, Lesson]:
    enrollment = await enrollment_service.get_enrollment_by_id(db, enrollment_id)
    lesson = await _get_course_lesson(db, enrollment.course_id, lesson_id)
    if not ENROLLMENT_STATES.traits(enrollment.status).can_access_content:
        raise EnrollmentNotActiveError(enrollment.enrollment_id, enrollment.status.value)
    return enrollment, lesson


# ---------------------------------------------------------------------------
# Completion thresholds
# ---------------------------------------------------------------------------


def _media_pct(position_secs: int, duration_secs: int) -> Decimal:
    pct = Decimal(position_secs) / Decimal(duration_secs) * 100
    return min(Decimal("100"), pct.quantize(Decimal("0.01")))


def _crossed_threshold(progress: LessonProgress, ctx: EngineContext) -> bool:
    settings = ctx.settings
    if progress.media_progress_pct is not None:
        if progress.media_progress_pct >= settings.media_completion_pct:
            return True
    if progress.total_pages:
        page_pct = Decimal(progress.highest_page_reached) / Decimal(progress.total_pages) * 100
        if page_pct >= settings.page_completion_pct:
            return True
    return False


async def _mark_lesson_completed(
    uow: UnitOfWork, enrollment: Enrollment, progress: LessonProgress
) -> bool:
    if progress.is_completed:
        return False
    progress.is_completed = True
    progress.completed_at = uow.now()
    await uow.session.flush()
    uow.record(
        LessonCompleted(
            aggregate_id=enrollment.enrollment_id,
            actor_id=uow.actor_id,
            occurred_at=progress.completed_at,
            user_id=enrollment.user_id,
            course_id=enrollment.course_id,
            lesson_id=progress.lesson_id,
        )
    )
    logger.info(
        "Lesson %s completed for enrollment %s", progress.lesson_id, enrollment.enrollment_id
    )
    return True


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


async def _result(
    uow: UnitOfWork,
    ctx: EngineContext,
    enrollment: Enrollment,
    progress: LessonProgress,
    course_pct: float,
    lesson_completed: bool,
) -> ProgressResult:
    db = uow.session
    stats = None
    if ctx.calculator.name == "assessment_inclusive":
        stats = await queries.get_assessment_stats(db, enrollment)
    return ProgressResult(
        progress=progress,
        course_percentage=course_pct,
        lesson_completed=lesson_completed,
        course_completed=enrollment.status == EnrollmentStatus.COMPLETED,
        assessment_stats=stats,
        total_time_spent_secs=await queries.total_time_spent(db, enrollment.enrollment_id),
    )


async def update_progress(
    uow: UnitOfWork, ctx: EngineContext, update_in: ProgressUpdate
) -> ProgressResult:
    db = uow.session
    now = uow.now()
    enrollment, lesson = await _load_for_update(db, update_in.enrollment_id, update_in.lesson_id)
    progress = await _get_or_create_progress(db, enrollment.enrollment_id, lesson.lesson_id)

    # Last writer wins for positions and pointers
    if update_in.is_pagination:
        progress.current_page = update_in.current_page
        progress.total_pages = update_in.total_pages or progress.total_pages or lesson.total_pages
        if update_in.pagination_metadata is not None:
            progress.pagination_metadata = update_in.pagination_metadata
    if update_in.is_media:
        progress.media_position_secs = update_in.position_secs
        if update_in.duration_secs is not None:
            progress.media_duration_secs = update_in.duration_secs
        if progress.media_duration_secs:
            progress.media_progress_pct = _media_pct(
                progress.media_position_secs, progress.media_duration_secs
            )
    progress.last_viewed_at = now
    enrollment.last_lesson_id = lesson.lesson_id
    await db.flush()

    # Applied in SQL so concurrent reports compose: max for the page, sum for the time
    page = update_in.current_page or 0
    await db.execute(
        update(LessonProgress)
        .where(LessonProgress.progress_id == progress.progress_id)
        .values(
            highest_page_reached=case(
                (LessonProgress.highest_page_reached < page, page),
                else_=LessonProgress.highest_page_reached,
            ),
            time_spent_secs=LessonProgress.time_spent_secs + update_in.time_spent_secs,
        )
        .execution_options(synchronize_session=False)
    )
    await db.refresh(progress)

    await enrollment_service.mark_started(uow, enrollment)

    just_completed = False
    if _crossed_threshold(progress, ctx):
        just_completed = await _mark_lesson_completed(uow, enrollment, progress)

    course_pct = await recalculate_course_progress(uow, ctx, enrollment)
    return await _result(
        uow, ctx, enrollment, progress, to_display_percent(course_pct), just_completed
    )


async def complete_lesson(
    uow: UnitOfWork, ctx: EngineContext, enrollment_id: UUID, lesson_id: UUID
) -> ProgressResult:
    """Manually mark a lesson done, regardless of thresholds.

    Completing an already completed lesson changes nothing and reports
    ``lesson_completed=False``.
    """
    db = uow.session
    enrollment, lesson = await _load_for_update(db, enrollment_id, lesson_id)
    progress = await _get_or_create_progress(db, enrollment.enrollment_id, lesson.lesson_id)
    if progress.is_completed:
        return await _result(
            uow, ctx, enrollment, progress, float(enrollment.progress_pct), False
        )

    progress.last_viewed_at = uow.now()
    enrollment.last_lesson_id = lesson.lesson_id
    await db.flush()

    await enrollment_service.mark_started(uow, enrollment)
    await _mark_lesson_completed(uow, enrollment, progress)

    course_pct = await recalculate_course_progress(uow, ctx, enrollment)
    return await _result(uow, ctx, enrollment, progress, to_display_percent(course_pct), True)


async def recalculate_course_progress(
    uow: UnitOfWork, ctx: EngineContext, enrollment: Enrollment
) -> Decimal:
    """Refresh the cached percentage; complete the enrollment when the calculator says so.

    The cached integer is rounded once, from the calculator's exact value.
    Completion is driven only while the enrollment can still track
    progress, so an already completed enrollment is never re-stamped.
    """
    db = uow.session
    await db.flush()
    pct = await ctx.calculator.calculate(db, enrollment)
    enrollment.progress_pct = to_whole_percent(pct)
    await db.flush()

    if ENROLLMENT_STATES.traits(enrollment.status).can_track_progress:
        if await ctx.calculator.is_complete(db, enrollment):
            await enrollment_service.complete(uow, enrollment)
    return pct


async def is_enrollment_complete(
    db: AsyncSession, ctx: EngineContext, enrollment: Enrollment
) -> bool:
    return await ctx.calculator.is_complete(db, enrollment)


async def get_assessment_stats(db: AsyncSession, enrollment: Enrollment) -> AssessmentStats:
    return await queries.get_assessment_stats(db, enrollment)
