"""Course enrollment lifecycle: enroll, reactivate, drop, complete.

All writes go through a ``UnitOfWork`` and record their domain events on
it; the events leave the process only after the surrounding transaction
commits.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from progress_engine.exceptions import (
    AlreadyEnrolledError,
    CourseNotFoundError,
    CourseNotPublishedError,
    EnrollmentNotFoundError,
)
from progress_engine.enrollment.schemas import EnrollmentResult
from progress_engine.models.course import Course
from progress_engine.models.enrollment import Enrollment
from progress_engine.models.enums import CourseVisibility, EnrollmentStatus, InvitationStatus
from progress_engine.models.invitation import CourseInvitation
from progress_engine.states import COURSE_STATES, ENROLLMENT_STATES
from progress_engine.unit_of_work import UnitOfWork
from shared.events.schemas import (
    CourseStarted,
    EnrollmentCompleted,
    UserDropped,
    UserEnrolled,
    UserReenrolled,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def get_course_by_id(db: AsyncSession, course_id: UUID) -> Course:
    course = await db.get(Course, course_id)
    if course is None:
        raise CourseNotFoundError(str(course_id))
    return course


async def get_enrollment_by_id(db: AsyncSession, enrollment_id: UUID) -> Enrollment:
    enrollment = await db.get(Enrollment, enrollment_id)
    if enrollment is None:
        raise EnrollmentNotFoundError(str(enrollment_id))
    return enrollment


async def _get_enrollment(
    db: AsyncSession,
    user_id: UUID,
    course_id: UUID,
    statuses: tuple[EnrollmentStatus, ...],
) -> Enrollment | None:
    stmt = select(Enrollment).where(
        Enrollment.user_id == user_id,
        Enrollment.course_id == course_id,
        Enrollment.status.in_(statuses),
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_active_enrollment(
    db: AsyncSession, user_id: UUID, course_id: UUID
) -> Enrollment | None:
    """Active or completed enrollment; both block a new enrollment."""
    return await _get_enrollment(
        db, user_id, course_id, (EnrollmentStatus.ACTIVE, EnrollmentStatus.COMPLETED)
    )


async def get_dropped_enrollment(
    db: AsyncSession, user_id: UUID, course_id: UUID
) -> Enrollment | None:
    return await _get_enrollment(db, user_id, course_id, (EnrollmentStatus.DROPPED,))


async def _has_accepted_invitation(db: AsyncSession, user_id: UUID, course_id: UUID) -> bool:
    stmt = select(CourseInvitation.invitation_id).where(
        CourseInvitation.user_id == user_id,
        CourseInvitation.course_id == course_id,
        CourseInvitation.status == InvitationStatus.ACCEPTED,
    )
    return (await db.execute(stmt)).first() is not None


async def can_enroll(db: AsyncSession, user_id: UUID, course: Course) -> bool:
    if await get_active_enrollment(db, user_id, course.course_id):
        return False
    if not COURSE_STATES.traits(course.status).can_enroll:
        return False
    if course.visibility == CourseVisibility.HIDDEN:
        return False
    if course.visibility == CourseVisibility.RESTRICTED:
        # Previously dropped learners may come back without a new invitation
        if await get_dropped_enrollment(db, user_id, course.course_id):
            return True
        return await _has_accepted_invitation(db, user_id, course.course_id)
    return True


# ---------------------------------------------------------------------------
# Enroll / reactivate
# ---------------------------------------------------------------------------


async def enroll(
    uow: UnitOfWork,
    user_id: UUID,
    course_id: UUID,
    *,
    invited_by: UUID | None = None,
    payment_id: UUID | None = None,
    preserve_progress: bool = True,
) -> EnrollmentResult:
    db = uow.session
    course = await get_course_by_id(db, course_id)

    if await get_active_enrollment(db, user_id, course_id):
        raise AlreadyEnrolledError(user_id, course_id)
    if not course.is_published:
        raise CourseNotPublishedError(course_id)

    dropped = await get_dropped_enrollment(db, user_id, course_id)
    if dropped is not None:
        return await reactivate(
            uow,
            dropped,
            preserve_progress=preserve_progress,
            invited_by=invited_by,
            payment_id=payment_id,
        )

    enrollment = Enrollment(
        user_id=user_id,
        course_id=course_id,
        payment_id=payment_id,
        invited_by=invited_by,
        status=ENROLLMENT_STATES.initial,
        progress_pct=0,
        enrolled_at=uow.now(),
    )
    # The (user_id, course_id) unique constraint settles concurrent enrolls
    try:
        async with db.begin_nested():
            db.add(enrollment)
            await db.flush()
    except IntegrityError:
        raise AlreadyEnrolledError(user_id, course_id) from None

    uow.record(
        UserEnrolled(
            aggregate_id=enrollment.enrollment_id,
            actor_id=uow.actor_id,
            occurred_at=uow.now(),
            user_id=user_id,
            course_id=course_id,
            invited_by=invited_by,
        )
    )
    logger.info(
        "Enrollment %s created for user %s in course %s",
        enrollment.enrollment_id, user_id, course_id,
    )
    return EnrollmentResult(enrollment=enrollment, is_new_enrollment=True)


async def reactivate(
    uow: UnitOfWork,
    enrollment: Enrollment,
    *,
    preserve_progress: bool = True,
    invited_by: UUID | None = None,
    payment_id: UUID | None = None,
) -> EnrollmentResult:
    ENROLLMENT_STATES.assert_transition(
        enrollment.status,
        EnrollmentStatus.ACTIVE,
        entity_id=enrollment.enrollment_id,
        reason="Only dropped enrollments can be reactivated",
    )
    now = uow.now()
    enrollment.status = EnrollmentStatus.ACTIVE
    enrollment.enrolled_at = now
    enrollment.completed_at = None
    if not preserve_progress:
        enrollment.progress_pct = 0
        enrollment.started_at = None
        enrollment.last_lesson_id = None
    # A different trainer may have re-invited the learner
    if invited_by is not None:
        enrollment.invited_by = invited_by
    if payment_id is not None:
        enrollment.payment_id = payment_id
    await uow.session.flush()

    uow.record(
        UserReenrolled(
            aggregate_id=enrollment.enrollment_id,
            actor_id=uow.actor_id,
            occurred_at=now,
            user_id=enrollment.user_id,
            course_id=enrollment.course_id,
            progress_preserved=preserve_progress,
            invited_by=invited_by,
        )
    )
    logger.info(
        "Enrollment %s reactivated (progress %s)",
        enrollment.enrollment_id, "preserved" if preserve_progress else "reset",
    )
    return EnrollmentResult(
        enrollment=enrollment,
        is_new_enrollment=False,
        message=(
            "Enrollment reactivated with previous progress preserved"
            if preserve_progress
            else "Enrollment reactivated with progress reset"
        ),
    )


# ---------------------------------------------------------------------------
# Lifecycle transitions
# ---------------------------------------------------------------------------


async def drop(uow: UnitOfWork, enrollment: Enrollment, reason: str | None = None) -> Enrollment:
    ENROLLMENT_STATES.assert_transition(
        enrollment.status,
        EnrollmentStatus.DROPPED,
        entity_id=enrollment.enrollment_id,
        reason="Only active enrollments can be dropped",
    )
    enrollment.status = EnrollmentStatus.DROPPED
    await uow.session.flush()

    uow.record(
        UserDropped(
            aggregate_id=enrollment.enrollment_id,
            actor_id=uow.actor_id,
            occurred_at=uow.now(),
            user_id=enrollment.user_id,
            course_id=enrollment.course_id,
            reason=reason,
        )
    )
    logger.info("Enrollment %s dropped: %s", enrollment.enrollment_id, reason or "-")
    return enrollment


async def complete(uow: UnitOfWork, enrollment: Enrollment) -> bool:
    """Mark the enrollment completed. Returns False if it already was."""
    if enrollment.status == EnrollmentStatus.COMPLETED:
        return False
    ENROLLMENT_STATES.assert_transition(
        enrollment.status, EnrollmentStatus.COMPLETED, entity_id=enrollment.enrollment_id
    )
    now = uow.now()
    enrollment.status = EnrollmentStatus.COMPLETED
    enrollment.completed_at = now
    await uow.session.flush()

    uow.record(
        EnrollmentCompleted(
            aggregate_id=enrollment.enrollment_id,
            actor_id=uow.actor_id,
            occurred_at=now,
            user_id=enrollment.user_id,
            course_id=enrollment.course_id,
        )
    )
    logger.info("Enrollment %s completed", enrollment.enrollment_id)
    return True


async def mark_started(uow: UnitOfWork, enrollment: Enrollment) -> bool:
    """Stamp ``started_at`` on the first interaction. Returns False if already started."""
    if enrollment.started_at is not None:
        return False
    now = uow.now()
    enrollment.started_at = now
    await uow.session.flush()
    uow.record(
        CourseStarted(
            aggregate_id=enrollment.enrollment_id,
            actor_id=uow.actor_id,
            occurred_at=now,
            user_id=enrollment.user_id,
            course_id=enrollment.course_id,
        )
    )
    return True
