from uuid import uuid4

import pytest
import pytest_asyncio

from progress_engine.enrollment import service as enrollment_service
from progress_engine.events.dispatcher import dispatch
from progress_engine.models import Enrollment, LearningPathEnrollment
from progress_engine.models.enums import (
    CourseProgressState,
    EnrollmentStatus,
    PathEnrollmentState,
)
from progress_engine.paths import enrollment_service as path_enrollment_service
from progress_engine.paths import service as path_service
from progress_engine.progress import service as progress_service
from shared.events.schemas import PathProgressUpdated, UserDropped


@pytest_asyncio.fixture
async def completed_path(uow, ctx, data, settle):
    """A two-course path the learner has finished."""
    user_id = uuid4()
    courses = [(await data.course(title, lessons=1))[0] for title in ("X", "Y")]
    path = await data.path(courses)
    async with uow() as u:
        path_enrollment = await path_enrollment_service.enroll_in_path(
            u, ctx, user_id, path.learning_path_id
        )

    for index in range(2):
        row = (await data.path_rows(path_enrollment.path_enrollment_id))[index]
        [lesson] = await data.lessons(row.course_id)
        async with uow() as u:
            await progress_service.complete_lesson(
                u, ctx, row.course_enrollment_id, lesson.lesson_id
            )
        await settle(ctx)

    stored = await data.get(LearningPathEnrollment, path_enrollment.path_enrollment_id)
    assert stored.state == PathEnrollmentState.COMPLETED
    return user_id, courses, stored


async def _drop_course_enrollment(session_factory, clock, enrollment_id) -> UserDropped:
    # Completed enrollments cannot be dropped through the service; mimic an
    # administrative drop of the underlying row.
    async with session_factory() as db:
        enrollment = await db.get(Enrollment, enrollment_id)
        enrollment.status = EnrollmentStatus.DROPPED
        await db.commit()
    return UserDropped(
        aggregate_id=enrollment.enrollment_id,
        occurred_at=clock(),
        user_id=enrollment.user_id,
        course_id=enrollment.course_id,
        reason="refund",
    )


@pytest.mark.asyncio
async def test_drop_reverts_completed_course_and_path(
    session_factory, publisher, ctx, clock, data, completed_path
) -> None:
    _, (x, y), path_enrollment = completed_path
    rows = await data.path_rows(path_enrollment.path_enrollment_id)
    event = await _drop_course_enrollment(session_factory, clock, rows[0].course_enrollment_id)
    publisher.take()

    await dispatch(event, session_factory, publisher, ctx, clock=clock)

    rows = await data.path_rows(path_enrollment.path_enrollment_id)
    assert [r.state for r in rows] == [
        CourseProgressState.AVAILABLE,
        CourseProgressState.COMPLETED,
    ]
    assert rows[0].completed_at is None
    # History is kept
    assert rows[0].course_enrollment_id is not None

    stored = await data.get(LearningPathEnrollment, path_enrollment.path_enrollment_id)
    assert stored.state == PathEnrollmentState.ACTIVE
    assert stored.completed_at is None
    assert stored.progress_pct == 50

    [updated] = [e for e in publisher.take() if isinstance(e, PathProgressUpdated)]
    assert updated.previous_percentage == 100
    assert updated.new_percentage == 50


@pytest.mark.asyncio
async def test_drop_is_ignored_after_reenrollment(
    session_factory, publisher, ctx, clock, data, completed_path
) -> None:
    _, _, path_enrollment = completed_path
    rows = await data.path_rows(path_enrollment.path_enrollment_id)
    event = await _drop_course_enrollment(session_factory, clock, rows[0].course_enrollment_id)
    async with session_factory() as db:
        enrollment = await db.get(Enrollment, rows[0].course_enrollment_id)
        enrollment.status = EnrollmentStatus.ACTIVE
        await db.commit()

    await dispatch(event, session_factory, publisher, ctx, clock=clock)

    stored = await data.get(LearningPathEnrollment, path_enrollment.path_enrollment_id)
    assert stored.state == PathEnrollmentState.COMPLETED
    assert stored.progress_pct == 100


@pytest.mark.asyncio
async def test_drop_skips_dropped_paths(
    session_factory, publisher, ctx, clock, data, completed_path
) -> None:
    _, _, path_enrollment = completed_path
    async with session_factory() as db:
        loaded = await db.get(LearningPathEnrollment, path_enrollment.path_enrollment_id)
        loaded.state = PathEnrollmentState.DROPPED
        await db.commit()
    rows = await data.path_rows(path_enrollment.path_enrollment_id)
    event = await _drop_course_enrollment(session_factory, clock, rows[0].course_enrollment_id)

    await dispatch(event, session_factory, publisher, ctx, clock=clock)

    rows = await data.path_rows(path_enrollment.path_enrollment_id)
    assert rows[0].state == CourseProgressState.COMPLETED


@pytest.mark.asyncio
async def test_failed_cascade_leaves_rows_untouched(
    session_factory, publisher, ctx, clock, data, completed_path, monkeypatch
) -> None:
    _, _, path_enrollment = completed_path
    rows = await data.path_rows(path_enrollment.path_enrollment_id)
    event = await _drop_course_enrollment(session_factory, clock, rows[0].course_enrollment_id)
    publisher.take()

    async def boom(db, path_enrollment):
        raise RuntimeError("database went away")

    monkeypatch.setattr(path_service, "calculate_progress_percentage", boom)

    with pytest.raises(RuntimeError):
        await dispatch(event, session_factory, publisher, ctx, clock=clock)

    rows = await data.path_rows(path_enrollment.path_enrollment_id)
    assert rows[0].state == CourseProgressState.COMPLETED
    assert rows[0].completed_at is not None
    stored = await data.get(LearningPathEnrollment, path_enrollment.path_enrollment_id)
    assert stored.state == PathEnrollmentState.COMPLETED
    assert stored.progress_pct == 100
    assert publisher.take() == []


@pytest.mark.asyncio
async def test_dropping_active_course_keeps_path_rows(uow, ctx, data, settle) -> None:
    courses = [(await data.course(title, lessons=1))[0] for title in ("X", "Y")]
    path = await data.path(courses)
    async with uow() as u:
        path_enrollment = await path_enrollment_service.enroll_in_path(
            u, ctx, uuid4(), path.learning_path_id
        )
    rows = await data.path_rows(path_enrollment.path_enrollment_id)

    async with uow() as u:
        enrollment = await enrollment_service.get_enrollment_by_id(
            u.session, rows[0].course_enrollment_id
        )
        await enrollment_service.drop(u, enrollment, "no time")
    await settle(ctx)

    rows = await data.path_rows(path_enrollment.path_enrollment_id)
    assert [r.state for r in rows] == [
        CourseProgressState.AVAILABLE,
        CourseProgressState.LOCKED,
    ]
    stored = await data.get(LearningPathEnrollment, path_enrollment.path_enrollment_id)
    assert stored.state == PathEnrollmentState.ACTIVE
    assert stored.progress_pct == 0
