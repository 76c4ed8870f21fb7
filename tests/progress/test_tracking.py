from decimal import Decimal
from uuid import uuid4

import pytest
from pydantic import ValidationError
from sqlalchemy import select

from progress_engine.exceptions import EnrollmentNotActiveError, LessonNotFoundError
from progress_engine.models import Enrollment, LessonProgress
from progress_engine.models.enums import EnrollmentStatus
from progress_engine.progress import service as progress_service
from progress_engine.progress.schemas import ProgressUpdate
from shared.events.schemas import EnrollmentCompleted, LessonCompleted


@pytest.mark.asyncio
async def test_media_progress_completes_lesson_at_threshold(uow, ctx, data, publisher) -> None:
    course, lessons = await data.course(lessons=2)
    enrollment = await data.enrollment(uuid4(), course)
    lesson = lessons[0]

    async with uow() as u:
        result = await progress_service.update_progress(
            u,
            ctx,
            ProgressUpdate(
                enrollment_id=enrollment.enrollment_id,
                lesson_id=lesson.lesson_id,
                position_secs=45,
                duration_secs=100,
                time_spent_secs=30,
            ),
        )
    assert result.progress.media_progress_pct == Decimal("45.00")
    assert not result.lesson_completed
    assert result.course_percentage == 0.0
    assert publisher.names() == ["enrollment.course_started"]

    async with uow() as u:
        result = await progress_service.update_progress(
            u,
            ctx,
            ProgressUpdate(
                enrollment_id=enrollment.enrollment_id,
                lesson_id=lesson.lesson_id,
                position_secs=95,
                time_spent_secs=20,
            ),
        )
    assert result.lesson_completed
    assert result.progress.is_completed
    assert result.course_percentage == 50.0
    assert not result.course_completed
    assert result.total_time_spent_secs == 50
    assert result.assessment_stats is None
    assert publisher.names() == ["enrollment.course_started", "lesson.completed"]

    stored = await data.get(Enrollment, enrollment.enrollment_id)
    assert stored.progress_pct == 50
    assert stored.last_lesson_id == lesson.lesson_id
    assert stored.started_at is not None


@pytest.mark.asyncio
async def test_highest_page_only_moves_forward(uow, ctx, data) -> None:
    course, lessons = await data.course(lessons=1, total_pages=4)
    enrollment = await data.enrollment(uuid4(), course)
    lesson = lessons[0]

    def page(n: int) -> ProgressUpdate:
        return ProgressUpdate(
            enrollment_id=enrollment.enrollment_id,
            lesson_id=lesson.lesson_id,
            current_page=n,
            time_spent_secs=10,
        )

    async with uow() as u:
        await progress_service.update_progress(u, ctx, page(3))
    async with uow() as u:
        result = await progress_service.update_progress(u, ctx, page(2))
    assert result.progress.current_page == 2
    assert result.progress.highest_page_reached == 3
    assert result.progress.total_pages == 4
    assert not result.progress.is_completed

    async with uow() as u:
        result = await progress_service.update_progress(u, ctx, page(4))
    assert result.lesson_completed
    assert result.course_percentage == 100.0
    assert result.course_completed
    assert result.total_time_spent_secs == 30


@pytest.mark.asyncio
async def test_completing_last_lesson_completes_enrollment(uow, ctx, data, publisher) -> None:
    user_id = uuid4()
    course, lessons = await data.course(lessons=1)
    enrollment = await data.enrollment(user_id, course)

    async with uow() as u:
        result = await progress_service.complete_lesson(
            u, ctx, enrollment.enrollment_id, lessons[0].lesson_id
        )
    assert result.lesson_completed
    assert result.course_completed

    stored = await data.get(Enrollment, enrollment.enrollment_id)
    assert stored.status == EnrollmentStatus.COMPLETED
    assert stored.progress_pct == 100
    assert stored.completed_at is not None

    completed = publisher.of_type(EnrollmentCompleted)
    assert len(completed) == 1
    assert completed[0].user_id == user_id
    assert len(publisher.of_type(LessonCompleted)) == 1

    # Second completion is a no-op
    async with uow() as u:
        again = await progress_service.complete_lesson(
            u, ctx, enrollment.enrollment_id, lessons[0].lesson_id
        )
    assert not again.lesson_completed
    assert len(publisher.of_type(EnrollmentCompleted)) == 1


@pytest.mark.asyncio
async def test_dropped_enrollment_rejects_progress(uow, ctx, data, publisher) -> None:
    course, lessons = await data.course(lessons=1)
    enrollment = await data.enrollment(uuid4(), course, status=EnrollmentStatus.DROPPED)

    with pytest.raises(EnrollmentNotActiveError):
        async with uow() as u:
            await progress_service.complete_lesson(
                u, ctx, enrollment.enrollment_id, lessons[0].lesson_id
            )
    assert publisher.published == []


@pytest.mark.asyncio
async def test_lesson_must_belong_to_course(uow, ctx, data) -> None:
    course, _ = await data.course(lessons=1)
    _, other_lessons = await data.course("Other", lessons=1)
    enrollment = await data.enrollment(uuid4(), course)

    with pytest.raises(LessonNotFoundError):
        async with uow() as u:
            await progress_service.update_progress(
                u,
                ctx,
                ProgressUpdate(
                    enrollment_id=enrollment.enrollment_id,
                    lesson_id=other_lessons[0].lesson_id,
                    current_page=1,
                ),
            )


@pytest.mark.asyncio
async def test_custom_media_threshold(uow, make_ctx, data) -> None:
    ctx = make_ctx(media_completion_pct=50)
    course, lessons = await data.course(lessons=2)
    enrollment = await data.enrollment(uuid4(), course)

    async with uow() as u:
        result = await progress_service.update_progress(
            u,
            ctx,
            ProgressUpdate(
                enrollment_id=enrollment.enrollment_id,
                lesson_id=lessons[0].lesson_id,
                position_secs=60,
                duration_secs=120,
            ),
        )
    assert result.lesson_completed


@pytest.mark.asyncio
async def test_assessment_stats_reported_with_assessment_calculator(uow, make_ctx, data) -> None:
    ctx = make_ctx(progress_calculator="assessment_inclusive")
    course, lessons = await data.course(lessons=1)
    await data.assessment(course)
    enrollment = await data.enrollment(uuid4(), course)

    async with uow() as u:
        result = await progress_service.complete_lesson(
            u, ctx, enrollment.enrollment_id, lessons[0].lesson_id
        )
    assert result.course_percentage == pytest.approx(70.0)
    assert not result.course_completed
    assert result.assessment_stats is not None
    assert result.assessment_stats.required_pending == 1


def test_update_cannot_mix_page_and_media_fields() -> None:
    with pytest.raises(ValidationError):
        ProgressUpdate(
            enrollment_id=uuid4(),
            lesson_id=uuid4(),
            current_page=2,
            position_secs=30,
        )


@pytest.mark.asyncio
async def test_cached_percentage_rounds_the_exact_ratio(uow, ctx, data, session_factory) -> None:
    course, lessons = await data.course(lessons=11)
    enrollment = await data.enrollment(uuid4(), course)
    await data.completed_lessons(enrollment, lessons[:4])

    async with uow() as u:
        result = await progress_service.complete_lesson(
            u, ctx, enrollment.enrollment_id, lessons[4].lesson_id
        )
    # 5 of 11 is 45.45...: cached as 45, shown as 45.5
    assert result.course_percentage == 45.5
    stored = await data.get(Enrollment, enrollment.enrollment_id)
    assert stored.progress_pct == 45

    async with session_factory() as db:
        assert not await progress_service.is_enrollment_complete(db, ctx, stored)


@pytest.mark.asyncio
async def test_is_enrollment_complete_follows_the_calculator(ctx, data, session_factory) -> None:
    course, lessons = await data.course(lessons=2)
    enrollment = await data.enrollment(uuid4(), course)
    await data.completed_lessons(enrollment, lessons)

    async with session_factory() as db:
        assert await progress_service.is_enrollment_complete(db, ctx, enrollment)


class _MissFirstLookup:
    """Session wrapper whose first query sees no row, as if another report raced us."""

    def __init__(self, session) -> None:
        self._session = session
        self._missed = False

    async def execute(self, stmt):
        if not self._missed:
            self._missed = True
            return _NoRows()
        return await self._session.execute(stmt)

    def __getattr__(self, name):
        return getattr(self._session, name)


class _NoRows:
    def scalar_one_or_none(self):
        return None


@pytest.mark.asyncio
async def test_concurrent_first_report_reuses_the_row(data, session_factory) -> None:
    course, lessons = await data.course(lessons=1)
    enrollment = await data.enrollment(uuid4(), course)
    await data.completed_lessons(enrollment, lessons)

    async with session_factory() as db:
        progress = await progress_service._get_or_create_progress(
            _MissFirstLookup(db), enrollment.enrollment_id, lessons[0].lesson_id
        )
        assert progress.is_completed
        assert progress.time_spent_secs == 60

    async with session_factory() as db:
        rows = (await db.scalars(select(LessonProgress))).all()
    assert len(rows) == 1
