from decimal import Decimal
from uuid import uuid4

import pytest

from progress_engine.exceptions import UnknownStrategyError
from progress_engine.models import Lesson
from progress_engine.progress import queries
from progress_engine.progress.calculators import (
    AssessmentInclusiveCalculator,
    LessonBasedCalculator,
    WeightedCalculator,
    get_calculator,
)


@pytest.mark.asyncio
async def test_lesson_based_counts_completed_lessons(session_factory, data) -> None:
    user_id = uuid4()
    course, lessons = await data.course(lessons=4)
    enrollment = await data.enrollment(user_id, course)
    await data.completed_lessons(enrollment, lessons[:1])

    calc = LessonBasedCalculator()
    async with session_factory() as db:
        assert await calc.calculate(db, enrollment) == 25.0
        assert not await calc.is_complete(db, enrollment)

    await data.completed_lessons(enrollment, lessons[1:])
    async with session_factory() as db:
        assert await calc.calculate(db, enrollment) == 100.0
        assert await calc.is_complete(db, enrollment)


@pytest.mark.asyncio
async def test_lesson_based_empty_course_is_never_complete(session_factory, data) -> None:
    course, _ = await data.course(lessons=0)
    enrollment = await data.enrollment(uuid4(), course)

    calc = LessonBasedCalculator()
    async with session_factory() as db:
        assert await calc.calculate(db, enrollment) == 0.0
        assert not await calc.is_complete(db, enrollment)


@pytest.mark.asyncio
async def test_deleted_lessons_do_not_count(session_factory, data, clock) -> None:
    course, lessons = await data.course(lessons=2)
    enrollment = await data.enrollment(uuid4(), course)
    await data.completed_lessons(enrollment, lessons[:1])
    async with session_factory() as db:
        lesson = await db.get(Lesson, lessons[1].lesson_id)
        lesson.deleted_at = clock()
        await db.commit()

    calc = LessonBasedCalculator()
    async with session_factory() as db:
        assert await calc.calculate(db, enrollment) == 100.0
        assert await calc.is_complete(db, enrollment)


@pytest.mark.asyncio
async def test_weighted_uses_lesson_minutes(session_factory, data) -> None:
    course, lessons = await data.course(durations=[10, 30])
    enrollment = await data.enrollment(uuid4(), course)
    await data.completed_lessons(enrollment, lessons[1:])

    calc = WeightedCalculator()
    async with session_factory() as db:
        assert await calc.calculate(db, enrollment) == 75.0
        assert not await calc.is_complete(db, enrollment)


@pytest.mark.asyncio
async def test_weighted_falls_back_to_lesson_count(session_factory, data) -> None:
    course, lessons = await data.course(lessons=4)
    enrollment = await data.enrollment(uuid4(), course)
    await data.completed_lessons(enrollment, lessons[:2])

    async with session_factory() as db:
        assert await WeightedCalculator().calculate(db, enrollment) == 50.0


@pytest.mark.asyncio
async def test_assessment_inclusive_empty_course_reads_thirty(session_factory, data) -> None:
    course, _ = await data.course(lessons=0)
    enrollment = await data.enrollment(uuid4(), course)

    calc = AssessmentInclusiveCalculator()
    async with session_factory() as db:
        assert await calc.calculate(db, enrollment) == 30.0
        assert not await calc.is_complete(db, enrollment)


@pytest.mark.asyncio
async def test_assessment_inclusive_blends_lessons_and_assessments(session_factory, data) -> None:
    user_id = uuid4()
    course, lessons = await data.course(lessons=2)
    enrollment = await data.enrollment(user_id, course)
    passed = await data.assessment(course)
    pending = await data.assessment(course)
    # Neither counts toward progress
    await data.assessment(course, required=False)
    await data.assessment(course, published=False)

    await data.completed_lessons(enrollment, lessons[:1])
    await data.attempt(passed, user_id, passed=True)
    await data.attempt(pending, user_id, passed=False)

    calc = AssessmentInclusiveCalculator()
    async with session_factory() as db:
        assert await calc.calculate(db, enrollment) == 50.0
        assert not await calc.is_complete(db, enrollment)

        stats = await queries.get_assessment_stats(db, enrollment)
        assert stats.total == 3
        assert stats.passed == 1
        assert stats.required_total == 2
        assert stats.required_passed == 1
        assert stats.required_pending == 1
        assert not stats.all_required_passed

    await data.completed_lessons(enrollment, lessons[1:])
    await data.attempt(pending, user_id, passed=True)
    async with session_factory() as db:
        assert await calc.calculate(db, enrollment) == 100.0
        assert await calc.is_complete(db, enrollment)


@pytest.mark.asyncio
async def test_assessment_inclusive_needs_required_passes(session_factory, data) -> None:
    user_id = uuid4()
    course, lessons = await data.course(lessons=1)
    enrollment = await data.enrollment(user_id, course)
    await data.assessment(course)
    await data.completed_lessons(enrollment, lessons)

    calc = AssessmentInclusiveCalculator()
    async with session_factory() as db:
        assert await calc.calculate(db, enrollment) == 70.0
        assert not await calc.is_complete(db, enrollment)


def test_get_calculator() -> None:
    assert get_calculator("weighted").name == "weighted"
    with pytest.raises(UnknownStrategyError):
        get_calculator("nope")


@pytest.mark.asyncio
async def test_calculators_return_exact_ratio(session_factory, data) -> None:
    course, lessons = await data.course(lessons=11)
    enrollment = await data.enrollment(uuid4(), course)
    await data.completed_lessons(enrollment, lessons[:5])

    async with session_factory() as db:
        pct = await LessonBasedCalculator().calculate(db, enrollment)
    assert pct == Decimal(5) / Decimal(11) * 100
    assert round(pct) == 45
