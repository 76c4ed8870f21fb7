from uuid import uuid4

import pytest
from pydantic import ValidationError

from progress_engine.enrollment import service as enrollment_service
from progress_engine.events.dispatcher import LISTENERS, dispatch, drain
from progress_engine.models import Enrollment
from shared.events.schemas import (
    CoursePublished,
    CourseUnlockedInPath,
    EnrollmentCompleted,
    parse_event,
)


def test_payload_rebuilds_concrete_event(clock) -> None:
    event = CourseUnlockedInPath(
        aggregate_id=uuid4(),
        occurred_at=clock(),
        user_id=uuid4(),
        learning_path_id=uuid4(),
        course_id=uuid4(),
        position=2,
    )
    payload = event.to_payload()
    assert payload["event_name"] == "learning_path.course.unlocked"
    assert isinstance(payload["aggregate_id"], str)

    rebuilt = parse_event(payload)
    assert isinstance(rebuilt, CourseUnlockedInPath)
    assert rebuilt == event


def test_events_are_strict(clock) -> None:
    with pytest.raises(ValidationError):
        EnrollmentCompleted(
            aggregate_id=uuid4(),
            occurred_at=clock(),
            user_id=uuid4(),
            course_id=uuid4(),
            unexpected="field",
        )
    with pytest.raises(ValidationError):
        parse_event({"event_name": "enrollment.teleported", "aggregate_id": str(uuid4())})


@pytest.mark.asyncio
async def test_events_publish_only_after_commit(uow, data, publisher) -> None:
    course, _ = await data.course()

    async with uow() as u:
        await enrollment_service.enroll(u, uuid4(), course.course_id)
        assert [e.event_name for e in u.pending_events] == ["enrollment.created"]
        assert publisher.published == []

    assert publisher.names() == ["enrollment.created"]


@pytest.mark.asyncio
async def test_rollback_discards_events(uow, data, publisher, session_factory) -> None:
    user_id = uuid4()
    course, _ = await data.course()

    with pytest.raises(RuntimeError):
        async with uow() as u:
            result = await enrollment_service.enroll(u, user_id, course.course_id)
            enrollment_id = result.enrollment.enrollment_id
            raise RuntimeError("request aborted")

    assert publisher.published == []
    assert await data.get(Enrollment, enrollment_id) is None


def test_session_outside_context(uow) -> None:
    with pytest.raises(RuntimeError):
        uow().session


@pytest.mark.asyncio
async def test_dispatch_without_listeners(session_factory, publisher, ctx, clock) -> None:
    event = CoursePublished(aggregate_id=uuid4(), occurred_at=clock(), previous_status="draft")
    assert "course.published" not in LISTENERS
    assert await dispatch(event, session_factory, publisher, ctx) == 0


@pytest.mark.asyncio
async def test_drain_delivers_until_quiet(uow, ctx, data, publisher, settle) -> None:
    course, _ = await data.course()
    async with uow() as u:
        await enrollment_service.enroll(u, uuid4(), course.course_id)

    handled = await settle(ctx)
    assert [e.event_name for e in handled] == ["enrollment.created"]
    assert await settle(ctx) == []
