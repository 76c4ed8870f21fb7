from uuid import uuid4

import pytest

from progress_engine import database
from progress_engine import worker
from progress_engine.events.dispatcher import LISTENERS
from progress_engine.models import Enrollment, Lesson
from shared.database import ProcessedEventStore
from shared.events.schemas import CoursePublished, LessonDeleted


class FakeRedis:
    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def exists(self, key: str) -> int:
        return int(key in self.store)

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self.store[key] = value
        self.ttls[key] = ex
        return True


@pytest.fixture
def redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def worker_ctx(monkeypatch, session_factory, publisher, ctx, redis) -> dict:
    monkeypatch.setattr(database, "_session_factory", session_factory)
    return {
        "engine": ctx,
        "publisher": publisher,
        "dedup": ProcessedEventStore(redis, prefix=worker.DEDUP_KEY_PREFIX, ttl_secs=600),
        "job_try": 1,
    }


@pytest.mark.asyncio
async def test_handles_event_once(worker_ctx, redis, data, clock) -> None:
    course, lessons = await data.course(lessons=2)
    enrollment = await data.enrollment(uuid4(), course)
    await data.completed_lessons(enrollment, lessons[:1])
    async with database.get_session_factory()() as db:
        lesson = await db.get(Lesson, lessons[1].lesson_id)
        lesson.deleted_at = clock()
        await db.commit()

    event = LessonDeleted(
        aggregate_id=course.course_id, occurred_at=clock(), lesson_id=lessons[1].lesson_id
    )
    assert await worker.handle_domain_event(worker_ctx, event.to_payload()) == "ok"
    assert await worker.handle_domain_event(worker_ctx, event.to_payload()) == "duplicate"

    stored = await data.get(Enrollment, enrollment.enrollment_id)
    assert stored.progress_pct == 100
    assert redis.ttls[f"{worker.DEDUP_KEY_PREFIX}{event.event_id}"] == 600


@pytest.mark.asyncio
async def test_failed_listener_is_retried(worker_ctx, redis, monkeypatch, clock) -> None:
    async def failing(uow, ctx, event):
        raise ValueError("listener bug")

    monkeypatch.setitem(LISTENERS, "course.published", [failing])
    event = CoursePublished(aggregate_id=uuid4(), occurred_at=clock(), previous_status="draft")

    with pytest.raises(ValueError):
        await worker.handle_domain_event(worker_ctx, event.to_payload())
    assert redis.store == {}
