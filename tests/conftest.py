from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import progress_engine.models  # noqa: F401 - register with Base
from progress_engine.config import Settings
from progress_engine.context import EngineContext, build_context
from progress_engine.events.dispatcher import drain
from progress_engine.events.publishers import InMemoryEventPublisher
from progress_engine.models import (
    Assessment,
    AssessmentAttempt,
    Course,
    CourseInvitation,
    CourseModule,
    Enrollment,
    LearningPath,
    LearningPathCourse,
    LearningPathCourseProgress,
    Lesson,
    LessonProgress,
)
from progress_engine.models.enums import (
    CourseStatus,
    CourseVisibility,
    EnrollmentStatus,
    LessonContentType,
    PricingType,
)
from progress_engine.unit_of_work import UnitOfWork
from shared.database.postgres import Base


class FrozenClock:
    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: Any) -> None:
        self.current += timedelta(**kwargs)


def _enable_savepoints(engine) -> None:
    # pysqlite/aiosqlite manage transactions themselves unless told not to
    @event.listens_for(engine.sync_engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")


@pytest_asyncio.fixture
async def session_factory(tmp_path: Path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'progress.db'}", echo=False)
    _enable_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    yield factory
    await engine.dispose()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def publisher() -> InMemoryEventPublisher:
    return InMemoryEventPublisher()


@pytest.fixture
def make_ctx() -> Callable[..., EngineContext]:
    def _make(**overrides: Any) -> EngineContext:
        return build_context(Settings(_env_file=None, **overrides))

    return _make


@pytest.fixture
def ctx(make_ctx) -> EngineContext:
    return make_ctx()


@pytest.fixture
def uow(session_factory, publisher, clock) -> Callable[..., UnitOfWork]:
    def _make(actor_id: UUID | None = None) -> UnitOfWork:
        return UnitOfWork(session_factory, publisher, clock=clock, actor_id=actor_id)

    return _make


@pytest.fixture
def settle(session_factory, publisher, clock):
    """Deliver every queued event, the way the worker would, until nothing is left."""

    async def _settle(ctx: EngineContext):
        return await drain(publisher, session_factory, ctx, clock=clock)

    return _settle


class DataBuilder:
    """Seeds catalog rows in their own committed transactions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._factory = session_factory

    async def _save(self, *rows: Any) -> None:
        async with self._factory() as session:
            session.add_all(rows)
            await session.commit()

    async def course(
        self,
        title: str = "Course",
        *,
        lessons: int = 3,
        durations: list[int | None] | None = None,
        total_pages: int | None = None,
        status: CourseStatus = CourseStatus.PUBLISHED,
        visibility: CourseVisibility = CourseVisibility.PUBLIC,
        pricing_type: PricingType = PricingType.FREE,
        price: Decimal | None = None,
    ) -> tuple[Course, list[Lesson]]:
        course = Course(
            course_id=uuid4(),
            title=title,
            status=status,
            visibility=visibility,
            pricing_type=pricing_type,
            price=price,
        )
        module = CourseModule(module_id=uuid4(), course_id=course.course_id, title="Module 1")
        if durations is None:
            durations = [None] * lessons
        rows = [
            Lesson(
                lesson_id=uuid4(),
                module_id=module.module_id,
                title=f"{title} lesson {i + 1}",
                content_type=LessonContentType.DOCUMENT if total_pages else LessonContentType.VIDEO,
                duration_mins=minutes,
                total_pages=total_pages,
                sort_order=i,
            )
            for i, minutes in enumerate(durations)
        ]
        await self._save(course, module, *rows)
        return course, rows

    async def enrollment(
        self,
        user_id: UUID,
        course: Course,
        *,
        status: EnrollmentStatus = EnrollmentStatus.ACTIVE,
        payment_id: UUID | None = None,
    ) -> Enrollment:
        enrollment = Enrollment(
            enrollment_id=uuid4(),
            user_id=user_id,
            course_id=course.course_id,
            status=status,
            payment_id=payment_id,
            progress_pct=0,
        )
        await self._save(enrollment)
        return enrollment

    async def completed_lessons(self, enrollment: Enrollment, lessons: list[Lesson]) -> None:
        await self._save(
            *[
                LessonProgress(
                    enrollment_id=enrollment.enrollment_id,
                    lesson_id=lesson.lesson_id,
                    is_completed=True,
                    time_spent_secs=60,
                    highest_page_reached=0,
                )
                for lesson in lessons
            ]
        )

    async def assessment(
        self, course: Course, *, required: bool = True, published: bool = True
    ) -> Assessment:
        assessment = Assessment(
            assessment_id=uuid4(),
            course_id=course.course_id,
            title="Quiz",
            is_required=required,
            is_published=published,
        )
        await self._save(assessment)
        return assessment

    async def attempt(self, assessment: Assessment, user_id: UUID, *, passed: bool) -> None:
        await self._save(
            AssessmentAttempt(
                assessment_id=assessment.assessment_id,
                user_id=user_id,
                score=90 if passed else 20,
                passed=passed,
            )
        )

    async def path(
        self,
        courses: list[Course],
        *,
        mode: str | None = None,
        published: bool = True,
        required: list[bool] | None = None,
    ) -> LearningPath:
        path = LearningPath(
            learning_path_id=uuid4(),
            title="Path",
            is_published=published,
            prerequisite_mode=mode,
        )
        if required is None:
            required = [True] * len(courses)
        members = [
            LearningPathCourse(
                learning_path_id=path.learning_path_id,
                course_id=course.course_id,
                position=i + 1,
                is_required=is_required,
            )
            for i, (course, is_required) in enumerate(zip(courses, required))
        ]
        await self._save(path, *members)
        return path

    async def invitation(
        self,
        course: Course,
        user_id: UUID,
        *,
        invited_by: UUID,
        expires_at: datetime | None = None,
    ) -> CourseInvitation:
        invitation = CourseInvitation(
            invitation_id=uuid4(),
            course_id=course.course_id,
            user_id=user_id,
            invited_by=invited_by,
            expires_at=expires_at,
        )
        await self._save(invitation)
        return invitation

    async def get(self, model: type, ident: UUID) -> Any:
        async with self._factory() as session:
            return await session.get(model, ident)

    async def lessons(self, course_id: UUID) -> list[Lesson]:
        async with self._factory() as session:
            stmt = (
                select(Lesson)
                .join(CourseModule, Lesson.module_id == CourseModule.module_id)
                .where(CourseModule.course_id == course_id, Lesson.deleted_at.is_(None))
                .order_by(Lesson.sort_order)
            )
            return list((await session.scalars(stmt)).all())

    async def path_rows(self, path_enrollment_id: UUID) -> list[LearningPathCourseProgress]:
        async with self._factory() as session:
            stmt = (
                select(LearningPathCourseProgress)
                .where(LearningPathCourseProgress.path_enrollment_id == path_enrollment_id)
                .order_by(LearningPathCourseProgress.position)
            )
            return list((await session.scalars(stmt)).all())


@pytest.fixture
def data(session_factory) -> DataBuilder:
    return DataBuilder(session_factory)
