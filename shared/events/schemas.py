"""Domain events emitted by the progress engine.

Every event shares one envelope (``event_id``, ``event_name``,
``aggregate_type``, ``aggregate_id``, ``actor_id``, ``occurred_at``,
``metadata``) plus a few typed fields its listeners need. Events are
immutable; ``occurred_at`` is always supplied by the caller's clock.
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class DomainEvent(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    event_id: UUID = Field(default_factory=uuid4)
    event_name: str
    aggregate_type: str
    aggregate_id: UUID
    actor_id: UUID | None = None
    occurred_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe dict used as the queue payload."""
        return self.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Course enrollment
# ---------------------------------------------------------------------------


class UserEnrolled(DomainEvent):
    event_name: Literal["enrollment.created"] = "enrollment.created"
    aggregate_type: str = "enrollment"
    user_id: UUID
    course_id: UUID
    invited_by: UUID | None = None


class UserReenrolled(DomainEvent):
    event_name: Literal["enrollment.reactivated"] = "enrollment.reactivated"
    aggregate_type: str = "enrollment"
    user_id: UUID
    course_id: UUID
    progress_preserved: bool = True
    invited_by: UUID | None = None


class CourseStarted(DomainEvent):
    event_name: Literal["enrollment.course_started"] = "enrollment.course_started"
    aggregate_type: str = "enrollment"
    user_id: UUID
    course_id: UUID


class UserDropped(DomainEvent):
    event_name: Literal["enrollment.dropped"] = "enrollment.dropped"
    aggregate_type: str = "enrollment"
    user_id: UUID
    course_id: UUID
    reason: str | None = None


class EnrollmentCompleted(DomainEvent):
    event_name: Literal["enrollment.completed"] = "enrollment.completed"
    aggregate_type: str = "enrollment"
    user_id: UUID
    course_id: UUID


class LessonCompleted(DomainEvent):
    event_name: Literal["lesson.completed"] = "lesson.completed"
    aggregate_type: str = "enrollment"
    user_id: UUID
    course_id: UUID
    lesson_id: UUID


# ---------------------------------------------------------------------------
# Course catalog
# ---------------------------------------------------------------------------


class LessonDeleted(DomainEvent):
    event_name: Literal["progress.lesson_deleted"] = "progress.lesson_deleted"
    aggregate_type: str = "course"
    lesson_id: UUID


class CoursePublished(DomainEvent):
    event_name: Literal["course.published"] = "course.published"
    aggregate_type: str = "course"
    previous_status: str


class CourseUnpublished(DomainEvent):
    event_name: Literal["course.unpublished"] = "course.unpublished"
    aggregate_type: str = "course"
    previous_status: str


class CourseArchived(DomainEvent):
    event_name: Literal["course.archived"] = "course.archived"
    aggregate_type: str = "course"
    previous_status: str


# ---------------------------------------------------------------------------
# Learning paths
# ---------------------------------------------------------------------------


class PathEnrollmentCreated(DomainEvent):
    event_name: Literal["learning_path.enrollment.created"] = "learning_path.enrollment.created"
    aggregate_type: str = "learning_path_enrollment"
    user_id: UUID
    learning_path_id: UUID
    reactivated: bool = False


class PathDropped(DomainEvent):
    event_name: Literal["learning_path.dropped"] = "learning_path.dropped"
    aggregate_type: str = "learning_path_enrollment"
    user_id: UUID
    learning_path_id: UUID
    reason: str | None = None


class PathCompleted(DomainEvent):
    event_name: Literal["learning_path.completed"] = "learning_path.completed"
    aggregate_type: str = "learning_path_enrollment"
    user_id: UUID
    learning_path_id: UUID
    completed_courses: int


class CourseUnlockedInPath(DomainEvent):
    event_name: Literal["learning_path.course.unlocked"] = "learning_path.course.unlocked"
    aggregate_type: str = "learning_path_enrollment"
    user_id: UUID
    learning_path_id: UUID
    course_id: UUID
    position: int


class PathProgressUpdated(DomainEvent):
    event_name: Literal["learning_path.progress.updated"] = "learning_path.progress.updated"
    aggregate_type: str = "learning_path_enrollment"
    user_id: UUID
    learning_path_id: UUID
    previous_percentage: int
    new_percentage: int


AnyEvent = Annotated[
    Union[
        UserEnrolled,
        UserReenrolled,
        CourseStarted,
        UserDropped,
        EnrollmentCompleted,
        LessonCompleted,
        LessonDeleted,
        CoursePublished,
        CourseUnpublished,
        CourseArchived,
        PathEnrollmentCreated,
        PathDropped,
        PathCompleted,
        CourseUnlockedInPath,
        PathProgressUpdated,
    ],
    Field(discriminator="event_name"),
]

_event_adapter: TypeAdapter[AnyEvent] = TypeAdapter(AnyEvent)


def parse_event(payload: dict[str, Any]) -> DomainEvent:
    """Rebuild the concrete event class from a queue payload."""
    return _event_adapter.validate_python(payload)
