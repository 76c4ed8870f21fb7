"""Domain exception classes for the progress engine.

Every error carries a ``context`` dict with the identifiers involved so
whatever sits above the engine (an API layer, a queue worker) can render
or log it without parsing the message.
"""

from typing import Any
from uuid import UUID


class DomainError(Exception):
    """Base class for every error the engine raises on purpose."""

    def __init__(self, message: str, **context: Any):
        self.context = context
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": str(self),
            "context": {k: str(v) if isinstance(v, UUID) else v for k, v in self.context.items()},
        }


class InvalidStateTransitionError(DomainError):
    """Raised when a transition is not part of the machine's graph."""

    def __init__(
        self,
        from_state: str,
        to_state: str,
        entity_type: str,
        entity_id: Any = None,
        reason: str | None = None,
    ):
        self.from_state = from_state
        self.to_state = to_state
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        message = f'Cannot transition {entity_type}({entity_id}) from "{from_state}" to "{to_state}"'
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            from_state=from_state,
            to_state=to_state,
            entity_type=entity_type,
            entity_id=entity_id,
            reason=reason,
        )


class UnknownStrategyError(DomainError):
    """Raised when a calculator or evaluator name is not registered."""

    def __init__(self, kind: str, name: str, available: list[str] | None = None):
        self.kind = kind
        self.name = name
        super().__init__(
            f"Unknown {kind} strategy: {name!r}",
            kind=kind,
            name=name,
            available=sorted(available or []),
        )


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------


class CourseNotFoundError(DomainError):
    def __init__(self, identifier: Any = ""):
        self.identifier = identifier
        super().__init__(f"Course not found: {identifier}", course_id=identifier)


class LessonNotFoundError(DomainError):
    def __init__(self, lesson_id: Any = ""):
        self.lesson_id = lesson_id
        super().__init__(f"Lesson not found: {lesson_id}", lesson_id=lesson_id)


class EnrollmentNotFoundError(DomainError):
    def __init__(self, identifier: Any = ""):
        self.identifier = identifier
        super().__init__(f"Enrollment not found: {identifier}", enrollment_id=identifier)


class LearningPathNotFoundError(DomainError):
    def __init__(self, identifier: Any = ""):
        self.identifier = identifier
        super().__init__(f"Learning path not found: {identifier}", learning_path_id=identifier)


class PathEnrollmentNotFoundError(DomainError):
    def __init__(self, identifier: Any = ""):
        self.identifier = identifier
        super().__init__(
            f"Learning path enrollment not found: {identifier}",
            path_enrollment_id=identifier,
        )


class InvitationNotFoundError(DomainError):
    def __init__(self, identifier: Any = ""):
        self.identifier = identifier
        super().__init__(f"Invitation not found: {identifier}", invitation_id=identifier)


# ---------------------------------------------------------------------------
# Preconditions
# ---------------------------------------------------------------------------


class AlreadyEnrolledError(DomainError):
    """Raised when the user already holds an active or completed enrollment."""

    def __init__(self, user_id: UUID, course_id: UUID):
        self.user_id = user_id
        self.course_id = course_id
        super().__init__(
            f"User {user_id} is already enrolled in course {course_id}",
            user_id=user_id,
            course_id=course_id,
        )


class CourseNotPublishedError(DomainError):
    """Raised when enrollment is attempted on a course that is not published."""

    def __init__(self, course_id: UUID):
        self.course_id = course_id
        super().__init__(f"Course {course_id} is not published", course_id=course_id)


class EnrollmentNotActiveError(DomainError):
    """Raised when progress is reported against an enrollment that cannot access content."""

    def __init__(self, enrollment_id: UUID, status: str):
        self.enrollment_id = enrollment_id
        self.status = status
        super().__init__(
            f"Enrollment {enrollment_id} is {status}",
            enrollment_id=enrollment_id,
            status=status,
        )


class AlreadyEnrolledInPathError(DomainError):
    def __init__(self, user_id: UUID, learning_path_id: UUID):
        self.user_id = user_id
        self.learning_path_id = learning_path_id
        super().__init__(
            f"User {user_id} is already enrolled in learning path {learning_path_id}",
            user_id=user_id,
            learning_path_id=learning_path_id,
        )


class PathNotPublishedError(DomainError):
    def __init__(self, learning_path_id: UUID):
        self.learning_path_id = learning_path_id
        super().__init__(
            f"Learning path {learning_path_id} is not published",
            learning_path_id=learning_path_id,
        )


class CourseNotInPathError(DomainError):
    def __init__(self, course_id: UUID, learning_path_id: UUID):
        self.course_id = course_id
        self.learning_path_id = learning_path_id
        super().__init__(
            f"Course {course_id} is not part of learning path {learning_path_id}",
            course_id=course_id,
            learning_path_id=learning_path_id,
        )


class PrerequisitesNotMetError(DomainError):
    """Raised when a path course is started before its prerequisites are complete."""

    def __init__(
        self,
        path_enrollment_id: UUID,
        course_id: UUID,
        missing: list[dict[str, Any]],
        reason: str | None = None,
    ):
        self.path_enrollment_id = path_enrollment_id
        self.course_id = course_id
        self.missing = missing
        message = f"Prerequisites not met for course {course_id}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            path_enrollment_id=path_enrollment_id,
            course_id=course_id,
            missing=missing,
            reason=reason,
        )


class InvitationNotPendingError(DomainError):
    def __init__(self, invitation_id: UUID, status: str):
        self.invitation_id = invitation_id
        self.status = status
        super().__init__(
            f"Invitation {invitation_id} is {status}, not pending",
            invitation_id=invitation_id,
            status=status,
        )


class InvitationExpiredError(DomainError):
    def __init__(self, invitation_id: UUID):
        self.invitation_id = invitation_id
        super().__init__(f"Invitation {invitation_id} has expired", invitation_id=invitation_id)
