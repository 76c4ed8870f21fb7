import enum

from sqlalchemy import Enum as SAEnum


class CourseStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class CourseVisibility(str, enum.Enum):
    PUBLIC = "public"
    RESTRICTED = "restricted"
    HIDDEN = "hidden"


class PricingType(str, enum.Enum):
    FREE = "free"
    PAID = "paid"


class EnrollmentStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    DROPPED = "dropped"


class PathEnrollmentState(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    DROPPED = "dropped"


class CourseProgressState(str, enum.Enum):
    LOCKED = "locked"
    AVAILABLE = "available"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class LessonContentType(str, enum.Enum):
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    TEXT = "text"


class InvitationStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


def _enum_type(enum_cls: type[enum.Enum], name: str) -> SAEnum:
    # Store the lowercase values, not the member names
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


# Shared SQLAlchemy enum types (reuse across models to avoid duplicate type creation)
course_status_enum = _enum_type(CourseStatus, "course_status")
course_visibility_enum = _enum_type(CourseVisibility, "course_visibility")
pricing_type_enum = _enum_type(PricingType, "pricing_type")
enrollment_status_enum = _enum_type(EnrollmentStatus, "enrollment_status")
path_enrollment_state_enum = _enum_type(PathEnrollmentState, "path_enrollment_state")
course_progress_state_enum = _enum_type(CourseProgressState, "course_progress_state")
lesson_content_type_enum = _enum_type(LessonContentType, "lesson_content_type")
invitation_status_enum = _enum_type(InvitationStatus, "invitation_status")
