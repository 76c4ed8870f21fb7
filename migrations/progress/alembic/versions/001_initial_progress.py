"""Initial progress engine schema

Revision ID: 001_initial_progress
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ENUM, UUID

# revision identifiers, used by Alembic.
revision: str = "001_initial_progress"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ENUMS = {
    "course_status": ("draft", "published", "archived"),
    "course_visibility": ("public", "restricted", "hidden"),
    "pricing_type": ("free", "paid"),
    "enrollment_status": ("active", "completed", "dropped"),
    "path_enrollment_state": ("active", "completed", "dropped"),
    "course_progress_state": ("locked", "available", "in_progress", "completed"),
    "lesson_content_type": ("video", "audio", "document", "text"),
    "invitation_status": ("pending", "accepted", "declined", "expired"),
}


def _enum(name: str) -> ENUM:
    # Types are created up front in upgrade()
    return ENUM(*ENUMS[name], name=name, create_type=False)


def _uuid_pk(name: str) -> sa.Column:
    return sa.Column(
        name,
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _created_at(name: str = "created_at") -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("now()"),
    )


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        sa.Enum(*values, name=name).create(bind, checkfirst=True)

    # ── Catalog ─────────────────────────────────────────────────────────────
    op.create_table(
        "courses",
        _uuid_pk("course_id"),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("status", _enum("course_status"), nullable=False, server_default="draft"),
        sa.Column(
            "visibility", _enum("course_visibility"), nullable=False, server_default="public"
        ),
        sa.Column("pricing_type", _enum("pricing_type"), nullable=False, server_default="free"),
        sa.Column("price", sa.Numeric(10, 2), nullable=True, server_default="0.00"),
        _created_at(),
        _created_at("updated_at"),
    )
    op.create_index("ix_courses_status", "courses", ["status"])

    op.create_table(
        "course_modules",
        _uuid_pk("module_id"),
        sa.Column(
            "course_id",
            UUID(as_uuid=True),
            sa.ForeignKey("courses.course_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("sort_order", sa.SmallInteger, nullable=False, server_default="0"),
        _created_at(),
    )
    op.create_index("ix_course_modules_course_id", "course_modules", ["course_id"])

    op.create_table(
        "lessons",
        _uuid_pk("lesson_id"),
        sa.Column(
            "module_id",
            UUID(as_uuid=True),
            sa.ForeignKey("course_modules.module_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column(
            "content_type", _enum("lesson_content_type"), nullable=False, server_default="text"
        ),
        sa.Column("duration_mins", sa.Integer, nullable=True),
        sa.Column("total_pages", sa.SmallInteger, nullable=True),
        sa.Column("sort_order", sa.SmallInteger, nullable=False, server_default="0"),
        _created_at(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_lessons_module_id", "lessons", ["module_id"])

    op.create_table(
        "assessments",
        _uuid_pk("assessment_id"),
        sa.Column(
            "course_id",
            UUID(as_uuid=True),
            sa.ForeignKey("courses.course_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("is_published", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_required", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("passing_score", sa.SmallInteger, nullable=False, server_default="70"),
        _created_at(),
    )
    op.create_index("ix_assessments_course_id", "assessments", ["course_id"])

    op.create_table(
        "assessment_attempts",
        _uuid_pk("attempt_id"),
        sa.Column(
            "assessment_id",
            UUID(as_uuid=True),
            sa.ForeignKey("assessments.assessment_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column("score", sa.SmallInteger, nullable=False, server_default="0"),
        sa.Column("passed", sa.Boolean, nullable=False, server_default=sa.false()),
        _created_at("submitted_at"),
    )
    op.create_index(
        "ix_assessment_attempts_assessment_user",
        "assessment_attempts",
        ["assessment_id", "user_id"],
    )

    # ── Enrollment and lesson progress ─────────────────────────────────────
    op.create_table(
        "enrollments",
        _uuid_pk("enrollment_id"),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column(
            "course_id",
            UUID(as_uuid=True),
            sa.ForeignKey("courses.course_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("payment_id", UUID(as_uuid=True), nullable=True),
        sa.Column("invited_by", UUID(as_uuid=True), nullable=True),
        sa.Column("status", _enum("enrollment_status"), nullable=False, server_default="active"),
        sa.Column("progress_pct", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "last_lesson_id",
            UUID(as_uuid=True),
            sa.ForeignKey("lessons.lesson_id", ondelete="SET NULL"),
            nullable=True,
        ),
        _created_at("enrolled_at"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at("updated_at"),
        sa.UniqueConstraint("user_id", "course_id", name="uq_enrollments_user_course"),
    )
    op.create_index("ix_enrollments_course_id", "enrollments", ["course_id"])
    op.create_index("ix_enrollments_status", "enrollments", ["status"])

    op.create_table(
        "lesson_progress",
        _uuid_pk("progress_id"),
        sa.Column(
            "enrollment_id",
            UUID(as_uuid=True),
            sa.ForeignKey("enrollments.enrollment_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "lesson_id",
            UUID(as_uuid=True),
            sa.ForeignKey("lessons.lesson_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("is_completed", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("time_spent_secs", sa.Integer, nullable=False, server_default="0"),
        sa.Column("current_page", sa.Integer, nullable=True),
        sa.Column("total_pages", sa.Integer, nullable=True),
        sa.Column("highest_page_reached", sa.Integer, nullable=False, server_default="0"),
        sa.Column("pagination_metadata", sa.JSON, nullable=True),
        sa.Column("media_position_secs", sa.Integer, nullable=True),
        sa.Column("media_duration_secs", sa.Integer, nullable=True),
        sa.Column("media_progress_pct", sa.Numeric(5, 2), nullable=True),
        sa.Column("last_viewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.UniqueConstraint(
            "enrollment_id", "lesson_id", name="uq_lesson_progress_enrollment_lesson"
        ),
    )
    op.create_index("ix_lesson_progress_lesson_id", "lesson_progress", ["lesson_id"])

    op.create_table(
        "course_invitations",
        _uuid_pk("invitation_id"),
        sa.Column(
            "course_id",
            UUID(as_uuid=True),
            sa.ForeignKey("courses.course_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column("invited_by", UUID(as_uuid=True), nullable=False),
        sa.Column(
            "status", _enum("invitation_status"), nullable=False, server_default="pending"
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.UniqueConstraint("course_id", "user_id", name="uq_course_invitations_course_user"),
    )
    op.create_index("ix_course_invitations_user_id", "course_invitations", ["user_id"])

    # ── Learning paths ─────────────────────────────────────────────────────
    op.create_table(
        "learning_paths",
        _uuid_pk("learning_path_id"),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("is_published", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("prerequisite_mode", sa.String(50), nullable=True),
        _created_at(),
    )

    op.create_table(
        "learning_path_courses",
        _uuid_pk("id"),
        sa.Column(
            "learning_path_id",
            UUID(as_uuid=True),
            sa.ForeignKey("learning_paths.learning_path_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "course_id",
            UUID(as_uuid=True),
            sa.ForeignKey("courses.course_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.SmallInteger, nullable=False),
        sa.Column("is_required", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("min_completion_pct", sa.Integer, nullable=True),
        sa.Column("prerequisites", sa.JSON, nullable=True),
        sa.UniqueConstraint(
            "learning_path_id", "course_id", name="uq_learning_path_courses_path_course"
        ),
        sa.UniqueConstraint(
            "learning_path_id", "position", name="uq_learning_path_courses_path_position"
        ),
    )
    op.create_index(
        "ix_learning_path_courses_course_id", "learning_path_courses", ["course_id"]
    )

    op.create_table(
        "learning_path_enrollments",
        _uuid_pk("path_enrollment_id"),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column(
            "learning_path_id",
            UUID(as_uuid=True),
            sa.ForeignKey("learning_paths.learning_path_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "state", _enum("path_enrollment_state"), nullable=False, server_default="active"
        ),
        sa.Column("progress_pct", sa.Integer, nullable=False, server_default="0"),
        _created_at("enrolled_at"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dropped_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("drop_reason", sa.String(500), nullable=True),
        sa.UniqueConstraint(
            "user_id", "learning_path_id", name="uq_learning_path_enrollments_user_path"
        ),
    )
    op.create_index(
        "ix_learning_path_enrollments_state", "learning_path_enrollments", ["state"]
    )

    op.create_table(
        "learning_path_course_progress",
        _uuid_pk("id"),
        sa.Column(
            "path_enrollment_id",
            UUID(as_uuid=True),
            sa.ForeignKey("learning_path_enrollments.path_enrollment_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "course_id",
            UUID(as_uuid=True),
            sa.ForeignKey("courses.course_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.SmallInteger, nullable=False),
        sa.Column(
            "state", _enum("course_progress_state"), nullable=False, server_default="locked"
        ),
        sa.Column(
            "course_enrollment_id",
            UUID(as_uuid=True),
            sa.ForeignKey("enrollments.enrollment_id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("unlocked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "path_enrollment_id",
            "course_id",
            name="uq_learning_path_course_progress_enrollment_course",
        ),
    )
    op.create_index(
        "ix_learning_path_course_progress_course_enrollment_id",
        "learning_path_course_progress",
        ["course_enrollment_id"],
    )


def downgrade() -> None:
    op.drop_table("learning_path_course_progress")
    op.drop_table("learning_path_enrollments")
    op.drop_table("learning_path_courses")
    op.drop_table("learning_paths")
    op.drop_table("course_invitations")
    op.drop_table("lesson_progress")
    op.drop_table("enrollments")
    op.drop_table("assessment_attempts")
    op.drop_table("assessments")
    op.drop_table("lessons")
    op.drop_table("course_modules")
    op.drop_table("courses")
    for name in reversed(list(ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
