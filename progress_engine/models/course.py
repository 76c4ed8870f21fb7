import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import DateTime, Index, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shared.database.postgres import Base

from .enums import (
    CourseStatus,
    CourseVisibility,
    PricingType,
    course_status_enum,
    course_visibility_enum,
    pricing_type_enum,
)


class Course(Base):
    __tablename__ = "courses"

    course_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    status: Mapped[CourseStatus] = mapped_column(
        course_status_enum, nullable=False, default=CourseStatus.DRAFT
    )
    visibility: Mapped[CourseVisibility] = mapped_column(
        course_visibility_enum, nullable=False, default=CourseVisibility.PUBLIC
    )
    pricing_type: Mapped[PricingType] = mapped_column(
        pricing_type_enum, nullable=False, default=PricingType.FREE
    )
    price: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 2), nullable=True, default=Decimal("0.00")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    modules = relationship("CourseModule", back_populates="course", lazy="noload")

    __table_args__ = (
        Index("ix_courses_status", "status"),
    )

    @property
    def is_published(self) -> bool:
        return self.status == CourseStatus.PUBLISHED

    @property
    def is_paid(self) -> bool:
        return self.pricing_type == PricingType.PAID and (self.price or 0) > 0
