from __future__ import annotations

import logging

from sqlalchemy import select

from progress_engine.context import EngineContext
from progress_engine.models.enrollment import Enrollment
from progress_engine.models.enums import EnrollmentStatus
from progress_engine.progress import service as progress_service
from progress_engine.unit_of_work import UnitOfWork
from shared.events.schemas import LessonDeleted

logger = logging.getLogger(__name__)


async def recalculate_on_lesson_deleted(
    uow: UnitOfWork, ctx: EngineContext, event: LessonDeleted
) -> None:
    """Removing a lesson changes the denominator for every active learner."""
    stmt = select(Enrollment).where(
        Enrollment.course_id == event.aggregate_id,
        Enrollment.status == EnrollmentStatus.ACTIVE,
    )
    enrollments = list((await uow.session.scalars(stmt)).all())
    for enrollment in enrollments:
        await progress_service.recalculate_course_progress(uow, ctx, enrollment)
    logger.info(
        "Recalculated %d enrollment(s) after lesson %s was deleted",
        len(enrollments), event.lesson_id,
    )
