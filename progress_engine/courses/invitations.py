"""Invitations to restricted courses.

Accepting an invitation enrolls the learner with ``invited_by`` set to
the inviting trainer. The invitation row is locked for the duration of
the transaction so two concurrent accepts cannot both enroll.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select

from progress_engine.clock import ensure_aware
from progress_engine.enrollment import service as enrollment_service
from progress_engine.enrollment.schemas import EnrollmentResult
from progress_engine.exceptions import (
    InvitationExpiredError,
    InvitationNotFoundError,
    InvitationNotPendingError,
)
from progress_engine.models.enums import InvitationStatus
from progress_engine.models.invitation import CourseInvitation
from progress_engine.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


async def _lock_invitation(uow: UnitOfWork, user_id: UUID, invitation_id: UUID) -> CourseInvitation:
    stmt = (
        select(CourseInvitation)
        .where(
            CourseInvitation.invitation_id == invitation_id,
            CourseInvitation.user_id == user_id,
        )
        .with_for_update()
    )
    invitation = (await uow.session.execute(stmt)).scalar_one_or_none()
    if invitation is None:
        raise InvitationNotFoundError(str(invitation_id))
    return invitation


def _is_expired(uow: UnitOfWork, invitation: CourseInvitation) -> bool:
    if invitation.expires_at is None:
        return False
    return ensure_aware(invitation.expires_at) <= uow.now()


async def accept_invitation(
    uow: UnitOfWork, user_id: UUID, invitation_id: UUID
) -> EnrollmentResult:
    """Accept a pending invitation and enroll the learner.

    Raises ``InvitationExpiredError`` for an invitation past ``expires_at``.
    The whole transaction rolls back in that case, so the row stays
    ``pending`` until :func:`expire_invitation` records the expiry.
    """
    invitation = await _lock_invitation(uow, user_id, invitation_id)
    if invitation.status != InvitationStatus.PENDING:
        raise InvitationNotPendingError(invitation_id, invitation.status.value)
    if _is_expired(uow, invitation):
        raise InvitationExpiredError(invitation_id)

    result = await enrollment_service.enroll(
        uow, user_id, invitation.course_id, invited_by=invitation.invited_by
    )
    invitation.status = InvitationStatus.ACCEPTED
    invitation.responded_at = uow.now()
    await uow.session.flush()

    logger.info("Invitation %s accepted by user %s", invitation_id, user_id)
    return result


async def decline_invitation(uow: UnitOfWork, user_id: UUID, invitation_id: UUID) -> None:
    invitation = await _lock_invitation(uow, user_id, invitation_id)
    if invitation.status != InvitationStatus.PENDING:
        raise InvitationNotPendingError(invitation_id, invitation.status.value)
    invitation.status = InvitationStatus.DECLINED
    invitation.responded_at = uow.now()
    await uow.session.flush()
    logger.info("Invitation %s declined by user %s", invitation_id, user_id)


async def expire_invitation(uow: UnitOfWork, user_id: UUID, invitation_id: UUID) -> bool:
    """Flip a pending invitation past its deadline to ``expired``."""
    invitation = await _lock_invitation(uow, user_id, invitation_id)
    if invitation.status != InvitationStatus.PENDING or not _is_expired(uow, invitation):
        return False
    invitation.status = InvitationStatus.EXPIRED
    await uow.session.flush()
    logger.info("Invitation %s expired", invitation_id)
    return True
