"""
Invitation service layer.

State machine: PENDING -> ACCEPTED | DECLINED, both terminal. Each transition is a
conditional UPDATE on status = PENDING, so of two concurrent accept/decline
calls exactly one wins.

The "one PENDING invitation per (project, email)" rule is a pre-check, not a
constraint; two concurrent sends can both insert. Acceptance tolerates that:
accepting a second copy after the user already joined leaves the existing
membership untouched and creates no duplicate row.
"""

from __future__ import annotations

import uuid
from typing import Sequence

import structlog
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value
from sqlmodel import select

from app.core.database import insert_for
from app.core.errors import Conflict, Forbidden, NotFound
from app.models.base import utcnow
from app.models.invitation import Invitation
from app.models.project import Project, UserProject
from app.models.user import User
from app.services.authorization import require_project_owner
from app.services.channels import add_user_to_default_channels
from app.services.notifications import Notifier
from app.services.projects import get_project_or_404
from collabhub_shared.schemas.common import (
    EmailStatus,
    InvitationStatus,
    NotificationType,
    ProjectRole,
    UserSummary,
)
from collabhub_shared.schemas.invitations import InvitationRead
from collabhub_shared.schemas.projects import ProjectRef

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _display_name(user: User) -> str:
    return user.name or user.email


async def enrich_invitations(
    session: AsyncSession, invitations: Sequence[Invitation]
) -> list[InvitationRead]:
    if not invitations:
        return []
    projects = await session.execute(
        select(Project).where(Project.id.in_({i.project_id for i in invitations}))
    )
    project_map = {p.id: p for p in projects.scalars().all()}
    inviters = await session.execute(
        select(User).where(User.id.in_({i.invited_by_id for i in invitations}))
    )
    inviter_map = {u.id: u for u in inviters.scalars().all()}

    return [
        InvitationRead(
            id=i.id,
            project=ProjectRef.model_validate(project_map[i.project_id]),
            invited_by=UserSummary.model_validate(inviter_map[i.invited_by_id]),
            invited_user_email=i.invited_user_email,
            status=i.status,
            email_status=i.email_status,
            email_last_sent_at=i.email_last_sent_at,
            created_at=i.created_at,
            updated_at=i.updated_at,
        )
        for i in invitations
    ]


async def _get_pending_for_user(
    session: AsyncSession, user: User, invitation_id: uuid.UUID
) -> Invitation:
    """Only PENDING invitations are actionable; the email must match the caller's."""
    invitation = await session.get(Invitation, invitation_id)
    if not invitation or invitation.status != InvitationStatus.PENDING.value:
        raise NotFound("Invitation not found or already processed")
    if invitation.invited_user_email != user.email.lower():
        raise Forbidden("This invitation was sent to a different email address")
    return invitation


async def _close_pending(
    session: AsyncSession, invitation: Invitation, status: InvitationStatus
) -> None:
    """Flip PENDING to a terminal status; losing a concurrent flip is a 404."""
    now = utcnow()
    result = await session.execute(
        update(Invitation)
        .where(
            Invitation.id == invitation.id,
            Invitation.status == InvitationStatus.PENDING.value,
        )
        .values(status=status.value, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFound("Invitation not found or already processed")
    set_committed_value(invitation, "status", status.value)
    set_committed_value(invitation, "updated_at", now)


# ---------------------------------------------------------------------------
# Owner side
# ---------------------------------------------------------------------------


async def send_invitation(
    session: AsyncSession,
    notifier: Notifier,
    owner: User,
    project_id: uuid.UUID,
    email: str,
) -> Invitation:
    project = await get_project_or_404(session, project_id)
    await require_project_owner(session, owner.id, project_id)
    email = email.strip().lower()

    pending = await session.execute(
        select(Invitation.id).where(
            Invitation.project_id == project_id,
            Invitation.invited_user_email == email,
            Invitation.status == InvitationStatus.PENDING.value,
        )
    )
    if pending.first():
        raise Conflict("An invitation is already pending for this email")

    result = await session.execute(select(User).where(User.email == email))
    invitee = result.scalar_one_or_none()
    if invitee and await session.get(UserProject, (invitee.id, project_id)):
        raise Conflict("User is already a member of this project")

    invitation = Invitation(
        project_id=project_id,
        invited_by_id=owner.id,
        invited_user_email=email,
    )
    session.add(invitation)
    await session.commit()
    log.info("invitation.sent", invitation_id=str(invitation.id), project_id=str(project_id))

    if invitee:
        notifier.notify(
            invitee.id,
            NotificationType.INVITATION_SENT,
            title="Project invitation",
            body=f"{_display_name(owner)} invited you to join {project.name}.",
            link="/dashboard/invitations",
        )
    notifier.send_invitation_email(
        invitation.id,
        project_name=project.name,
        invited_user_email=email,
        inviter_name=_display_name(owner),
        inviter_email=owner.email,
    )
    return invitation


async def list_project_invitations(
    session: AsyncSession, owner_id: uuid.UUID, project_id: uuid.UUID
) -> list[Invitation]:
    await get_project_or_404(session, project_id)
    await require_project_owner(session, owner_id, project_id)
    result = await session.execute(
        select(Invitation)
        .where(
            Invitation.project_id == project_id,
            Invitation.status == InvitationStatus.PENDING.value,
        )
        .order_by(Invitation.created_at.desc())
    )
    return list(result.scalars().all())


async def resend_invitation(
    session: AsyncSession,
    notifier: Notifier,
    owner: User,
    project_id: uuid.UUID,
    invitation_id: uuid.UUID,
) -> Invitation:
    project = await get_project_or_404(session, project_id)
    await require_project_owner(session, owner.id, project_id)

    invitation = await session.get(Invitation, invitation_id)
    if (
        not invitation
        or invitation.project_id != project_id
        or invitation.status != InvitationStatus.PENDING.value
    ):
        raise NotFound("Invitation not found or already processed")

    invitation.email_status = EmailStatus.QUEUED.value
    invitation.email_error = None
    session.add(invitation)
    await session.commit()
    log.info("invitation.resent", invitation_id=str(invitation.id))

    notifier.send_invitation_email(
        invitation.id,
        project_name=project.name,
        invited_user_email=invitation.invited_user_email,
        inviter_name=_display_name(owner),
        inviter_email=owner.email,
    )
    return invitation


# ---------------------------------------------------------------------------
# Invitee side
# ---------------------------------------------------------------------------


async def list_pending_for_user(session: AsyncSession, user: User) -> list[Invitation]:
    result = await session.execute(
        select(Invitation)
        .where(
            Invitation.invited_user_email == user.email.lower(),
            Invitation.status == InvitationStatus.PENDING.value,
        )
        .order_by(Invitation.created_at.desc())
    )
    return list(result.scalars().all())


async def accept_invitation(
    session: AsyncSession,
    notifier: Notifier,
    user: User,
    invitation_id: uuid.UUID,
) -> Invitation:
    invitation = await _get_pending_for_user(session, user, invitation_id)

    # Status flip and membership commit together
    await _close_pending(session, invitation, InvitationStatus.ACCEPTED)
    stmt = (
        insert_for(session, UserProject)
        .values(
            user_id=user.id,
            project_id=invitation.project_id,
            role=ProjectRole.MEMBER.value,
            joined_at=utcnow(),
        )
        .on_conflict_do_nothing(index_elements=["user_id", "project_id"])
    )
    await session.execute(stmt)
    await session.commit()
    log.info(
        "invitation.accepted",
        invitation_id=str(invitation.id),
        project_id=str(invitation.project_id),
        user_id=str(user.id),
    )

    try:
        await add_user_to_default_channels(session, invitation.project_id, user.id)
    except SQLAlchemyError:
        await session.rollback()
        log.exception("invitation.channel_enrollment_failed", invitation_id=str(invitation.id))

    project = await session.get(Project, invitation.project_id)
    notifier.notify(
        invitation.invited_by_id,
        NotificationType.INVITATION_ACCEPTED,
        title="Invitation accepted",
        body=f"{_display_name(user)} joined {project.name if project else 'your project'}.",
        link=f"/dashboard/projects/{invitation.project_id}/members",
        send_email=True,
    )
    return invitation


async def decline_invitation(
    session: AsyncSession, user: User, invitation_id: uuid.UUID
) -> Invitation:
    invitation = await _get_pending_for_user(session, user, invitation_id)
    await _close_pending(session, invitation, InvitationStatus.DECLINED)
    await session.commit()
    log.info("invitation.declined", invitation_id=str(invitation.id), user_id=str(user.id))
    return invitation
