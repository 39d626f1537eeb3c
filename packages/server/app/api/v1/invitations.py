"""
Invitation endpoints for the invitee.

The owner side lives under /projects/{project_id}/invitations.
"""

from __future__ import annotations

import uuid
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_current_user
from app.core.database import get_session
from app.models.user import User
from app.services import invitations as invitation_service
from app.services.notifications import Notifier, get_notifier
from collabhub_shared.schemas.invitations import InvitationRead

router = APIRouter()


@router.get("", response_model=List[InvitationRead])
async def list_my_invitations_endpoint(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Pending invitations addressed to the caller's email."""
    invitations = await invitation_service.list_pending_for_user(session, user)
    return await invitation_service.enrich_invitations(session, invitations)


@router.post("/{invitation_id}/accept", response_model=InvitationRead)
async def accept_invitation_endpoint(
    invitation_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
):
    invitation = await invitation_service.accept_invitation(session, notifier, user, invitation_id)
    return (await invitation_service.enrich_invitations(session, [invitation]))[0]


@router.post("/{invitation_id}/decline", response_model=InvitationRead)
async def decline_invitation_endpoint(
    invitation_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    invitation = await invitation_service.decline_invitation(session, user, invitation_id)
    return (await invitation_service.enrich_invitations(session, [invitation]))[0]
