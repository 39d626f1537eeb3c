"""
Notification endpoints: list, mark one read, mark all read.
"""

from __future__ import annotations

import uuid
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_current_user
from app.core.database import get_session
from app.models.user import User
from app.services import notifications as notification_service
from collabhub_shared.schemas.invitations import NotificationRead

router = APIRouter()


@router.get("", response_model=List[NotificationRead])
async def list_notifications_endpoint(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    return await notification_service.list_notifications(session, user.id)


@router.post("/read-all")
async def mark_all_read_endpoint(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    updated = await notification_service.mark_all_read(session, user.id)
    return {"updated": updated}


@router.post("/{notification_id}/read", response_model=NotificationRead)
async def mark_read_endpoint(
    notification_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    return await notification_service.mark_read(session, user.id, notification_id)
