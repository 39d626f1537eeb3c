"""Invitation and notification schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, UUID4

from .common import EmailStatus, InvitationStatus, NotificationType, UserSummary
from .projects import ProjectRef


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------

class InvitationCreate(BaseModel):
    email: EmailStr


class InvitationRead(BaseModel):
    id: UUID4
    project: ProjectRef
    invited_by: UserSummary
    invited_user_email: str
    status: InvitationStatus
    email_status: EmailStatus
    email_last_sent_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

class NotificationRead(BaseModel):
    id: UUID4
    type: NotificationType
    title: str
    body: str
    link: Optional[str] = None
    created_at: datetime
    read_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
