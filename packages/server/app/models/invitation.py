"""Project invitation model."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class Invitation(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "invitations"
    __table_args__ = (
        sa.Index("ix_invitations_project_email_status", "project_id", "invited_user_email", "status"),
    )

    project_id: uuid.UUID = Field(foreign_key="projects.id", nullable=False, index=True, ondelete="CASCADE")
    invited_by_id: uuid.UUID = Field(foreign_key="users.id", nullable=False)
    invited_user_email: str = Field(nullable=False, index=True)  # lower-cased
    status: str = Field(nullable=False, default="PENDING")  # PENDING | ACCEPTED | DECLINED
    email_status: str = Field(nullable=False, default="QUEUED")  # QUEUED | SENT | FAILED
    email_last_sent_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    email_error: Optional[str] = None
