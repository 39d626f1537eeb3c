"""In-app notification model."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import UUIDMixin, utcnow


class Notification(UUIDMixin, SQLModel, table=True):
    __tablename__ = "notifications"

    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True, ondelete="CASCADE")
    type: str = Field(nullable=False)  # INVITATION_SENT | INVITATION_ACCEPTED | TASK_ASSIGNED
    title: str = Field(nullable=False)
    body: str = Field(nullable=False)
    link: Optional[str] = None
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=sa.DateTime(timezone=True),
    )
    read_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
