"""Channel and channel membership models."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin, utcnow


class Channel(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "channels"

    name: str = Field(nullable=False)
    description: Optional[str] = None
    type: str = Field(nullable=False)  # PROJECT_GENERAL | TASK_SPECIFIC | ANNOUNCEMENTS | PRIVATE_DM
    project_id: Optional[uuid.UUID] = Field(default=None, foreign_key="projects.id", index=True, ondelete="CASCADE")
    task_id: Optional[uuid.UUID] = Field(default=None, foreign_key="tasks.id", index=True, ondelete="CASCADE")


class ChannelMember(SQLModel, table=True):
    __tablename__ = "channel_members"

    channel_id: uuid.UUID = Field(foreign_key="channels.id", primary_key=True, ondelete="CASCADE")
    user_id: uuid.UUID = Field(foreign_key="users.id", primary_key=True, ondelete="CASCADE")
    role: str = Field(nullable=False, default="MEMBER")  # ADMIN | MEMBER
    joined_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=sa.DateTime(timezone=True),
    )
