"""Message model."""

import uuid

from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class Message(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "messages"

    content: str = Field(nullable=False)
    channel_id: uuid.UUID = Field(foreign_key="channels.id", nullable=False, index=True, ondelete="CASCADE")
    author_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
