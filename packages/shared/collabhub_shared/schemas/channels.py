"""Channel and message schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import UUID4

from .common import ChannelRole, ChannelType, UserSummary


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------

class ChannelCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    type: ChannelType
    project_id: Optional[UUID4] = None
    task_id: Optional[UUID4] = None
    member_ids: List[UUID4] = Field(default_factory=list)


class ChannelMemberAdd(BaseModel):
    user_id: UUID4
    role: ChannelRole = ChannelRole.MEMBER


class ChannelMemberRead(BaseModel):
    user: UserSummary
    role: ChannelRole
    joined_at: datetime


class ChannelRead(BaseModel):
    id: UUID4
    name: str
    description: Optional[str] = None
    type: ChannelType
    project_id: Optional[UUID4] = None
    task_id: Optional[UUID4] = None
    message_count: int = 0
    members: List[ChannelMemberRead] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class ChannelRef(BaseModel):
    id: UUID4
    name: str
    type: ChannelType

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

class MessageCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    content: str = Field(min_length=1, max_length=2000)


class MessageUpdate(MessageCreate):
    pass


class MessageRead(BaseModel):
    id: UUID4
    content: str
    channel_id: UUID4
    author: UserSummary
    channel: ChannelRef
    created_at: datetime
    updated_at: datetime
