"""
Channel and message endpoints.

- POST /                      : Create a channel
- GET  /project/{project_id}  : Channels of a project visible to the caller
- GET  /{channel_id}          : Channel details with members
- POST /{channel_id}/members  : Add or re-role a member (channel ADMIN)
- GET  /{channel_id}/messages : Message history, oldest first
- POST /{channel_id}/messages : Post a message (broadcast as message_created)
- PUT/DELETE /messages/{id}   : Edit (author) / delete (author or ADMIN)

Channels the caller cannot see answer 404, same as missing ones.
"""

from __future__ import annotations

import uuid
from typing import List

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_current_user
from app.core.database import get_session
from app.core.realtime import ConnectionManager, get_fanout
from app.models.user import User
from app.services import channels as channel_service
from collabhub_shared.schemas.channels import (
    ChannelCreate,
    ChannelMemberAdd,
    ChannelMemberRead,
    ChannelRead,
    MessageCreate,
    MessageRead,
    MessageUpdate,
)

router = APIRouter()


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------


@router.post("", response_model=ChannelRead, status_code=status.HTTP_201_CREATED)
async def create_channel_endpoint(
    channel_in: ChannelCreate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    channel = await channel_service.create_channel(session, user.id, channel_in)
    return await channel_service.get_channel(session, user.id, channel.id)


@router.get("/project/{project_id}", response_model=List[ChannelRead])
async def list_project_channels_endpoint(
    project_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Project OWNER/MANAGERs see every channel; others see the ones they joined."""
    return await channel_service.list_project_channels(session, user.id, project_id)


@router.get("/{channel_id}", response_model=ChannelRead)
async def get_channel_endpoint(
    channel_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    return await channel_service.get_channel(session, user.id, channel_id)


@router.post(
    "/{channel_id}/members",
    response_model=ChannelMemberRead,
    status_code=status.HTTP_201_CREATED,
)
async def add_channel_member_endpoint(
    channel_id: uuid.UUID,
    body: ChannelMemberAdd,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    return await channel_service.add_channel_member(session, user.id, channel_id, body)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@router.get("/{channel_id}/messages", response_model=List[MessageRead])
async def get_messages_endpoint(
    channel_id: uuid.UUID,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    return await channel_service.get_channel_messages(session, user.id, channel_id, limit, offset)


@router.post(
    "/{channel_id}/messages",
    response_model=MessageRead,
    status_code=status.HTTP_201_CREATED,
)
async def post_message_endpoint(
    channel_id: uuid.UUID,
    body: MessageCreate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    fanout: ConnectionManager = Depends(get_fanout),
):
    """Post a message. Announcements accept posts from channel ADMINs only."""
    return await channel_service.send_message(session, fanout, user.id, channel_id, body.content)


@router.put("/messages/{message_id}", response_model=MessageRead)
async def update_message_endpoint(
    message_id: uuid.UUID,
    body: MessageUpdate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    fanout: ConnectionManager = Depends(get_fanout),
):
    return await channel_service.update_message(session, fanout, user.id, message_id, body.content)


@router.delete("/messages/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message_endpoint(
    message_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    fanout: ConnectionManager = Depends(get_fanout),
):
    await channel_service.delete_message(session, fanout, user.id, message_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
