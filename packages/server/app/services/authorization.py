"""
Membership and authorization checks for projects and channels.

Project checks raise Forbidden. Channel checks raise NotFound, so a channel
the caller cannot see looks exactly like one that does not exist.

Channel roles resolve in two steps:
- resolve_effective_channel_role: read-only; an explicit ChannelMember row
  wins, otherwise a project OWNER/MANAGER is an implicit ADMIN
- materialize_membership: idempotent insert of the row, used only on the
  mutating paths (message send, realtime join)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.database import insert_for
from app.core.errors import Forbidden, NotFound
from app.models.base import utcnow
from app.models.channel import Channel, ChannelMember
from app.models.project import UserProject
from collabhub_shared.schemas.common import PROJECT_MANAGER_ROLES, ChannelRole, ProjectRole

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


async def project_role(
    session: AsyncSession, user_id: uuid.UUID, project_id: uuid.UUID
) -> Optional[ProjectRole]:
    result = await session.execute(
        select(UserProject.role).where(
            UserProject.user_id == user_id,
            UserProject.project_id == project_id,
        )
    )
    role = result.scalar_one_or_none()
    return ProjectRole(role) if role else None


async def require_project_member(
    session: AsyncSession, user_id: uuid.UUID, project_id: uuid.UUID
) -> ProjectRole:
    role = await project_role(session, user_id, project_id)
    if role is None:
        raise Forbidden("You are not a member of this project")
    return role


async def require_project_owner(
    session: AsyncSession, user_id: uuid.UUID, project_id: uuid.UUID
) -> ProjectRole:
    role = await project_role(session, user_id, project_id)
    if role != ProjectRole.OWNER:
        raise Forbidden("Only the project owner can perform this action")
    return role


async def is_project_manager_or_owner(
    session: AsyncSession, user_id: uuid.UUID, project_id: uuid.UUID
) -> bool:
    return await project_role(session, user_id, project_id) in PROJECT_MANAGER_ROLES


async def get_project_member_ids(
    session: AsyncSession, project_id: uuid.UUID, roles: Optional[set[ProjectRole]] = None
) -> list[uuid.UUID]:
    stmt = select(UserProject.user_id).where(UserProject.project_id == project_id)
    if roles:
        stmt = stmt.where(UserProject.role.in_([r.value for r in roles]))
    result = await session.execute(stmt)
    return [row[0] for row in result.all()]


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EffectiveChannelRole:
    role: ChannelRole
    implicit: bool  # True when derived from project role with no ChannelMember row


async def get_channel_member(
    session: AsyncSession, channel_id: uuid.UUID, user_id: uuid.UUID
) -> Optional[ChannelMember]:
    result = await session.execute(
        select(ChannelMember).where(
            ChannelMember.channel_id == channel_id,
            ChannelMember.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def resolve_effective_channel_role(
    session: AsyncSession, user_id: uuid.UUID, channel: Channel
) -> Optional[EffectiveChannelRole]:
    """Work out the caller's channel role without writing anything."""
    member = await get_channel_member(session, channel.id, user_id)
    if member is not None:
        # Explicit row is authoritative, even when lower than the project role
        return EffectiveChannelRole(ChannelRole(member.role), implicit=False)

    if channel.project_id and await is_project_manager_or_owner(session, user_id, channel.project_id):
        return EffectiveChannelRole(ChannelRole.ADMIN, implicit=True)

    return None


async def materialize_membership(
    session: AsyncSession,
    channel_id: uuid.UUID,
    user_id: uuid.UUID,
    role: ChannelRole,
) -> ChannelMember:
    """Insert the (channel, user) row unless it exists, then return the stored row.

    Concurrent callers collapse onto one row: the insert is ON CONFLICT DO
    NOTHING, and whichever row won is read back.
    """
    stmt = (
        insert_for(session, ChannelMember)
        .values(channel_id=channel_id, user_id=user_id, role=role.value, joined_at=utcnow())
        .on_conflict_do_nothing(index_elements=["channel_id", "user_id"])
    )
    await session.execute(stmt)
    member = await get_channel_member(session, channel_id, user_id)
    log.debug("channel.membership_materialized", channel_id=str(channel_id), user_id=str(user_id))
    return member


async def channel_role(
    session: AsyncSession,
    user_id: uuid.UUID,
    channel: Channel,
    *,
    materialize: bool = False,
) -> Optional[ChannelRole]:
    effective = await resolve_effective_channel_role(session, user_id, channel)
    if effective is None:
        return None
    if effective.implicit and materialize:
        member = await materialize_membership(session, channel.id, user_id, effective.role)
        return ChannelRole(member.role)
    return effective.role


async def require_channel_access(
    session: AsyncSession,
    user_id: uuid.UUID,
    channel_id: uuid.UUID,
    *,
    materialize: bool = False,
) -> tuple[Channel, ChannelRole]:
    """Return (channel, role) or raise NotFound for missing and hidden channels alike."""
    channel = await session.get(Channel, channel_id)
    if channel is None:
        raise NotFound("Channel not found")
    role = await channel_role(session, user_id, channel, materialize=materialize)
    if role is None:
        raise NotFound("Channel not found")
    return channel, role
