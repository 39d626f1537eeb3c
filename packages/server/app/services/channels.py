"""
Channel service layer: channels, channel membership and messages.

Handles:
- Channel creation with type/field validation and admin seeding
- Default General/Announcements channels and enrollment into them
- Visibility-filtered channel listing (managers see all, members see their own)
- Message send/edit/delete with realtime fanout after commit
- Oldest-first offset pagination of channel history
"""

from __future__ import annotations

import uuid
from typing import Any, Sequence

import structlog
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.database import insert_for
from app.core.errors import BadRequest, Forbidden, NotFound
from app.core.realtime import ConnectionManager, channel_room
from app.models.base import utcnow
from app.models.channel import Channel, ChannelMember
from app.models.message import Message
from app.models.task import Task
from app.models.user import User
from app.services.authorization import (
    get_project_member_ids,
    require_channel_access,
    require_project_member,
)
from collabhub_shared.schemas.channels import (
    ChannelCreate,
    ChannelMemberAdd,
    ChannelMemberRead,
    ChannelRead,
    ChannelRef,
    MessageRead,
)
from collabhub_shared.schemas.common import (
    DEFAULT_CHANNEL_TYPES,
    PROJECT_MANAGER_ROLES,
    ChannelRole,
    ChannelType,
    UserSummary,
)

log = structlog.get_logger()

PROJECT_SCOPED_TYPES = {ChannelType.PROJECT_GENERAL, ChannelType.ANNOUNCEMENTS}

DEFAULT_CHANNELS = [
    ("General", "General project discussion", ChannelType.PROJECT_GENERAL),
    ("Announcements", "Important updates and announcements", ChannelType.ANNOUNCEMENTS),
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def get_message_or_404(session: AsyncSession, message_id: uuid.UUID) -> Message:
    message = await session.get(Message, message_id)
    if not message:
        raise NotFound("Message not found")
    return message


async def _add_members(
    session: AsyncSession,
    channel_id: uuid.UUID,
    admin_ids: Sequence[uuid.UUID],
    member_ids: Sequence[uuid.UUID],
) -> None:
    """Insert admins first, then members not already admins. Existing rows are kept."""
    admins = list(dict.fromkeys(admin_ids))
    admin_set = set(admins)
    members = [uid for uid in dict.fromkeys(member_ids) if uid not in admin_set]
    now = utcnow()
    rows = [
        {"channel_id": channel_id, "user_id": uid, "role": ChannelRole.ADMIN.value, "joined_at": now}
        for uid in admins
    ] + [
        {"channel_id": channel_id, "user_id": uid, "role": ChannelRole.MEMBER.value, "joined_at": now}
        for uid in members
    ]
    if not rows:
        return
    stmt = insert_for(session, ChannelMember).values(rows)
    await session.execute(stmt.on_conflict_do_nothing(index_elements=["channel_id", "user_id"]))


async def _message_counts(session: AsyncSession, channel_ids: list[uuid.UUID]) -> dict[uuid.UUID, int]:
    if not channel_ids:
        return {}
    result = await session.execute(
        select(Message.channel_id, func.count().label("cnt"))
        .where(Message.channel_id.in_(channel_ids))
        .group_by(Message.channel_id)
    )
    return {row.channel_id: row.cnt for row in result}


def _channel_read(channel: Channel, message_count: int = 0, members=None) -> ChannelRead:
    return ChannelRead(
        id=channel.id,
        name=channel.name,
        description=channel.description,
        type=channel.type,
        project_id=channel.project_id,
        task_id=channel.task_id,
        message_count=message_count,
        members=members or [],
        created_at=channel.created_at,
        updated_at=channel.updated_at,
    )


async def enrich_messages(session: AsyncSession, messages: Sequence[Message]) -> list[MessageRead]:
    """Attach author and channel summaries to messages."""
    if not messages:
        return []
    author_ids = list({m.author_id for m in messages})
    channel_ids = list({m.channel_id for m in messages})

    users = await session.execute(select(User).where(User.id.in_(author_ids)))
    author_map = {u.id: UserSummary.model_validate(u) for u in users.scalars().all()}
    channels = await session.execute(select(Channel).where(Channel.id.in_(channel_ids)))
    channel_map = {c.id: ChannelRef.model_validate(c) for c in channels.scalars().all()}

    return [
        MessageRead(
            id=m.id,
            content=m.content,
            channel_id=m.channel_id,
            author=author_map[m.author_id],
            channel=channel_map[m.channel_id],
            created_at=m.created_at,
            updated_at=m.updated_at,
        )
        for m in messages
    ]


async def enrich_message(session: AsyncSession, message: Message) -> MessageRead:
    return (await enrich_messages(session, [message]))[0]


async def _push(
    fanout: ConnectionManager, channel_id: uuid.UUID, event: str, payload: dict[str, Any]
) -> None:
    """Post-commit realtime push. Best effort: a fanout failure never fails the write."""
    try:
        await fanout.broadcast(channel_room(channel_id), event, {"channel_id": str(channel_id), **payload})
    except Exception:
        log.exception("channel.fanout_failed", channel_id=str(channel_id), realtime_event=event)


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------


async def create_channel(
    session: AsyncSession, user_id: uuid.UUID, channel_in: ChannelCreate
) -> Channel:
    ch_type = channel_in.type
    project_id = channel_in.project_id
    task_id = channel_in.task_id

    # 1. Type/field combination
    if ch_type in PROJECT_SCOPED_TYPES and not project_id:
        raise BadRequest(f"{ch_type.value} channels require a project_id")
    if ch_type == ChannelType.TASK_SPECIFIC and not (project_id and task_id):
        raise BadRequest("TASK_SPECIFIC channels require both project_id and task_id")

    # 2. Project managers only
    if project_id:
        role = await require_project_member(session, user_id, project_id)
        if role not in PROJECT_MANAGER_ROLES:
            raise Forbidden("Only project owners and managers can create channels")

    # 3. Task must belong to the project
    if task_id:
        task = await session.get(Task, task_id)
        if not task or task.project_id != project_id:
            raise NotFound("Task not found in this project")

    # 4. Listed members must all be project members (or existing users, outside projects)
    member_ids = list(dict.fromkeys(channel_in.member_ids))
    if member_ids:
        if project_id:
            allowed = set(await get_project_member_ids(session, project_id))
        else:
            found = await session.execute(select(User.id).where(User.id.in_(member_ids)))
            allowed = {row[0] for row in found.all()}
        if any(uid not in allowed for uid in member_ids):
            raise BadRequest("All members must belong to the project")

    # 5. Create, then seed admins before members
    channel = Channel(
        name=channel_in.name,
        description=channel_in.description,
        type=ch_type.value,
        project_id=project_id,
        task_id=task_id,
    )
    session.add(channel)
    await session.flush()

    if project_id:
        admin_ids = await get_project_member_ids(session, project_id, PROJECT_MANAGER_ROLES)
    else:
        admin_ids = [user_id]
    await _add_members(session, channel.id, admin_ids, member_ids)
    await session.commit()

    log.info(
        "channel.created",
        channel_id=str(channel.id),
        type=ch_type.value,
        project_id=str(project_id) if project_id else None,
    )
    return channel


async def create_default_channels(
    session: AsyncSession, project_id: uuid.UUID, owner_id: uuid.UUID
) -> list[Channel]:
    """Seed General + Announcements with the owner as ADMIN. Existing types are skipped."""
    existing = await session.execute(
        select(Channel.type).where(
            Channel.project_id == project_id,
            Channel.type.in_([t.value for _, _, t in DEFAULT_CHANNELS]),
        )
    )
    present = {row[0] for row in existing.all()}

    created = []
    for name, description, ch_type in DEFAULT_CHANNELS:
        if ch_type.value in present:
            continue
        channel = Channel(name=name, description=description, type=ch_type.value, project_id=project_id)
        session.add(channel)
        await session.flush()
        await _add_members(session, channel.id, [owner_id], [])
        created.append(channel)

    await session.commit()
    log.info("channel.defaults_created", project_id=str(project_id), count=len(created))
    return created


async def add_user_to_default_channels(
    session: AsyncSession, project_id: uuid.UUID, user_id: uuid.UUID
) -> int:
    """Enroll a user as MEMBER in the project's General/Announcements channels."""
    result = await session.execute(
        select(Channel.id).where(
            Channel.project_id == project_id,
            Channel.type.in_([t.value for t in DEFAULT_CHANNEL_TYPES]),
        )
    )
    channel_ids = [row[0] for row in result.all()]
    for channel_id in channel_ids:
        await _add_members(session, channel_id, [], [user_id])
    await session.commit()
    return len(channel_ids)


async def list_project_channels(
    session: AsyncSession, user_id: uuid.UUID, project_id: uuid.UUID
) -> list[ChannelRead]:
    role = await require_project_member(session, user_id, project_id)

    stmt = select(Channel).where(Channel.project_id == project_id)
    if role not in PROJECT_MANAGER_ROLES:
        stmt = stmt.join(
            ChannelMember,
            (ChannelMember.channel_id == Channel.id) & (ChannelMember.user_id == user_id),
        )
    result = await session.execute(stmt.order_by(Channel.created_at))
    channels = list(result.scalars().all())

    counts = await _message_counts(session, [c.id for c in channels])
    return [_channel_read(c, counts.get(c.id, 0)) for c in channels]


async def get_channel(
    session: AsyncSession, user_id: uuid.UUID, channel_id: uuid.UUID
) -> ChannelRead:
    channel, _ = await require_channel_access(session, user_id, channel_id)

    result = await session.execute(
        select(ChannelMember, User)
        .join(User, User.id == ChannelMember.user_id)
        .where(ChannelMember.channel_id == channel_id)
        .order_by(ChannelMember.joined_at)
    )
    members = [
        ChannelMemberRead(user=UserSummary.model_validate(u), role=m.role, joined_at=m.joined_at)
        for m, u in result.all()
    ]
    counts = await _message_counts(session, [channel.id])
    return _channel_read(channel, counts.get(channel.id, 0), members)


async def add_channel_member(
    session: AsyncSession,
    user_id: uuid.UUID,
    channel_id: uuid.UUID,
    member_in: ChannelMemberAdd,
) -> ChannelMemberRead:
    """Channel ADMINs add (or re-role) a member. The target must be a project member."""
    channel, role = await require_channel_access(session, user_id, channel_id)
    if role != ChannelRole.ADMIN:
        raise Forbidden("Only channel admins can add members")

    target = await session.get(User, member_in.user_id)
    if not target:
        raise NotFound("User not found")
    if channel.project_id:
        members = set(await get_project_member_ids(session, channel.project_id))
        if target.id not in members:
            raise BadRequest("User is not a member of this project")

    stmt = insert_for(session, ChannelMember).values(
        channel_id=channel.id, user_id=target.id, role=member_in.role.value, joined_at=utcnow()
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["channel_id", "user_id"],
        set_={"role": stmt.excluded.role},
    )
    await session.execute(stmt)
    await session.commit()

    result = await session.execute(
        select(ChannelMember)
        .where(ChannelMember.channel_id == channel.id, ChannelMember.user_id == target.id)
        .execution_options(populate_existing=True)
    )
    member = result.scalar_one()
    log.info("channel.member_added", channel_id=str(channel.id), user_id=str(target.id), role=member.role)
    return ChannelMemberRead(user=UserSummary.model_validate(target), role=member.role, joined_at=member.joined_at)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


async def send_message(
    session: AsyncSession,
    fanout: ConnectionManager,
    user_id: uuid.UUID,
    channel_id: uuid.UUID,
    content: str,
) -> MessageRead:
    channel, role = await require_channel_access(session, user_id, channel_id, materialize=True)
    if channel.type == ChannelType.ANNOUNCEMENTS.value and role != ChannelRole.ADMIN:
        raise Forbidden("Only owners and managers can post in announcements")

    message = Message(content=content, channel_id=channel.id, author_id=user_id)
    session.add(message)
    await session.commit()

    enriched = await enrich_message(session, message)
    log.info("message.created", message_id=str(message.id), channel_id=str(channel.id))
    await _push(fanout, channel.id, "message_created", {"message": enriched.model_dump(mode="json")})
    return enriched


async def update_message(
    session: AsyncSession,
    fanout: ConnectionManager,
    user_id: uuid.UUID,
    message_id: uuid.UUID,
    content: str,
) -> MessageRead:
    """Authors only. Everyone else, admins included, sees NotFound."""
    message = await session.get(Message, message_id)
    if not message or message.author_id != user_id:
        raise NotFound("Message not found")

    message.content = content
    message.updated_at = utcnow()
    session.add(message)
    await session.commit()

    enriched = await enrich_message(session, message)
    log.info("message.updated", message_id=str(message.id))
    await _push(fanout, message.channel_id, "message_updated", {"message": enriched.model_dump(mode="json")})
    return enriched


async def delete_message(
    session: AsyncSession,
    fanout: ConnectionManager,
    user_id: uuid.UUID,
    message_id: uuid.UUID,
) -> None:
    """Author or any channel ADMIN may delete."""
    message = await get_message_or_404(session, message_id)
    channel_id = message.channel_id

    if message.author_id != user_id:
        try:
            _, role = await require_channel_access(session, user_id, channel_id)
        except NotFound:
            raise NotFound("Message not found") from None
        if role != ChannelRole.ADMIN:
            raise Forbidden("Only the author or a channel admin can delete this message")

    await session.delete(message)
    await session.commit()

    log.info("message.deleted", message_id=str(message_id), user_id=str(user_id))
    await _push(fanout, channel_id, "message_deleted", {"message_id": str(message_id)})


async def get_channel_messages(
    session: AsyncSession,
    user_id: uuid.UUID,
    channel_id: uuid.UUID,
    limit: int = 50,
    offset: int = 0,
) -> list[MessageRead]:
    """Oldest first: offset 0 is the beginning of the channel."""
    await require_channel_access(session, user_id, channel_id)
    result = await session.execute(
        select(Message)
        .where(Message.channel_id == channel_id)
        .order_by(Message.created_at.asc())
        .offset(offset)
        .limit(limit)
    )
    return await enrich_messages(session, list(result.scalars().all()))
