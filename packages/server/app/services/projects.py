"""
Project service layer: projects and their memberships.

Handles:
- Project create (with the creator's OWNER membership in one transaction)
- Owner-only update/delete, with an explicit cascade on delete
- Member listing and role changes
- Enrichment of project data for API responses
"""

from __future__ import annotations

import uuid
from typing import Sequence

import structlog
from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import Conflict, NotFound
from app.models.assignments import TaskAssignment
from app.models.channel import Channel, ChannelMember
from app.models.invitation import Invitation
from app.models.message import Message
from app.models.project import Project, UserProject
from app.models.task import Task
from app.models.user import User
from app.services.authorization import project_role, require_project_member, require_project_owner
from collabhub_shared.schemas.common import ProjectRole, UserSummary
from collabhub_shared.schemas.projects import (
    ProjectCreate,
    ProjectMemberRead,
    ProjectRead,
    ProjectUpdate,
)

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def get_project_or_404(session: AsyncSession, project_id: uuid.UUID) -> Project:
    project = await session.get(Project, project_id)
    if not project:
        raise NotFound("Project not found")
    return project


async def enrich_projects(
    session: AsyncSession, projects: Sequence[Project], user_id: uuid.UUID
) -> list[ProjectRead]:
    """Attach the caller's role plus member and task counts."""
    if not projects:
        return []
    project_ids = [p.id for p in projects]

    member_rows = await session.execute(
        select(UserProject.project_id, func.count().label("cnt"))
        .where(UserProject.project_id.in_(project_ids))
        .group_by(UserProject.project_id)
    )
    members = {row.project_id: row.cnt for row in member_rows}

    task_rows = await session.execute(
        select(Task.project_id, func.count().label("cnt"))
        .where(Task.project_id.in_(project_ids))
        .group_by(Task.project_id)
    )
    tasks = {row.project_id: row.cnt for row in task_rows}

    role_rows = await session.execute(
        select(UserProject.project_id, UserProject.role).where(
            UserProject.project_id.in_(project_ids),
            UserProject.user_id == user_id,
        )
    )
    roles = {row.project_id: row.role for row in role_rows}

    return [
        ProjectRead(
            id=p.id,
            name=p.name,
            description=p.description,
            role=roles.get(p.id),
            member_count=members.get(p.id, 0),
            task_count=tasks.get(p.id, 0),
            created_at=p.created_at,
            updated_at=p.updated_at,
        )
        for p in projects
    ]


async def enrich_project(session: AsyncSession, project: Project, user_id: uuid.UUID) -> ProjectRead:
    return (await enrich_projects(session, [project], user_id))[0]


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


async def create_project(
    session: AsyncSession, owner_id: uuid.UUID, project_in: ProjectCreate
) -> Project:
    project = Project(name=project_in.name, description=project_in.description)
    session.add(project)
    await session.flush()
    session.add(UserProject(user_id=owner_id, project_id=project.id, role=ProjectRole.OWNER.value))
    await session.commit()

    log.info("project.created", project_id=str(project.id), owner_id=str(owner_id))
    return project


async def list_projects(session: AsyncSession, user_id: uuid.UUID) -> list[Project]:
    result = await session.execute(
        select(Project)
        .join(UserProject, UserProject.project_id == Project.id)
        .where(UserProject.user_id == user_id)
        .order_by(Project.created_at.desc())
    )
    return list(result.scalars().all())


async def get_project(
    session: AsyncSession, user_id: uuid.UUID, project_id: uuid.UUID
) -> Project:
    """Members only; anyone else gets the same 404 as a missing project."""
    project = await session.get(Project, project_id)
    if not project or await project_role(session, user_id, project_id) is None:
        raise NotFound("Project not found")
    return project


async def update_project(
    session: AsyncSession,
    user_id: uuid.UUID,
    project_id: uuid.UUID,
    project_in: ProjectUpdate,
) -> Project:
    project = await get_project_or_404(session, project_id)
    await require_project_owner(session, user_id, project_id)

    data = project_in.model_dump(exclude_unset=True)
    for key, value in data.items():
        if key == "name" and value is None:
            continue
        setattr(project, key, value)

    session.add(project)
    await session.commit()
    log.info("project.updated", project_id=str(project_id), fields=sorted(data))
    return project


async def delete_project(
    session: AsyncSession, user_id: uuid.UUID, project_id: uuid.UUID
) -> None:
    """Delete a project and everything it owns."""
    project = await get_project_or_404(session, project_id)
    await require_project_owner(session, user_id, project_id)

    channel_ids = select(Channel.id).where(Channel.project_id == project_id)
    task_ids = select(Task.id).where(Task.project_id == project_id)

    await session.execute(delete(Message).where(Message.channel_id.in_(channel_ids)))
    await session.execute(delete(ChannelMember).where(ChannelMember.channel_id.in_(channel_ids)))
    await session.execute(delete(Channel).where(Channel.project_id == project_id))
    await session.execute(delete(TaskAssignment).where(TaskAssignment.task_id.in_(task_ids)))
    await session.execute(delete(Task).where(Task.project_id == project_id))
    await session.execute(delete(Invitation).where(Invitation.project_id == project_id))
    await session.execute(delete(UserProject).where(UserProject.project_id == project_id))
    await session.delete(project)
    await session.commit()

    log.info("project.deleted", project_id=str(project_id), user_id=str(user_id))


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------


async def list_members(
    session: AsyncSession, user_id: uuid.UUID, project_id: uuid.UUID
) -> list[ProjectMemberRead]:
    await get_project_or_404(session, project_id)
    await require_project_member(session, user_id, project_id)

    result = await session.execute(
        select(UserProject, User)
        .join(User, User.id == UserProject.user_id)
        .where(UserProject.project_id == project_id)
        .order_by(UserProject.joined_at)
    )
    return [
        ProjectMemberRead(
            user=UserSummary.model_validate(user),
            role=membership.role,
            joined_at=membership.joined_at,
        )
        for membership, user in result.all()
    ]


async def update_member_role(
    session: AsyncSession,
    owner_id: uuid.UUID,
    project_id: uuid.UUID,
    target_user_id: uuid.UUID,
    role: ProjectRole,
) -> UserProject:
    """Change a member's project role. The project must keep at least one OWNER."""
    await get_project_or_404(session, project_id)
    await require_project_owner(session, owner_id, project_id)

    membership = await session.get(UserProject, (target_user_id, project_id))
    if not membership:
        raise NotFound("Project member not found")

    if membership.role == ProjectRole.OWNER.value and role != ProjectRole.OWNER:
        owners = await session.execute(
            select(func.count()).select_from(UserProject).where(
                UserProject.project_id == project_id,
                UserProject.role == ProjectRole.OWNER.value,
            )
        )
        if (owners.scalar() or 0) <= 1:
            raise Conflict("A project must keep at least one owner")

    membership.role = role.value
    session.add(membership)
    await session.commit()

    log.info(
        "project.member_role_changed",
        project_id=str(project_id),
        user_id=str(target_user_id),
        role=role.value,
    )
    return membership
