"""
Project endpoints: CRUD, membership, default channels, project-scoped tasks
and invitations.

- Any authenticated user may create a project and becomes its OWNER
- Reads require membership; update/delete/role changes require OWNER
"""

from __future__ import annotations

import uuid
from typing import List

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_current_user
from app.core.database import get_session
from app.models.user import User
from app.services import channels as channel_service
from app.services import invitations as invitation_service
from app.services import projects as project_service
from app.services import tasks as task_service
from app.services.authorization import require_project_owner
from app.services.notifications import Notifier, get_notifier
from collabhub_shared.schemas.channels import ChannelRead
from collabhub_shared.schemas.invitations import InvitationCreate, InvitationRead
from collabhub_shared.schemas.projects import (
    ProjectCreate,
    ProjectMemberRead,
    ProjectMemberRoleUpdate,
    ProjectRead,
    ProjectUpdate,
)
from collabhub_shared.schemas.tasks import TaskCreate, TaskRead

router = APIRouter()


# ---------------------------------------------------------------------------
# Project CRUD
# ---------------------------------------------------------------------------


@router.get("", response_model=List[ProjectRead])
async def list_projects_endpoint(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Projects the caller belongs to, newest first."""
    projects = await project_service.list_projects(session, user.id)
    return await project_service.enrich_projects(session, projects, user.id)


@router.post("", response_model=ProjectRead, status_code=status.HTTP_201_CREATED)
async def create_project_endpoint(
    project_in: ProjectCreate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    project = await project_service.create_project(session, user.id, project_in)
    return await project_service.enrich_project(session, project, user.id)


@router.get("/{project_id}", response_model=ProjectRead)
async def get_project_endpoint(
    project_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    project = await project_service.get_project(session, user.id, project_id)
    return await project_service.enrich_project(session, project, user.id)


@router.patch("/{project_id}", response_model=ProjectRead)
async def update_project_endpoint(
    project_id: uuid.UUID,
    project_in: ProjectUpdate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    project = await project_service.update_project(session, user.id, project_id, project_in)
    return await project_service.enrich_project(session, project, user.id)


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project_endpoint(
    project_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Delete the project with its tasks, channels, messages and invitations."""
    await project_service.delete_project(session, user.id, project_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------


@router.get("/{project_id}/members", response_model=List[ProjectMemberRead])
async def list_members_endpoint(
    project_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    return await project_service.list_members(session, user.id, project_id)


@router.put("/{project_id}/members/{user_id}/role", response_model=ProjectMemberRead)
async def update_member_role_endpoint(
    project_id: uuid.UUID,
    user_id: uuid.UUID,
    body: ProjectMemberRoleUpdate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Change a member's role (OWNER only)."""
    await project_service.update_member_role(session, user.id, project_id, user_id, body.role)
    members = await project_service.list_members(session, user.id, project_id)
    return next(m for m in members if m.user.id == user_id)


@router.post(
    "/{project_id}/default-channels",
    response_model=List[ChannelRead],
    status_code=status.HTTP_201_CREATED,
)
async def create_default_channels_endpoint(
    project_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Seed General and Announcements. Types that already exist are skipped."""
    await project_service.get_project_or_404(session, project_id)
    await require_project_owner(session, user.id, project_id)
    await channel_service.create_default_channels(session, project_id, user.id)
    return await channel_service.list_project_channels(session, user.id, project_id)


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@router.get("/{project_id}/tasks", response_model=List[TaskRead])
async def list_project_tasks_endpoint(
    project_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    tasks = await task_service.list_project_tasks(session, user.id, project_id)
    return await task_service.enrich_tasks(session, tasks)


@router.post("/{project_id}/tasks", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
async def create_task_endpoint(
    project_id: uuid.UUID,
    task_in: TaskCreate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
):
    """Create a task. Assignments at creation time require OWNER."""
    task = await task_service.create_task(session, notifier, user.id, project_id, task_in)
    return await task_service.enrich_task(session, task)


# ---------------------------------------------------------------------------
# Invitations (owner side)
# ---------------------------------------------------------------------------


@router.get("/{project_id}/invitations", response_model=List[InvitationRead])
async def list_project_invitations_endpoint(
    project_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Pending invitations for the project (OWNER only)."""
    invitations = await invitation_service.list_project_invitations(session, user.id, project_id)
    return await invitation_service.enrich_invitations(session, invitations)


@router.post(
    "/{project_id}/invitations",
    response_model=InvitationRead,
    status_code=status.HTTP_201_CREATED,
)
async def send_invitation_endpoint(
    project_id: uuid.UUID,
    body: InvitationCreate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
):
    invitation = await invitation_service.send_invitation(
        session, notifier, user, project_id, body.email
    )
    return (await invitation_service.enrich_invitations(session, [invitation]))[0]


@router.post("/{project_id}/invitations/{invitation_id}/resend", response_model=InvitationRead)
async def resend_invitation_endpoint(
    project_id: uuid.UUID,
    invitation_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
):
    invitation = await invitation_service.resend_invitation(
        session, notifier, user, project_id, invitation_id
    )
    return (await invitation_service.enrich_invitations(session, [invitation]))[0]
