"""
Task endpoints: read/update/delete, assignment, and the caller's own tasks.

Tasks are created under their project: POST /projects/{project_id}/tasks.
- Any project member may read and update (status included, no transition rules)
- Delete, assign and unassign require the project OWNER
- Assignees receive a TASK_ASSIGNED notification and email after commit
"""

from __future__ import annotations

import uuid
from typing import List

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_current_user
from app.core.database import get_session
from app.models.user import User
from app.services import tasks as task_service
from app.services.notifications import Notifier, get_notifier
from collabhub_shared.schemas.tasks import MyTaskRead, TaskAssign, TaskRead, TaskUpdate

router = APIRouter()


@router.get("/mine", response_model=List[MyTaskRead])
async def my_tasks_endpoint(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Tasks assigned to the caller across all projects."""
    return await task_service.get_user_tasks(session, user.id)


@router.get("/{task_id}", response_model=TaskRead)
async def get_task_endpoint(
    task_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    task = await task_service.get_task(session, user.id, task_id)
    return await task_service.enrich_task(session, task)


@router.patch("/{task_id}", response_model=TaskRead)
async def update_task_endpoint(
    task_id: uuid.UUID,
    task_in: TaskUpdate,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    task = await task_service.update_task(session, user.id, task_id, task_in)
    return await task_service.enrich_task(session, task)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task_endpoint(
    task_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    await task_service.delete_task(session, user.id, task_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------


@router.post("/{task_id}/assign", response_model=TaskRead)
async def assign_task_endpoint(
    task_id: uuid.UUID,
    body: TaskAssign,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
):
    """Add or update assignees. An existing assignee's note is replaced."""
    task = await task_service.assign_task(session, notifier, user.id, task_id, body.assignments)
    return await task_service.enrich_task(session, task)


@router.delete("/{task_id}/assignments/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unassign_task_endpoint(
    task_id: uuid.UUID,
    user_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    await task_service.unassign_task(session, user.id, task_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
