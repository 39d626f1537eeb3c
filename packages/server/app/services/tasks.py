"""
Task service layer: business logic for tasks and assignments.

Handles:
- Task CRUD (any member creates/updates, only the OWNER deletes)
- Assignment at creation and via assign/unassign (OWNER only, assignees must be members)
- TASK_ASSIGNED notifications after commit
- Enrichment of task data for API responses
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from typing import Sequence

import structlog
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.database import insert_for
from app.core.errors import BadRequest, NotFound
from app.models.assignments import TaskAssignment
from app.models.base import utcnow
from app.models.channel import Channel, ChannelMember
from app.models.message import Message
from app.models.project import Project
from app.models.task import Task
from app.models.user import User
from app.services.authorization import (
    get_project_member_ids,
    require_project_member,
    require_project_owner,
)
from app.services.notifications import Notifier
from collabhub_shared.schemas.common import NotificationType, UserSummary
from collabhub_shared.schemas.projects import ProjectRef
from collabhub_shared.schemas.tasks import (
    AssignmentIn,
    AssignmentRead,
    MyTaskRead,
    TaskCreate,
    TaskRead,
    TaskUpdate,
)

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def get_task_or_404(session: AsyncSession, task_id: uuid.UUID) -> Task:
    task = await session.get(Task, task_id)
    if not task:
        raise NotFound("Task not found")
    return task


async def _validate_assignees(
    session: AsyncSession, project_id: uuid.UUID, assignments: Sequence[AssignmentIn]
) -> None:
    member_ids = set(await get_project_member_ids(session, project_id))
    outsiders = [str(a.user_id) for a in assignments if a.user_id not in member_ids]
    if outsiders:
        raise BadRequest(
            "All assignees must be members of the project: " + ", ".join(outsiders)
        )


def _dedupe(assignments: Sequence[AssignmentIn]) -> list[AssignmentIn]:
    """Collapse repeated user ids; the last note given for a user wins."""
    by_user: dict[uuid.UUID, AssignmentIn] = {}
    for a in assignments:
        by_user[a.user_id] = a
    return list(by_user.values())


def _notify_assignees(
    notifier: Notifier, task: Task, project_name: str, assignments: Sequence[AssignmentIn]
) -> None:
    for a in assignments:
        notifier.notify(
            a.user_id,
            NotificationType.TASK_ASSIGNED,
            title="New task assigned",
            body=f'You were assigned "{task.title}" in {project_name}.',
            link=f"/dashboard/projects/{task.project_id}/tasks/{task.id}",
            send_email=True,
        )


async def enrich_tasks(session: AsyncSession, tasks: Sequence[Task]) -> list[TaskRead]:
    """Convert Task rows to TaskRead with assignee details, in two queries."""
    if not tasks:
        return []
    result = await session.execute(
        select(TaskAssignment, User)
        .join(User, User.id == TaskAssignment.user_id)
        .where(TaskAssignment.task_id.in_([t.id for t in tasks]))
        .order_by(TaskAssignment.assigned_at)
        .execution_options(populate_existing=True)
    )
    by_task: dict[uuid.UUID, list[AssignmentRead]] = defaultdict(list)
    for assignment, user in result.all():
        by_task[assignment.task_id].append(
            AssignmentRead(
                user=UserSummary.model_validate(user),
                note=assignment.note,
                assigned_at=assignment.assigned_at,
            )
        )

    return [
        TaskRead(
            id=t.id,
            project_id=t.project_id,
            title=t.title,
            description=t.description,
            status=t.status,
            due_date=t.due_date,
            assignments=by_task.get(t.id, []),
            created_at=t.created_at,
            updated_at=t.updated_at,
        )
        for t in tasks
    ]


async def enrich_task(session: AsyncSession, task: Task) -> TaskRead:
    return (await enrich_tasks(session, [task]))[0]


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


async def create_task(
    session: AsyncSession,
    notifier: Notifier,
    user_id: uuid.UUID,
    project_id: uuid.UUID,
    task_in: TaskCreate,
) -> Task:
    project = await session.get(Project, project_id)
    if not project:
        raise NotFound("Project not found")
    await require_project_member(session, user_id, project_id)

    assignments = _dedupe(task_in.assignments or [])
    if assignments:
        await require_project_owner(session, user_id, project_id)
        await _validate_assignees(session, project_id, assignments)

    task = Task(
        project_id=project_id,
        title=task_in.title,
        description=task_in.description,
        status=task_in.status.value,
        due_date=task_in.due_date,
    )
    session.add(task)
    await session.flush()

    for a in assignments:
        session.add(TaskAssignment(task_id=task.id, user_id=a.user_id, note=a.note))

    await session.commit()
    log.info(
        "task.created",
        task_id=str(task.id),
        project_id=str(project_id),
        assignees=len(assignments),
    )

    _notify_assignees(notifier, task, project.name, assignments)
    return task


async def list_project_tasks(
    session: AsyncSession, user_id: uuid.UUID, project_id: uuid.UUID
) -> list[Task]:
    await require_project_member(session, user_id, project_id)
    result = await session.execute(
        select(Task).where(Task.project_id == project_id).order_by(Task.created_at.desc())
    )
    return list(result.scalars().all())


async def get_task(session: AsyncSession, user_id: uuid.UUID, task_id: uuid.UUID) -> Task:
    task = await get_task_or_404(session, task_id)
    await require_project_member(session, user_id, task.project_id)
    return task


async def update_task(
    session: AsyncSession,
    user_id: uuid.UUID,
    task_id: uuid.UUID,
    task_in: TaskUpdate,
) -> Task:
    """Any project member may update any field, status included."""
    task = await get_task_or_404(session, task_id)
    await require_project_member(session, user_id, task.project_id)

    data = task_in.model_dump(exclude_unset=True)
    if data.get("status") is not None:
        data["status"] = data["status"].value
    for key, value in data.items():
        if key in ("title", "status") and value is None:
            continue
        setattr(task, key, value)

    session.add(task)
    await session.commit()
    log.info("task.updated", task_id=str(task_id), fields=sorted(data))
    return task


async def delete_task(session: AsyncSession, user_id: uuid.UUID, task_id: uuid.UUID) -> None:
    """Only the project OWNER may delete. Task channels go with the task."""
    task = await get_task_or_404(session, task_id)
    await require_project_owner(session, user_id, task.project_id)

    channel_ids = select(Channel.id).where(Channel.task_id == task_id)
    await session.execute(delete(Message).where(Message.channel_id.in_(channel_ids)))
    await session.execute(delete(ChannelMember).where(ChannelMember.channel_id.in_(channel_ids)))
    await session.execute(delete(Channel).where(Channel.task_id == task_id))
    await session.execute(delete(TaskAssignment).where(TaskAssignment.task_id == task_id))
    await session.delete(task)
    await session.commit()

    log.info("task.deleted", task_id=str(task_id), user_id=str(user_id))


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------


async def assign_task(
    session: AsyncSession,
    notifier: Notifier,
    owner_id: uuid.UUID,
    task_id: uuid.UUID,
    assignments: Sequence[AssignmentIn],
) -> Task:
    """Upsert each assignment (note replaced) and re-notify every listed assignee."""
    task = await get_task_or_404(session, task_id)
    await require_project_owner(session, owner_id, task.project_id)

    assignments = _dedupe(assignments)
    await _validate_assignees(session, task.project_id, assignments)

    for a in assignments:
        stmt = (
            insert_for(session, TaskAssignment)
            .values(task_id=task.id, user_id=a.user_id, note=a.note, assigned_at=utcnow())
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["task_id", "user_id"],
            set_={"note": stmt.excluded.note},
        )
        await session.execute(stmt)

    await session.commit()
    log.info("task.assigned", task_id=str(task_id), assignees=len(assignments))

    project = await session.get(Project, task.project_id)
    _notify_assignees(notifier, task, project.name if project else "your project", assignments)
    return task


async def unassign_task(
    session: AsyncSession,
    owner_id: uuid.UUID,
    task_id: uuid.UUID,
    target_user_id: uuid.UUID,
) -> None:
    task = await get_task_or_404(session, task_id)
    await require_project_owner(session, owner_id, task.project_id)

    assignment = await session.get(TaskAssignment, (task_id, target_user_id))
    if not assignment:
        raise NotFound("Assignment not found")

    await session.delete(assignment)
    await session.commit()
    log.info("task.unassigned", task_id=str(task_id), user_id=str(target_user_id))


async def get_user_tasks(session: AsyncSession, user_id: uuid.UUID) -> list[MyTaskRead]:
    """Tasks assigned to the caller across projects, with only the caller's own note."""
    result = await session.execute(
        select(Task, TaskAssignment, Project)
        .join(TaskAssignment, TaskAssignment.task_id == Task.id)
        .join(Project, Project.id == Task.project_id)
        .where(TaskAssignment.user_id == user_id)
        .order_by(Task.due_date.is_(None), Task.due_date, Task.created_at.desc())
    )
    return [
        MyTaskRead(
            id=task.id,
            title=task.title,
            description=task.description,
            status=task.status,
            due_date=task.due_date,
            project=ProjectRef(id=project.id, name=project.name),
            note=assignment.note,
            assigned_at=assignment.assigned_at,
            created_at=task.created_at,
            updated_at=task.updated_at,
        )
        for task, assignment, project in result.all()
    ]
