"""Task-related Pydantic schemas for shared use across server and frontend codegen."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic import UUID4

from .common import TaskStatus, UserSummary
from .projects import ProjectRef


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------

class AssignmentIn(BaseModel):
    """A single assignee (with an optional note) supplied on create or assign."""
    user_id: UUID4
    note: Optional[str] = Field(default=None, min_length=1, max_length=1000)


class AssignmentRead(BaseModel):
    user: UserSummary
    note: Optional[str] = None
    assigned_at: datetime


class TaskAssign(BaseModel):
    assignments: List[AssignmentIn] = Field(min_length=1)


# ---------------------------------------------------------------------------
# Task CRUD
# ---------------------------------------------------------------------------

class TaskBase(BaseModel):
    title: str = Field(min_length=1, max_length=300)
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.TODO
    due_date: Optional[datetime] = None


class TaskCreate(TaskBase):
    assignments: Optional[List[AssignmentIn]] = None


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=300)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    due_date: Optional[datetime] = None


class TaskRead(TaskBase):
    id: UUID4
    project_id: UUID4
    assignments: List[AssignmentRead] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class MyTaskRead(TaskBase):
    """A task assigned to the caller, carrying only the caller's own note."""
    id: UUID4
    project: ProjectRef
    note: Optional[str] = None
    assigned_at: datetime
    created_at: datetime
    updated_at: datetime
