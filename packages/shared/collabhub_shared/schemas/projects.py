from typing import Optional
from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from .common import ProjectRole, UserSummary


class ProjectBase(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None


class ProjectCreate(ProjectBase):
    pass


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None


class ProjectRead(ProjectBase):
    id: UUID
    role: Optional[ProjectRole] = None
    member_count: int = 0
    task_count: int = 0
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ProjectRef(BaseModel):
    id: UUID
    name: str

    model_config = {"from_attributes": True}


class ProjectMemberRead(BaseModel):
    user: UserSummary
    role: ProjectRole
    joined_at: datetime


class ProjectMemberRoleUpdate(BaseModel):
    role: ProjectRole
