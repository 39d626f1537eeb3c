from enum import Enum
from typing import List, Optional
from uuid import UUID
from pydantic import BaseModel

class ProjectRole(str, Enum):
    OWNER = "OWNER"
    MANAGER = "MANAGER"
    MEMBER = "MEMBER"

# Roles that administer channels and tasks inside a project
PROJECT_MANAGER_ROLES: set["ProjectRole"] = {ProjectRole.OWNER, ProjectRole.MANAGER}

class TaskStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"

class ChannelType(str, Enum):
    PROJECT_GENERAL = "PROJECT_GENERAL"
    TASK_SPECIFIC = "TASK_SPECIFIC"
    ANNOUNCEMENTS = "ANNOUNCEMENTS"
    PRIVATE_DM = "PRIVATE_DM"

# Channel types a newly accepted member is enrolled in
DEFAULT_CHANNEL_TYPES: list["ChannelType"] = [
    ChannelType.PROJECT_GENERAL,
    ChannelType.ANNOUNCEMENTS,
]

class ChannelRole(str, Enum):
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"

class InvitationStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"

class EmailStatus(str, Enum):
    QUEUED = "QUEUED"
    SENT = "SENT"
    FAILED = "FAILED"

class NotificationType(str, Enum):
    INVITATION_SENT = "INVITATION_SENT"
    INVITATION_ACCEPTED = "INVITATION_ACCEPTED"
    TASK_ASSIGNED = "TASK_ASSIGNED"

class UserSummary(BaseModel):
    id: UUID
    name: Optional[str] = None
    email: str

    model_config = {"from_attributes": True}

class ErrorDetail(BaseModel):
    field: str
    message: str

class ErrorBody(BaseModel):
    code: str
    message: str
    status: int
    details: Optional[List[ErrorDetail]] = None

class ErrorResponse(BaseModel):
    error: ErrorBody
