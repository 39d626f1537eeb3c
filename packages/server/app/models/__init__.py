# SQLModel definitions, imported here to ensure metadata is populated for Alembic.
from .base import UUIDMixin, TimestampMixin  # noqa: F401
from .user import User, RefreshToken  # noqa: F401
from .project import Project, UserProject  # noqa: F401
from .task import Task  # noqa: F401
from .assignments import TaskAssignment  # noqa: F401
from .channel import Channel, ChannelMember  # noqa: F401
from .message import Message  # noqa: F401
from .invitation import Invitation  # noqa: F401
from .notification import Notification  # noqa: F401
