"""Initial schema: users, projects, tasks, channels, invitations, notifications.

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "0001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _uuid() -> postgresql.UUID:
    return postgresql.UUID(as_uuid=True)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # -----------------------------------------------------------------------
    # 1. Identity
    # -----------------------------------------------------------------------

    op.create_table(
        "users",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("password_hash", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("avatar_url", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "refresh_tokens",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("token", sa.Text(), nullable=False),
        sa.Column("user_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_refresh_tokens_token", "refresh_tokens", ["token"], unique=True)
    op.create_index("ix_refresh_tokens_user_id", "refresh_tokens", ["user_id"])

    # -----------------------------------------------------------------------
    # 2. Projects and tasks
    # -----------------------------------------------------------------------

    op.create_table(
        "projects",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "user_projects",
        sa.Column("user_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("project_id", _uuid(), sa.ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("role", sa.Text(), nullable=False, server_default="MEMBER"),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("role IN ('OWNER', 'MANAGER', 'MEMBER')", name="ck_user_projects_role"),
    )
    op.create_index("ix_user_projects_project_id", "user_projects", ["project_id"])

    op.create_table(
        "tasks",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("project_id", _uuid(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="TODO"),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("status IN ('TODO', 'IN_PROGRESS', 'DONE')", name="ck_tasks_status"),
    )
    op.create_index("ix_tasks_project_id", "tasks", ["project_id"])

    op.create_table(
        "task_assignments",
        sa.Column("task_id", _uuid(), sa.ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("user_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_task_assignments_user_id", "task_assignments", ["user_id"])

    # -----------------------------------------------------------------------
    # 3. Channels and messages
    # -----------------------------------------------------------------------

    op.create_table(
        "channels",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("project_id", _uuid(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=True),
        sa.Column("task_id", _uuid(), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "type IN ('PROJECT_GENERAL', 'TASK_SPECIFIC', 'ANNOUNCEMENTS', 'PRIVATE_DM')",
            name="ck_channels_type",
        ),
        sa.CheckConstraint(
            "type NOT IN ('PROJECT_GENERAL', 'ANNOUNCEMENTS') OR project_id IS NOT NULL",
            name="ck_channels_project_scoped",
        ),
        sa.CheckConstraint(
            "type <> 'TASK_SPECIFIC' OR (project_id IS NOT NULL AND task_id IS NOT NULL)",
            name="ck_channels_task_scoped",
        ),
    )
    op.create_index("ix_channels_project_id", "channels", ["project_id"])
    op.create_index("ix_channels_task_id", "channels", ["task_id"])

    op.create_table(
        "channel_members",
        sa.Column("channel_id", _uuid(), sa.ForeignKey("channels.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("user_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("role", sa.Text(), nullable=False, server_default="MEMBER"),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("role IN ('ADMIN', 'MEMBER')", name="ck_channel_members_role"),
    )
    op.create_index("ix_channel_members_user_id", "channel_members", ["user_id"])

    op.create_table(
        "messages",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("channel_id", _uuid(), sa.ForeignKey("channels.id", ondelete="CASCADE"), nullable=False),
        sa.Column("author_id", _uuid(), sa.ForeignKey("users.id"), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_messages_channel_created", "messages", ["channel_id", "created_at"])
    op.create_index("ix_messages_author_id", "messages", ["author_id"])

    # -----------------------------------------------------------------------
    # 4. Invitations and notifications
    # -----------------------------------------------------------------------

    op.create_table(
        "invitations",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("project_id", _uuid(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("invited_by_id", _uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("invited_user_email", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="PENDING"),
        sa.Column("email_status", sa.Text(), nullable=False, server_default="QUEUED"),
        sa.Column("email_last_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("email_error", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("status IN ('PENDING', 'ACCEPTED', 'DECLINED')", name="ck_invitations_status"),
        sa.CheckConstraint("email_status IN ('QUEUED', 'SENT', 'FAILED')", name="ck_invitations_email_status"),
    )
    op.create_index("ix_invitations_project_id", "invitations", ["project_id"])
    op.create_index("ix_invitations_invited_user_email", "invitations", ["invited_user_email"])
    # Not unique: the pending-duplicate rule is enforced by the service only
    op.create_index(
        "ix_invitations_project_email_status",
        "invitations",
        ["project_id", "invited_user_email", "status"],
    )

    op.create_table(
        "notifications",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("link", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_notifications_user_created", "notifications", ["user_id", "created_at"])


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    for table in (
        "notifications",
        "invitations",
        "messages",
        "channel_members",
        "channels",
        "task_assignments",
        "tasks",
        "user_projects",
        "projects",
        "refresh_tokens",
        "users",
    ):
        op.drop_table(table)
