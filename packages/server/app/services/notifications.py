"""
Notification service: in-app notifications and email dispatch.

Handles:
- Post-commit notification creation through the outbox
- Email job enqueueing (ARQ when Redis is configured, inline otherwise)
- Listing and marking notifications read
"""

from __future__ import annotations

import uuid
from typing import Any, Optional, Protocol

import structlog
from fastapi import Request
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.database import get_session_context
from app.core.errors import NotFound
from app.core.outbox import Outbox
from app.models.base import utcnow
from app.models.notification import Notification
from app.models.user import User
from collabhub_shared.schemas.common import NotificationType

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Email queues
# ---------------------------------------------------------------------------


class EmailQueue(Protocol):
    async def enqueue(self, function: str, **kwargs: Any) -> None: ...


class ArqEmailQueue:
    """Hands jobs to the ARQ worker (`app.tasks.email.WorkerSettings`)."""

    def __init__(self, pool):
        self.pool = pool

    async def enqueue(self, function: str, **kwargs: Any) -> None:
        job = await self.pool.enqueue_job(function, **kwargs)
        log.info("email.enqueued", function=function, job_id=getattr(job, "job_id", None))

    async def close(self) -> None:
        await self.pool.close()


class InlineEmailQueue:
    """Runs the email task in-process, for deployments without Redis."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def enqueue(self, function: str, **kwargs: Any) -> None:
        from app.tasks import email as email_tasks

        task = getattr(email_tasks, function)
        await task({"session_factory": self.session_factory}, **kwargs)

    async def close(self) -> None:
        return None


# ---------------------------------------------------------------------------
# Notifier
# ---------------------------------------------------------------------------


class Notifier:
    """Submits notification rows and email jobs to the outbox.

    Call only after the triggering transaction has committed. Each
    notification and each email is a separate outbox item, so a failed email
    never undoes the in-app notification.
    """

    def __init__(self, session_factory, outbox: Outbox, email_queue: EmailQueue):
        self.session_factory = session_factory
        self.outbox = outbox
        self.email_queue = email_queue

    def notify(
        self,
        user_id: uuid.UUID,
        type: NotificationType,
        title: str,
        body: str,
        link: Optional[str] = None,
        send_email: bool = False,
        user_email: Optional[str] = None,
    ) -> None:
        async def create_row() -> None:
            async with get_session_context(self.session_factory) as session:
                session.add(
                    Notification(user_id=user_id, type=type.value, title=title, body=body, link=link)
                )
            if send_email:
                self.outbox.submit(
                    "email.notification",
                    lambda: self._enqueue_notification_email(user_id, user_email, title, body, link),
                    user_id=str(user_id),
                )

        self.outbox.submit("notification.create", create_row, user_id=str(user_id), type=type.value)

    def send_invitation_email(
        self,
        invitation_id: uuid.UUID,
        project_name: str,
        invited_user_email: str,
        inviter_name: str,
        inviter_email: Optional[str] = None,
    ) -> None:
        async def enqueue() -> None:
            await self.email_queue.enqueue(
                "send_invitation_email",
                invitation_id=str(invitation_id),
                project_name=project_name,
                invited_user_email=invited_user_email,
                inviter_name=inviter_name,
                inviter_email=inviter_email,
            )

        self.outbox.submit("email.invitation", enqueue, invitation_id=str(invitation_id))

    async def _enqueue_notification_email(
        self,
        user_id: uuid.UUID,
        user_email: Optional[str],
        title: str,
        body: str,
        link: Optional[str],
    ) -> None:
        email = user_email
        if not email:
            async with get_session_context(self.session_factory) as session:
                user = await session.get(User, user_id)
                email = user.email if user else None
        if not email:
            return
        await self.email_queue.enqueue(
            "send_notification_email", to=email, title=title, body=body, link=link
        )


def get_notifier(request: Request) -> Notifier:
    """FastAPI dependency: the application's notifier."""
    return request.app.state.notifier


# ---------------------------------------------------------------------------
# Reads / read-state
# ---------------------------------------------------------------------------


async def list_notifications(session: AsyncSession, user_id: uuid.UUID) -> list[Notification]:
    result = await session.execute(
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc())
    )
    return list(result.scalars().all())


async def mark_read(
    session: AsyncSession, user_id: uuid.UUID, notification_id: uuid.UUID
) -> Notification:
    notification = await session.get(Notification, notification_id)
    if not notification or notification.user_id != user_id:
        raise NotFound("Notification not found")
    if notification.read_at is None:
        notification.read_at = utcnow()
        session.add(notification)
        await session.commit()
    return notification


async def mark_all_read(session: AsyncSession, user_id: uuid.UUID) -> int:
    result = await session.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.read_at.is_(None))
        .values(read_at=utcnow())
    )
    await session.commit()
    return result.rowcount or 0
