"""
ARQ background tasks: transactional email delivery.

- send_notification_email: generic notification mail `{to, title, body, link}`
- send_invitation_email: invite mail; records SENT/FAILED on the invitation row

Run with `arq app.tasks.email.WorkerSettings`.
"""

from __future__ import annotations

import uuid

import structlog
from arq.connections import RedisSettings

from app.core.config import get_settings
from app.core.database import get_session_context
from app.core.mailer import absolute_link, invitation_link, invite_email, notification_email, send_email
from app.models.base import utcnow
from app.models.invitation import Invitation
from collabhub_shared.schemas.common import EmailStatus

log = structlog.get_logger()
settings = get_settings()


async def send_notification_email(
    ctx: dict,
    to: str,
    title: str,
    body: str,
    link: str | None = None,
) -> None:
    if link:
        link = absolute_link(settings, link)
    await send_email(to, notification_email(title, body, link))
    log.info("email.notification_sent", to=to)


async def send_invitation_email(
    ctx: dict,
    invitation_id: str,
    project_name: str,
    invited_user_email: str,
    inviter_name: str,
    inviter_email: str | None = None,
) -> None:
    """Send the invite mail and record the outcome on the invitation."""
    session_factory = ctx.get("session_factory")
    content = invite_email(
        project_name=project_name,
        inviter_name=inviter_name,
        inviter_email=inviter_email,
        link=invitation_link(settings),
    )
    try:
        await send_email(invited_user_email, content)
    except Exception as exc:
        log.error("email.invitation_failed", invitation_id=invitation_id, error=str(exc))
        await _record_email_status(session_factory, invitation_id, EmailStatus.FAILED, str(exc))
        raise

    await _record_email_status(session_factory, invitation_id, EmailStatus.SENT, None)
    log.info("email.invitation_sent", invitation_id=invitation_id, to=invited_user_email)


async def _record_email_status(
    session_factory, invitation_id: str, status: EmailStatus, error: str | None
) -> None:
    async with get_session_context(session_factory) as session:
        invitation = await session.get(Invitation, uuid.UUID(invitation_id))
        if not invitation:
            return
        invitation.email_status = status.value
        invitation.email_error = error
        if status == EmailStatus.SENT:
            invitation.email_last_sent_at = utcnow()
        session.add(invitation)


# ARQ worker settings
class WorkerSettings:
    """ARQ worker configuration."""

    functions = [send_notification_email, send_invitation_email]
    redis_settings = RedisSettings.from_dsn(settings.redis_url or "redis://localhost:6379/0")
    max_tries = 3
