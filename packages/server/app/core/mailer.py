"""
SMTP delivery and email templates.

smtplib is blocking, so delivery runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import html
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional

from app.core.config import Settings, get_settings


@dataclass(frozen=True)
class EmailContent:
    subject: str
    text: str
    html: str


def absolute_link(settings: Settings, link: str) -> str:
    """In-app paths are stored relative; mail clients need the full URL."""
    if link.startswith("/"):
        return settings.frontend_url.rstrip("/") + link
    return link


def invitation_link(settings: Settings) -> str:
    return absolute_link(settings, "/dashboard/invitations")


def invite_email(
    project_name: str,
    inviter_name: str,
    link: str,
    inviter_email: Optional[str] = None,
) -> EmailContent:
    inviter = f"{inviter_name} ({inviter_email})" if inviter_email else inviter_name
    subject = f"You're invited to join {project_name}"
    text = (
        f'You\'ve been invited to join "{project_name}" by {inviter}. '
        f"Open your invitations here: {link}"
    )
    esc_project, esc_inviter, esc_link = html.escape(project_name), html.escape(inviter), html.escape(link)
    body = (
        '<div style="font-family: Arial, sans-serif; color: #111;">'
        f"<h2>You're invited to join {esc_project}</h2>"
        f"<p><strong>{esc_inviter}</strong> invited you to collaborate on <strong>{esc_project}</strong>.</p>"
        f'<p><a href="{esc_link}" style="color: #2563eb; text-decoration: none;">View invitation</a></p>'
        "<p>If the link doesn't work, copy and paste this URL:</p>"
        f"<p>{esc_link}</p>"
        "</div>"
    )
    return EmailContent(subject=subject, text=text, html=body)


def notification_email(title: str, body: str, link: Optional[str] = None) -> EmailContent:
    text = f"{body}\n\n{link}" if link else body
    parts = [
        '<div style="font-family: Arial, sans-serif; color: #111;">',
        f"<h2>{html.escape(title)}</h2>",
        f"<p>{html.escape(body)}</p>",
    ]
    if link:
        parts.append(f'<p><a href="{html.escape(link)}" style="color: #2563eb;">Open CollabHub</a></p>')
    parts.append("</div>")
    return EmailContent(subject=title, text=text, html="".join(parts))


async def send_email(to: str, content: EmailContent, settings: Settings | None = None) -> None:
    """Deliver a multipart (text + html) email over SMTP."""
    settings = settings or get_settings()

    def _send_sync() -> None:
        m = EmailMessage()
        m["Subject"] = content.subject
        m["From"] = settings.smtp_from
        m["To"] = to
        m.set_content(content.text)
        m.add_alternative(content.html, subtype="html")
        with smtplib.SMTP(host=settings.smtp_host, port=settings.smtp_port, timeout=15) as s:
            s.ehlo()
            if settings.smtp_starttls:
                s.starttls()
                s.ehlo()
            if settings.smtp_user and settings.smtp_password:
                s.login(settings.smtp_user, settings.smtp_password)
            s.send_message(m)

    await asyncio.to_thread(_send_sync)
