"""
Integration tests for invitations.

Tests cover:
- Sending (OWNER only), duplicate-pending and already-member conflicts
- Invitation email job and INVITATION_SENT for registered invitees
- Accept: membership, default-channel enrollment, inviter notified
- Decline, email mismatch, terminal states, concurrent responses
- Resend resetting the email status
- Accepting a duplicate invitation after joining
"""

from __future__ import annotations

import asyncio
import uuid

import pytest
from sqlalchemy import func
from sqlmodel import select

from app.core.errors import NotFound
from app.models.channel import ChannelMember
from app.models.invitation import Invitation
from app.models.notification import Notification
from app.models.project import UserProject
from app.services.invitations import accept_invitation, decline_invitation


async def _invite(client, headers, project_id, email):
    return await client.post(
        f"/api/v1/projects/{project_id}/invitations", json={"email": email}, headers=headers
    )


async def _notifications(session_factory, user_id) -> list[Notification]:
    async with session_factory() as s:
        result = await s.execute(select(Notification).where(Notification.user_id == user_id))
        return list(result.scalars().all())


class TestSendInvitation:
    @pytest.mark.asyncio
    async def test_owner_invites_unregistered_email(self, client, make_user, make_project, auth_headers, outbox, email_queue):
        owner = await make_user(name="Olive")
        project = await make_project(owner, name="Apollo")

        resp = await _invite(client, auth_headers(owner), project.id, "New.Person@Example.com")
        assert resp.status_code == 201
        data = resp.json()
        assert data["invited_user_email"] == "new.person@example.com"
        assert data["status"] == "PENDING"
        assert data["email_status"] == "QUEUED"
        assert data["project"]["name"] == "Apollo"

        await outbox.drain()
        [job] = email_queue.named("send_invitation_email")
        assert job["invitation_id"] == data["id"]
        assert job["inviter_name"] == "Olive"
        assert job["invited_user_email"] == "new.person@example.com"

    @pytest.mark.asyncio
    async def test_registered_invitee_is_notified(
        self, client, make_user, make_project, auth_headers, outbox, session_factory
    ):
        owner, invitee = await make_user(), await make_user()
        project = await make_project(owner)

        resp = await _invite(client, auth_headers(owner), project.id, invitee.email)
        assert resp.status_code == 201

        await outbox.drain()
        notifications = await _notifications(session_factory, invitee.id)
        assert [n.type for n in notifications] == ["INVITATION_SENT"]
        assert notifications[0].link == "/dashboard/invitations"

    @pytest.mark.asyncio
    async def test_duplicate_pending_conflicts(self, client, make_user, make_project, auth_headers):
        owner = await make_user()
        project = await make_project(owner)

        assert (await _invite(client, auth_headers(owner), project.id, "dup@example.com")).status_code == 201
        resp = await _invite(client, auth_headers(owner), project.id, "DUP@example.com")
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_existing_member_conflicts(self, client, make_user, make_project, auth_headers):
        owner, member = await make_user(), await make_user()
        project = await make_project(owner, [(member, "MEMBER")])

        resp = await _invite(client, auth_headers(owner), project.id, member.email)
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_manager_cannot_invite(self, client, make_user, make_project, auth_headers):
        owner, manager = await make_user(), await make_user()
        project = await make_project(owner, [(manager, "MANAGER")])

        resp = await _invite(client, auth_headers(manager), project.id, "someone@example.com")
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_invalid_email(self, client, make_user, make_project, auth_headers):
        owner = await make_user()
        project = await make_project(owner)

        resp = await _invite(client, auth_headers(owner), project.id, "not-an-email")
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_project_list_shows_pending_only(self, client, make_user, make_project, auth_headers, session_factory):
        owner = await make_user()
        project = await make_project(owner)
        async with session_factory() as s:
            s.add(Invitation(project_id=project.id, invited_by_id=owner.id, invited_user_email="a@example.com"))
            s.add(Invitation(
                project_id=project.id, invited_by_id=owner.id, invited_user_email="b@example.com", status="DECLINED"
            ))
            await s.commit()

        resp = await client.get(f"/api/v1/projects/{project.id}/invitations", headers=auth_headers(owner))
        assert resp.status_code == 200
        assert [i["invited_user_email"] for i in resp.json()] == ["a@example.com"]


class TestRespondToInvitation:
    async def _pending(self, client, make_user, make_project, auth_headers, owner_name="Olive"):
        owner, invitee = await make_user(name=owner_name), await make_user(name="Ivy")
        project = await make_project(owner, name="Apollo")
        resp = await _invite(client, auth_headers(owner), project.id, invitee.email)
        return owner, invitee, project, resp.json()["id"]

    @pytest.mark.asyncio
    async def test_list_mine(self, client, make_user, make_project, auth_headers):
        owner, invitee, project, invitation_id = await self._pending(client, make_user, make_project, auth_headers)

        resp = await client.get("/api/v1/invitations", headers=auth_headers(invitee))
        assert resp.status_code == 200
        assert [i["id"] for i in resp.json()] == [invitation_id]

        resp = await client.get("/api/v1/invitations", headers=auth_headers(owner))
        assert resp.json() == []

    @pytest.mark.asyncio
    async def test_accept(
        self, client, make_user, make_project, make_channel, auth_headers, outbox, email_queue, session_factory
    ):
        owner, invitee, project, invitation_id = await self._pending(client, make_user, make_project, auth_headers)
        general = await make_channel(project, type="PROJECT_GENERAL", members=[(owner, "ADMIN")])
        announcements = await make_channel(project, type="ANNOUNCEMENTS", members=[(owner, "ADMIN")], name="news")

        resp = await client.post(f"/api/v1/invitations/{invitation_id}/accept", headers=auth_headers(invitee))
        assert resp.status_code == 200
        assert resp.json()["status"] == "ACCEPTED"

        async with session_factory() as s:
            membership = await s.get(UserProject, (invitee.id, project.id))
            assert membership.role == "MEMBER"
            result = await s.execute(select(ChannelMember).where(ChannelMember.user_id == invitee.id))
            enrolled = {(m.channel_id, m.role) for m in result.scalars().all()}
        assert enrolled == {(general.id, "MEMBER"), (announcements.id, "MEMBER")}

        await outbox.drain()
        notifications = await _notifications(session_factory, owner.id)
        assert [n.type for n in notifications] == ["INVITATION_ACCEPTED"]
        assert notifications[0].body == "Ivy joined Apollo."
        assert notifications[0].link == f"/dashboard/projects/{project.id}/members"
        assert [job["to"] for job in email_queue.named("send_notification_email")] == [owner.email]

    @pytest.mark.asyncio
    async def test_accept_is_terminal(self, client, make_user, make_project, auth_headers):
        _, invitee, _, invitation_id = await self._pending(client, make_user, make_project, auth_headers)

        assert (await client.post(f"/api/v1/invitations/{invitation_id}/accept", headers=auth_headers(invitee))).status_code == 200
        resp = await client.post(f"/api/v1/invitations/{invitation_id}/accept", headers=auth_headers(invitee))
        assert resp.status_code == 404
        resp = await client.post(f"/api/v1/invitations/{invitation_id}/decline", headers=auth_headers(invitee))
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_other_email_forbidden(self, client, make_user, make_project, auth_headers):
        _, _, _, invitation_id = await self._pending(client, make_user, make_project, auth_headers)
        stranger = await make_user()

        resp = await client.post(f"/api/v1/invitations/{invitation_id}/accept", headers=auth_headers(stranger))
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_unknown_invitation(self, client, make_user, auth_headers):
        user = await make_user()
        resp = await client.post(f"/api/v1/invitations/{uuid.uuid4()}/accept", headers=auth_headers(user))
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_decline(self, client, make_user, make_project, auth_headers, session_factory):
        _, invitee, project, invitation_id = await self._pending(client, make_user, make_project, auth_headers)

        resp = await client.post(f"/api/v1/invitations/{invitation_id}/decline", headers=auth_headers(invitee))
        assert resp.status_code == 200
        assert resp.json()["status"] == "DECLINED"

        async with session_factory() as s:
            assert await s.get(UserProject, (invitee.id, project.id)) is None

    @pytest.mark.asyncio
    async def test_accepting_duplicate_after_joining(self, client, make_user, make_project, auth_headers, session_factory):
        """Two pending copies (a lost race on send) still yield a single membership."""
        owner, invitee = await make_user(), await make_user()
        project = await make_project(owner)
        copies = [
            Invitation(project_id=project.id, invited_by_id=owner.id, invited_user_email=invitee.email)
            for _ in range(2)
        ]
        async with session_factory() as s:
            s.add_all(copies)
            await s.commit()

        for invitation in copies:
            resp = await client.post(f"/api/v1/invitations/{invitation.id}/accept", headers=auth_headers(invitee))
            assert resp.status_code == 200

        async with session_factory() as s:
            count = (await s.execute(
                select(func.count()).select_from(UserProject).where(
                    UserProject.project_id == project.id, UserProject.user_id == invitee.id
                )
            )).scalar()
        assert count == 1

    @pytest.mark.asyncio
    async def test_concurrent_accept_and_decline_collapse(self, make_user, make_project, session_factory, notifier):
        owner, invitee = await make_user(), await make_user()
        project = await make_project(owner)
        invitation = Invitation(project_id=project.id, invited_by_id=owner.id, invited_user_email=invitee.email)
        async with session_factory() as s:
            s.add(invitation)
            await s.commit()

        async def respond(action):
            async with session_factory() as s:
                if action == "accept":
                    return await accept_invitation(s, notifier, invitee, invitation.id)
                return await decline_invitation(s, invitee, invitation.id)

        results = await asyncio.gather(respond("accept"), respond("decline"), return_exceptions=True)

        winners = [r for r in results if isinstance(r, Invitation)]
        losers = [r for r in results if isinstance(r, NotFound)]
        assert len(winners) == 1 and len(losers) == 1
        async with session_factory() as s:
            stored = await s.get(Invitation, invitation.id)
            membership = await s.get(UserProject, (invitee.id, project.id))
        assert stored.status == winners[0].status
        assert (membership is not None) == (stored.status == "ACCEPTED")

    @pytest.mark.asyncio
    async def test_concurrent_accepts_notify_once(self, make_user, make_project, session_factory, notifier, outbox):
        owner, invitee = await make_user(), await make_user()
        project = await make_project(owner)
        invitation = Invitation(project_id=project.id, invited_by_id=owner.id, invited_user_email=invitee.email)
        async with session_factory() as s:
            s.add(invitation)
            await s.commit()

        async def accept():
            async with session_factory() as s:
                return await accept_invitation(s, notifier, invitee, invitation.id)

        results = await asyncio.gather(accept(), accept(), return_exceptions=True)

        assert sorted(type(r).__name__ for r in results) == ["Invitation", "NotFound"]
        await outbox.drain()
        assert [n.type for n in await _notifications(session_factory, owner.id)] == ["INVITATION_ACCEPTED"]


class TestResendInvitation:
    @pytest.mark.asyncio
    async def test_resend_requeues_email(self, client, make_user, make_project, auth_headers, outbox, email_queue, session_factory):
        owner = await make_user()
        project = await make_project(owner)
        invitation = Invitation(
            project_id=project.id,
            invited_by_id=owner.id,
            invited_user_email="late@example.com",
            email_status="FAILED",
            email_error="smtp down",
        )
        async with session_factory() as s:
            s.add(invitation)
            await s.commit()

        resp = await client.post(
            f"/api/v1/projects/{project.id}/invitations/{invitation.id}/resend", headers=auth_headers(owner)
        )
        assert resp.status_code == 200
        assert resp.json()["email_status"] == "QUEUED"

        async with session_factory() as s:
            assert (await s.get(Invitation, invitation.id)).email_error is None

        await outbox.drain()
        assert [job["invitation_id"] for job in email_queue.named("send_invitation_email")] == [str(invitation.id)]

    @pytest.mark.asyncio
    async def test_resend_processed_invitation(self, client, make_user, make_project, auth_headers, session_factory):
        owner = await make_user()
        project = await make_project(owner)
        invitation = Invitation(
            project_id=project.id, invited_by_id=owner.id, invited_user_email="done@example.com", status="ACCEPTED"
        )
        async with session_factory() as s:
            s.add(invitation)
            await s.commit()

        resp = await client.post(
            f"/api/v1/projects/{project.id}/invitations/{invitation.id}/resend", headers=auth_headers(owner)
        )
        assert resp.status_code == 404
