"""
Tests for realtime fanout.

Tests cover:
- ConnectionManager: register/deregister, room join/leave, room-scoped broadcast,
  sending-socket exclusion, dead-connection cleanup, Redis publish path
- WebSocket frames: ping, join (with access check and admin materialization),
  leave, typing relay, malformed frames
- The WebSocket endpoint's authentication and frame loop
"""

from __future__ import annotations

import json
import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from fastapi import WebSocketDisconnect
from sqlmodel import select

from app.api.v1.realtime import WS_AUTH_FAILED, handle_frame, websocket_endpoint
from app.core.auth import create_access_token
from app.core.realtime import REDIS_FANOUT_CHANNEL, ConnectionManager, channel_room
from app.models.channel import ChannelMember


def _frames(ws) -> list[dict]:
    return [json.loads(call.args[0]) for call in ws.send_text.await_args_list]


# ---------------------------------------------------------------------------
# Connection Manager Tests
# ---------------------------------------------------------------------------


class TestConnectionManager:
    """Test WebSocket ConnectionManager behavior."""

    @pytest.fixture
    def mgr(self):
        return ConnectionManager()

    @pytest.fixture
    def mock_ws(self):
        ws = AsyncMock(spec_set=["accept", "send_text", "close", "receive_text"])
        ws.accept = AsyncMock()
        ws.send_text = AsyncMock()
        ws.close = AsyncMock()
        return ws

    @pytest.mark.asyncio
    async def test_register_and_deregister(self, mgr, mock_ws):
        info = await mgr.register_connection(mock_ws, uuid.uuid4(), "Ada")
        mock_ws.accept.assert_awaited_once()
        mgr.join(info, "channel:a")
        mgr.join(info, "channel:b")
        assert len(mgr.connections) == 1

        await mgr.deregister_connection(info)
        assert mgr.connections == []
        assert mgr.rooms == {}
        assert info.rooms == set()

    @pytest.mark.asyncio
    async def test_broadcast_is_room_scoped(self, mgr):
        ws1, ws2 = AsyncMock(), AsyncMock()
        info1 = await mgr.register_connection(ws1, uuid.uuid4(), "One")
        info2 = await mgr.register_connection(ws2, uuid.uuid4(), "Two")
        mgr.join(info1, "channel:a")
        mgr.join(info2, "channel:b")

        await mgr.broadcast("channel:a", "message_created", {"channel_id": "a"})

        assert _frames(ws1) == [{"type": "message_created", "channel_id": "a"}]
        ws2.send_text.assert_not_called()

    @pytest.mark.asyncio
    async def test_leave_stops_delivery(self, mgr):
        ws = AsyncMock()
        info = await mgr.register_connection(ws, uuid.uuid4(), "One")
        mgr.join(info, "channel:a")
        mgr.leave(info, "channel:a")

        await mgr.broadcast("channel:a", "message_created", {})
        ws.send_text.assert_not_called()
        assert "channel:a" not in mgr.rooms

    @pytest.mark.asyncio
    async def test_broadcast_skips_only_the_sending_socket(self, mgr):
        user_id = uuid.uuid4()
        sender_ws, other_tab_ws, peer_ws = AsyncMock(), AsyncMock(), AsyncMock()
        sender = await mgr.register_connection(sender_ws, user_id, "U")
        other_tab = await mgr.register_connection(other_tab_ws, user_id, "U")
        peer = await mgr.register_connection(peer_ws, uuid.uuid4(), "P")
        for info in (sender, other_tab, peer):
            mgr.join(info, "channel:a")

        await mgr.broadcast("channel:a", "typing_start", {}, exclude=sender)

        sender_ws.send_text.assert_not_called()
        other_tab_ws.send_text.assert_called_once()
        peer_ws.send_text.assert_called_once()

    @pytest.mark.asyncio
    async def test_dead_connection_cleanup(self, mgr):
        """Dead connections are removed during broadcast."""
        dead_ws, live_ws = AsyncMock(), AsyncMock()
        dead_ws.send_text.side_effect = Exception("connection closed")
        dead = await mgr.register_connection(dead_ws, uuid.uuid4(), "Dead")
        live = await mgr.register_connection(live_ws, uuid.uuid4(), "Live")
        mgr.join(dead, "channel:a")
        mgr.join(live, "channel:a")

        await mgr.broadcast("channel:a", "message_created", {})

        assert mgr.connections == [live]
        assert mgr.rooms["channel:a"] == {live}
        live_ws.send_text.assert_called_once()

    @pytest.mark.asyncio
    async def test_redis_broadcast_publishes_only(self):
        redis = AsyncMock()
        mgr = ConnectionManager(redis)
        ws = AsyncMock()
        info = await mgr.register_connection(ws, uuid.uuid4(), "One")
        mgr.join(info, "channel:a")
        await mgr.broadcast("channel:a", "typing_stop", {"user_id": "x"}, exclude=info)

        channel, raw = redis.publish.await_args.args
        assert channel == REDIS_FANOUT_CHANNEL
        assert json.loads(raw) == {
            "room": "channel:a",
            "event": "typing_stop",
            "payload": {"user_id": "x"},
            "exclude": info.id,
        }
        # Local delivery happens through the listener, not the publisher
        ws.send_text.assert_not_called()


# ---------------------------------------------------------------------------
# Frame handling
# ---------------------------------------------------------------------------


class TestHandleFrame:
    async def _connect(self, fanout, user):
        ws = AsyncMock()
        return ws, await fanout.register_connection(ws, user.id, user.name)

    @pytest.mark.asyncio
    async def test_ping(self, fanout, session_factory, make_user):
        ws, conn = await self._connect(fanout, await make_user())
        await handle_frame({"type": "ping"}, conn, session_factory, fanout)
        assert _frames(ws) == [{"type": "pong"}]

    @pytest.mark.asyncio
    async def test_unknown_frame(self, fanout, session_factory, make_user):
        ws, conn = await self._connect(fanout, await make_user())
        await handle_frame({"type": "subscribe"}, conn, session_factory, fanout)
        [frame] = _frames(ws)
        assert frame["type"] == "error"
        assert frame["code"] == "UNKNOWN_FRAME"

    @pytest.mark.asyncio
    async def test_invalid_channel_id(self, fanout, session_factory, make_user):
        ws, conn = await self._connect(fanout, await make_user())
        await handle_frame({"type": "join_channel", "channel_id": "nope"}, conn, session_factory, fanout)
        assert _frames(ws)[0]["code"] == "INVALID_CHANNEL_ID"

    @pytest.mark.asyncio
    async def test_join_materializes_implicit_admin(self, fanout, session_factory, make_user, make_project, make_channel):
        owner = await make_user()
        project = await make_project(owner)
        channel = await make_channel(project)
        ws, conn = await self._connect(fanout, owner)

        await handle_frame({"type": "join_channel", "channel_id": str(channel.id)}, conn, session_factory, fanout)

        assert _frames(ws) == [{"type": "joined_channel", "channel_id": str(channel.id)}]
        assert channel_room(channel.id) in conn.rooms
        async with session_factory() as s:
            result = await s.execute(select(ChannelMember).where(ChannelMember.channel_id == channel.id))
            assert [(m.user_id, m.role) for m in result.scalars().all()] == [(owner.id, "ADMIN")]

    @pytest.mark.asyncio
    async def test_join_denied(self, fanout, session_factory, make_user, make_project, make_channel):
        owner, member = await make_user(), await make_user()
        project = await make_project(owner, [(member, "MEMBER")])
        channel = await make_channel(project)
        ws, conn = await self._connect(fanout, member)

        await handle_frame({"type": "join_channel", "channel_id": str(channel.id)}, conn, session_factory, fanout)

        assert _frames(ws) == [{"type": "error", "code": "NOT_FOUND", "message": "Channel not found"}]
        assert conn.rooms == set()

    @pytest.mark.asyncio
    async def test_leave(self, fanout, session_factory, make_user):
        ws, conn = await self._connect(fanout, await make_user())
        channel_id = uuid.uuid4()
        fanout.join(conn, channel_room(channel_id))

        await handle_frame({"type": "leave_channel", "channel_id": str(channel_id)}, conn, session_factory, fanout)

        assert _frames(ws) == [{"type": "left_channel", "channel_id": str(channel_id)}]
        assert conn.rooms == set()

    @pytest.mark.asyncio
    async def test_typing_relayed_without_echo(self, fanout, session_factory, make_user, make_project, make_channel):
        owner, member = await make_user(), await make_user(name="Mel")
        project = await make_project(owner, [(member, "MEMBER")])
        channel = await make_channel(project, members=[(owner, "ADMIN"), (member, "MEMBER")])
        room = channel_room(channel.id)
        owner_ws, owner_conn = await self._connect(fanout, owner)
        member_ws, member_conn = await self._connect(fanout, member)
        fanout.join(owner_conn, room)
        fanout.join(member_conn, room)

        await handle_frame({"type": "typing_start", "channel_id": str(channel.id)}, member_conn, session_factory, fanout)

        assert _frames(owner_ws) == [{
            "type": "typing_start",
            "channel_id": str(channel.id),
            "user_id": str(member.id),
            "user_name": "Mel",
        }]
        member_ws.send_text.assert_not_called()

    @pytest.mark.asyncio
    async def test_typing_reaches_senders_other_tabs(
        self, fanout, session_factory, make_user, make_project, make_channel
    ):
        owner = await make_user(name="Olive")
        project = await make_project(owner)
        channel = await make_channel(project, members=[(owner, "ADMIN")])
        room = channel_room(channel.id)
        typing_ws, typing_conn = await self._connect(fanout, owner)
        tab_ws, tab_conn = await self._connect(fanout, owner)
        fanout.join(typing_conn, room)
        fanout.join(tab_conn, room)

        await handle_frame({"type": "typing_start", "channel_id": str(channel.id)}, typing_conn, session_factory, fanout)

        typing_ws.send_text.assert_not_called()
        assert [f["user_id"] for f in _frames(tab_ws)] == [str(owner.id)]

    @pytest.mark.asyncio
    async def test_typing_without_member_row_is_ignored(
        self, fanout, session_factory, make_user, make_project, make_channel
    ):
        """Implicit admins must join (materializing a row) before typing is relayed."""
        owner, member = await make_user(), await make_user()
        project = await make_project(owner, [(member, "MEMBER")])
        channel = await make_channel(project, members=[(member, "MEMBER")])
        room = channel_room(channel.id)
        owner_ws, owner_conn = await self._connect(fanout, owner)
        member_ws, member_conn = await self._connect(fanout, member)
        fanout.join(member_conn, room)

        await handle_frame({"type": "typing_stop", "channel_id": str(channel.id)}, owner_conn, session_factory, fanout)

        owner_ws.send_text.assert_not_called()
        member_ws.send_text.assert_not_called()


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------


class TestWebSocketEndpoint:
    def _ws(self, session_factory, fanout, frames=()):
        ws = AsyncMock()
        ws.app = SimpleNamespace(state=SimpleNamespace(session_factory=session_factory, fanout=fanout))
        ws.receive_text.side_effect = [*frames, WebSocketDisconnect()]
        return ws

    @pytest.mark.asyncio
    async def test_rejects_missing_token(self, session_factory, fanout):
        ws = self._ws(session_factory, fanout)
        await websocket_endpoint(ws, token=None)

        ws.close.assert_awaited_once_with(code=WS_AUTH_FAILED, reason="authentication_failed")
        ws.accept.assert_not_called()

    @pytest.mark.asyncio
    async def test_rejects_unknown_user(self, session_factory, fanout):
        ws = self._ws(session_factory, fanout)
        await websocket_endpoint(ws, token=create_access_token(uuid.uuid4()))

        ws.close.assert_awaited_once()
        assert ws.close.await_args.kwargs["code"] == WS_AUTH_FAILED

    @pytest.mark.asyncio
    async def test_frame_loop(self, session_factory, fanout, make_user):
        user = await make_user()
        ws = self._ws(session_factory, fanout, ['{"type": "ping"}', "not json", "[1, 2]"])

        await websocket_endpoint(ws, token=create_access_token(user.id))

        ws.accept.assert_awaited_once()
        assert [f.get("code", f["type"]) for f in _frames(ws)] == ["pong", "INVALID_JSON", "INVALID_FRAME"]
        # Disconnect deregisters
        assert fanout.connections == []
