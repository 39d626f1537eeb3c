"""
Realtime WebSocket endpoint.

WS /api/v1/ws?token=<access token>

Client frames:
- join_channel  {channel_id}: access is re-checked (and implicit admin rows
                               materialized) on every join
- leave_channel {channel_id}
- typing_start / typing_stop {channel_id}: explicit channel members only,
                                relayed to the room without echo to the sender
- ping → pong

Server frames: joined_channel, left_channel, typing_start, typing_stop,
message_created, message_updated, message_deleted, pong, error.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from app.core.auth import authenticate_token
from app.core.database import get_session_context
from app.core.errors import AppError
from app.core.realtime import ConnectionInfo, ConnectionManager, channel_room
from app.services.authorization import get_channel_member, require_channel_access

router = APIRouter()
logger = logging.getLogger(__name__)

WS_AUTH_FAILED = 4001
TYPING_EVENTS = {"typing_start", "typing_stop"}


def _error(code: str, message: str) -> dict[str, Any]:
    return {"type": "error", "code": code, "message": message}


def _channel_id(frame: dict[str, Any]) -> Optional[UUID]:
    try:
        return UUID(str(frame.get("channel_id")))
    except ValueError:
        return None


async def handle_frame(
    frame: dict[str, Any],
    conn: ConnectionInfo,
    session_factory,
    fanout: ConnectionManager,
) -> None:
    """Apply one client frame to `conn`."""
    frame_type = frame.get("type")

    if frame_type == "ping":
        await fanout.send(conn, {"type": "pong"})
        return

    if frame_type not in {"join_channel", "leave_channel", *TYPING_EVENTS}:
        await fanout.send(conn, _error("UNKNOWN_FRAME", f"Unsupported frame type: {frame_type!r}"))
        return

    channel_id = _channel_id(frame)
    if channel_id is None:
        await fanout.send(conn, _error("INVALID_CHANNEL_ID", "A valid channel_id is required."))
        return
    room = channel_room(channel_id)

    if frame_type == "leave_channel":
        fanout.leave(conn, room)
        await fanout.send(conn, {"type": "left_channel", "channel_id": str(channel_id)})
        return

    if frame_type == "join_channel":
        try:
            async with get_session_context(session_factory) as session:
                await require_channel_access(session, conn.user_id, channel_id, materialize=True)
        except AppError as exc:
            await fanout.send(conn, _error(exc.code, exc.detail))
            return
        fanout.join(conn, room)
        await fanout.send(conn, {"type": "joined_channel", "channel_id": str(channel_id)})
        return

    # typing_start / typing_stop: ignored unless an explicit member row exists
    async with get_session_context(session_factory) as session:
        member = await get_channel_member(session, channel_id, conn.user_id)
    if member is None:
        return
    await fanout.broadcast(
        room,
        frame_type,
        {
            "channel_id": str(channel_id),
            "user_id": str(conn.user_id),
            "user_name": conn.user_name,
        },
        exclude=conn,
    )


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
):
    """Authenticated WebSocket for channel events and typing indicators."""
    session_factory = websocket.app.state.session_factory
    fanout: ConnectionManager = websocket.app.state.fanout

    # Authenticate before accepting
    try:
        async with get_session_context(session_factory) as session:
            user = await authenticate_token(session, token)
    except AppError:
        await websocket.close(code=WS_AUTH_FAILED, reason="authentication_failed")
        return

    conn = await fanout.register_connection(websocket, user.id, user.name or user.email or "User")

    try:
        while True:
            data = await websocket.receive_text()
            try:
                frame = json.loads(data)
            except json.JSONDecodeError:
                await fanout.send(conn, _error("INVALID_JSON", "Could not parse message as JSON."))
                continue
            if not isinstance(frame, dict):
                await fanout.send(conn, _error("INVALID_FRAME", "Frames must be JSON objects."))
                continue
            await handle_frame(frame, conn, session_factory, fanout)
    except WebSocketDisconnect:
        pass
    finally:
        await fanout.deregister_connection(conn)
