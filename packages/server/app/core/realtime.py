"""
WebSocket fanout service.

Features:
- One WS connection per client, multiplexing every channel room it joins
- Room-scoped broadcasting that can skip the sending socket
- Redis Pub/Sub for multi-process broadcasting (when a Redis client is given)
- Dead-connection cleanup during broadcast

The manager is created per application and held on `app.state.fanout`;
routes and services receive it through `get_fanout`.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any
from uuid import UUID

from fastapi import Request, WebSocket

logger = logging.getLogger(__name__)

# Redis channel carrying every room event between API processes
REDIS_FANOUT_CHANNEL = "ch:fanout"


def channel_room(channel_id: UUID | str) -> str:
    return f"channel:{channel_id}"


class ConnectionInfo:
    """Tracks a single WebSocket connection's metadata."""

    __slots__ = ("id", "websocket", "user_id", "user_name", "rooms")

    def __init__(self, websocket: WebSocket, user_id: UUID, user_name: str):
        # Unique across processes so a Redis envelope can name the sender
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        self.user_id = user_id
        self.user_name = user_name  # resolved once at connect time
        self.rooms: set[str] = set()


class ConnectionManager:
    """
    Registry of live sockets and the rooms they have joined.

    Without Redis, `broadcast` delivers straight to local sockets. With Redis,
    `broadcast` only publishes; a listener task in every process delivers the
    event to its own local sockets, so the sender's process is not special.
    """

    def __init__(self, redis=None) -> None:
        self._connections: list[ConnectionInfo] = []
        # room -> connections joined to it
        self._rooms: dict[str, set[ConnectionInfo]] = {}
        self._redis = redis
        self._listener: asyncio.Task | None = None

    @property
    def connections(self) -> list[ConnectionInfo]:
        return self._connections

    @property
    def rooms(self) -> dict[str, set[ConnectionInfo]]:
        return self._rooms

    # --- Connection lifecycle ---

    async def register_connection(
        self,
        websocket: WebSocket,
        user_id: UUID,
        user_name: str,
    ) -> ConnectionInfo:
        """Accept an authenticated WebSocket and start tracking it."""
        await websocket.accept()
        info = ConnectionInfo(websocket, user_id, user_name)
        self._connections.append(info)
        logger.info(
            "WebSocket connected: user=%s total=%d", user_id, len(self._connections)
        )
        return info

    async def deregister_connection(self, info: ConnectionInfo) -> None:
        """Remove a connection from every room it joined."""
        for room in list(info.rooms):
            self.leave(info, room)
        try:
            self._connections.remove(info)
        except ValueError:
            pass
        logger.info("WebSocket disconnected: user=%s", info.user_id)

    def join(self, info: ConnectionInfo, room: str) -> None:
        self._rooms.setdefault(room, set()).add(info)
        info.rooms.add(room)

    def leave(self, info: ConnectionInfo, room: str) -> None:
        members = self._rooms.get(room)
        if members is not None:
            members.discard(info)
            if not members:
                del self._rooms[room]
        info.rooms.discard(room)

    # --- Broadcasting ---

    async def broadcast(
        self,
        room: str,
        event: str,
        payload: dict[str, Any],
        exclude: ConnectionInfo | None = None,
    ) -> None:
        """Push `{"type": event, **payload}` to every socket in `room`.

        At-most-once: a socket that is not joined at this moment never sees it.
        `exclude` skips only that socket; the same user's other tabs still
        receive the event.
        """
        exclude_id = exclude.id if exclude else None
        if self._redis is not None:
            envelope = {
                "room": room,
                "event": event,
                "payload": payload,
                "exclude": exclude_id,
            }
            await self._redis.publish(REDIS_FANOUT_CHANNEL, json.dumps(envelope, default=str))
            return
        await self._deliver(room, event, payload, exclude_id)

    async def _deliver(
        self,
        room: str,
        event: str,
        payload: dict[str, Any],
        exclude_id: str | None = None,
    ) -> None:
        members = self._rooms.get(room)
        if not members:
            return

        msg_text = json.dumps({"type": event, **payload}, default=str)

        dead_connections = []
        for conn_info in list(members):
            if exclude_id and conn_info.id == exclude_id:
                continue
            try:
                await conn_info.websocket.send_text(msg_text)
            except Exception:
                dead_connections.append(conn_info)

        # Clean up dead connections
        for dead in dead_connections:
            await self.deregister_connection(dead)

    async def send(self, info: ConnectionInfo, frame: dict[str, Any]) -> None:
        """Send a frame to a single connection."""
        await info.websocket.send_text(json.dumps(frame, default=str))

    # --- Redis Pub/Sub Listener ---

    async def start(self) -> None:
        if self._redis is not None and self._listener is None:
            self._listener = asyncio.create_task(self._listen_redis())

    async def stop(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None

    async def _listen_redis(self) -> None:
        """Listen to the fanout channel and deliver to local sockets."""
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(REDIS_FANOUT_CHANNEL)

        try:
            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    data = json.loads(message["data"])
                    await self._deliver(
                        data["room"],
                        data["event"],
                        data.get("payload") or {},
                        data.get("exclude"),
                    )
                except (KeyError, ValueError, TypeError):
                    logger.warning("Dropping malformed fanout message: %r", message["data"])
        except asyncio.CancelledError:
            logger.info("Redis fanout listener cancelled")
        finally:
            await pubsub.unsubscribe(REDIS_FANOUT_CHANNEL)
            await pubsub.close()


def get_fanout(request: Request) -> ConnectionManager:
    """FastAPI dependency: the application's fanout service."""
    return request.app.state.fanout
