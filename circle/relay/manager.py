"""Relay connection manager: tracks sockets by user and by circle.

Each accepted socket belongs to exactly one user and carries its own
set of subscribed circle ids (the user's memberships when it connected,
re-derived on ``refresh_circles``). A user may have several sockets
open at once (multiple tabs or devices).

The module-level `manager` instance is a singleton shared across
the FastAPI application.

Usage:
    from circle.relay.manager import manager

    manager.register(websocket, user_id, circle_ids)
    await manager.send_to_circle("c1", {"type": "chat", ...})
    manager.disconnect(websocket)
"""

from __future__ import annotations

import json
from typing import Any

from fastapi import WebSocket

from circle.common.logging import get_logger
from circle.common.metrics import RELAY_CONNECTIONS_ACTIVE, RELAY_FRAMES_SENT_TOTAL
from circle.relay.frames import Envelope

logger = get_logger("RELAY")


class ConnectionManager:
    """Routes frames to the right local sockets.

    Safe for a single asyncio event loop (FastAPI's default).
    """

    def __init__(self) -> None:
        self._users: dict[WebSocket, str] = {}
        self._subscriptions: dict[WebSocket, set[str]] = {}
        self._by_user: dict[str, set[WebSocket]] = {}

    def register(self, websocket: WebSocket, user_id: str, circle_ids: set[str]) -> None:
        """Track an accepted, authenticated socket."""
        self._users[websocket] = user_id
        self._subscriptions[websocket] = set(circle_ids)
        self._by_user.setdefault(user_id, set()).add(websocket)
        RELAY_CONNECTIONS_ACTIVE.inc()
        logger.info(
            "Relay socket registered",
            extra={
                "data": {
                    "user_id": user_id,
                    "circles": len(circle_ids),
                    "active_connections": len(self._users),
                }
            },
        )

    def disconnect(self, websocket: WebSocket) -> None:
        """Stop tracking a socket. Unknown sockets are ignored."""
        user_id = self._users.pop(websocket, None)
        if user_id is None:
            return
        self._subscriptions.pop(websocket, None)
        sockets = self._by_user.get(user_id)
        if sockets is not None:
            sockets.discard(websocket)
            if not sockets:
                del self._by_user[user_id]
        RELAY_CONNECTIONS_ACTIVE.dec()
        logger.info(
            "Relay socket disconnected",
            extra={"data": {"user_id": user_id, "active_connections": len(self._users)}},
        )

    def user_for(self, websocket: WebSocket) -> str | None:
        return self._users.get(websocket)

    def subscriptions(self, websocket: WebSocket) -> set[str]:
        return set(self._subscriptions.get(websocket, ()))

    def set_subscriptions(self, websocket: WebSocket, circle_ids: set[str]) -> None:
        if websocket in self._subscriptions:
            self._subscriptions[websocket] = set(circle_ids)

    def subscribe(self, websocket: WebSocket, circle_id: str) -> None:
        if websocket in self._subscriptions:
            self._subscriptions[websocket].add(circle_id)

    async def send(self, websocket: WebSocket, frame: dict[str, Any]) -> bool:
        """Send one frame to one socket; drop the socket if the write fails."""
        try:
            await websocket.send_text(json.dumps(frame))
        except Exception as exc:
            logger.warning(
                "Relay send failed, dropping socket",
                extra={"data": {"user_id": self._users.get(websocket), "error": str(exc)}},
            )
            self.disconnect(websocket)
            return False
        RELAY_FRAMES_SENT_TOTAL.labels(frame_type=frame.get("type", "unknown")).inc()
        return True

    async def _send_many(self, sockets: list[WebSocket], frame: dict[str, Any]) -> int:
        delivered = 0
        for ws in sockets:
            if await self.send(ws, frame):
                delivered += 1
        return delivered

    async def send_to_circle(self, circle_id: str, frame: dict[str, Any]) -> int:
        """Send to every socket subscribed to the circle. Returns sockets reached."""
        sockets = [ws for ws, circles in self._subscriptions.items() if circle_id in circles]
        return await self._send_many(sockets, frame)

    async def send_to_users(self, user_ids: list[str], frame: dict[str, Any]) -> int:
        """Send to every open socket of each listed user."""
        sockets: list[WebSocket] = []
        for user_id in dict.fromkeys(user_ids):
            sockets.extend(self._by_user.get(user_id, ()))
        return await self._send_many(sockets, frame)

    async def deliver(self, envelope: Envelope) -> int:
        """Route an envelope to its local recipients."""
        delivered = 0
        if envelope.target.kind == "circle":
            for circle_id in envelope.target.ids:
                delivered += await self.send_to_circle(circle_id, envelope.frame)
        else:
            delivered = await self.send_to_users(envelope.target.ids, envelope.frame)
        logger.debug(
            "Envelope delivered",
            extra={
                "data": {
                    "frame_type": envelope.frame.get("type"),
                    "target_kind": envelope.target.kind,
                    "recipients": delivered,
                }
            },
        )
        return delivered

    @property
    def active_count(self) -> int:
        """Return the number of tracked sockets."""
        return len(self._users)


# Module-level singleton
manager = ConnectionManager()
