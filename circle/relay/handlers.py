"""Per-frame handlers for the relay endpoint.

Each handler gets the socket, the authenticated user id, and a parsed
frame. Handlers raise circle exceptions on bad input; `dispatch()`
turns those into an ``error`` frame for the sender and keeps the
socket open.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import WebSocket

from circle.common.database import session_scope
from circle.common.exceptions import CircleBaseException, PermissionDeniedError
from circle.common.logging import get_logger
from circle.common.metrics import RELAY_FRAMES_RECEIVED_TOTAL, RELAY_FRAMES_REJECTED_TOTAL
from circle.data import circles, conversations
from circle.relay.events import publish_envelope, try_publish_envelope
from circle.relay.frames import (
    ChatFrame,
    DmFrame,
    Envelope,
    chat_frame,
    circles_refreshed_frame,
    dm_frame,
    error_frame,
    parse_frame,
    pong_frame,
)
from circle.relay.manager import manager

logger = get_logger("RELAY")


async def handle_chat(websocket: WebSocket, user_id: str, frame: ChatFrame) -> None:
    """Persist a circle chat line and fan it out to the circle's sockets."""
    if frame.user_id is not None and frame.user_id != user_id:
        raise PermissionDeniedError(
            "userId does not match the authenticated user",
            context={"circle_id": frame.circle_id},
        )

    async with session_scope() as db:
        message = await circles.post_message(db, frame.circle_id, user_id, frame.content)
        await db.commit()

    # Membership was just confirmed; covers joins made since the socket opened
    manager.subscribe(websocket, frame.circle_id)
    # Stored already; a failed fan-out must not read as a failed send
    await try_publish_envelope(Envelope.to_circle(frame.circle_id, chat_frame(message)))
    logger.info(
        "Chat relayed",
        extra={"data": {"circle_id": frame.circle_id, "message_id": message.id}},
    )


async def handle_dm(websocket: WebSocket, user_id: str, frame: DmFrame) -> None:
    """Forward an already persisted DM to every socket of both participants."""
    async with session_scope() as db:
        conversation = await conversations.require_participant(db, frame.conversation_id, user_id)
        participants = list(conversation.participant_ids)
        message = await conversations.get_message_in_conversation(
            db, frame.conversation_id, frame.message_id
        )

    await publish_envelope(Envelope.to_users(participants, dm_frame(message)))
    logger.info(
        "DM relayed",
        extra={"data": {"conversation_id": frame.conversation_id, "message_id": message.id}},
    )


async def handle_refresh_circles(websocket: WebSocket, user_id: str, frame: Any) -> None:
    """Re-read the user's memberships into this socket's subscriptions."""
    async with session_scope() as db:
        circle_ids = await circles.member_circle_ids(db, user_id)
    manager.set_subscriptions(websocket, circle_ids)
    await manager.send(websocket, circles_refreshed_frame(circle_ids))


async def handle_ping(websocket: WebSocket, user_id: str, frame: Any) -> None:
    await manager.send(websocket, pong_frame())


HANDLERS: dict[str, Callable[[WebSocket, str, Any], Awaitable[None]]] = {
    "chat": handle_chat,
    "dm": handle_dm,
    "refresh_circles": handle_refresh_circles,
    "ping": handle_ping,
}


async def _reject(websocket: WebSocket, user_id: str, exc: CircleBaseException) -> None:
    RELAY_FRAMES_REJECTED_TOTAL.labels(reason=exc.code).inc()
    logger.warning(
        "Frame rejected",
        extra={"data": {"user_id": user_id, "code": exc.code, "error": str(exc)}},
    )
    await manager.send(websocket, error_frame(exc.code, exc.message))


async def dispatch(websocket: WebSocket, user_id: str, raw: Any) -> None:
    """Parse one inbound frame and run its handler.

    Never raises; the sender gets an ``error`` frame instead and the
    socket stays open.
    """
    try:
        frame = parse_frame(raw)
    except CircleBaseException as exc:
        await _reject(websocket, user_id, exc)
        return

    RELAY_FRAMES_RECEIVED_TOTAL.labels(frame_type=frame.type).inc()
    try:
        await HANDLERS[frame.type](websocket, user_id, frame)
    except CircleBaseException as exc:
        await _reject(websocket, user_id, exc)
    except Exception:
        logger.exception(
            "Frame handler failed",
            extra={"data": {"user_id": user_id, "frame_type": frame.type}},
        )
        RELAY_FRAMES_REJECTED_TOTAL.labels(reason="internal_error").inc()
        await manager.send(websocket, error_frame("internal_error", "Frame could not be processed"))
