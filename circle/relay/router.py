"""FastAPI WebSocket endpoint for the relay.

Clients connect to ``/ws?token=<session token>``. A missing, invalid or
expired token closes the socket with code 4401 before it is tracked.
Authenticated sockets are subscribed to the user's circles and then
read frames until the client goes away.

Usage:
    # In circle/main.py:
    from circle.relay.router import router as relay_router
    app.include_router(relay_router)
"""

from __future__ import annotations

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from circle.common.database import session_scope
from circle.common.encryption import verify_session_token
from circle.common.exceptions import AuthenticationError, NotFoundError
from circle.common.logging import get_logger
from circle.common.metrics import RELAY_FRAMES_REJECTED_TOTAL
from circle.data.circles import member_circle_ids
from circle.data.users import get_user
from circle.relay.handlers import dispatch
from circle.relay.manager import manager

logger = get_logger("RELAY")

router = APIRouter()

# Application-defined close code mirroring HTTP 401
CLOSE_UNAUTHENTICATED = 4401


async def _authenticate(token: str | None) -> tuple[str, set[str]]:
    if not token:
        raise AuthenticationError("Missing token")
    user_id = verify_session_token(token)
    async with session_scope() as db:
        try:
            await get_user(db, user_id)
        except NotFoundError as exc:
            raise AuthenticationError("Unknown user") from exc
        circle_ids = await member_circle_ids(db, user_id)
    return user_id, circle_ids


@router.websocket("/ws")
async def relay_endpoint(websocket: WebSocket, token: str | None = Query(default=None)) -> None:
    """Relay socket: authenticate, subscribe, then dispatch frames until close.

    Args:
        websocket: The incoming WebSocket connection.
        token: Session token from the ``token`` query parameter.
    """
    await websocket.accept()
    try:
        user_id, circle_ids = await _authenticate(token)
    except AuthenticationError as exc:
        RELAY_FRAMES_REJECTED_TOTAL.labels(reason=exc.code).inc()
        logger.warning("Relay socket rejected", extra={"data": {"reason": exc.message}})
        await websocket.close(code=CLOSE_UNAUTHENTICATED, reason=exc.message)
        return

    manager.register(websocket, user_id, circle_ids)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            # Binary frames reach dispatch() as bytes and are rejected there
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            await dispatch(websocket, user_id, raw)
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(websocket)
