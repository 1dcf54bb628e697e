"""Relay WebSocket client with automatic reconnection.

One RelayConnection owns one live socket to one relay endpoint. Callers
never see the socket itself; they get `send()`, `on()`, `close()` and
the connection state.

Features:
- ``ws``/``wss`` derived from the API base URL scheme
- Handler registry keyed by frame ``type`` (additive, or last-write-wins
  with ``replace=True``)
- Exponential backoff reconnection: ``min(1s * 2**attempt, 30s)``, at
  most 5 attempts between successful opens
- ``permanently_disconnected`` flag plus a manual ``reconnect()``
- Malformed inbound frames are logged and dropped

Usage:
    from circle.client.connection import RelayConnection

    conn = RelayConnection("https://circle.example.com", token=token)
    unsubscribe = conn.on("chat", lambda frame: print(frame["message"]))
    await conn.connect()
    await conn.send({"type": "chat", "circleId": "c1", "userId": "u1", "content": "hi"})
    await conn.close()
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import json
from collections.abc import Callable
from typing import Any
from urllib.parse import urlencode, urlsplit, urlunsplit

import websockets

from circle.common.logging import get_logger

logger = get_logger("CLIENT")

Handler = Callable[[dict[str, Any]], Any]

BACKOFF_BASE_SECONDS = 1.0
BACKOFF_CAP_SECONDS = 30.0
MAX_RECONNECT_ATTEMPTS = 5


class ConnectionState(str, enum.Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


def backoff_delay(
    attempt: int,
    base: float = BACKOFF_BASE_SECONDS,
    cap: float = BACKOFF_CAP_SECONDS,
) -> float:
    """Seconds to wait before reconnect attempt ``attempt`` (0-indexed)."""
    return min(base * 2**attempt, cap)


def websocket_url(base_url: str, path: str = "/ws", token: str | None = None) -> str:
    """Build the socket URL from an API origin.

    ``https`` (or ``wss``) becomes ``wss``; anything else becomes ``ws``.
    """
    parts = urlsplit(base_url)
    scheme = "wss" if parts.scheme in ("https", "wss") else "ws"
    query = urlencode({"token": token}) if token else ""
    return urlunsplit((scheme, parts.netloc, path, query, ""))


class RelayConnection:
    """Managed connection to the relay socket.

    No public method raises: connection failures turn into a scheduled
    reconnect, and sends while not open are logged and dropped.

    Args:
        base_url: API origin, e.g. ``https://circle.example.com``.
        path: Socket path on that origin.
        token: Session token sent as the ``token`` query parameter.
        max_reconnect_attempts: Automatic retries before giving up.
        connect_factory: Coroutine function that opens a socket for a URL.
            Defaults to ``websockets.connect``.
        loop: Event loop used for reconnect timers. Defaults to the
            running loop.
    """

    def __init__(
        self,
        base_url: str,
        path: str = "/ws",
        token: str | None = None,
        *,
        max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
        connect_factory: Callable[[str], Any] | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.url = websocket_url(base_url, path, token)
        self.max_reconnect_attempts = max_reconnect_attempts
        self._connect_factory = connect_factory or websockets.connect
        self._loop = loop

        self._ws: Any = None
        self._state = ConnectionState.CLOSED
        self._handlers: dict[str, list[Handler]] = {}
        self._attempts = 0
        self._permanently_disconnected = False
        self._closed_by_caller = False
        # Bumped by connect() and close(); a handshake from an older
        # generation discards its socket
        self._generation = 0
        self._reconnect_timer: asyncio.TimerHandle | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._reader_task: asyncio.Task | None = None

    # ─── State ───

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.OPEN

    @property
    def permanently_disconnected(self) -> bool:
        """True once automatic reconnection has given up."""
        return self._permanently_disconnected

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    # ─── Lifecycle ───

    async def connect(self) -> None:
        """Open the socket. A no-op while already connecting or open."""
        if self._state is not ConnectionState.CLOSED:
            return
        self._closed_by_caller = False
        self._state = ConnectionState.CONNECTING
        self._generation += 1
        generation = self._generation

        try:
            ws = await self._connect_factory(self.url)
        except Exception as exc:
            logger.warning(
                "Relay connect failed",
                extra={"data": {"url": self.url, "error": str(exc), "attempt": self._attempts}},
            )
            if generation == self._generation:
                self._handle_close()
            return

        if generation != self._generation:
            # close(), and maybe a newer connect(), ran during the handshake
            await self._close_socket(ws)
            return

        self._ws = ws
        self._state = ConnectionState.OPEN
        self._attempts = 0
        self._reader_task = asyncio.ensure_future(self._read_loop(ws))
        logger.info("Relay connected", extra={"data": {"url": self.url}})

    async def reconnect(self) -> None:
        """Manual retry after automatic reconnection gave up (or any time)."""
        self._cancel_reconnect_timer()
        self._permanently_disconnected = False
        self._attempts = 0
        await self.connect()

    async def close(self) -> None:
        """Tear down: cancel any pending reconnect, close the socket, drop handlers."""
        self._closed_by_caller = True
        self._generation += 1
        self._cancel_reconnect_timer()
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reconnect_task = None

        ws, self._ws = self._ws, None
        self._state = ConnectionState.CLOSED
        if ws is not None:
            await self._close_socket(ws)
        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
        self._reader_task = None

        self._handlers.clear()
        logger.info("Relay connection closed", extra={"data": {"url": self.url}})

    # ─── Messaging ───

    def on(self, frame_type: str, handler: Handler, replace: bool = False) -> Callable[[], None]:
        """Register a handler for frames of ``frame_type``.

        Handlers for the same type all run, in registration order. With
        ``replace=True`` the new handler displaces every earlier one.

        Returns:
            A function that unregisters this handler only.
        """
        if replace:
            self._handlers[frame_type] = [handler]
        else:
            self._handlers.setdefault(frame_type, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(frame_type)
            if not handlers:
                return
            for index, registered in enumerate(handlers):
                if registered is handler:
                    del handlers[index]
                    break
            if not handlers:
                self._handlers.pop(frame_type, None)

        return unsubscribe

    async def send(self, message: dict[str, Any]) -> bool:
        """Send one frame if the socket is open.

        Returns:
            True if the frame was written. False if the connection is not
            open, the frame has no ``type``, or the write failed. Dropped
            frames are never queued.
        """
        if not isinstance(message, dict) or not isinstance(message.get("type"), str):
            logger.warning("Refusing to send frame without a type")
            return False
        if not self.is_connected or self._ws is None:
            logger.warning(
                "Relay not connected, frame dropped",
                extra={"data": {"frame_type": message["type"], "state": self._state.value}},
            )
            return False
        try:
            await self._ws.send(json.dumps(message))
        except Exception as exc:
            logger.warning(
                "Relay send failed",
                extra={"data": {"frame_type": message["type"], "error": str(exc)}},
            )
            return False
        return True

    # ─── Internal Methods ───

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                await self._dispatch(raw)
        except websockets.ConnectionClosed as exc:
            logger.info("Relay socket closed by peer", extra={"data": {"code": exc.code}})
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Relay read loop failed", extra={"data": {"error": str(exc)}})
        if self._ws is ws:
            self._handle_close()

    async def _dispatch(self, raw: Any) -> None:
        try:
            frame = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as exc:
            logger.warning("Dropping malformed frame", extra={"data": {"error": str(exc)}})
            return
        if not isinstance(frame, dict) or not isinstance(frame.get("type"), str):
            logger.warning("Dropping frame without a type")
            return

        for handler in list(self._handlers.get(frame["type"], ())):
            try:
                result = handler(frame)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "Frame handler raised",
                    extra={"data": {"frame_type": frame["type"]}},
                )

    def _handle_close(self) -> None:
        """Mark the socket closed and schedule the next reconnect, if any remain."""
        self._ws = None
        self._state = ConnectionState.CLOSED
        if self._closed_by_caller:
            return

        if self._attempts >= self.max_reconnect_attempts:
            self._permanently_disconnected = True
            logger.error(
                "Relay reconnect attempts exhausted",
                extra={"data": {"url": self.url, "attempts": self._attempts}},
            )
            return

        delay = backoff_delay(self._attempts)
        self._attempts += 1
        loop = self._loop or asyncio.get_running_loop()
        self._reconnect_timer = loop.call_later(delay, self._fire_reconnect)
        logger.info(
            "Relay reconnect scheduled",
            extra={
                "data": {
                    "attempt": self._attempts,
                    "max_attempts": self.max_reconnect_attempts,
                    "wait_seconds": delay,
                }
            },
        )

    def _fire_reconnect(self) -> None:
        self._reconnect_timer = None
        if self._closed_by_caller:
            return
        self._reconnect_task = asyncio.ensure_future(self.connect())

    def _cancel_reconnect_timer(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    async def _close_socket(self, ws: Any) -> None:
        try:
            await ws.close()
        except Exception as exc:
            logger.warning("Relay socket close failed", extra={"data": {"error": str(exc)}})
