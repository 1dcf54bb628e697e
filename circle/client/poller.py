"""Notification poller.

Fetches the notification list and unread badge count on a fixed
interval (30 s by default), independent of the relay socket. A failed
poll is logged and the next one runs on schedule.

Usage:
    from circle.client.poller import NotificationPoller

    poller = NotificationPoller(api, on_update=render_badge)
    poller.start()
    ...
    await poller.stop()
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from typing import Any

from circle.client.rest import CircleApiClient
from circle.common.config import get_settings
from circle.common.exceptions import CircleBaseException
from circle.common.logging import get_logger
from circle.common.schemas import NotificationRecord

logger = get_logger("NOTIFY")

UpdateCallback = Callable[[list[NotificationRecord], int], Any]


class NotificationPoller:
    """Periodic poll of /api/notifications and the unread count.

    Args:
        api: Authenticated REST client.
        on_update: Called with (notifications, unread_count) after each
            successful poll. May be a coroutine function.
        interval: Seconds between polls; defaults to
            settings.notification_poll_seconds.
    """

    def __init__(
        self,
        api: CircleApiClient,
        on_update: UpdateCallback,
        interval: float | None = None,
    ) -> None:
        self.api = api
        self.on_update = on_update
        self.interval = interval if interval is not None else get_settings().notification_poll_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start polling now and every `interval` seconds. Idempotent."""
        if self.running:
            return
        self._task = asyncio.ensure_future(self._run())
        logger.info("Notification poller started", extra={"data": {"interval": self.interval}})

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Notification poller stopped")

    async def poll_once(self) -> tuple[list[NotificationRecord], int] | None:
        """Run one poll.

        Returns:
            The (notifications, unread_count) pair, or None if the API call failed.
        """
        try:
            notifications = await self.api.notifications()
            count = await self.api.unread_count()
        except CircleBaseException as exc:
            logger.warning("Notification poll failed", extra={"data": {"error": str(exc)}})
            return None

        result = self.on_update(notifications, count)
        if inspect.isawaitable(result):
            await result
        return notifications, count

    async def _run(self) -> None:
        while True:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Notification update callback failed")
            await asyncio.sleep(self.interval)
