"""Redis pub/sub subscriber that feeds relay envelopes to local sockets.

Only runs when ``relay_use_redis`` is enabled. Subscribes to the relay
channel and hands each envelope to the ConnectionManager, which
delivers to whichever target sockets are connected to this process.
Handles Redis disconnection with exponential backoff reconnection.

Started as an asyncio.Task during FastAPI app lifespan.

Usage:
    from circle.relay.subscriber import redis_subscriber
    from circle.relay.manager import manager

    task = asyncio.create_task(redis_subscriber(manager))
"""

from __future__ import annotations

import asyncio

import redis.asyncio as aioredis
from pydantic import ValidationError as PydanticValidationError

from circle.common.config import get_settings
from circle.common.logging import get_logger
from circle.common.metrics import RELAY_ENVELOPES_RECEIVED_TOTAL
from circle.relay.frames import Envelope
from circle.relay.manager import ConnectionManager

logger = get_logger("RELAY")

MAX_BACKOFF_SECONDS = 30


async def _close(r: aioredis.Redis | None, pubsub: aioredis.client.PubSub | None) -> None:
    try:
        if pubsub is not None:
            await pubsub.aclose()
        if r is not None:
            await r.aclose()
    except Exception as exc:
        logger.debug("Redis subscriber cleanup failed", extra={"data": {"error": str(exc)}})


async def redis_subscriber(mgr: ConnectionManager) -> None:
    """Subscribe to the relay channel and deliver envelopes through `mgr`.

    Runs until cancelled. On Redis errors, retries after
    ``min(2**attempt, MAX_BACKOFF_SECONDS)`` seconds. Each connection is
    closed before the next one is opened.
    """
    attempt = 0

    while True:
        r = None
        pubsub = None
        try:
            try:
                settings = get_settings()
                r = aioredis.from_url(settings.redis_url)
                pubsub = r.pubsub()
                await pubsub.subscribe(settings.relay_channel)

                logger.info(
                    "Redis subscriber connected",
                    extra={"data": {"channel": settings.relay_channel}},
                )
                attempt = 0

                async for message in pubsub.listen():
                    if message["type"] != "message":
                        continue

                    data = message["data"]
                    if isinstance(data, bytes):
                        data = data.decode("utf-8")

                    try:
                        envelope = Envelope.model_validate_json(data)
                    except PydanticValidationError as exc:
                        logger.warning(
                            "Dropping malformed relay envelope",
                            extra={"data": {"error": str(exc)}},
                        )
                        continue

                    RELAY_ENVELOPES_RECEIVED_TOTAL.labels(target_kind=envelope.target.kind).inc()
                    await mgr.deliver(envelope)
            finally:
                await _close(r, pubsub)

        except asyncio.CancelledError:
            logger.info("Redis subscriber shutting down")
            break

        except Exception as exc:
            wait = min(2**attempt, MAX_BACKOFF_SECONDS)
            logger.warning(
                "Redis subscriber error, reconnecting",
                extra={
                    "data": {
                        "error": str(exc),
                        "attempt": attempt + 1,
                        "wait_seconds": wait,
                    }
                },
            )
            attempt += 1
            await asyncio.sleep(wait)
