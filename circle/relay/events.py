"""Envelope publishing for the relay, REST handlers, and Celery tasks.

With ``relay_use_redis`` enabled, envelopes go to the Redis pub/sub
channel (``circle:relay`` by default) and every API process's
subscriber delivers them to its own sockets. Otherwise they are handed
straight to this process's ConnectionManager.

Usage from Celery tasks:
    from circle.relay.events import publish_envelope_sync

    publish_envelope_sync(Envelope.to_users([user_id], frame))

Usage from async code:
    from circle.relay.events import publish_envelope

    await publish_envelope(Envelope.to_circle(circle_id, frame))
"""

from __future__ import annotations

import redis.asyncio as aioredis
from asgiref.sync import async_to_sync

from circle.common.config import get_settings
from circle.common.logging import get_logger
from circle.relay.frames import Envelope
from circle.relay.manager import manager

logger = get_logger("RELAY")


async def publish_envelope(envelope: Envelope) -> None:
    """Route an envelope through Redis or the local manager.

    Args:
        envelope: Frame plus circle/users target.
    """
    settings = get_settings()
    if not settings.relay_use_redis:
        await manager.deliver(envelope)
        return

    r = aioredis.from_url(settings.redis_url)
    try:
        await r.publish(settings.relay_channel, envelope.model_dump_json())
    finally:
        await r.aclose()


def publish_envelope_sync(envelope: Envelope) -> None:
    """Synchronous wrapper for publish_envelope, safe for Celery tasks.

    A Redis failure is logged, never raised, so a notification that was
    already stored is not rolled back by a missed socket nudge.
    """
    try:
        async_to_sync(publish_envelope)(envelope)
    except Exception as exc:
        logger.warning(
            "Failed to publish relay envelope",
            extra={
                "data": {
                    "frame_type": envelope.frame.get("type"),
                    "target_kind": envelope.target.kind,
                    "error": str(exc),
                }
            },
        )


async def try_publish_envelope(envelope: Envelope) -> bool:
    """publish_envelope() for callers that have already committed their write.

    Returns:
        False (after logging) if the envelope could not be published.
    """
    try:
        await publish_envelope(envelope)
    except Exception as exc:
        logger.warning(
            "Failed to publish relay envelope",
            extra={
                "data": {
                    "frame_type": envelope.frame.get("type"),
                    "target_kind": envelope.target.kind,
                    "error": str(exc),
                }
            },
        )
        return False
    return True
