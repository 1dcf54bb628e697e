"""Celery tasks for notification delivery.

Task schedule:
    - dispatch_scheduled_notifications: every minute (turn due scheduled
      notifications into in-app notifications, web push, and socket nudges)

Uses asgiref.sync.async_to_sync to run the async data layer from the
synchronous Celery worker.
"""

from __future__ import annotations

from datetime import UTC, datetime

from asgiref.sync import async_to_sync
from celery import shared_task

from circle.common.database import session_scope
from circle.common.logging import get_logger
from circle.common.metrics import PUSH_NOTIFICATIONS_TOTAL
from circle.common.schemas import NotificationRecord
from circle.data import notifications
from circle.notifications.service import NotificationService
from circle.relay.events import publish_envelope_sync
from circle.relay.frames import Envelope, notification_frame

logger = get_logger("NOTIFY")


# ─── Celery Tasks ───


@shared_task(bind=True, max_retries=2, default_retry_delay=30)
def dispatch_scheduled_notifications(self) -> dict:
    """Deliver every scheduled notification whose time has come.

    Returns:
        Dict with task execution metadata.
    """
    start_time = datetime.now(UTC)

    try:
        envelopes = async_to_sync(dispatch_due)()
    except Exception as exc:
        logger.error(
            "Scheduled notification dispatch failed, retrying",
            extra={"data": {"error": str(exc)}},
        )
        raise self.retry(exc=exc) from exc

    for envelope in envelopes:
        publish_envelope_sync(envelope)

    elapsed = (datetime.now(UTC) - start_time).total_seconds()
    if envelopes:
        logger.info(
            "Scheduled notifications dispatched",
            extra={"data": {"count": len(envelopes), "elapsed_seconds": round(elapsed, 1)}},
        )

    return {"status": "completed", "dispatched": len(envelopes)}


# ─── Async Implementations ───


async def dispatch_due(now: datetime | None = None) -> list[Envelope]:
    """Convert due scheduled notifications and push them.

    Each due row becomes an in-app ``scheduled`` notification and is
    marked sent in the same transaction, so a retry never duplicates
    it. Web push runs after the commit and honours each user's
    notification preferences.

    Returns:
        One ``notification`` envelope per delivered row, for the caller
        to publish to the owner's open sockets.
    """
    now = now or datetime.now(UTC)
    envelopes: list[Envelope] = []
    created: list[NotificationRecord] = []

    async with session_scope() as db:
        for scheduled in await notifications.due_scheduled(db, now):
            notification = await notifications.create_notification(
                db,
                user_id=scheduled.user_id,
                type_="scheduled",
                title=scheduled.title,
                body=scheduled.body,
            )
            scheduled.sent = True
            scheduled.sent_at = now
            created.append(NotificationRecord.model_validate(notification))
        await db.commit()

        for record in created:
            await _push(db, record, now)
            envelopes.append(Envelope.to_users([record.user_id], notification_frame(record)))
        await db.commit()

    return envelopes


async def _push(db, record: NotificationRecord, now: datetime) -> None:  # noqa: ANN001
    """Send web push to each of the user's subscriptions, pruning expired ones.

    Nothing is sent when the user turned push off or ``now`` is inside
    their quiet hours; the in-app notification and socket nudge still go out.
    """
    preference = await notifications.get_preferences(db, record.user_id)
    if not notifications.push_allowed(preference, now):
        PUSH_NOTIFICATIONS_TOTAL.labels(outcome="suppressed").inc()
        logger.info(
            "Push suppressed by preferences",
            extra={"data": {"user_id": record.user_id, "notification_id": record.id}},
        )
        return

    for subscription in await notifications.push_subscriptions_for(db, record.user_id):
        svc = NotificationService(subscription=subscription.to_subscription_info())
        outcome = await svc.send(
            title=record.title,
            body=record.body,
            data={"notificationId": record.id, "link": record.link},
        )
        if outcome == "expired":
            await notifications.remove_push_subscription(db, record.user_id, subscription.endpoint)
            logger.info(
                "Expired push subscription removed",
                extra={"data": {"user_id": record.user_id}},
            )
