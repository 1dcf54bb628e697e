"""Web push delivery for notifications.

Sends push messages to a user's browser using the VAPID web push
protocol. Subscriptions come from the push_subscriptions table, stored
when the browser calls POST /api/push/subscribe.

Usage:
    from circle.notifications.service import NotificationService

    svc = NotificationService(subscription=sub.to_subscription_info())
    outcome = await svc.send(title="Reminder", body="Stand-up in 5", data={"link": "/"})
"""

from __future__ import annotations

import json

from pywebpush import WebPushException, webpush

from circle.common.config import get_settings
from circle.common.logging import get_logger
from circle.common.metrics import PUSH_NOTIFICATIONS_TOTAL

logger = get_logger("NOTIFY")

# Push service responses meaning the subscription is gone for good
_EXPIRED_STATUSES = {404, 410}


class NotificationService:
    """Sends web push notifications to one browser subscription.

    Args:
        subscription: Dict with "endpoint" and "keys" ("p256dh", "auth"),
            as returned by PushSubscription.to_subscription_info().
    """

    def __init__(self, subscription: dict) -> None:
        self.subscription = subscription

    async def send(
        self,
        title: str,
        body: str | None,
        data: dict | None = None,
    ) -> str:
        """Send a push notification.

        Returns:
            One of "sent", "skipped" (VAPID not configured), "expired"
            (the caller should delete the subscription) or "failed".
        """
        settings = get_settings()

        if not settings.vapid_private_key or not settings.vapid_email:
            logger.warning(
                "Push notification skipped: VAPID keys not configured",
                extra={"data": {"title": title}},
            )
            PUSH_NOTIFICATIONS_TOTAL.labels(outcome="skipped").inc()
            return "skipped"

        payload = json.dumps({"title": title, "body": body or "", "data": data or {}})

        try:
            webpush(
                subscription_info=self.subscription,
                data=payload,
                vapid_private_key=settings.vapid_private_key,
                vapid_claims={"sub": f"mailto:{settings.vapid_email}"},
            )
        except WebPushException as exc:
            status = getattr(exc.response, "status_code", None)
            outcome = "expired" if status in _EXPIRED_STATUSES else "failed"
            logger.error(
                "Push notification failed",
                extra={"data": {"error": str(exc), "status": status, "title": title}},
            )
            PUSH_NOTIFICATIONS_TOTAL.labels(outcome=outcome).inc()
            return outcome
        except Exception as exc:
            # Transport errors (requests.ConnectionError, timeouts) land here
            logger.error(
                "Unexpected error sending push notification",
                extra={"data": {"error": str(exc), "title": title}},
            )
            PUSH_NOTIFICATIONS_TOTAL.labels(outcome="failed").inc()
            return "failed"

        logger.info("Push notification sent", extra={"data": {"title": title}})
        PUSH_NOTIFICATIONS_TOTAL.labels(outcome="sent").inc()
        return "sent"
