"""In-app notification endpoints, scheduled notifications, and web push subscriptions.

The client polls ``GET /api/notifications`` and ``/unread-count`` on a
fixed interval; socket ``notification`` frames are only a nudge.
"""

from __future__ import annotations

from datetime import UTC

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from circle.api.deps import get_current_user
from circle.api.response_schemas import (
    PushSubscriptionRequest,
    ScheduleNotificationRequest,
    SuccessResponse,
)
from circle.common.database import get_db
from circle.common.exceptions import ValidationError
from circle.common.logging import get_logger
from circle.common.models import User
from circle.common.schemas import NotificationRecord, ScheduledNotificationRecord, UnreadCount
from circle.data import notifications

logger = get_logger("NOTIFY")

router = APIRouter()
push_router = APIRouter()


@router.get("", response_model=list[NotificationRecord])
async def list_notifications(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[NotificationRecord]:
    """The caller's notifications, newest first."""
    rows = await notifications.list_notifications(db, user.id)
    return [NotificationRecord.model_validate(r) for r in rows]


@router.get("/unread-count", response_model=UnreadCount)
async def unread_count(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UnreadCount:
    return UnreadCount(count=await notifications.unread_count(db, user.id))


@router.patch("/{notification_id}/read", response_model=NotificationRecord)
async def mark_read(
    notification_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> NotificationRecord:
    """Mark one notification read (404 if missing, 403 if it is someone else's)."""
    notification = await notifications.mark_read(db, notification_id, user.id)
    await db.commit()
    return NotificationRecord.model_validate(notification)


@router.post("/read-all", response_model=SuccessResponse)
async def mark_all_read(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> SuccessResponse:
    updated = await notifications.mark_all_read(db, user.id)
    await db.commit()
    logger.info(
        "Notifications marked read",
        extra={"data": {"user_id": user.id, "count": updated}},
    )
    return SuccessResponse()


# ─── Scheduled ───


@router.post("/schedule", response_model=ScheduledNotificationRecord, status_code=201)
async def schedule_notification(
    body: ScheduleNotificationRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ScheduledNotificationRecord:
    """Schedule a reminder for the caller. Times without a zone are taken as UTC."""
    scheduled_for = body.scheduled_for
    if scheduled_for.tzinfo is None:
        scheduled_for = scheduled_for.replace(tzinfo=UTC)
    if not body.title.strip():
        raise ValidationError("Title is required")

    scheduled = await notifications.schedule_notification(
        db, user.id, body.title, body.body, scheduled_for
    )
    await db.commit()
    logger.info(
        "Notification scheduled",
        extra={"data": {"user_id": user.id, "scheduled_id": scheduled.id}},
    )
    return ScheduledNotificationRecord.model_validate(scheduled)


@router.get("/scheduled", response_model=list[ScheduledNotificationRecord])
async def list_scheduled(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[ScheduledNotificationRecord]:
    rows = await notifications.list_scheduled(db, user.id)
    return [ScheduledNotificationRecord.model_validate(r) for r in rows]


@router.delete("/scheduled/{scheduled_id}", response_model=SuccessResponse)
async def delete_scheduled(
    scheduled_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> SuccessResponse:
    await notifications.delete_scheduled(db, scheduled_id, user.id)
    await db.commit()
    return SuccessResponse()


# ─── Web Push ───


@push_router.post("/subscribe", status_code=204)
async def subscribe_push(
    subscription: PushSubscriptionRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> None:
    """Store the browser's PushSubscription for the authenticated user.

    Re-subscribing the same endpoint replaces its keys.
    """
    await notifications.upsert_push_subscription(
        db,
        user.id,
        subscription.endpoint,
        subscription.keys.p256dh,
        subscription.keys.auth,
    )
    await db.commit()

    logger.info(
        "Push subscription stored",
        extra={
            "data": {
                "user_id": user.id,
                "endpoint_prefix": subscription.endpoint[:50] + "...",
            }
        },
    )


@push_router.delete("/subscribe", status_code=204)
async def unsubscribe_push(
    endpoint: str = Query(min_length=1),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> None:
    await notifications.remove_push_subscription(db, user.id, endpoint)
    await db.commit()
    logger.info("Push subscription removed", extra={"data": {"user_id": user.id}})
