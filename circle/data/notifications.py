"""In-app notifications, scheduled notifications, push subscriptions, and preferences."""

from __future__ import annotations

from datetime import UTC, datetime, time

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from circle.common.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from circle.common.metrics import NOTIFICATIONS_CREATED_TOTAL
from circle.common.models import (
    Notification,
    NotificationPreference,
    PushSubscription,
    ScheduledNotification,
)

NOTIFICATION_LIST_LIMIT = 100


async def create_notification(
    db: AsyncSession,
    user_id: str,
    type_: str,
    title: str,
    body: str | None = None,
    link: str | None = None,
) -> Notification:
    notification = Notification(user_id=user_id, type=type_, title=title, body=body, link=link)
    db.add(notification)
    await db.flush()
    NOTIFICATIONS_CREATED_TOTAL.labels(type=type_).inc()
    return notification


async def list_notifications(db: AsyncSession, user_id: str) -> list[Notification]:
    """Newest first, capped at NOTIFICATION_LIST_LIMIT."""
    result = await db.execute(
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(NOTIFICATION_LIST_LIMIT)
    )
    return list(result.scalars().all())


async def unread_count(db: AsyncSession, user_id: str) -> int:
    result = await db.execute(
        select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.read.is_(False),
        )
    )
    return int(result.scalar() or 0)


async def mark_read(db: AsyncSession, notification_id: str, user_id: str) -> Notification:
    """Raises NotFoundError for unknown ids, PermissionDeniedError for someone else's."""
    notification = await db.get(Notification, notification_id)
    if notification is None:
        raise NotFoundError("Notification not found", context={"notification_id": notification_id})
    if notification.user_id != user_id:
        raise PermissionDeniedError("Unauthorized")
    if not notification.read:
        notification.read = True
        notification.read_at = datetime.now(UTC)
        await db.flush()
    return notification


async def mark_all_read(db: AsyncSession, user_id: str) -> int:
    """Mark every unread notification read; returns how many changed."""
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.read.is_(False))
        .values(read=True, read_at=datetime.now(UTC))
        .execution_options(synchronize_session="fetch")
    )
    await db.flush()
    return result.rowcount or 0


# ─── Scheduled ───


async def schedule_notification(
    db: AsyncSession,
    user_id: str,
    title: str,
    body: str | None,
    scheduled_for: datetime,
) -> ScheduledNotification:
    scheduled = ScheduledNotification(
        user_id=user_id,
        title=title.strip(),
        body=body.strip() if body else body,
        scheduled_for=scheduled_for,
    )
    db.add(scheduled)
    await db.flush()
    return scheduled


async def list_scheduled(db: AsyncSession, user_id: str) -> list[ScheduledNotification]:
    result = await db.execute(
        select(ScheduledNotification)
        .where(ScheduledNotification.user_id == user_id)
        .order_by(ScheduledNotification.scheduled_for)
    )
    return list(result.scalars().all())


async def delete_scheduled(db: AsyncSession, scheduled_id: str, user_id: str) -> None:
    scheduled = await db.get(ScheduledNotification, scheduled_id)
    if scheduled is None:
        raise NotFoundError("Scheduled notification not found", context={"id": scheduled_id})
    if scheduled.user_id != user_id:
        raise PermissionDeniedError("Unauthorized")
    await db.delete(scheduled)
    await db.flush()


async def due_scheduled(db: AsyncSession, now: datetime | None = None) -> list[ScheduledNotification]:
    """Unsent scheduled notifications whose time has come, oldest first."""
    now = now or datetime.now(UTC)
    result = await db.execute(
        select(ScheduledNotification)
        .where(
            ScheduledNotification.sent.is_(False),
            ScheduledNotification.scheduled_for <= now,
        )
        .order_by(ScheduledNotification.scheduled_for)
    )
    return list(result.scalars().all())


# ─── Push Subscriptions ───


async def upsert_push_subscription(
    db: AsyncSession, user_id: str, endpoint: str, p256dh: str, auth: str
) -> PushSubscription:
    """Store a browser push subscription, replacing keys for a known endpoint."""
    result = await db.execute(
        select(PushSubscription).where(
            PushSubscription.user_id == user_id,
            PushSubscription.endpoint == endpoint,
        )
    )
    subscription = result.scalar_one_or_none()
    if subscription is None:
        subscription = PushSubscription(user_id=user_id, endpoint=endpoint, p256dh=p256dh, auth=auth)
        db.add(subscription)
    else:
        subscription.p256dh = p256dh
        subscription.auth = auth
    await db.flush()
    return subscription


async def remove_push_subscription(db: AsyncSession, user_id: str, endpoint: str) -> None:
    await db.execute(
        delete(PushSubscription).where(
            PushSubscription.user_id == user_id,
            PushSubscription.endpoint == endpoint,
        )
    )
    await db.flush()


async def push_subscriptions_for(db: AsyncSession, user_id: str) -> list[PushSubscription]:
    result = await db.execute(select(PushSubscription).where(PushSubscription.user_id == user_id))
    return list(result.scalars().all())


# ─── Preferences ───


async def get_preferences(db: AsyncSession, user_id: str) -> NotificationPreference:
    """Stored preferences, or an unsaved row holding the defaults."""
    preference = await db.get(NotificationPreference, user_id)
    if preference is None:
        preference = NotificationPreference(user_id=user_id, enable_push=True, enable_popups=True)
    return preference


async def save_preferences(
    db: AsyncSession,
    user_id: str,
    enable_push: bool,
    enable_popups: bool,
    quiet_hours_start: str | None = None,
    quiet_hours_end: str | None = None,
) -> NotificationPreference:
    """Create or replace a user's notification preferences.

    Raises:
        ValidationError: Only one end of the quiet-hours window is set.
    """
    if (quiet_hours_start is None) != (quiet_hours_end is None):
        raise ValidationError(
            "Quiet hours need both a start and an end",
            context={"quiet_hours_start": quiet_hours_start, "quiet_hours_end": quiet_hours_end},
        )

    preference = await db.get(NotificationPreference, user_id)
    if preference is None:
        preference = NotificationPreference(user_id=user_id)
        db.add(preference)
    preference.enable_push = enable_push
    preference.enable_popups = enable_popups
    preference.quiet_hours_start = quiet_hours_start
    preference.quiet_hours_end = quiet_hours_end
    preference.updated_at = datetime.now(UTC)
    await db.flush()
    return preference


def _clock(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def in_quiet_hours(preference: NotificationPreference, now: datetime) -> bool:
    """Whether ``now`` (UTC) falls inside the user's quiet window.

    The window is [start, end) and wraps midnight when start > end.
    Equal start and end means no window.
    """
    if not preference.quiet_hours_start or not preference.quiet_hours_end:
        return False
    start = _clock(preference.quiet_hours_start)
    end = _clock(preference.quiet_hours_end)
    if start == end:
        return False
    current = now.astimezone(UTC).time().replace(second=0, microsecond=0)
    if start < end:
        return start <= current < end
    return current >= start or current < end


def push_allowed(preference: NotificationPreference, now: datetime) -> bool:
    return bool(preference.enable_push) and not in_quiet_hours(preference, now)
