"""Per-user notification preferences.

``enablePush`` and the quiet-hours window gate web push in the
scheduled-notification task. ``enablePopups`` is stored for the client,
which decides whether to pop a toast for socket ``notification`` frames.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from circle.api.deps import get_current_user
from circle.api.response_schemas import PreferencesUpdateRequest
from circle.common.database import get_db
from circle.common.exceptions import PermissionDeniedError
from circle.common.logging import get_logger
from circle.common.models import NotificationPreference, User
from circle.common.schemas import NotificationPreferences, UserPreferencesRecord
from circle.data import notifications

logger = get_logger("NOTIFY")

router = APIRouter()


def _to_record(preference: NotificationPreference) -> UserPreferencesRecord:
    return UserPreferencesRecord(
        user_id=preference.user_id,
        notification_preferences=NotificationPreferences.model_validate(preference),
        updated_at=preference.updated_at,
    )


@router.get("", response_model=UserPreferencesRecord)
async def get_preferences(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UserPreferencesRecord:
    """The caller's preferences; defaults when nothing has been saved."""
    return _to_record(await notifications.get_preferences(db, user.id))


@router.post("", response_model=UserPreferencesRecord)
async def save_preferences(
    body: PreferencesUpdateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UserPreferencesRecord:
    if body.user_id is not None and body.user_id != user.id:
        raise PermissionDeniedError("Unauthorized")

    prefs = body.notification_preferences
    preference = await notifications.save_preferences(
        db,
        user.id,
        enable_push=prefs.enable_push,
        enable_popups=prefs.enable_popups,
        quiet_hours_start=prefs.quiet_hours_start,
        quiet_hours_end=prefs.quiet_hours_end,
    )
    await db.commit()
    logger.info(
        "Notification preferences saved",
        extra={"data": {"user_id": user.id, "enable_push": prefs.enable_push}},
    )
    return _to_record(preference)
