"""Pydantic schemas: the data shapes shared by the REST API, the relay, and the client.

RULES:
- Field names are snake_case in Python and camelCase on the wire
  (REST bodies and socket frames). Always dump with ``by_alias=True``.
- The relay forwards these exact shapes inside its frames, so a client
  can merge a socket-delivered message into a REST page without mapping.
- ORM rows convert via ``Model.model_validate(row)`` (from_attributes).
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base schema: camelCase aliases, populate by either name, ORM-friendly."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ─── Users ───


class UserPublic(CamelModel):
    """A user as other users see them."""

    id: str
    email: str
    display_name: str


# ─── Circles ───


class CircleSummary(CamelModel):
    id: str
    name: str
    description: str | None = None
    is_private: bool = False
    owner_id: str
    member_count: int = 0
    created_at: datetime


class ChatMessage(CamelModel):
    """A persisted circle chat line. Identical in REST pages and `chat` frames."""

    id: str
    circle_id: str
    user_id: str
    content: str
    created_at: datetime


# ─── Direct Messages ───


class DmMessage(CamelModel):
    """A persisted direct message. Identical in REST pages and `dm` frames."""

    id: str
    conversation_id: str
    sender_id: str
    content: str
    read: bool = False
    read_at: datetime | None = None
    created_at: datetime


class ConversationSummary(CamelModel):
    """One row of the DM inbox."""

    id: str
    other_user: UserPublic
    last_message: DmMessage | None = None
    unread_count: int = 0
    last_message_at: datetime | None = None


# ─── Notifications ───


class NotificationRecord(CamelModel):
    id: str
    user_id: str
    type: str
    title: str
    body: str | None = None
    link: str | None = None
    read: bool = False
    read_at: datetime | None = None
    created_at: datetime


class ScheduledNotificationRecord(CamelModel):
    id: str
    user_id: str
    title: str
    body: str | None = None
    scheduled_for: datetime
    sent: bool = False
    sent_at: datetime | None = None
    created_at: datetime


class UnreadCount(CamelModel):
    count: int = Field(ge=0)


# ─── Preferences ───

_CLOCK_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class NotificationPreferences(CamelModel):
    enable_push: bool = True
    enable_popups: bool = True
    # "HH:MM", UTC
    quiet_hours_start: str | None = Field(default=None, pattern=_CLOCK_PATTERN)
    quiet_hours_end: str | None = Field(default=None, pattern=_CLOCK_PATTERN)


class UserPreferencesRecord(CamelModel):
    user_id: str
    notification_preferences: NotificationPreferences
    updated_at: datetime | None = None
