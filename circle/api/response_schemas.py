"""API request and response schemas -- types used only by the REST layer."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from circle.common.schemas import CamelModel, NotificationPreferences, UserPublic


class RegisterRequest(CamelModel):
    """Request body for creating an account."""

    email: str = Field(min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")
    display_name: str = Field(min_length=1, max_length=80)
    password: str = Field(min_length=8, max_length=200)


class LoginRequest(CamelModel):
    email: str
    password: str


class AuthResponse(CamelModel):
    """Session token plus the user it was issued for."""

    token: str
    user: UserPublic


class CircleCreateRequest(CamelModel):
    name: str = Field(min_length=1, max_length=120)
    description: str | None = Field(default=None, max_length=2000)
    is_private: bool = False


class ConversationCreateRequest(CamelModel):
    """Open (or fetch) the DM thread with another user."""

    user_id: str


class MessageSendRequest(CamelModel):
    content: str = Field(min_length=1)


class ScheduleNotificationRequest(CamelModel):
    title: str = Field(min_length=1, max_length=200)
    body: str | None = Field(default=None, max_length=2000)
    scheduled_for: datetime


class PushSubscriptionKeys(CamelModel):
    p256dh: str
    auth: str


class PushSubscriptionRequest(CamelModel):
    """Browser Push API subscription object.

    Contains the endpoint URL, expiration time, and encryption keys
    needed to send push notifications to the user's browser.
    """

    endpoint: str
    expiration_time: int | None = None
    keys: PushSubscriptionKeys


class PreferencesUpdateRequest(CamelModel):
    """Body of POST /api/preferences. ``userId``, when sent, must be the caller."""

    user_id: str | None = None
    notification_preferences: NotificationPreferences


class SuccessResponse(CamelModel):
    success: bool = True
