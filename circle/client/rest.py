"""REST client for The Circle API.

Wraps every endpoint the SDK needs with bearer-token auth and maps
HTTP errors onto the same exception classes the server raises.

Usage:
    from circle.client.rest import CircleApiClient

    api = CircleApiClient("https://circle.example.com")
    await api.login("ada@example.com", "correct horse")
    circles = await api.my_circles()
    page = await api.circle_messages(circles[0].id, limit=50)
    await api.close()
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import httpx

from circle.api.response_schemas import AuthResponse
from circle.client.exceptions import CircleApiError, CircleConnectionError
from circle.common.exceptions import (
    AuthenticationError,
    CircleBaseException,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from circle.common.logging import get_logger
from circle.common.schemas import (
    ChatMessage,
    CircleSummary,
    ConversationSummary,
    DmMessage,
    NotificationRecord,
    ScheduledNotificationRecord,
    UserPublic,
)

logger = get_logger("CLIENT")

_STATUS_ERRORS: dict[int, type[CircleBaseException]] = {
    400: ValidationError,
    401: AuthenticationError,
    403: PermissionDeniedError,
    404: NotFoundError,
    409: ConflictError,
    422: ValidationError,
}


class CircleApiClient:
    """Async client for the REST API.

    Args:
        base_url: API origin, e.g. ``https://circle.example.com``.
        token: Session token from a previous login, if any.
        client: Pre-built httpx.AsyncClient (tests pass one bound to the
            ASGI app). Its base_url must already point at the API origin.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.client = client or httpx.AsyncClient(base_url=self.base_url, timeout=30.0)

    async def close(self) -> None:
        await self.client.aclose()

    # ─── Core Request Method ───

    async def _request(
        self,
        method: str,
        path: str,
        params: dict | None = None,
        json_data: dict | None = None,
    ) -> Any:
        """Send one request and return the decoded JSON body.

        Raises:
            ValidationError / AuthenticationError / PermissionDeniedError /
            NotFoundError / ConflictError: matching 4xx responses.
            CircleApiError: Any other non-2xx response.
            CircleConnectionError: Network failure or timeout.
        """
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else None
        if params:
            params = {k: v for k, v in params.items() if v is not None}

        try:
            response = await self.client.request(
                method,
                path,
                headers=headers,
                params=params or None,
                json=json_data,
            )
        except httpx.RequestError as exc:
            raise CircleConnectionError(
                f"Network error: {exc}",
                context={"path": path, "method": method},
            ) from exc

        if response.status_code >= 400:
            message = f"API error {response.status_code}"
            try:
                body = response.json()
                message = str(body.get("message") or body.get("detail") or message)
            except (ValueError, AttributeError):
                pass
            error_cls = _STATUS_ERRORS.get(response.status_code, CircleApiError)
            raise error_cls(message, context={"path": path, "status": response.status_code})

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # ─── Auth ───

    async def register(self, email: str, display_name: str, password: str) -> UserPublic:
        data = await self._request(
            "POST",
            "/api/auth/register",
            json_data={"email": email, "displayName": display_name, "password": password},
        )
        auth = AuthResponse.model_validate(data)
        self.token = auth.token
        return auth.user

    async def login(self, email: str, password: str) -> UserPublic:
        """Log in and keep the session token for later calls."""
        data = await self._request(
            "POST", "/api/auth/login", json_data={"email": email, "password": password}
        )
        auth = AuthResponse.model_validate(data)
        self.token = auth.token
        logger.info("Logged in", extra={"data": {"user_id": auth.user.id}})
        return auth.user

    async def me(self) -> UserPublic:
        return UserPublic.model_validate(await self._request("GET", "/api/auth/me"))

    # ─── Circles ───

    async def my_circles(self) -> list[CircleSummary]:
        data = await self._request("GET", "/api/circles/my")
        return [CircleSummary.model_validate(c) for c in data]

    async def discover_circles(self) -> list[CircleSummary]:
        data = await self._request("GET", "/api/circles")
        return [CircleSummary.model_validate(c) for c in data]

    async def create_circle(
        self, name: str, description: str | None = None, is_private: bool = False
    ) -> CircleSummary:
        data = await self._request(
            "POST",
            "/api/circles",
            json_data={"name": name, "description": description, "isPrivate": is_private},
        )
        return CircleSummary.model_validate(data)

    async def get_circle(self, circle_id: str) -> CircleSummary:
        return CircleSummary.model_validate(await self._request("GET", f"/api/circles/{circle_id}"))

    async def join_circle(self, circle_id: str) -> CircleSummary:
        data = await self._request("POST", f"/api/circles/{circle_id}/join")
        return CircleSummary.model_validate(data)

    async def leave_circle(self, circle_id: str) -> None:
        await self._request("POST", f"/api/circles/{circle_id}/leave")

    async def circle_messages(
        self, circle_id: str, before: datetime | None = None, limit: int | None = None
    ) -> list[ChatMessage]:
        """One page of circle history, oldest first."""
        data = await self._request(
            "GET",
            f"/api/circles/{circle_id}/messages",
            params={"before": before.isoformat() if before else None, "limit": limit},
        )
        return [ChatMessage.model_validate(m) for m in data]

    # ─── Direct Messages ───

    async def conversations(self) -> list[ConversationSummary]:
        data = await self._request("GET", "/api/dm/conversations")
        return [ConversationSummary.model_validate(c) for c in data]

    async def open_conversation(self, user_id: str) -> ConversationSummary:
        data = await self._request("POST", "/api/dm/conversations", json_data={"userId": user_id})
        return ConversationSummary.model_validate(data)

    async def dm_messages(
        self, conversation_id: str, before: datetime | None = None, limit: int | None = None
    ) -> list[DmMessage]:
        data = await self._request(
            "GET",
            f"/api/dm/conversations/{conversation_id}/messages",
            params={"before": before.isoformat() if before else None, "limit": limit},
        )
        return [DmMessage.model_validate(m) for m in data]

    async def send_dm(self, conversation_id: str, content: str) -> DmMessage:
        """Persist a DM. Follow up with a ``dm`` relay frame to deliver it live."""
        data = await self._request(
            "POST",
            f"/api/dm/conversations/{conversation_id}/messages",
            json_data={"content": content},
        )
        return DmMessage.model_validate(data)

    async def mark_dm_read(self, message_id: str) -> None:
        await self._request("PUT", f"/api/dm/messages/{message_id}/read")

    # ─── Users ───

    async def search_users(self, query: str) -> list[UserPublic]:
        data = await self._request("GET", "/api/users/search", params={"query": query})
        return [UserPublic.model_validate(u) for u in data]

    # ─── Notifications ───

    async def notifications(self) -> list[NotificationRecord]:
        data = await self._request("GET", "/api/notifications")
        return [NotificationRecord.model_validate(n) for n in data]

    async def unread_count(self) -> int:
        data = await self._request("GET", "/api/notifications/unread-count")
        return int(data["count"])

    async def mark_notification_read(self, notification_id: str) -> None:
        await self._request("PATCH", f"/api/notifications/{notification_id}/read")

    async def mark_all_notifications_read(self) -> None:
        await self._request("POST", "/api/notifications/read-all")

    async def schedule_notification(
        self, title: str, scheduled_for: datetime, body: str | None = None
    ) -> ScheduledNotificationRecord:
        data = await self._request(
            "POST",
            "/api/notifications/schedule",
            json_data={"title": title, "body": body, "scheduledFor": scheduled_for.isoformat()},
        )
        return ScheduledNotificationRecord.model_validate(data)

    async def scheduled_notifications(self) -> list[ScheduledNotificationRecord]:
        data = await self._request("GET", "/api/notifications/scheduled")
        return [ScheduledNotificationRecord.model_validate(n) for n in data]

    async def delete_scheduled_notification(self, scheduled_id: str) -> None:
        await self._request("DELETE", f"/api/notifications/scheduled/{scheduled_id}")
