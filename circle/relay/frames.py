"""Relay frame models, parsing, and outbound frame builders.

Inbound frames (client -> relay):
    {"type": "chat", "circleId": "...", "userId": "...", "content": "..."}
    {"type": "dm", "conversationId": "...", "messageId": "..."}
    {"type": "refresh_circles"}
    {"type": "ping"}

Outbound frames (relay -> client) are plain dicts with camelCase keys,
built by the helpers at the bottom of this module.
"""

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from circle.common.exceptions import ValidationError
from circle.common.schemas import CamelModel, ChatMessage, DmMessage, NotificationRecord


class FrameError(ValidationError):
    """Inbound frame is not valid JSON or does not match its type's shape."""

    code = "malformed_frame"


class UnknownFrameTypeError(FrameError):
    code = "unknown_type"


# ─── Inbound ───


class ChatFrame(CamelModel):
    type: Literal["chat"] = "chat"
    circle_id: str = Field(min_length=1)
    user_id: str | None = None
    content: str


class DmFrame(CamelModel):
    type: Literal["dm"] = "dm"
    conversation_id: str = Field(min_length=1)
    message_id: str = Field(min_length=1)


class RefreshCirclesFrame(CamelModel):
    type: Literal["refresh_circles"] = "refresh_circles"


class PingFrame(CamelModel):
    type: Literal["ping"] = "ping"


InboundFrame = ChatFrame | DmFrame | RefreshCirclesFrame | PingFrame

FRAME_TYPES: dict[str, type[CamelModel]] = {
    "chat": ChatFrame,
    "dm": DmFrame,
    "refresh_circles": RefreshCirclesFrame,
    "ping": PingFrame,
}


def parse_frame(raw: Any) -> InboundFrame:
    """Decode one text frame from a client.

    Raises:
        FrameError: Not JSON, not an object, no string ``type``, or a
            payload that fails validation for its type.
        UnknownFrameTypeError: ``type`` is not one the relay handles.
    """
    if not isinstance(raw, str):
        raise FrameError("Frames must be JSON text")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise FrameError("Frame is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise FrameError("Frame must be a JSON object")

    frame_type = payload.get("type")
    if not isinstance(frame_type, str):
        raise FrameError("Frame is missing a type")
    model = FRAME_TYPES.get(frame_type)
    if model is None:
        raise UnknownFrameTypeError(
            f"Unknown frame type: {frame_type}",
            context={"frame_type": frame_type},
        )

    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        fields = [".".join(str(p) for p in err["loc"]) for err in exc.errors()]
        raise FrameError(
            f"Invalid {frame_type} frame",
            context={"frame_type": frame_type, "fields": fields},
        ) from exc


# ─── Envelopes ───


class Target(BaseModel):
    """Who an envelope is for: members of circles, or every socket of some users."""

    kind: Literal["circle", "users"]
    ids: list[str]


class Envelope(BaseModel):
    """A frame plus its delivery target, as carried over Redis pub/sub."""

    target: Target
    frame: dict[str, Any]

    @classmethod
    def to_circle(cls, circle_id: str, frame: dict[str, Any]) -> Envelope:
        return cls(target=Target(kind="circle", ids=[circle_id]), frame=frame)

    @classmethod
    def to_users(cls, user_ids: list[str] | tuple[str, ...], frame: dict[str, Any]) -> Envelope:
        return cls(target=Target(kind="users", ids=list(dict.fromkeys(user_ids))), frame=frame)


# ─── Outbound ───


def chat_frame(message: ChatMessage) -> dict[str, Any]:
    return {"type": "chat", "message": message.model_dump(mode="json", by_alias=True)}


def dm_frame(message: DmMessage) -> dict[str, Any]:
    return {"type": "dm", "message": message.model_dump(mode="json", by_alias=True)}


def notification_frame(notification: NotificationRecord) -> dict[str, Any]:
    return {
        "type": "notification",
        "notification": notification.model_dump(mode="json", by_alias=True),
    }


def circles_refreshed_frame(circle_ids: set[str] | list[str]) -> dict[str, Any]:
    return {"type": "circles_refreshed", "circleIds": sorted(circle_ids)}


def error_frame(code: str, message: str) -> dict[str, Any]:
    return {"type": "error", "code": code, "message": message}


def pong_frame() -> dict[str, Any]:
    return {"type": "pong"}
