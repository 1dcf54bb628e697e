"""Direct message endpoints.

Sending a DM is two steps for the client: POST the message here (which
persists it and notifies the recipient), then send a ``dm`` frame over
the relay with the returned message id so both participants' open
sockets receive it live.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from circle.api.deps import get_current_user
from circle.api.response_schemas import (
    ConversationCreateRequest,
    MessageSendRequest,
    SuccessResponse,
)
from circle.common.database import get_db
from circle.common.logging import get_logger
from circle.common.models import User
from circle.common.schemas import ConversationSummary, DmMessage, NotificationRecord
from circle.data import conversations, notifications
from circle.data.circles import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from circle.relay.events import try_publish_envelope
from circle.relay.frames import Envelope, notification_frame

logger = get_logger("API")

router = APIRouter()

_PREVIEW_LENGTH = 100


@router.get("/conversations", response_model=list[ConversationSummary])
async def list_conversations(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[ConversationSummary]:
    """The caller's inbox, most recent activity first."""
    return await conversations.list_conversations(db, user.id)


@router.post("/conversations", response_model=ConversationSummary)
async def open_conversation(
    body: ConversationCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ConversationSummary:
    """Get or create the conversation with another user (400 for yourself)."""
    conversation = await conversations.get_or_create_conversation(db, user.id, body.user_id)
    await db.commit()
    return await conversations.conversation_summary(db, conversation, user.id)


@router.get("/conversations/{conversation_id}/messages", response_model=list[DmMessage])
async def conversation_messages(
    conversation_id: str,
    before: datetime | None = Query(default=None),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[DmMessage]:
    await conversations.require_participant(db, conversation_id, user.id)
    return await conversations.get_messages(db, conversation_id, before=before, limit=limit)


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=DmMessage,
    status_code=201,
)
async def send_message(
    conversation_id: str,
    body: MessageSendRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> DmMessage:
    """Persist a DM and create a ``dm`` notification for the recipient."""
    message, conversation = await conversations.send_message(
        db, conversation_id, user.id, body.content
    )
    recipient_id = conversation.other_participant(user.id)
    notification = await notifications.create_notification(
        db,
        user_id=recipient_id,
        type_="dm",
        title=f"New message from {user.display_name}",
        body=message.content[:_PREVIEW_LENGTH],
        link=f"/messages/{conversation_id}",
    )
    await db.commit()

    await try_publish_envelope(
        Envelope.to_users(
            [recipient_id],
            notification_frame(NotificationRecord.model_validate(notification)),
        )
    )
    logger.info(
        "DM sent",
        extra={"data": {"conversation_id": conversation_id, "message_id": message.id}},
    )
    return message


@router.put("/messages/{message_id}/read", response_model=SuccessResponse)
async def mark_message_read(
    message_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> SuccessResponse:
    """Mark a DM read (recipient only, 403 otherwise)."""
    await conversations.mark_read(db, message_id, user.id)
    await db.commit()
    return SuccessResponse()
