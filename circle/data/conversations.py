"""Direct-message conversations and their messages."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from circle.common.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from circle.common.metrics import MESSAGES_CREATED_TOTAL
from circle.common.models import Conversation, DirectMessage, User
from circle.common.schemas import ConversationSummary, DmMessage, UserPublic
from circle.data.circles import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, clean_content
from circle.data.users import get_user


def _ordered_pair(first: str, second: str) -> tuple[str, str]:
    return (first, second) if first < second else (second, first)


async def get_conversation(db: AsyncSession, conversation_id: str) -> Conversation:
    conversation = await db.get(Conversation, conversation_id)
    if conversation is None:
        raise NotFoundError("Conversation not found", context={"conversation_id": conversation_id})
    return conversation


async def require_participant(db: AsyncSession, conversation_id: str, user_id: str) -> Conversation:
    """Return the conversation if the user is one of its two participants.

    Non-participants get NotFoundError rather than PermissionDeniedError
    so conversation ids do not leak.
    """
    conversation = await get_conversation(db, conversation_id)
    if user_id not in conversation.participant_ids:
        raise NotFoundError("Conversation not found", context={"conversation_id": conversation_id})
    return conversation


async def get_or_create_conversation(db: AsyncSession, user_id: str, other_user_id: str) -> Conversation:
    """Return the existing thread between two users, creating it on first use.

    Raises:
        ValidationError: A user cannot message themselves.
        NotFoundError: The other user does not exist.
    """
    if user_id == other_user_id:
        raise ValidationError("Cannot start a conversation with yourself")
    await get_user(db, other_user_id)

    user_a, user_b = _ordered_pair(user_id, other_user_id)
    result = await db.execute(
        select(Conversation).where(
            Conversation.user_a_id == user_a,
            Conversation.user_b_id == user_b,
        )
    )
    conversation = result.scalar_one_or_none()
    if conversation is None:
        conversation = Conversation(user_a_id=user_a, user_b_id=user_b)
        db.add(conversation)
        await db.flush()
    return conversation


async def list_conversations(db: AsyncSession, user_id: str) -> list[ConversationSummary]:
    """The user's inbox, most recently active first."""
    result = await db.execute(
        select(Conversation).where(
            or_(Conversation.user_a_id == user_id, Conversation.user_b_id == user_id)
        )
    )
    conversations = list(result.scalars().all())
    if not conversations:
        return []

    other_ids = {c.other_participant(user_id) for c in conversations}
    users_result = await db.execute(select(User).where(User.id.in_(other_ids)))
    users = {u.id: u for u in users_result.scalars().all()}

    unread_result = await db.execute(
        select(DirectMessage.conversation_id, func.count(DirectMessage.id))
        .where(
            DirectMessage.conversation_id.in_([c.id for c in conversations]),
            DirectMessage.sender_id != user_id,
            DirectMessage.read.is_(False),
        )
        .group_by(DirectMessage.conversation_id)
    )
    unread = {conversation_id: count for conversation_id, count in unread_result.all()}

    summaries = []
    for conversation in conversations:
        other = users[conversation.other_participant(user_id)]
        last = await _last_message(db, conversation.id)
        summaries.append(
            ConversationSummary(
                id=conversation.id,
                other_user=UserPublic.model_validate(other),
                last_message=last,
                unread_count=unread.get(conversation.id, 0),
                last_message_at=conversation.last_message_at,
            )
        )

    epoch = datetime.min.replace(tzinfo=UTC)
    summaries.sort(key=lambda s: _aware(s.last_message_at) or epoch, reverse=True)
    return summaries


async def conversation_summary(
    db: AsyncSession, conversation: Conversation, user_id: str
) -> ConversationSummary:
    """Inbox row for a single conversation, as seen by `user_id`."""
    other = await get_user(db, conversation.other_participant(user_id))
    unread = await db.execute(
        select(func.count(DirectMessage.id)).where(
            DirectMessage.conversation_id == conversation.id,
            DirectMessage.sender_id != user_id,
            DirectMessage.read.is_(False),
        )
    )
    return ConversationSummary(
        id=conversation.id,
        other_user=UserPublic.model_validate(other),
        last_message=await _last_message(db, conversation.id),
        unread_count=int(unread.scalar() or 0),
        last_message_at=conversation.last_message_at,
    )


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


async def _last_message(db: AsyncSession, conversation_id: str) -> DmMessage | None:
    result = await db.execute(
        select(DirectMessage)
        .where(DirectMessage.conversation_id == conversation_id)
        .order_by(DirectMessage.created_at.desc(), DirectMessage.id.desc())
        .limit(1)
    )
    row = result.scalar_one_or_none()
    return DmMessage.model_validate(row) if row is not None else None


async def get_messages(
    db: AsyncSession,
    conversation_id: str,
    before: datetime | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
) -> list[DmMessage]:
    """One page of DM history, ascending. Same paging rules as circle history."""
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    query = select(DirectMessage).where(DirectMessage.conversation_id == conversation_id)
    if before is not None:
        query = query.where(DirectMessage.created_at < before)
    query = query.order_by(DirectMessage.created_at.desc(), DirectMessage.id.desc()).limit(limit)

    result = await db.execute(query)
    rows = list(result.scalars().all())
    rows.reverse()
    return [DmMessage.model_validate(row) for row in rows]


async def send_message(
    db: AsyncSession, conversation_id: str, sender_id: str, content: str
) -> tuple[DmMessage, Conversation]:
    """Persist a DM and bump the conversation's activity timestamp.

    Returns:
        The stored message and its conversation (callers need the recipient).
    """
    text = clean_content(content)
    conversation = await require_participant(db, conversation_id, sender_id)

    message = DirectMessage(conversation_id=conversation_id, sender_id=sender_id, content=text)
    db.add(message)
    await db.flush()
    conversation.last_message_at = message.created_at
    await db.flush()

    MESSAGES_CREATED_TOTAL.labels(kind="dm").inc()
    return DmMessage.model_validate(message), conversation


async def get_message_in_conversation(
    db: AsyncSession, conversation_id: str, message_id: str
) -> DmMessage:
    """Load a persisted DM, verifying it belongs to the given conversation."""
    result = await db.execute(
        select(DirectMessage).where(
            and_(
                DirectMessage.id == message_id,
                DirectMessage.conversation_id == conversation_id,
            )
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        raise NotFoundError(
            "Message not found",
            context={"conversation_id": conversation_id, "message_id": message_id},
        )
    return DmMessage.model_validate(row)


async def mark_read(db: AsyncSession, message_id: str, user_id: str) -> None:
    """Mark a DM read. Only the recipient may do this.

    Raises:
        NotFoundError: Unknown message.
        PermissionDeniedError: Caller is the sender or not a participant.
    """
    message = await db.get(DirectMessage, message_id)
    if message is None:
        raise NotFoundError("Message not found", context={"message_id": message_id})
    conversation = await get_conversation(db, message.conversation_id)
    if user_id not in conversation.participant_ids or message.sender_id == user_id:
        raise PermissionDeniedError("Only the recipient can mark a message read")

    if not message.read:
        message.read = True
        message.read_at = datetime.now(UTC)
        await db.flush()
