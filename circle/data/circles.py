"""Circles, memberships, and circle chat history.

Membership is the broadcast scope for the relay: `member_circle_ids()`
is what a socket subscribes to on connect and on `refresh_circles`.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from circle.common.config import get_settings
from circle.common.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from circle.common.metrics import MESSAGES_CREATED_TOTAL
from circle.common.models import Circle, CircleMember, CircleMessage, MemberRole
from circle.common.schemas import ChatMessage, CircleSummary

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


def clean_content(content: str | None) -> str:
    """Trim message content and enforce the non-empty / max-length rules.

    Raises:
        ValidationError: If content is empty after trimming or too long.
    """
    text = (content or "").strip()
    if not text:
        raise ValidationError("Message content is required")
    limit = get_settings().max_message_length
    if len(text) > limit:
        raise ValidationError(
            "Message content is too long",
            context={"length": len(text), "max_length": limit},
        )
    return text


async def get_circle(db: AsyncSession, circle_id: str) -> Circle:
    circle = await db.get(Circle, circle_id)
    if circle is None:
        raise NotFoundError("Circle not found", context={"circle_id": circle_id})
    return circle


async def is_member(db: AsyncSession, circle_id: str, user_id: str) -> bool:
    result = await db.execute(
        select(CircleMember.user_id).where(
            CircleMember.circle_id == circle_id,
            CircleMember.user_id == user_id,
        )
    )
    return result.scalar_one_or_none() is not None


async def require_member(db: AsyncSession, circle_id: str, user_id: str) -> Circle:
    """Return the circle if the user belongs to it.

    Raises:
        NotFoundError: Circle does not exist.
        PermissionDeniedError: User is not a member.
    """
    circle = await get_circle(db, circle_id)
    if not await is_member(db, circle_id, user_id):
        raise PermissionDeniedError(
            "Not a member of this circle",
            context={"circle_id": circle_id, "user_id": user_id},
        )
    return circle


async def member_circle_ids(db: AsyncSession, user_id: str) -> set[str]:
    result = await db.execute(select(CircleMember.circle_id).where(CircleMember.user_id == user_id))
    return set(result.scalars().all())


async def _member_counts(db: AsyncSession, circle_ids: list[str]) -> dict[str, int]:
    if not circle_ids:
        return {}
    result = await db.execute(
        select(CircleMember.circle_id, func.count(CircleMember.user_id))
        .where(CircleMember.circle_id.in_(circle_ids))
        .group_by(CircleMember.circle_id)
    )
    return {circle_id: count for circle_id, count in result.all()}


async def summarize(db: AsyncSession, circles: list[Circle]) -> list[CircleSummary]:
    counts = await _member_counts(db, [c.id for c in circles])
    return [
        CircleSummary(
            id=c.id,
            name=c.name,
            description=c.description,
            is_private=c.is_private,
            owner_id=c.owner_id,
            member_count=counts.get(c.id, 0),
            created_at=c.created_at,
        )
        for c in circles
    ]


async def list_my_circles(db: AsyncSession, user_id: str) -> list[Circle]:
    result = await db.execute(
        select(Circle)
        .join(CircleMember, CircleMember.circle_id == Circle.id)
        .where(CircleMember.user_id == user_id)
        .order_by(Circle.name)
    )
    return list(result.scalars().all())


async def list_public_circles(db: AsyncSession, limit: int = DEFAULT_PAGE_SIZE) -> list[Circle]:
    result = await db.execute(
        select(Circle)
        .where(Circle.is_private.is_(False))
        .order_by(Circle.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def create_circle(
    db: AsyncSession,
    owner_id: str,
    name: str,
    description: str | None = None,
    is_private: bool = False,
) -> Circle:
    """Create a circle and enroll its owner as the first member."""
    circle = Circle(
        name=name.strip(),
        description=description,
        is_private=is_private,
        owner_id=owner_id,
    )
    db.add(circle)
    await db.flush()
    db.add(CircleMember(circle_id=circle.id, user_id=owner_id, role=MemberRole.OWNER))
    await db.flush()
    return circle


async def join_circle(db: AsyncSession, circle_id: str, user_id: str) -> Circle:
    """Add the user to a public circle. Joining twice is a no-op.

    Raises:
        PermissionDeniedError: The circle is private.
    """
    circle = await get_circle(db, circle_id)
    if await is_member(db, circle_id, user_id):
        return circle
    if circle.is_private:
        raise PermissionDeniedError(
            "Circle is private",
            context={"circle_id": circle_id},
        )
    db.add(CircleMember(circle_id=circle_id, user_id=user_id, role=MemberRole.MEMBER))
    await db.flush()
    return circle


async def leave_circle(db: AsyncSession, circle_id: str, user_id: str) -> None:
    """Remove the user from the circle.

    Raises:
        ValidationError: The owner cannot leave their own circle.
    """
    circle = await get_circle(db, circle_id)
    if circle.owner_id == user_id:
        raise ValidationError("Owner cannot leave their own circle")
    await db.execute(
        delete(CircleMember).where(
            CircleMember.circle_id == circle_id,
            CircleMember.user_id == user_id,
        )
    )
    await db.flush()


async def get_messages(
    db: AsyncSession,
    circle_id: str,
    before: datetime | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
) -> list[ChatMessage]:
    """Return one page of history in ascending time order.

    Pages walk backwards: pass the oldest ``createdAt`` of the current
    page as ``before`` to fetch the previous one.
    """
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    query = select(CircleMessage).where(CircleMessage.circle_id == circle_id)
    if before is not None:
        query = query.where(CircleMessage.created_at < before)
    query = query.order_by(CircleMessage.created_at.desc(), CircleMessage.id.desc()).limit(limit)

    result = await db.execute(query)
    rows = list(result.scalars().all())
    rows.reverse()
    return [ChatMessage.model_validate(row) for row in rows]


async def post_message(db: AsyncSession, circle_id: str, user_id: str, content: str) -> ChatMessage:
    """Persist a circle chat line from a member.

    Raises:
        ValidationError: Empty or oversized content.
        NotFoundError / PermissionDeniedError: See require_member().
    """
    text = clean_content(content)
    await require_member(db, circle_id, user_id)

    message = CircleMessage(circle_id=circle_id, user_id=user_id, content=text)
    db.add(message)
    await db.flush()
    MESSAGES_CREATED_TOTAL.labels(kind="circle").inc()
    return ChatMessage.model_validate(message)
