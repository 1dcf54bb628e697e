"""Circle endpoints: discovery, membership, and chat history.

Live chat goes over the relay socket; this router only serves the
durable history that a client loads before (or after) it connects.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from circle.api.deps import get_current_user
from circle.api.response_schemas import CircleCreateRequest, SuccessResponse
from circle.common.database import get_db
from circle.common.logging import get_logger
from circle.common.models import User
from circle.common.schemas import ChatMessage, CircleSummary
from circle.data import circles

logger = get_logger("API")

router = APIRouter()


@router.get("/my", response_model=list[CircleSummary])
async def my_circles(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[CircleSummary]:
    return await circles.summarize(db, await circles.list_my_circles(db, user.id))


@router.get("", response_model=list[CircleSummary])
async def discover_circles(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[CircleSummary]:
    """Public circles, newest first."""
    return await circles.summarize(db, await circles.list_public_circles(db))


@router.post("", response_model=CircleSummary, status_code=201)
async def create_circle(
    body: CircleCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> CircleSummary:
    circle = await circles.create_circle(
        db,
        owner_id=user.id,
        name=body.name,
        description=body.description,
        is_private=body.is_private,
    )
    await db.commit()
    logger.info(
        "Circle created",
        extra={"data": {"circle_id": circle.id, "owner_id": user.id, "is_private": circle.is_private}},
    )
    (summary,) = await circles.summarize(db, [circle])
    return summary


@router.get("/{circle_id}", response_model=CircleSummary)
async def get_circle(
    circle_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> CircleSummary:
    """Circle details. Private circles are visible to members only."""
    circle = await circles.get_circle(db, circle_id)
    if circle.is_private:
        await circles.require_member(db, circle_id, user.id)
    (summary,) = await circles.summarize(db, [circle])
    return summary


@router.post("/{circle_id}/join", response_model=CircleSummary)
async def join_circle(
    circle_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> CircleSummary:
    """Join a public circle (403 for private ones).

    The caller's open sockets pick the circle up after they send
    ``refresh_circles``.
    """
    circle = await circles.join_circle(db, circle_id, user.id)
    await db.commit()
    logger.info("Circle joined", extra={"data": {"circle_id": circle_id, "user_id": user.id}})
    (summary,) = await circles.summarize(db, [circle])
    return summary


@router.post("/{circle_id}/leave", response_model=SuccessResponse)
async def leave_circle(
    circle_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> SuccessResponse:
    await circles.leave_circle(db, circle_id, user.id)
    await db.commit()
    logger.info("Circle left", extra={"data": {"circle_id": circle_id, "user_id": user.id}})
    return SuccessResponse()


@router.get("/{circle_id}/messages", response_model=list[ChatMessage])
async def circle_messages(
    circle_id: str,
    before: datetime | None = Query(default=None),
    limit: int = Query(default=circles.DEFAULT_PAGE_SIZE, ge=1, le=circles.MAX_PAGE_SIZE),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[ChatMessage]:
    """One page of chat history, oldest first (members only)."""
    await circles.require_member(db, circle_id, user.id)
    return await circles.get_messages(db, circle_id, before=before, limit=limit)
