"""User search for starting conversations."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from circle.api.deps import get_current_user
from circle.common.database import get_db
from circle.common.models import User
from circle.common.schemas import UserPublic
from circle.data import users

router = APIRouter()


@router.get("/search", response_model=list[UserPublic])
async def search_users(
    query: str = Query(min_length=1, max_length=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[UserPublic]:
    """Match email or display name, excluding the caller. At most 10 results."""
    matches = await users.search_users(db, query, exclude_user_id=user.id)
    return [UserPublic.model_validate(m) for m in matches]
