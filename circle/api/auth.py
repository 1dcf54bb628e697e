"""Account registration, login, and the current-user endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from circle.api.deps import get_current_user
from circle.api.response_schemas import AuthResponse, LoginRequest, RegisterRequest
from circle.common.database import get_db
from circle.common.encryption import issue_session_token
from circle.common.logging import get_logger
from circle.common.models import User
from circle.common.schemas import UserPublic
from circle.data import users

logger = get_logger("AUTH")

router = APIRouter()


@router.post("/register", response_model=AuthResponse, status_code=201)
async def register(body: RegisterRequest, db: AsyncSession = Depends(get_db)) -> AuthResponse:
    """Create an account and return a session token (409 if the email is taken)."""
    user = await users.register_user(db, body.email, body.display_name, body.password)
    await db.commit()
    logger.info("User registered", extra={"data": {"user_id": user.id}})
    return AuthResponse(token=issue_session_token(user.id), user=UserPublic.model_validate(user))


@router.post("/login", response_model=AuthResponse)
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)) -> AuthResponse:
    user = await users.authenticate(db, body.email, body.password)
    logger.info("User logged in", extra={"data": {"user_id": user.id}})
    return AuthResponse(token=issue_session_token(user.id), user=UserPublic.model_validate(user))


@router.get("/me", response_model=UserPublic)
async def me(user: User = Depends(get_current_user)) -> UserPublic:
    return UserPublic.model_validate(user)
