"""FastAPI dependencies for authenticated requests."""

from __future__ import annotations

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from circle.common.database import get_db
from circle.common.encryption import verify_session_token
from circle.common.exceptions import AuthenticationError, NotFoundError
from circle.common.logging import get_logger
from circle.common.models import User
from circle.data.users import get_user

logger = get_logger("AUTH")

_bearer = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the Bearer session token to a User.

    Raises:
        AuthenticationError: Missing, invalid or expired token, or a
            token for a user that no longer exists (401).
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Not authenticated")
    user_id = verify_session_token(credentials.credentials)
    try:
        return await get_user(db, user_id)
    except NotFoundError as exc:
        logger.warning("Token for unknown user", extra={"data": {"user_id": user_id}})
        raise AuthenticationError("Not authenticated") from exc
