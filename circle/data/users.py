"""User lookup, registration, and search."""

from __future__ import annotations

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from circle.common.encryption import check_password, hash_password
from circle.common.exceptions import AuthenticationError, ConflictError, NotFoundError
from circle.common.models import User

SEARCH_LIMIT = 10


def _normalize_email(email: str) -> str:
    return email.strip().lower()


async def get_user(db: AsyncSession, user_id: str) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found", context={"user_id": user_id})
    return user


async def register_user(db: AsyncSession, email: str, display_name: str, password: str) -> User:
    """Create an account.

    Raises:
        ConflictError: If the email is already registered.
    """
    email = _normalize_email(email)
    existing = await db.execute(select(User.id).where(User.email == email))
    if existing.scalar_one_or_none() is not None:
        raise ConflictError("Email already registered")

    user = User(
        email=email,
        display_name=display_name.strip(),
        password_hash=hash_password(password),
    )
    db.add(user)
    await db.flush()
    return user


async def authenticate(db: AsyncSession, email: str, password: str) -> User:
    """Return the user for valid credentials.

    The same error is raised for an unknown email and a wrong password.
    """
    result = await db.execute(select(User).where(User.email == _normalize_email(email)))
    user = result.scalar_one_or_none()
    if user is None or not check_password(password, user.password_hash):
        raise AuthenticationError("Invalid email or password")
    return user


async def search_users(db: AsyncSession, query: str, exclude_user_id: str) -> list[User]:
    """Case-insensitive substring match on email or display name."""
    pattern = f"%{query.strip().lower()}%"
    result = await db.execute(
        select(User)
        .where(
            User.id != exclude_user_id,
            or_(
                func.lower(User.email).like(pattern),
                func.lower(User.display_name).like(pattern),
            ),
        )
        .order_by(User.display_name)
        .limit(SEARCH_LIMIT)
    )
    return list(result.scalars().all())
