"""API test fixtures: httpx.AsyncClient against the full app, auth helpers.

The root conftest's ``session_factory`` fixture installs the per-test
database as the app-wide session factory, so ``get_db`` needs no
override. The relay manager is swapped for a fresh one so REST-side
notification nudges can be asserted on.
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from circle.common.encryption import issue_session_token
from circle.common.models import User
from circle.main import app
from tests.factories import make_user


def auth_headers(user: User | str) -> dict[str, str]:
    """Bearer header for a user (or a raw user id)."""
    user_id = user if isinstance(user, str) else user.id
    return {"Authorization": f"Bearer {issue_session_token(user_id)}"}


@pytest_asyncio.fixture
async def client(session_factory, relay_manager) -> AsyncClient:
    """Async HTTP client wired to the FastAPI app and the per-test database."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def ada(db) -> User:
    return await make_user(db, email="ada@example.com", display_name="Ada Lovelace")


@pytest_asyncio.fixture
async def grace(db) -> User:
    return await make_user(db, email="grace@example.com", display_name="Grace Hopper")


@pytest.fixture
def ada_headers(ada: User) -> dict[str, str]:
    return auth_headers(ada)


@pytest.fixture
def grace_headers(grace: User) -> dict[str, str]:
    return auth_headers(grace)
