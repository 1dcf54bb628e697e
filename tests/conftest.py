"""Root test configuration: shared fixtures for all test modules.

IMPORTANT: Environment variables are set BEFORE any circle imports
so that config.py can load Settings without a .env file.

Each test gets its own file-backed SQLite database with NullPool, so
no connection outlives the event loop that opened it. That lets the
same database serve async tests and starlette's TestClient, which runs
the app on its own loop in a worker thread.
"""

from __future__ import annotations

import os

# Set required env vars before importing anything from circle
from cryptography.fernet import Fernet

_TEST_FERNET_KEY = Fernet.generate_key().decode()
os.environ.setdefault("ENCRYPTION_KEY", _TEST_FERNET_KEY)
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("RELAY_USE_REDIS", "false")

# Now safe to import circle modules
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from circle.common import database
from circle.common.config import Settings, get_settings
from circle.common.models import Base
from circle.relay import events, handlers, router
from circle.relay.manager import ConnectionManager

# ─── Clear cached settings so test env vars are used ───
get_settings.cache_clear()


def make_test_engine(path):  # noqa: ANN001
    """File-backed SQLite engine that opens a fresh connection per checkout."""
    return create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)


def make_session_factory(engine) -> async_sessionmaker:  # noqa: ANN001
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async def create_schema(engine) -> None:  # noqa: ANN001
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ─── Test Database ───


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Create a per-test database with every table."""
    test_engine = make_test_engine(tmp_path / "circle.db")
    await create_schema(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine, monkeypatch) -> async_sessionmaker:
    """Session factory bound to the test engine.

    Also installed as the app-wide factory so code that opens its own
    sessions (relay handlers, Celery task bodies) hits the test database.
    """
    factory = make_session_factory(engine)
    monkeypatch.setattr(database, "_session_factory", factory)
    return factory


@pytest_asyncio.fixture
async def db(session_factory):
    """Provide a session on the per-test database."""
    async with session_factory() as session:
        yield session


# ─── Relay ───


@pytest.fixture
def relay_manager(monkeypatch) -> ConnectionManager:
    """A fresh ConnectionManager wired into the relay router, handlers, and events."""
    mgr = ConnectionManager()
    monkeypatch.setattr(router, "manager", mgr)
    monkeypatch.setattr(handlers, "manager", mgr)
    monkeypatch.setattr(events, "manager", mgr)
    return mgr


# ─── Test Settings ───


@pytest.fixture
def test_settings() -> Settings:
    return get_settings()
