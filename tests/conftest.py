"""
Shared Test Fixtures
====================

In-memory SQLite database, in-process cache and notifier, user factory and
an HTTP client wired to the FastAPI app through dependency overrides.
"""

import os

# Settings are read at import time, so the environment is pinned first.
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CACHE_BACKEND"] = "memory"
os.environ["API_POPULATE_KEY"] = "test-populate-key"
os.environ["JWT_SECRET"] = "test-secret-key-with-at-least-32-characters"

from typing import Iterable, Optional
import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tasktracker.core.rate_limit import MemoryRateLimiter, get_rate_limiter
from tasktracker.core.security import create_tokens_for_user, hash_password
from tasktracker.db.base import Base
from tasktracker.db.session import enable_sqlite_savepoints, get_db
from tasktracker.dependencies import get_external_client
from tasktracker.models import Role, User
from tasktracker.services.cache import MemoryTaggedCache, get_task_cache
from tasktracker.services.notifications import TaskNotifier, get_notifier
from tasktracker.services.task_service import TaskService

POPULATE_KEY = "test-populate-key"
PASSWORD = "correct-horse-battery"


class RecordingListener:
    """Notification listener that remembers what it received."""

    def __init__(self):
        self.events = []

    async def __call__(self, event, task):
        self.events.append((event, task))

    def of(self, event):
        return [task for recorded, task in self.events if recorded is event]


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)

    import tasktracker.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

@pytest.fixture
def cache():
    return MemoryTaggedCache()


@pytest.fixture
def recorder():
    return RecordingListener()


@pytest_asyncio.fixture
async def notifier(recorder):
    notifier = TaskNotifier([recorder])
    yield notifier
    await notifier.drain()


@pytest.fixture
def service(db, cache, notifier):
    return TaskService(db, cache=cache, notifier=notifier)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

@pytest.fixture
def make_user(db):
    """Factory that inserts and commits a user."""

    async def _make(
        name: str = "Test User",
        email: Optional[str] = None,
        roles: Iterable[Role] = (Role.USER,),
    ) -> User:
        user = User(
            name=name,
            email=email or f"user-{uuid.uuid4().hex[:8]}@example.com",
            password_hash=hash_password(PASSWORD),
            roles=[Role(role).value for role in roles],
        )
        db.add(user)
        await db.commit()
        return user

    return _make


@pytest_asyncio.fixture
async def alice(make_user):
    return await make_user(name="Alice", email="alice@example.com")


@pytest_asyncio.fixture
async def bob(make_user):
    return await make_user(name="Bob", email="bob@example.com")


@pytest_asyncio.fixture
async def admin(make_user):
    return await make_user(
        name="Admin", email="admin@example.com", roles=(Role.ADMIN, Role.USER)
    )


@pytest.fixture
def headers_for():
    """Build bearer-token headers for a user."""

    def _headers(user: User) -> dict[str, str]:
        tokens = create_tokens_for_user(user.user_id, user.email)
        return {"Authorization": f"Bearer {tokens['access_token']}"}

    return _headers


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

@pytest.fixture
def external_client():
    """Replace per test to control the populate endpoint's upstream."""
    return None


@pytest.fixture
def rate_limiter():
    return MemoryRateLimiter()


@pytest_asyncio.fixture
async def client(session_factory, cache, notifier, external_client, rate_limiter):
    from tasktracker.main import app

    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_task_cache] = lambda: cache
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    if external_client is not None:
        app.dependency_overrides[get_external_client] = lambda: external_client

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
