"""Pytest configuration and fixtures."""

import os
import time
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
import respx
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment before importing app
os.environ["TESTING"] = "1"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["INSFORGE_BASE_URL"] = "https://identity.test"
os.environ["INSFORGE_API_KEY"] = "test-service-key"
os.environ["INSFORGE_ANON_KEY"] = "test-anon-key"
os.environ["APP_BASE_URL"] = "https://app.test"

from axolotl_auth.db.base import Base  # noqa: E402
from axolotl_auth.db.session import get_db  # noqa: E402
from axolotl_auth.main import app  # noqa: E402
from tests.helpers import IDENTITY_URL, make_jwt  # noqa: E402

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async_session = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:
        yield session


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client against the app with the test database."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def identity_user():
    """User record as the identity backend returns it."""
    return {
        "id": "user-123",
        "email": "alice@example.com",
        "emailVerified": True,
        "createdAt": "2025-01-01T00:00:00Z",
    }


@pytest.fixture
def access_token():
    """A user access token valid for an hour."""
    return make_jwt(sub="user-123", email="alice@example.com", exp=int(time.time()) + 3600)


@pytest.fixture
def identity_mock(identity_user):
    """Identity backend that accepts any bearer token as alice."""
    with respx.mock(base_url=IDENTITY_URL, assert_all_called=False) as router:
        router.get("/api/auth/sessions/current", name="session").respond(
            200, json={"user": identity_user}
        )
        router.get(f"/api/auth/profiles/{identity_user['id']}", name="profile").respond(
            200, json={"id": identity_user["id"], "name": "Alice Liddell"}
        )
        yield router
