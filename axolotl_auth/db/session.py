"""Async engine and request-scoped sessions for the flow stores."""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from axolotl_auth.config import get_settings


def build_engine(database_url: str) -> AsyncEngine:
    """Engine for ``database_url``. SQLite connections may be shared across threads."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_async_engine(database_url, pool_pre_ping=True, connect_args=connect_args)


engine = build_engine(get_settings().DATABASE_URL)

# Rows stay readable after commit; the flow reads them back in the same request
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """One session per request, closed when the request ends."""
    async with async_session_maker() as session:
        yield session
