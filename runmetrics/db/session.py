"""
Async database engine and session factory.

Uses SQLAlchemy 2.x async engine with asyncpg driver for PostgreSQL.
The engine and session factory are created in the application lifespan and
kept on app.state; request handlers receive a session through FastAPI
dependency injection rather than a module-level handle.

CHANGELOG:
- 2026-10-10: Move engine ownership to the application lifespan (STORY-107)
- 2026-10-06: Initial creation (STORY-101)
"""

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)


def create_engine(database_url: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    Args:
        database_url: SQLAlchemy URL, e.g. ``postgresql+asyncpg://...``.

    Returns:
        AsyncEngine: Configured async engine with connection pre-ping.
    """
    return create_async_engine(database_url, echo=False, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to ``engine``."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_async_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for FastAPI dependency injection.

    The session is automatically closed after the request completes.

    Yields:
        AsyncSession: An async SQLAlchemy session.

    Raises:
        RuntimeError: If the application lifespan has not created a factory.
    """
    factory: async_sessionmaker[AsyncSession] | None = getattr(
        request.app.state, "session_factory", None
    )
    if factory is None:
        raise RuntimeError("Session factory not initialized")
    async with factory() as session:
        yield session
