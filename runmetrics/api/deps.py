"""
FastAPI dependency injection providers.

Provides database sessions, the metrics query client and presenter, and the
authenticated user for use with FastAPI's Depends() mechanism.

CHANGELOG:
- 2026-10-10: Add query client, presenter and user dependencies (STORY-107)
- 2026-10-06: Initial creation (STORY-101)
"""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from runmetrics.db.query_builder import QueryClient
from runmetrics.db.session import get_async_session
from runmetrics.services.metrics_service import MetricsService
from runmetrics.services.presenter import MetricPresenter


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session.

    Yields:
        AsyncSession: An async SQLAlchemy session.
    """
    async for session in get_async_session(request):
        yield session


async def get_user_id(request: Request) -> str:
    """Extract the authenticated user_id via BearerAuth on app.state."""
    return await request.app.state.auth.verify(request)


def get_query_client(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> QueryClient:
    """Wrap the request session in a QueryClient with default engine settings."""
    settings = getattr(request.app.state, "settings", None)
    defaults = settings.query_settings if settings is not None else None
    return QueryClient(db, default_settings=defaults)


def get_metric_presenter(
    client: Annotated[QueryClient, Depends(get_query_client)],
) -> MetricPresenter:
    return MetricPresenter(MetricsService(client))
