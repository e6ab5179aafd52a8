"""
Health check endpoints for the metrics API.

GET /health is a liveness check returning {"status": "ok"}. GET /health/db
runs SELECT 1 through the request session and answers 503 when the database
is unreachable. Neither requires authentication.

CHANGELOG:
- 2026-10-11: Add database readiness check (STORY-108)
- 2026-10-06: Initial creation (STORY-101)

TODO:
- None
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from runmetrics.api.deps import get_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict[str, str]:
    """Return a simple liveness status."""
    return {"status": "ok"}


@router.get("/health/db")
async def health_db(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> JSONResponse:
    """Check that the database answers a trivial query.

    Returns:
        JSONResponse: 200 ``{"db": "ok"}`` or 503 ``{"db": "error", ...}``.
    """
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Database health check failed", exc_info=True)
        return JSONResponse(
            status_code=503,
            content={"db": "error", "message": str(exc)},
        )
    return JSONResponse(status_code=200, content={"db": "ok"})
