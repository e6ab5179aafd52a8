"""
FastAPI application entry point for the task-run metrics API.

Provides the root health endpoint and serves as the application factory.
Settings are loaded and validated at startup. API_TOKENS are parsed into a
TokenRegistry behind BearerAuth, and the database engine and session factory are created,
all stored on app.state for route dependencies.

CHANGELOG:
- 2026-10-19: Build a hashed TokenRegistry from API_TOKENS (STORY-112)
- 2026-10-10: Register metrics router, create engine in lifespan (STORY-107)
- 2026-10-06: Initial creation (STORY-101)
"""

import json
import logging
import os
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from runmetrics import __version__
from runmetrics.api.health import router as health_router
from runmetrics.api.metrics import router as metrics_router
from runmetrics.auth.bearer import BearerAuth, TokenRegistry
from runmetrics.config import ApiSettings
from runmetrics.db.session import create_engine, create_session_factory

logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGINS = "http://localhost:3000"


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


class JsonFormatter(logging.Formatter):
    """Minimal single-line JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def configure_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging on the root logger (stderr)."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: settings, auth and database setup.

    Startup:
        - Loads ApiSettings from the environment (fails fast if invalid).
        - Hashes API_TOKENS into the TokenRegistry behind BearerAuth.
        - Creates the async engine and session factory.

    Shutdown:
        - Disposes the engine.
    """
    settings = ApiSettings()
    configure_logging(settings.log_level)
    app.state.settings = settings

    registry = TokenRegistry.from_setting(settings.api_tokens)
    if not registry:
        raise RuntimeError(
            "API_TOKENS parsed but contains no valid token:user_id entries"
        )
    app.state.auth = BearerAuth(registry)
    logger.info(
        "Loaded %d API token(s) for %d user(s)",
        len(registry),
        len(registry.user_ids),
    )

    engine = create_engine(settings.database_url)
    app.state.session_factory = create_session_factory(engine)

    logger.info("Settings validated, metrics API ready")
    try:
        yield
    finally:
        await engine.dispose()
        logger.info("Metrics API shutting down")


def create_app() -> FastAPI:
    """Build the FastAPI application.

    CORS origins are read from the environment at construction time since
    middleware cannot be added once the application has started.
    """
    application = FastAPI(
        title="Task Run Metrics API",
        description="Time-bucketed task run metrics for the dashboard.",
        version=__version__,
        lifespan=lifespan,
    )

    cors_origins = os.getenv("CORS_ORIGINS", DEFAULT_CORS_ORIGINS)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in cors_origins.split(",") if o.strip()],
        allow_methods=["GET"],
        allow_headers=["Authorization"],
    )

    application.include_router(health_router)
    application.include_router(metrics_router)

    @application.get("/")
    async def root() -> dict:
        """Root health check endpoint."""
        return {"status": "ok"}

    return application


app = create_app()
