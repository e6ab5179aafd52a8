"""
API configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
All configuration values come from environment variables or .env files;
no hardcoded URLs or credentials.

CHANGELOG:
- 2026-10-10: Add QUERY_TIMEOUT_MS as default statement_timeout (STORY-107)
- 2026-10-06: Initial creation (STORY-101)

TODO:
- None
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings


class ApiSettings(BaseSettings):
    """Metrics API configuration.

    Attributes:
        database_url: SQLAlchemy async URL of the TimescaleDB database.
        api_tokens: Comma separated ``token:user_id`` pairs for bearer auth.
        query_timeout_ms: statement_timeout applied to every metric query.
        log_level: Root log level.
    """

    database_url: str
    api_tokens: str
    query_timeout_ms: int = 30_000
    log_level: str = "INFO"

    @field_validator("query_timeout_ms")
    @classmethod
    def query_timeout_must_be_positive(cls, v: int) -> int:
        """Validate the per-query timeout is positive."""
        if v < 1:
            raise ValueError("QUERY_TIMEOUT_MS must be >= 1")
        return v

    @field_validator("log_level")
    @classmethod
    def log_level_must_be_known(cls, v: str) -> str:
        """Validate and normalise the log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"LOG_LEVEL must be a standard level name (got: '{v}')")
        return level

    @property
    def query_settings(self) -> dict[str, str]:
        """Engine settings applied to every metric query."""
        return {"statement_timeout": str(self.query_timeout_ms)}

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}
