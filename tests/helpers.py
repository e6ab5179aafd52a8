"""
Builders for mock sessions, metric rows and environments used across tests.

CHANGELOG:
- 2026-10-10: Initial creation (STORY-107)
"""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

from runmetrics.db.models import RuntimeEnvironment

AUTH_HEADER = {"Authorization": "Bearer test-token-abc"}
USER_ID = "user-001"


def make_metric_row(
    timestamp: str = "2026-10-01T12:00:00+00:00",
    value: float = 1.0,
    label: str | None = None,
) -> dict:
    """Build a metric row dict mimicking a DB result mapping."""
    return {
        "timestamp": datetime.fromisoformat(timestamp),
        "value": value,
        "label": label,
    }


def make_environment(
    environment_id: str = "env_789",
    organization_id: str = "org_123",
    project_id: str = "proj_456",
) -> RuntimeEnvironment:
    return RuntimeEnvironment(
        id=environment_id,
        organization_id=organization_id,
        project_id=project_id,
        slug="prod",
    )


def mock_session(
    rows: list[dict] | None = None,
    environment: RuntimeEnvironment | None = None,
) -> AsyncMock:
    """Create a mock AsyncSession.

    Every execute() returns the same result object, which answers both
    ``scalar_one_or_none()`` (environment lookup) and ``mappings().all()``
    (metric rows).
    """
    session = AsyncMock()
    result = MagicMock()
    result.mappings.return_value.all.return_value = rows or []
    result.scalar_one_or_none.return_value = environment
    session.execute = AsyncMock(return_value=result)
    return session


def override_db(session: AsyncMock):
    """Create a dependency override for get_db that yields ``session``."""

    async def _override():
        yield session

    return _override
