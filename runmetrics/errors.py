"""
Exception types for metric query construction and execution.

Construction errors (bad granularity, bad rollup, unknown metric type) are
raised immediately. They subclass ValueError so that Pydantic validators
calling the same helpers surface them as ordinary validation errors.

Execution errors are never raised by the query builder: QueryError is
returned as the first element of an (error, result) tuple. try_catch()
gives any awaitable the same shape.

CHANGELOG:
- 2026-10-09: Add try_catch helper for the metrics route (STORY-106)
- 2026-10-06: Initial creation (STORY-101)

TODO:
- None
"""

from collections.abc import Awaitable
from typing import TypeVar

T = TypeVar("T")


class MetricsError(Exception):
    """Base class for all metric query errors."""


class InvalidGranularityError(MetricsError, ValueError):
    """Granularity token does not match ``<amount><s|m|h|d>``."""

    def __init__(self, granularity: str) -> None:
        self.granularity = granularity
        super().__init__(
            f"Invalid granularity format: {granularity!r}. "
            'Expected format like "1m", "5m", "1h", "1d"'
        )


class InvalidRollupError(MetricsError, ValueError):
    """Rollup type is not one of the supported aggregations."""


class InvalidColumnError(MetricsError, ValueError):
    """Column name cannot be safely interpolated into SQL."""


class MetricTypeError(MetricsError, ValueError):
    """Metric type is unknown or missing its required configuration."""


class MetricsQueryError(MetricsError):
    """Raised by the metrics service when an executed query fails."""


class QueryError(MetricsError):
    """Execution-time failure of a named query.

    Attributes:
        query_name: Name the builder was registered under.
        message: Human-readable failure description.
    """

    def __init__(self, query_name: str, message: str) -> None:
        self.query_name = query_name
        self.message = message
        super().__init__(f"Query '{query_name}' failed: {message}")


async def try_catch(awaitable: Awaitable[T]) -> tuple[Exception | None, T | None]:
    """Await ``awaitable`` and return ``(error, result)`` instead of raising.

    Args:
        awaitable: Coroutine or future to await.

    Returns:
        tuple: ``(None, result)`` on success, ``(exc, None)`` on failure.
    """
    try:
        return None, await awaitable
    except Exception as exc:
        return exc, None
