"""
Chainable SQL query builder executed through an async SQLAlchemy session.

QueryClient wraps a request-scoped AsyncSession and hands out named builder
factories. Each factory call yields a fresh QueryBuilder that accumulates
WHERE / GROUP BY / ORDER BY clauses and bound parameters on top of a fixed
base SELECT. execute() never raises for database or row-shape failures: it
returns an (error, rows) tuple so callers can branch without try/except.

Engine settings (e.g. statement_timeout) are applied per execution with
set_config(..., is_local => true), so they only affect the current
transaction.

CHANGELOG:
- 2026-10-08: Add group_keys for always-grouped bucket columns (STORY-104)
- 2026-10-07: Initial creation (STORY-103)

TODO:
- None
"""

import logging
import re
import time
from collections.abc import Mapping
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from runmetrics.errors import QueryError

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT", bound=BaseModel)

EngineSettings = Mapping[str, str | int | float]

_PARENTHESISED = re.compile(r"\([^()]*\)")
_WHERE = re.compile(r"\bWHERE\b", re.IGNORECASE)


def _has_top_level_where(sql: str) -> bool:
    """Return True if ``sql`` has a WHERE clause outside any subquery."""
    stripped = sql
    while True:
        reduced = _PARENTHESISED.sub("", stripped)
        if reduced == stripped:
            break
        stripped = reduced
    return bool(_WHERE.search(stripped))


def _unique(items: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


class QueryBuilder(Generic[RowT]):
    """Accumulates clauses for one query and executes it.

    All mutating methods return ``self`` so calls can be chained::

        builder.where("status = :status", {"status": "COMPLETED"})
               .group_by("task_identifier")
               .order_by("timestamp ASC")

    Attributes:
        name: Query name, used in logs and errors.
        base_query: SELECT ... FROM ... [WHERE ...] the clauses extend.
        schema: Pydantic model every result row is validated against.
        settings: Engine settings applied before execution.
        group_keys: Columns always placed first in GROUP BY.
    """

    def __init__(
        self,
        session: AsyncSession,
        name: str,
        base_query: str,
        schema: type[RowT],
        settings: EngineSettings | None = None,
        group_keys: tuple[str, ...] = (),
    ) -> None:
        self._session = session
        self.name = name
        self.base_query = base_query
        self.schema = schema
        self.settings: dict[str, str | int | float] = dict(settings or {})
        self.group_keys = group_keys
        self._conditions: list[str] = []
        self._params: dict[str, Any] = {}
        self._group_by: list[str] = []
        self._order_by: list[str] = []
        self._limit: int | None = None

    # -----------------------------------------------------------------------
    # Chainable clause methods
    # -----------------------------------------------------------------------

    def where(
        self, clause: str, params: Mapping[str, Any] | None = None
    ) -> "QueryBuilder[RowT]":
        """AND a condition onto the WHERE clause.

        Args:
            clause: SQL condition using ``:name`` placeholders.
            params: Values for the placeholders in ``clause``.

        Raises:
            ValueError: If a parameter name is already bound to a
                different value.
        """
        for key, value in (params or {}).items():
            if key in self._params and self._params[key] != value:
                raise ValueError(
                    f"Parameter '{key}' is already bound in query '{self.name}'"
                )
            self._params[key] = value
        self._conditions.append(clause)
        return self

    def group_by(self, *columns: str) -> "QueryBuilder[RowT]":
        """Append columns to the GROUP BY clause."""
        self._group_by.extend(columns)
        return self

    def order_by(self, *clauses: str) -> "QueryBuilder[RowT]":
        """Append ordering terms, e.g. ``"timestamp ASC"``."""
        self._order_by.extend(clauses)
        return self

    def limit(self, count: int) -> "QueryBuilder[RowT]":
        """Cap the number of returned rows."""
        if count < 1:
            raise ValueError("limit must be >= 1")
        self._limit = count
        return self

    # -----------------------------------------------------------------------
    # Introspection
    # -----------------------------------------------------------------------

    @property
    def conditions(self) -> list[str]:
        return list(self._conditions)

    @property
    def params(self) -> dict[str, Any]:
        return dict(self._params)

    @property
    def group_by_columns(self) -> list[str]:
        """Explicit GROUP BY columns, excluding the fixed group keys."""
        return list(self._group_by)

    @property
    def order_by_clauses(self) -> list[str]:
        return list(self._order_by)

    # -----------------------------------------------------------------------
    # Rendering and execution
    # -----------------------------------------------------------------------

    def build(self) -> tuple[str, dict[str, Any]]:
        """Render the final SQL and its bound parameters.

        Returns:
            tuple: ``(sql, params)`` ready for ``text(sql)`` execution.
        """
        sql = self.base_query.strip()
        if self._conditions:
            joiner = " AND " if _has_top_level_where(sql) else " WHERE "
            sql += joiner + " AND ".join(self._conditions)

        group_by = _unique([*self.group_keys, *self._group_by])
        if group_by:
            sql += " GROUP BY " + ", ".join(group_by)
        if self._order_by:
            sql += " ORDER BY " + ", ".join(self._order_by)
        if self._limit is not None:
            sql += f" LIMIT {self._limit}"
        return sql, dict(self._params)

    async def execute(self) -> tuple[QueryError | None, list[RowT] | None]:
        """Run the query and validate every row against the schema.

        Returns:
            tuple: ``(None, rows)`` on success, ``(QueryError, None)`` if the
            database rejects the query or a row does not fit the schema.
        """
        sql, params = self.build()
        started = time.perf_counter()

        try:
            for setting, value in self.settings.items():
                await self._session.execute(
                    text("SELECT set_config(:setting, :value, true)"),
                    {"setting": setting, "value": str(value)},
                )
            result = await self._session.execute(text(sql), params)
            rows = result.mappings().all()
        except SQLAlchemyError as exc:
            logger.warning("Query '%s' failed: %s", self.name, exc)
            return QueryError(self.name, str(exc)), None

        try:
            parsed = [self.schema.model_validate(dict(row)) for row in rows]
        except ValidationError as exc:
            logger.warning(
                "Query '%s' returned rows not matching %s",
                self.name,
                self.schema.__name__,
            )
            return QueryError(self.name, str(exc)), None

        logger.debug(
            "Query '%s' returned %d rows in %.1f ms",
            self.name,
            len(parsed),
            (time.perf_counter() - started) * 1000,
        )
        return None, parsed


class QueryBuilderFactory(Generic[RowT]):
    """Callable that produces fresh builders sharing one base definition."""

    def __init__(
        self,
        session: AsyncSession,
        name: str,
        base_query: str,
        schema: type[RowT],
        settings: EngineSettings | None = None,
        group_keys: tuple[str, ...] = (),
    ) -> None:
        self._session = session
        self.name = name
        self.base_query = base_query
        self.schema = schema
        self.settings = dict(settings or {})
        self.group_keys = group_keys

    def __call__(self) -> QueryBuilder[RowT]:
        return QueryBuilder(
            self._session,
            name=self.name,
            base_query=self.base_query,
            schema=self.schema,
            settings=self.settings,
            group_keys=self.group_keys,
        )


class QueryClient:
    """Database client handed to the metric query functions.

    Args:
        session: Request-scoped async session used for execution.
        default_settings: Engine settings applied to every query unless a
            builder overrides the same key.
    """

    def __init__(
        self,
        session: AsyncSession,
        default_settings: EngineSettings | None = None,
    ) -> None:
        self.session = session
        self.default_settings = dict(default_settings or {})

    def query_builder(
        self,
        *,
        name: str,
        base_query: str,
        schema: type[RowT],
        settings: EngineSettings | None = None,
        group_keys: tuple[str, ...] = (),
    ) -> QueryBuilderFactory[RowT]:
        """Register a named base query and return its builder factory."""
        merged = {**self.default_settings, **(settings or {})}
        return QueryBuilderFactory(
            self.session,
            name=name,
            base_query=base_query,
            schema=schema,
            settings=merged,
            group_keys=group_keys,
        )
