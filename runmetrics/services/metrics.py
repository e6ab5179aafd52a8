"""
Time-bucketed metric queries over the task_runs_v2 table.

Maps the granularity DSL (``<amount><s|m|h|d>``) to a date_trunc() bucket
expression and a rollup type to an aggregation expression, then builds named
query factories on a QueryClient. create_query() composes tenant scoping,
time range, filters, grouping and ordering in a fixed order for a set of
MetricQueryParams.

Bucket selection only looks at the unit letter: "15m" and "1m" both produce
minute buckets, "6h" produces hour buckets. The discarded amount is logged
as a warning.

CHANGELOG:
- 2026-10-19: Filter table rows directly and keep the newest run version with
  an anti-join; ASCII-only fullmatch for granularity and column names;
  allow count(*) custom metrics (STORY-112)
- 2026-10-12: Warn when a granularity amount is coarsened (STORY-110)
- 2026-10-08: Add create_query composer and MetricsQueries namespace (STORY-104)
- 2026-10-07: Initial creation (STORY-102)

TODO:
- None
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, field_validator, model_validator

from runmetrics.db.query_builder import (
    EngineSettings,
    QueryBuilder,
    QueryBuilderFactory,
    QueryClient,
)
from runmetrics.errors import (
    InvalidColumnError,
    InvalidGranularityError,
    InvalidRollupError,
    MetricTypeError,
)

logger = logging.getLogger(__name__)

RollupType = Literal["count", "sum", "avg", "min", "max", "distinct"]
CustomAggregation = Literal["count", "sum", "avg", "min", "max"]
MetricType = Literal["count", "duration", "cost", "status", "custom"]

PREDEFINED_METRIC_TYPES: frozenset[str] = frozenset(
    {"count", "duration", "cost", "status"}
)

# Rows are read straight from the table so tenant and time filters reach the
# indexes. LATEST_VERSION_CONDITION keeps only the newest version of each run;
# soft-deleted rows are filtered separately.
TASK_RUNS_SOURCE = "task_runs_v2 AS task_runs"
LATEST_VERSION_CONDITION = (
    "NOT EXISTS (SELECT 1 FROM task_runs_v2 AS newer "
    "WHERE newer.run_id = task_runs.run_id "
    "AND newer._version > task_runs._version)"
)
TIME_COLUMN = "created_at"
BUCKET_KEY = "timestamp"
DEFAULT_GROUP_BY = "task_identifier"

GRANULARITY_PATTERN = re.compile(r"([0-9]+)([smhd])")
IDENTIFIER_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

UNIT_INTERVALS: dict[str, str] = {
    "s": "second",
    "m": "minute",
    "h": "hour",
    "d": "day",
}

_MINUTE_BUCKET = f"date_trunc('minute', {TIME_COLUMN})"
_HOUR_BUCKET = f"date_trunc('hour', {TIME_COLUMN})"
_DAY_BUCKET = f"date_trunc('day', {TIME_COLUMN})"

BUCKET_EXPRESSIONS: dict[str, str] = {
    "s": _MINUTE_BUCKET,
    "m": _MINUTE_BUCKET,
    "h": _HOUR_BUCKET,
    "d": _DAY_BUCKET,
}

AGGREGATION_FUNCTIONS: dict[str, str] = {
    "count": "count",
    "sum": "sum",
    "avg": "avg",
    "min": "min",
    "max": "max",
    "distinct": "approx_count_distinct",
}


# ---------------------------------------------------------------------------
# Result and parameter models
# ---------------------------------------------------------------------------


class MetricDataPoint(BaseModel):
    """One aggregated value inside a time bucket.

    Attributes:
        timestamp: Start of the time bucket.
        value: Aggregated value for the bucket.
        label: Group-by value, when the query is grouped.
    """

    timestamp: datetime
    value: float
    label: str | None = None


class MetricResult(BaseModel):
    """A named metric and its data points ordered by bucket."""

    metric: str
    data: list[MetricDataPoint]


class MetricFilters(BaseModel):
    """Optional exact-match filters, combined with AND."""

    task_identifier: str | None = None
    status: str | None = None
    queue: str | None = None


class RollupSpec(BaseModel):
    """Aggregation applied within each bucket."""

    type: RollupType
    column: str

    @model_validator(mode="after")
    def _check_column(self) -> "RollupSpec":
        validate_column(self.column, allow_wildcard=self.type == "count")
        return self


class CustomMetric(BaseModel):
    """Aggregation and column for the ``custom`` metric type."""

    aggregation: CustomAggregation
    column: str

    @model_validator(mode="after")
    def _check_column(self) -> "CustomMetric":
        validate_column(self.column, allow_wildcard=self.aggregation == "count")
        return self


class MetricQueryParams(BaseModel):
    """Everything create_query() needs to compose a metric query."""

    organization_id: str
    project_id: str
    environment_id: str
    start_time: datetime
    end_time: datetime | None = None
    granularity: str
    filters: MetricFilters | None = None
    group_by: str | None = None
    rollup: RollupSpec | None = None

    @field_validator("granularity")
    @classmethod
    def _check_granularity(cls, v: str) -> str:
        parse_granularity(v)
        return v

    @field_validator("group_by")
    @classmethod
    def _check_group_by(cls, v: str | None) -> str | None:
        return validate_column(v) if v is not None else None


# ---------------------------------------------------------------------------
# Granularity and bucket mapping
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Granularity:
    """Parsed granularity token.

    Attributes:
        amount: Numeric part, e.g. 15 for "15m".
        unit: One of s, m, h, d.
    """

    amount: int
    unit: str

    @property
    def interval(self) -> str:
        return f"{self.amount} {UNIT_INTERVALS[self.unit]}"


def parse_granularity(granularity: str) -> Granularity:
    """Parse a granularity token such as "30s", "5m", "1h" or "1d".

    Raises:
        InvalidGranularityError: If the token does not match the grammar.
    """
    match = GRANULARITY_PATTERN.fullmatch(granularity)
    if not match:
        raise InvalidGranularityError(granularity)
    amount, unit = match.groups()
    return Granularity(amount=int(amount), unit=unit)


def granularity_to_interval(granularity: str) -> str:
    """Convert a granularity token to a PostgreSQL interval, e.g. "15 minute"."""
    return parse_granularity(granularity).interval


def time_bucket_expression(granularity: str) -> str:
    """Return the bucket expression for a granularity.

    Only the unit letter is used: seconds and minutes map to minute buckets,
    hours to hour buckets, days to day buckets.

    Raises:
        InvalidGranularityError: If the token does not match the grammar.
    """
    parsed = parse_granularity(granularity)
    bucket = BUCKET_EXPRESSIONS[parsed.unit]
    if parsed.amount != 1 or parsed.unit == "s":
        logger.warning(
            "Granularity '%s' (%s) is bucketed as %s; the amount is not applied",
            granularity,
            parsed.interval,
            bucket,
        )
    return bucket


# ---------------------------------------------------------------------------
# Aggregation mapping
# ---------------------------------------------------------------------------


def validate_column(column: str, allow_wildcard: bool = False) -> str:
    """Check that a column name is safe to interpolate into SQL.

    Existence and type are left to the database.

    Raises:
        InvalidColumnError: If the name is empty or not a plain identifier.
    """
    if allow_wildcard and column == "*":
        return column
    if not column or not IDENTIFIER_PATTERN.fullmatch(column):
        raise InvalidColumnError(f"Invalid column name: {column!r}")
    return column


def build_aggregation_expression(rollup_type: str, column: str) -> str:
    """Build the SQL aggregation for a rollup type and column.

    ``count`` over ``*`` counts rows, ``count`` over a column counts non-null
    values, ``distinct`` is a HyperLogLog estimate.

    Raises:
        InvalidRollupError: If ``rollup_type`` is not supported.
        InvalidColumnError: If ``column`` is not a plain identifier.
    """
    function = AGGREGATION_FUNCTIONS.get(rollup_type)
    if function is None:
        raise InvalidRollupError(
            f"Unknown rollup type {rollup_type!r}. "
            f"Must be one of: {sorted(AGGREGATION_FUNCTIONS)}."
        )
    validate_column(column, allow_wildcard=rollup_type == "count")
    return f"{function}({column})"


# ---------------------------------------------------------------------------
# Query factories
# ---------------------------------------------------------------------------


def _metric_base_query(
    bucket: str,
    aggregation: str,
    label_column: str | None = None,
    condition: str | None = None,
) -> str:
    sql = f"SELECT {bucket} AS {BUCKET_KEY}, {aggregation} AS value"
    if label_column:
        sql += f", CAST({label_column} AS TEXT) AS label"
    sql += f" FROM {TASK_RUNS_SOURCE} WHERE {LATEST_VERSION_CONDITION}"
    if condition:
        sql += f" AND {condition}"
    return sql


def _metric_factory(
    client: QueryClient,
    name: str,
    base_query: str,
    settings: EngineSettings | None,
) -> QueryBuilderFactory[MetricDataPoint]:
    return client.query_builder(
        name=name,
        base_query=base_query,
        schema=MetricDataPoint,
        settings=settings,
        group_keys=(BUCKET_KEY,),
    )


def get_metrics(
    client: QueryClient, settings: EngineSettings | None = None
) -> QueryBuilderFactory[MetricDataPoint]:
    """Per-minute run count."""
    return _metric_factory(
        client,
        "metrics",
        _metric_base_query(_MINUTE_BUCKET, "count(*)"),
        settings,
    )


def get_dynamic(
    client: QueryClient,
    granularity: str,
    rollup_type: str,
    column: str,
    settings: EngineSettings | None = None,
    label_column: str | None = None,
) -> QueryBuilderFactory[MetricDataPoint]:
    """Metric with caller-chosen granularity, rollup and column.

    Args:
        client: Query client to register the builder on.
        granularity: Bucket width token, e.g. "15m".
        rollup_type: count, sum, avg, min, max or distinct.
        column: Aggregated column, or "*" for count.
        settings: Engine settings for this query.
        label_column: Column selected as the point label, if grouping.

    Raises:
        InvalidGranularityError: If ``granularity`` is malformed.
        InvalidRollupError: If ``rollup_type`` is unknown.
        InvalidColumnError: If a column is not a plain identifier.
    """
    bucket = time_bucket_expression(granularity)
    aggregation = build_aggregation_expression(rollup_type, column)
    if label_column is not None:
        validate_column(label_column)
    return _metric_factory(
        client,
        f"dynamic_metrics_{rollup_type}_{column}_{granularity}",
        _metric_base_query(bucket, aggregation, label_column),
        settings,
    )


def get_task_run_count_metrics(
    client: QueryClient,
    settings: EngineSettings | None = None,
    label_column: str = "task_identifier",
) -> QueryBuilderFactory[MetricDataPoint]:
    """Runs per minute, labelled by task identifier."""
    return _metric_factory(
        client,
        "task_run_count_metrics",
        _metric_base_query(_MINUTE_BUCKET, "count(*)", validate_column(label_column)),
        settings,
    )


def get_task_run_duration_metrics(
    client: QueryClient,
    settings: EngineSettings | None = None,
    label_column: str = "task_identifier",
) -> QueryBuilderFactory[MetricDataPoint]:
    """Average usage duration of finished runs per minute."""
    return _metric_factory(
        client,
        "task_run_duration_metrics",
        _metric_base_query(
            _MINUTE_BUCKET,
            "avg(usage_duration_ms)",
            validate_column(label_column),
            "usage_duration_ms > 0",
        ),
        settings,
    )


def get_task_run_cost_metrics(
    client: QueryClient,
    settings: EngineSettings | None = None,
    label_column: str = "task_identifier",
) -> QueryBuilderFactory[MetricDataPoint]:
    """Total cost in cents per minute."""
    return _metric_factory(
        client,
        "task_run_cost_metrics",
        _metric_base_query(
            _MINUTE_BUCKET,
            "sum(cost_in_cents)",
            validate_column(label_column),
            "cost_in_cents > 0",
        ),
        settings,
    )


def get_task_run_status_metrics(
    client: QueryClient,
    settings: EngineSettings | None = None,
    label_column: str = "status",
) -> QueryBuilderFactory[MetricDataPoint]:
    """Runs per minute, labelled by status."""
    return _metric_factory(
        client,
        "task_run_status_metrics",
        _metric_base_query(_MINUTE_BUCKET, "count(*)", validate_column(label_column)),
        settings,
    )


def get_custom_metrics(
    client: QueryClient,
    metric: str,
    aggregation: str,
    column: str,
    settings: EngineSettings | None = None,
    label_column: str = "task_identifier",
) -> QueryBuilderFactory[MetricDataPoint]:
    """Per-minute aggregation of an arbitrary column.

    sum, avg, min and max ignore rows where the column is not positive.
    """
    if aggregation == "distinct":
        raise InvalidRollupError("Custom metrics do not support 'distinct'")
    expression = build_aggregation_expression(aggregation, column)
    condition = f"{column} > 0" if aggregation in ("sum", "avg", "min", "max") else None
    return _metric_factory(
        client,
        f"custom_metrics_{metric}_{aggregation}",
        _metric_base_query(
            _MINUTE_BUCKET, expression, validate_column(label_column), condition
        ),
        settings,
    )


# ---------------------------------------------------------------------------
# Query composer
# ---------------------------------------------------------------------------


def _resolve_label_column(
    params: MetricQueryParams, metric_type: str | None
) -> str | None:
    if params.group_by:
        return params.group_by
    if params.rollup:
        return None
    if metric_type == "status":
        return "status"
    return DEFAULT_GROUP_BY


def create_query(
    client: QueryClient,
    params: MetricQueryParams,
    metric_type: MetricType | None = None,
    custom_metric: CustomMetric | None = None,
    settings: EngineSettings | None = None,
) -> QueryBuilder[MetricDataPoint]:
    """Compose a fully filtered, ordered metric query.

    A rollup in ``params`` selects a dynamic query and takes precedence over
    ``metric_type``. Clauses are appended in a fixed order: tenant scope,
    soft-delete, start time, end time, task/status/queue filters, group by,
    then ascending bucket order.

    Args:
        client: Query client bound to the request session.
        params: Tenant scope, time range, filters, grouping and rollup.
        metric_type: Predefined metric used when no rollup is given.
        custom_metric: Required when ``metric_type`` is "custom".
        settings: Engine settings for this query.

    Returns:
        QueryBuilder: Ready to ``await builder.execute()``.

    Raises:
        MetricTypeError: If neither a rollup nor a usable metric type is given.
    """
    label_column = _resolve_label_column(params, metric_type)

    if params.rollup:
        factory = get_dynamic(
            client,
            params.granularity,
            params.rollup.type,
            params.rollup.column,
            settings,
            label_column=label_column,
        )
    elif metric_type == "count":
        factory = get_task_run_count_metrics(client, settings, label_column)
    elif metric_type == "duration":
        factory = get_task_run_duration_metrics(client, settings, label_column)
    elif metric_type == "cost":
        factory = get_task_run_cost_metrics(client, settings, label_column)
    elif metric_type == "status":
        factory = get_task_run_status_metrics(client, settings, label_column)
    elif metric_type == "custom":
        if custom_metric is None:
            raise MetricTypeError("custom_metric is required for custom metric type")
        factory = get_custom_metrics(
            client,
            "custom",
            custom_metric.aggregation,
            custom_metric.column,
            settings,
            label_column,
        )
    elif metric_type is None:
        raise MetricTypeError("Either metric_type or rollup must be specified")
    else:
        raise MetricTypeError(f"Unknown metric type: {metric_type}")

    builder = factory()
    (
        builder.where(
            "organization_id = :organization_id",
            {"organization_id": params.organization_id},
        )
        .where("project_id = :project_id", {"project_id": params.project_id})
        .where(
            "environment_id = :environment_id",
            {"environment_id": params.environment_id},
        )
        .where("_is_deleted = 0")
        .where(f"{TIME_COLUMN} >= :start_time", {"start_time": params.start_time})
    )

    if params.end_time is not None:
        builder.where(f"{TIME_COLUMN} <= :end_time", {"end_time": params.end_time})

    filters = params.filters
    if filters is not None:
        if filters.task_identifier:
            builder.where(
                "task_identifier = :task_identifier",
                {"task_identifier": filters.task_identifier},
            )
        if filters.status:
            builder.where("status = :status", {"status": filters.status})
        if filters.queue:
            builder.where("queue = :queue", {"queue": filters.queue})

    if label_column is not None:
        builder.group_by(label_column)

    builder.order_by(f"{BUCKET_KEY} ASC")
    return builder


class MetricsQueries:
    """Metric query functions bound to one QueryClient."""

    def __init__(self, client: QueryClient) -> None:
        self.client = client

    def get_metrics(self, settings: EngineSettings | None = None):
        return get_metrics(self.client, settings)

    def get_dynamic(
        self,
        granularity: str,
        rollup_type: str,
        column: str,
        settings: EngineSettings | None = None,
        label_column: str | None = None,
    ):
        return get_dynamic(
            self.client, granularity, rollup_type, column, settings, label_column
        )

    def get_task_run_count(self, settings: EngineSettings | None = None):
        return get_task_run_count_metrics(self.client, settings)

    def get_task_run_duration(self, settings: EngineSettings | None = None):
        return get_task_run_duration_metrics(self.client, settings)

    def get_task_run_cost(self, settings: EngineSettings | None = None):
        return get_task_run_cost_metrics(self.client, settings)

    def get_task_run_status(self, settings: EngineSettings | None = None):
        return get_task_run_status_metrics(self.client, settings)

    def get_custom(
        self,
        metric: str,
        aggregation: str,
        column: str,
        settings: EngineSettings | None = None,
    ):
        return get_custom_metrics(self.client, metric, aggregation, column, settings)

    def create_query(
        self,
        params: MetricQueryParams,
        metric_type: MetricType | None = None,
        custom_metric: CustomMetric | None = None,
    ) -> QueryBuilder[MetricDataPoint]:
        return create_query(self.client, params, metric_type, custom_metric)
