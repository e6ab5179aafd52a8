"""
Metrics service used by the dashboard presenter.

Converts API-level query parameters plus the tenant scope resolved from the
environment into MetricQueryParams, composes the query and executes it. Unlike
the query builder, the service raises MetricsQueryError on execution failure.

CHANGELOG:
- 2026-10-10: Add MetricsQuery request model for the dashboard route (STORY-107)
- 2026-10-09: Initial creation (STORY-105)

TODO:
- None
"""

import logging
from datetime import datetime

from pydantic import BaseModel, field_validator, model_validator

from runmetrics.db.query_builder import QueryClient
from runmetrics.errors import MetricsQueryError, MetricTypeError
from runmetrics.services.metrics import (
    PREDEFINED_METRIC_TYPES,
    MetricDataPoint,
    MetricFilters,
    MetricQueryParams,
    MetricResult,
    MetricsQueries,
    MetricType,
    RollupSpec,
    parse_granularity,
    validate_column,
)

logger = logging.getLogger(__name__)


class ApiMetricParams(BaseModel):
    """Metric parameters as received from the API, without tenant scope."""

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


class MetricsQuery(ApiMetricParams):
    """Dashboard request for one or more metrics sharing the same parameters.

    ``metrics`` accepts a list, a comma separated string, or a mix. Without a
    rollup every name must be a predefined metric type; with a rollup the
    names only label the results.
    """

    metrics: list[str]

    @field_validator("metrics", mode="before")
    @classmethod
    def _split_metrics(cls, v: object) -> object:
        if isinstance(v, str):
            v = [v]
        if isinstance(v, list):
            names = [
                name.strip()
                for item in v
                for name in str(item).split(",")
                if name.strip()
            ]
            if not names:
                raise ValueError("At least one metric name is required")
            return names
        return v

    @model_validator(mode="after")
    def _check_metric_names(self) -> "MetricsQuery":
        if self.rollup is None:
            unknown = [m for m in self.metrics if m not in PREDEFINED_METRIC_TYPES]
            if unknown:
                raise ValueError(
                    f"Unknown metrics {unknown}. Without a rollup, metrics must "
                    f"be one of: {sorted(PREDEFINED_METRIC_TYPES)}."
                )
        return self


def to_query_params(
    api_params: ApiMetricParams,
    organization_id: str,
    project_id: str,
    environment_id: str,
) -> MetricQueryParams:
    """Attach the tenant scope to API parameters."""
    return MetricQueryParams(
        organization_id=organization_id,
        project_id=project_id,
        environment_id=environment_id,
        **api_params.model_dump(include=set(ApiMetricParams.model_fields)),
    )


def to_metric_result(metric: str, rows: list[MetricDataPoint]) -> MetricResult:
    return MetricResult(metric=metric, data=rows)


class MetricsService:
    """Runs task-run metric queries for one tenant scope at a time.

    Attributes:
        metrics: Query functions bound to the injected client.
    """

    def __init__(self, client: QueryClient) -> None:
        self.metrics = MetricsQueries(client)

    async def get_task_run_metrics(
        self,
        params: ApiMetricParams,
        organization_id: str,
        project_id: str,
        environment_id: str,
        metric_type: MetricType = "count",
    ) -> list[MetricDataPoint]:
        """Execute a predefined (or rollup) metric query.

        Raises:
            MetricsQueryError: If the query fails to execute.
        """
        query_params = to_query_params(
            params, organization_id, project_id, environment_id
        )
        query = self.metrics.create_query(query_params, metric_type)

        error, result = await query.execute()
        if error:
            raise MetricsQueryError(f"Failed to fetch metrics: {error.message}")

        return result or []

    async def get_task_run_count(
        self,
        params: ApiMetricParams,
        organization_id: str,
        project_id: str,
        environment_id: str,
    ) -> list[MetricDataPoint]:
        return await self.get_task_run_metrics(
            params, organization_id, project_id, environment_id, "count"
        )

    async def get_task_run_duration(
        self,
        params: ApiMetricParams,
        organization_id: str,
        project_id: str,
        environment_id: str,
    ) -> list[MetricDataPoint]:
        return await self.get_task_run_metrics(
            params, organization_id, project_id, environment_id, "duration"
        )

    async def get_task_run_cost(
        self,
        params: ApiMetricParams,
        organization_id: str,
        project_id: str,
        environment_id: str,
    ) -> list[MetricDataPoint]:
        return await self.get_task_run_metrics(
            params, organization_id, project_id, environment_id, "cost"
        )

    async def get_task_run_status(
        self,
        params: ApiMetricParams,
        organization_id: str,
        project_id: str,
        environment_id: str,
    ) -> list[MetricDataPoint]:
        return await self.get_task_run_metrics(
            params, organization_id, project_id, environment_id, "status"
        )

    async def get_dynamic_metrics(
        self,
        params: ApiMetricParams,
        organization_id: str,
        project_id: str,
        environment_id: str,
    ) -> list[MetricDataPoint]:
        """Execute a rollup query.

        Raises:
            MetricTypeError: If ``params`` carries no rollup.
            MetricsQueryError: If the query fails to execute.
        """
        if params.rollup is None:
            raise MetricTypeError("rollup parameter is required for dynamic metrics")

        query_params = to_query_params(
            params, organization_id, project_id, environment_id
        )
        query = self.metrics.create_query(query_params)

        error, result = await query.execute()
        if error:
            raise MetricsQueryError(
                f"Failed to fetch dynamic metrics: {error.message}"
            )

        logger.debug(
            "Dynamic metric %s(%s) for environment %s: %d points",
            params.rollup.type,
            params.rollup.column,
            environment_id,
            len(result or []),
        )
        return result or []
