"""
Tests for MetricsService and the MetricsQuery request model.

CHANGELOG:
- 2026-10-09: Initial creation (STORY-105)

TODO:
- None
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from runmetrics.db.query_builder import QueryClient
from runmetrics.errors import MetricsQueryError, MetricTypeError
from runmetrics.services.metrics import MetricDataPoint
from runmetrics.services.metrics_service import (
    ApiMetricParams,
    MetricsQuery,
    MetricsService,
    to_metric_result,
    to_query_params,
)
from tests.helpers import make_metric_row, mock_session

START = datetime(2026, 10, 1, tzinfo=UTC)
SCOPE = ("org_123", "proj_456", "env_789")


def _api_params(**overrides) -> ApiMetricParams:
    values = {"start_time": START, "granularity": "1m"}
    values.update(overrides)
    return ApiMetricParams(**values)


def _failing_session() -> AsyncMock:
    session = AsyncMock()
    session.execute = AsyncMock(
        side_effect=OperationalError("SELECT", {}, Exception("connection reset"))
    )
    return session


class TestMetricsQueryModel:
    def test_comma_separated_names(self) -> None:
        query = MetricsQuery(metrics="count, cost", start_time=START, granularity="1h")
        assert query.metrics == ["count", "cost"]

    def test_repeated_and_comma_names_are_flattened(self) -> None:
        query = MetricsQuery(
            metrics=["count,duration", "status"], start_time=START, granularity="1h"
        )
        assert query.metrics == ["count", "duration", "status"]

    def test_empty_metrics_rejected(self) -> None:
        with pytest.raises(ValidationError, match="At least one metric"):
            MetricsQuery(metrics=" , ", start_time=START, granularity="1h")

    def test_unknown_metric_without_rollup_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Unknown metrics"):
            MetricsQuery(metrics="latency", start_time=START, granularity="1h")

    def test_any_name_allowed_with_rollup(self) -> None:
        query = MetricsQuery(
            metrics="p_latency",
            start_time=START,
            granularity="1h",
            rollup={"type": "avg", "column": "usage_duration_ms"},
        )
        assert query.metrics == ["p_latency"]

    def test_bad_granularity_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Invalid granularity format"):
            MetricsQuery(metrics="count", start_time=START, granularity="1w")


class TestConversions:
    def test_to_query_params_attaches_scope(self) -> None:
        api = MetricsQuery(
            metrics="count",
            start_time=START,
            granularity="1h",
            filters={"queue": "q1"},
        )

        params = to_query_params(api, *SCOPE)

        assert params.organization_id == "org_123"
        assert params.project_id == "proj_456"
        assert params.environment_id == "env_789"
        assert params.granularity == "1h"
        assert params.filters is not None
        assert params.filters.queue == "q1"

    def test_to_metric_result(self) -> None:
        point = MetricDataPoint(timestamp=START, value=2.0)
        result = to_metric_result("count", [point])
        assert result.metric == "count"
        assert result.data == [point]


class TestGetTaskRunMetrics:
    @pytest.mark.asyncio
    async def test_returns_points(self) -> None:
        session = mock_session(rows=[make_metric_row(value=4, label="send-email")])
        service = MetricsService(QueryClient(session))

        points = await service.get_task_run_metrics(_api_params(), *SCOPE, "count")

        assert len(points) == 1
        assert points[0].value == 4.0
        assert points[0].label == "send-email"
        _, bound = session.execute.await_args.args
        assert bound["environment_id"] == "env_789"

    @pytest.mark.asyncio
    async def test_empty_result_is_empty_list(self) -> None:
        service = MetricsService(QueryClient(mock_session()))
        assert await service.get_task_run_metrics(_api_params(), *SCOPE) == []

    @pytest.mark.asyncio
    async def test_failure_raises_metrics_query_error(self) -> None:
        service = MetricsService(QueryClient(_failing_session()))

        with pytest.raises(MetricsQueryError, match="Failed to fetch metrics"):
            await service.get_task_run_metrics(_api_params(), *SCOPE, "cost")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("method", "expected_sql"),
        [
            ("get_task_run_count", "count(*) AS value"),
            ("get_task_run_duration", "avg(usage_duration_ms) AS value"),
            ("get_task_run_cost", "sum(cost_in_cents) AS value"),
            ("get_task_run_status", "CAST(status AS TEXT) AS label"),
        ],
    )
    async def test_wrappers_select_metric_type(
        self, method: str, expected_sql: str
    ) -> None:
        session = mock_session()
        service = MetricsService(QueryClient(session))

        await getattr(service, method)(_api_params(), *SCOPE)

        sql, _ = session.execute.await_args.args
        assert expected_sql in str(sql)


class TestGetDynamicMetrics:
    @pytest.mark.asyncio
    async def test_runs_rollup_query(self) -> None:
        session = mock_session(rows=[make_metric_row(value=12.5)])
        service = MetricsService(QueryClient(session))
        params = _api_params(rollup={"type": "max", "column": "usage_duration_ms"})

        points = await service.get_dynamic_metrics(params, *SCOPE)

        assert [p.value for p in points] == [12.5]
        sql, _ = session.execute.await_args.args
        assert "max(usage_duration_ms) AS value" in str(sql)

    @pytest.mark.asyncio
    async def test_missing_rollup_raises(self) -> None:
        service = MetricsService(QueryClient(mock_session()))

        with pytest.raises(MetricTypeError, match="rollup"):
            await service.get_dynamic_metrics(_api_params(), *SCOPE)

    @pytest.mark.asyncio
    async def test_failure_raises_metrics_query_error(self) -> None:
        service = MetricsService(QueryClient(_failing_session()))
        params = _api_params(rollup={"type": "count", "column": "*"})

        with pytest.raises(MetricsQueryError, match="Failed to fetch dynamic metrics"):
            await service.get_dynamic_metrics(params, *SCOPE)
