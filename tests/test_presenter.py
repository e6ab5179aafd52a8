"""
Tests for MetricPresenter.

CHANGELOG:
- 2026-10-19: Cover single rollup execution for several names (STORY-112)
- 2026-10-09: Initial creation (STORY-106)

TODO:
- None
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from runmetrics.errors import MetricsQueryError
from runmetrics.services.metrics import MetricDataPoint
from runmetrics.services.metrics_service import MetricsQuery, MetricsService
from runmetrics.services.presenter import MetricPresenter

START = datetime(2026, 10, 1, tzinfo=UTC)
SCOPE = {
    "organization_id": "org_123",
    "project_id": "proj_456",
    "environment_id": "env_789",
}


def _service(points: list[MetricDataPoint] | None = None) -> AsyncMock:
    service = AsyncMock(spec=MetricsService)
    service.get_task_run_metrics.return_value = points or []
    service.get_dynamic_metrics.return_value = points or []
    return service


class TestMetricPresenter:
    @pytest.mark.asyncio
    async def test_predefined_metrics_in_request_order(self) -> None:
        service = _service()
        query = MetricsQuery(metrics="cost,count", start_time=START, granularity="1h")

        payload = await MetricPresenter(service).call(query=query, **SCOPE)

        assert [m["metric"] for m in payload["metrics"]] == ["cost", "count"]
        metric_types = [
            call.args[4] for call in service.get_task_run_metrics.await_args_list
        ]
        assert metric_types == ["cost", "count"]
        service.get_dynamic_metrics.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rollup_uses_dynamic_query(self) -> None:
        service = _service()
        query = MetricsQuery(
            metrics="avg_duration",
            start_time=START,
            granularity="15m",
            rollup={"type": "avg", "column": "usage_duration_ms"},
        )

        payload = await MetricPresenter(service).call(query=query, **SCOPE)

        assert payload["metrics"][0]["metric"] == "avg_duration"
        service.get_dynamic_metrics.assert_awaited_once_with(
            query, "org_123", "proj_456", "env_789"
        )
        service.get_task_run_metrics.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rollup_queried_once_for_several_names(self) -> None:
        point = MetricDataPoint(timestamp=START, value=7.0)
        service = _service([point])
        query = MetricsQuery(
            metrics="p_avg,dashboard_avg,avg_copy",
            start_time=START,
            granularity="1h",
            rollup={"type": "avg", "column": "usage_duration_ms"},
        )

        payload = await MetricPresenter(service).call(query=query, **SCOPE)

        service.get_dynamic_metrics.assert_awaited_once()
        assert [m["metric"] for m in payload["metrics"]] == [
            "p_avg",
            "dashboard_avg",
            "avg_copy",
        ]
        assert all(m["data"][0]["value"] == 7.0 for m in payload["metrics"])

    @pytest.mark.asyncio
    async def test_payload_is_json_ready(self) -> None:
        point = MetricDataPoint(timestamp=START, value=3.0, label="send-email")
        query = MetricsQuery(metrics="count", start_time=START, granularity="1h")

        payload = await MetricPresenter(_service([point])).call(query=query, **SCOPE)

        assert payload == {
            "metrics": [
                {
                    "metric": "count",
                    "data": [
                        {
                            "timestamp": "2026-10-01T00:00:00Z",
                            "value": 3.0,
                            "label": "send-email",
                        }
                    ],
                }
            ]
        }

    @pytest.mark.asyncio
    async def test_query_failure_propagates(self) -> None:
        service = _service()
        service.get_task_run_metrics.side_effect = MetricsQueryError("boom")
        query = MetricsQuery(metrics="count", start_time=START, granularity="1h")

        with pytest.raises(MetricsQueryError):
            await MetricPresenter(service).call(query=query, **SCOPE)
