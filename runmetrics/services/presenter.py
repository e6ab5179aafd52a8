"""
Presenter shaping metric query results for the dashboard.

Runs every metric named in a MetricsQuery for one environment and returns the
JSON-ready payload ``{"metrics": [MetricResult, ...]}``. With a rollup, each
name is a label for the same dynamic query; otherwise each name selects a
predefined metric type.

CHANGELOG:
- 2026-10-19: Query a rollup once and label it under every name (STORY-112)
- 2026-10-09: Initial creation (STORY-106)

TODO:
- None
"""

import logging
from typing import Any

from runmetrics.services.metrics_service import (
    MetricsQuery,
    MetricsService,
    to_metric_result,
)

logger = logging.getLogger(__name__)


class MetricPresenter:
    """Builds the metrics payload for one environment."""

    def __init__(self, service: MetricsService) -> None:
        self.service = service

    async def call(
        self,
        *,
        organization_id: str,
        project_id: str,
        environment_id: str,
        query: MetricsQuery,
    ) -> dict[str, Any]:
        """Execute the requested metrics in order.

        Raises:
            MetricsQueryError: If any metric query fails.
        """
        if query.rollup is not None:
            # Every name labels the same rollup, so it is queried once.
            rows = await self.service.get_dynamic_metrics(
                query, organization_id, project_id, environment_id
            )
            results = [to_metric_result(name, rows) for name in query.metrics]
        else:
            results = []
            for name in query.metrics:
                rows = await self.service.get_task_run_metrics(
                    query, organization_id, project_id, environment_id, name
                )
                results.append(to_metric_result(name, rows))

        logger.info(
            "Presented %d metric(s) for environment %s",
            len(results),
            environment_id,
        )
        return {"metrics": [result.model_dump(mode="json") for result in results]}
