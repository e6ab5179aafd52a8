"""
GET /resources/environments/{environment_id}/metrics endpoint.

Returns time-bucketed task-run metrics for one runtime environment. The
caller must be a member of the environment's organization. Query parameters
are parsed into a MetricsQuery; malformed parameters yield 400 and any
failure while running the metric queries yields 500 with the error message.

Query parameters:
    metrics: Metric name(s); repeat the parameter or separate with commas.
    start_time / end_time: ISO 8601 datetimes or Unix timestamps.
    granularity: Bucket width, e.g. 30s, 5m, 1h, 1d.
    task_identifier / status / queue: Optional exact-match filters.
    group_by: Optional column to label points by.
    rollup_type / rollup_column: Optional dynamic aggregation.

CHANGELOG:
- 2026-10-10: Initial creation (STORY-107)

TODO:
- None
"""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from runmetrics.api.deps import get_db, get_metric_presenter, get_user_id
from runmetrics.errors import try_catch
from runmetrics.services.environments import find_member_environment
from runmetrics.services.metrics import MetricResult
from runmetrics.services.metrics_service import MetricsQuery
from runmetrics.services.presenter import MetricPresenter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/resources/environments", tags=["metrics"])

FILTER_PARAMS = ("task_identifier", "status", "queue")


class MetricsResponse(BaseModel):
    """Response model for the metrics endpoint."""

    metrics: list[MetricResult]


def parse_metrics_query(request: Request) -> MetricsQuery:
    """Build a MetricsQuery from the request's query string.

    Raises:
        ValidationError: If required parameters are missing or malformed.
    """
    qp = request.query_params
    raw: dict[str, Any] = {
        "metrics": qp.getlist("metrics"),
        "start_time": qp.get("start_time"),
        "end_time": qp.get("end_time"),
        "granularity": qp.get("granularity"),
        "group_by": qp.get("group_by"),
    }

    filters = {key: qp[key] for key in FILTER_PARAMS if qp.get(key)}
    if filters:
        raw["filters"] = filters

    rollup_type = qp.get("rollup_type")
    rollup_column = qp.get("rollup_column")
    if rollup_type is not None or rollup_column is not None:
        raw["rollup"] = {"type": rollup_type, "column": rollup_column}

    return MetricsQuery.model_validate(
        {key: value for key, value in raw.items() if value is not None}
    )


@router.get("/{environment_id}/metrics", response_model=MetricsResponse)
async def get_environment_metrics(
    request: Request,
    environment_id: str,
    user_id: Annotated[str, Depends(get_user_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
    presenter: Annotated[MetricPresenter, Depends(get_metric_presenter)],
) -> Any:
    """Return the requested metrics for an environment.

    Args:
        request: The incoming FastAPI request.
        environment_id: Environment to query (path parameter).
        user_id: Authenticated user from the bearer token.
        db: Async database session.
        presenter: Metric presenter bound to the same session.

    Returns:
        MetricsResponse: One MetricResult per requested metric.

    Raises:
        HTTPException: 404 if the environment does not exist or the user may
            not access it.
        HTTPException: 500 if looking up the environment or running the
            metric queries fails.
    """
    error, environment = await try_catch(
        find_member_environment(db, environment_id, user_id)
    )
    if error:
        logger.error(
            "Environment lookup failed for %s", environment_id, exc_info=error
        )
        raise HTTPException(status_code=500, detail=str(error))

    if environment is None:
        raise HTTPException(
            status_code=404,
            detail="This environment does not exist or you do not have "
            "permission to access it",
        )

    try:
        query = parse_metrics_query(request)
    except ValidationError as exc:
        errors = exc.errors(
            include_url=False, include_context=False, include_input=False
        )
        return JSONResponse(status_code=400, content={"detail": errors})

    error, result = await try_catch(
        presenter.call(
            organization_id=environment.organization_id,
            project_id=environment.project_id,
            environment_id=environment_id,
            query=query,
        )
    )
    if error:
        logger.error(
            "Metrics query failed for environment %s: %s", environment_id, error
        )
        raise HTTPException(status_code=500, detail=str(error))

    return result
