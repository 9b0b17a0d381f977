"""Prometheus metrics endpoint.

Metrics exposed include:
    - http_requests_total / http_request_duration_seconds
    - flag_schedule_dispatch_total, flag_schedule_compensations_total
    - flag_schedule_executions_total, flag_schedule_execution_duration_seconds,
      flag_schedule_executions_in_flight, flag_schedule_rate_limit_waits_total
    - flag_cascade_updates_total, flag_cascade_failures_total
    - flag_cache_invalidations_total
    - taskiq_tasks_total, taskiq_task_duration_seconds
    - application_info
"""

from __future__ import annotations

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from flag_service.infra.metrics.prometheus import REGISTRY

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(
        content=generate_latest(REGISTRY),
        media_type=CONTENT_TYPE_LATEST,
        headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
    )
