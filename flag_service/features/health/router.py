"""Health check endpoints for Kubernetes liveness and readiness checks.

- /health/live: the process is up
- /health/ready: database reachable, Redis reachable when configured,
  and the dispatch scheduler running
"""

from __future__ import annotations

from datetime import UTC, datetime
import logging
from typing import Literal

from fastapi import APIRouter, Response, status
from pydantic import BaseModel, Field
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from flag_service.core.settings import get_app_settings
from flag_service.infra.cache import get_cache_instance
from flag_service.infra.database import AsyncSessionLocal
from flag_service.infra.tasks.scheduler import get_job_status, scheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])

CheckStatus = Literal["ok", "unavailable", "disabled"]


class LivenessResponse(BaseModel):
    status: Literal["alive"] = "alive"
    service: str
    version: str
    timestamp: datetime


class ReadinessResponse(BaseModel):
    status: Literal["ready", "not_ready"]
    checks: dict[str, CheckStatus] = Field(default_factory=dict)
    pending_dispatch_jobs: int = 0


async def _check_database() -> CheckStatus:
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Database readiness check failed", extra={"error": str(e)})
        return "unavailable"
    return "ok"


async def _check_cache() -> CheckStatus:
    cache = get_cache_instance()
    if cache is None:
        return "disabled"
    try:
        await cache.client.ping()
    except (RedisError, OSError) as e:
        logger.warning("Redis readiness check failed", extra={"error": str(e)})
        return "unavailable"
    return "ok"


@router.get("/live", response_model=LivenessResponse, summary="Liveness check")
async def live() -> LivenessResponse:
    settings = get_app_settings()
    return LivenessResponse(
        service=settings.service_name,
        version=settings.version,
        timestamp=datetime.now(UTC),
    )


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    summary="Readiness check",
    responses={503: {"model": ReadinessResponse}},
)
async def ready(response: Response) -> ReadinessResponse:
    checks: dict[str, CheckStatus] = {
        "database": await _check_database(),
        "cache": await _check_cache(),
        "scheduler": "ok" if scheduler.running else "unavailable",
    }
    is_ready = all(value != "unavailable" for value in checks.values())
    if not is_ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return ReadinessResponse(
        status="ready" if is_ready else "not_ready",
        checks=checks,
        pending_dispatch_jobs=len(get_job_status()) if scheduler.running else 0,
    )
