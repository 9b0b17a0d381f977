"""Flag schedule wiring for FastAPI and the Taskiq worker."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002

from flag_service.core.dependencies import get_db_session
from flag_service.core.settings import get_redis_settings, get_scheduling_settings
from flag_service.features.featureflags.cache import get_flag_cache
from flag_service.features.featureflags.dependencies import get_cascade_engine
from flag_service.infra.cache import get_cache_instance
from flag_service.infra.database import AsyncSessionLocal
from flag_service.infra.ratelimit import RateLimiter
from flag_service.infra.tasks.scheduler import scheduler

from .dispatch import APSchedulerDispatchGateway, DispatchGateway
from .executor import FlagScheduleExecutor
from .lifecycle import ScheduleLifecycleManager
from .service import FlagScheduleService
from .worker import ExecutionWorker


@lru_cache(maxsize=1)
def get_dispatch_gateway() -> DispatchGateway:
    return APSchedulerDispatchGateway(scheduler)


def get_lifecycle_manager() -> ScheduleLifecycleManager:
    return ScheduleLifecycleManager(get_dispatch_gateway())


async def get_flag_schedule_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> FlagScheduleService:
    return FlagScheduleService(session, lifecycle=get_lifecycle_manager())


def _build_rate_limiter() -> RateLimiter | None:
    cache = get_cache_instance()
    if cache is None:
        return None
    settings = get_scheduling_settings()
    return RateLimiter(
        cache.client,
        key_prefix=get_redis_settings().get_prefixed_key("ratelimit"),
        default_limit=settings.rate_limit_max_jobs,
        default_window=settings.rate_limit_window_seconds,
    )


@lru_cache(maxsize=1)
def get_execution_worker() -> ExecutionWorker:
    """Process-wide worker so every task shares one concurrency limit.

    Built on first use, after the worker startup hook has connected Redis.
    """
    cache = get_flag_cache()
    return ExecutionWorker(
        AsyncSessionLocal,
        executor=FlagScheduleExecutor(AsyncSessionLocal, cache=cache),
        cascade=get_cascade_engine(),
        rate_limiter=_build_rate_limiter(),
    )


FlagScheduleServiceDep = Annotated[FlagScheduleService, Depends(get_flag_schedule_service)]

__all__ = [
    "FlagScheduleServiceDep",
    "get_dispatch_gateway",
    "get_execution_worker",
    "get_flag_schedule_service",
    "get_lifecycle_manager",
]
