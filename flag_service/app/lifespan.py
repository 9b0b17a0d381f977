"""Application lifespan management.

Startup order:
1. Core (logging, application info metric)
2. Database (PostgreSQL, or the SQLite fallback)
3. Cache (Redis) - optional, degraded mode when unavailable
4. Taskiq broker - optional, executions run in-process without it
5. APScheduler - resumes pending dispatch jobs

Shutdown runs in reverse.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import TYPE_CHECKING

from flag_service.core.settings import (
    get_app_settings,
    get_db_settings,
    get_logging_settings,
    get_redis_settings,
)
from flag_service.infra.logging.config import setup_logging
from flag_service.infra.metrics.prometheus import application_info

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

logger = logging.getLogger(__name__)


async def _startup_core() -> None:
    app = get_app_settings()
    setup_logging(log_settings=get_logging_settings(), force=True)
    logger.info(
        "Application starting",
        extra={"service": app.service_name, "environment": app.environment},
    )
    application_info.labels(
        version=app.version,
        service=app.service_name,
        environment=app.environment,
    ).set(1)


async def _startup_database() -> None:
    from flag_service.infra.database import init_database

    await init_database()
    logger.info(
        "Database initialized",
        extra={"postgres": get_db_settings().is_configured},
    )


async def _startup_cache() -> None:
    """Start Redis if configured. Without it cache invalidation is a no-op."""
    from flag_service.infra.cache import start_cache

    redis = get_redis_settings()
    if not redis.is_configured:
        logger.info("Redis not configured, flag cache invalidation disabled")
        return

    cache = await start_cache()
    if cache is not None:
        logger.info("Redis cache initialized")


async def _startup_tasks() -> None:
    from flag_service.infra.tasks.broker import start_taskiq
    from flag_service.infra.tasks.scheduler import start_scheduler

    await start_taskiq()
    await start_scheduler()


async def _shutdown_tasks() -> None:
    from flag_service.infra.tasks.broker import stop_taskiq
    from flag_service.infra.tasks.scheduler import stop_scheduler

    await stop_scheduler()
    await stop_taskiq()


async def _shutdown_cache() -> None:
    from flag_service.infra.cache import stop_cache

    await stop_cache()


async def _shutdown_database() -> None:
    from flag_service.infra.database import close_database

    await close_database()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start services in dependency order and stop them in reverse."""
    await _startup_core()
    await _startup_database()
    await _startup_cache()
    await _startup_tasks()
    logger.info("Application startup complete")

    try:
        yield
    finally:
        logger.info("Application shutting down")
        for step in (_shutdown_tasks, _shutdown_cache, _shutdown_database):
            try:
                await step()
            except Exception:
                logger.exception("Shutdown step failed", extra={"step": step.__name__})
        logger.info("Application shutdown complete")
