"""Router registry and setup."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from flag_service.core.settings import get_app_settings
from flag_service.features.featureflags.router import router as featureflags_router
from flag_service.features.flagschedules.router import router as flagschedules_router
from flag_service.features.health.router import router as health_router
from flag_service.features.metrics.router import router as metrics_router

if TYPE_CHECKING:
    from fastapi import FastAPI

    from flag_service.core.settings import AppSettings

logger = logging.getLogger(__name__)


def setup_routers(app: FastAPI, app_settings: AppSettings | None = None) -> None:
    """Register all feature routers with the application."""
    app_settings = app_settings or get_app_settings()
    api_prefix = app_settings.api_prefix

    # No prefix: scraped at /metrics
    app.include_router(metrics_router)
    app.include_router(health_router, prefix=api_prefix)
    app.include_router(featureflags_router, prefix=api_prefix)
    app.include_router(flagschedules_router, prefix=api_prefix)

    logger.info("Routers registered", extra={"api_prefix": api_prefix})
