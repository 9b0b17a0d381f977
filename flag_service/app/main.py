"""FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from flag_service.app.exception_handlers import configure_exception_handlers
from flag_service.app.lifespan import lifespan
from flag_service.app.middleware import configure_middleware
from flag_service.app.router import setup_routers
from flag_service.core.settings import get_app_settings


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Run with:
        uvicorn flag_service.app.main:app
    """
    settings = get_app_settings()
    docs_url = settings.docs_url if settings.docs_enabled else None

    app = FastAPI(
        title=settings.title,
        description=settings.description,
        version=settings.version,
        debug=settings.debug,
        docs_url=docs_url,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.docs_enabled else None,
        lifespan=lifespan,
    )

    configure_exception_handlers(app)
    configure_middleware(app)
    setup_routers(app, settings)

    return app


app = create_app()
