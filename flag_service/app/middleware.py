"""HTTP middleware: request ids and request metrics."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING
import uuid

from starlette.middleware.base import BaseHTTPMiddleware

from flag_service.infra.logging import remove_from_log_context, set_log_context
from flag_service.infra.metrics.prometheus import http_request_duration_seconds, http_requests_total

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from fastapi import FastAPI, Request, Response

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach an ``X-Request-ID`` to every request, its logs and its response."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        set_log_context(request_id=request_id)
        try:
            response = await call_next(request)
        finally:
            remove_from_log_context("request_id")
        response.headers["X-Request-ID"] = request_id
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    """Count requests and time them, labelled by route template."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            # e.g. "/api/v1/feature-flags/{flag_id}" rather than the concrete path
            route = request.scope.get("route")
            endpoint = getattr(route, "path", request.url.path)
            http_requests_total.labels(
                method=request.method, endpoint=endpoint, status=str(status_code)
            ).inc()
            http_request_duration_seconds.labels(method=request.method, endpoint=endpoint).observe(
                time.perf_counter() - start
            )


def configure_middleware(app: FastAPI) -> None:
    # Last added runs first
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)
    logger.debug("Middleware configured", extra={"middleware": ["RequestID", "Metrics"]})
