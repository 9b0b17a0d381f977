"""Taskiq middleware for metrics, tracing and log context.

Order on the broker:
1. SimpleRetryMiddleware - re-enqueues failed executions (retry_on_error)
2. MetricsMiddleware - counts every attempt, retries included
3. TracingMiddleware - one OpenTelemetry span per attempt
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from taskiq import TaskiqMiddleware

from flag_service.infra.logging import clear_log_context, set_log_context
from flag_service.infra.metrics.prometheus import (
    taskiq_task_duration_seconds,
    taskiq_tasks_total,
)

if TYPE_CHECKING:
    from taskiq import TaskiqMessage, TaskiqResult

logger = logging.getLogger(__name__)


class MetricsMiddleware(TaskiqMiddleware):
    """Record Prometheus metrics for task executions.

    Metrics recorded:
    - taskiq_tasks_total: Counter with labels [task_name, status]
    - taskiq_task_duration_seconds: Histogram with labels [task_name]
    """

    def __init__(self) -> None:
        super().__init__()
        self._start_times: dict[str, float] = {}

    async def pre_execute(self, message: TaskiqMessage) -> TaskiqMessage:
        self._start_times[message.task_id] = time.perf_counter()
        return message

    async def post_execute(self, message: TaskiqMessage, result: TaskiqResult[Any]) -> None:
        task_name = message.task_name
        duration_seconds = None

        start_time = self._start_times.pop(message.task_id, None)
        if start_time is not None:
            duration_seconds = time.perf_counter() - start_time
            taskiq_task_duration_seconds.labels(task_name=task_name).observe(duration_seconds)

        status = "failure" if result.is_err else "success"
        taskiq_tasks_total.labels(task_name=task_name, status=status).inc()

        logger.debug(
            "Task metrics recorded",
            extra={
                "task_id": message.task_id,
                "task_name": task_name,
                "status": status,
                "duration_seconds": duration_seconds,
            },
        )


class TracingMiddleware(TaskiqMiddleware):
    """Wrap each task execution in an OpenTelemetry span.

    Also seeds the logging context with the task id so every record emitted
    while the task runs can be correlated.
    """

    def __init__(self) -> None:
        super().__init__()
        self._tracer = trace.get_tracer("taskiq.worker")
        self._spans: dict[str, Any] = {}

    async def pre_execute(self, message: TaskiqMessage) -> TaskiqMessage:
        span = self._tracer.start_span(
            name=f"task.{message.task_name}",
            attributes={"task.id": message.task_id, "task.name": message.task_name},
        )
        self._spans[message.task_id] = span
        set_log_context(task_id=message.task_id, task_name=message.task_name)
        return message

    async def post_execute(self, message: TaskiqMessage, result: TaskiqResult[Any]) -> None:
        span = self._spans.pop(message.task_id, None)
        clear_log_context()
        if span is None:
            logger.warning(
                "No span found for task in post_execute",
                extra={"task_id": message.task_id, "task_name": message.task_name},
            )
            return

        if result.is_err and isinstance(result.error, BaseException):
            span.record_exception(result.error)
            span.set_status(Status(StatusCode.ERROR, str(result.error)))
        else:
            span.set_status(Status(StatusCode.OK))
        span.end()
