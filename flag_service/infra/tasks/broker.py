"""Taskiq broker for flag schedule execution.

APScheduler decides WHEN a dispatched schedule message fires; Taskiq over
RabbitMQ decides HOW it runs, on whichever worker replica takes it.

    APScheduler DateTrigger -> execute_flag_schedule.kiq() -> RabbitMQ -> worker

Run the worker:
    taskiq worker flag_service.infra.tasks.broker:broker

When RabbitMQ is not configured ``broker`` is ``None`` and dispatched
messages run in-process instead (see ``flagschedules.tasks``).
"""

from __future__ import annotations

import logging

from taskiq import TaskiqEvents, TaskiqState
from taskiq.middlewares import SimpleRetryMiddleware
from taskiq_aio_pika import AioPikaBroker

from flag_service.core.settings import get_rabbit_settings, get_scheduling_settings
from flag_service.infra.logging.config import setup_logging
from flag_service.infra.tasks.middleware import MetricsMiddleware, TracingMiddleware

logger = logging.getLogger(__name__)

rabbit_settings = get_rabbit_settings()
scheduling_settings = get_scheduling_settings()

setup_logging()

TASK_QUEUE = "flag-schedule-executions"

broker: AioPikaBroker | None = None

if rabbit_settings.is_configured:
    # Retry must wrap everything else so metrics see each attempt
    broker = AioPikaBroker(
        url=rabbit_settings.get_url(),
        queue_name=rabbit_settings.get_prefixed_queue(TASK_QUEUE),
        declare_exchange=True,
        declare_queues=True,
    ).with_middlewares(
        SimpleRetryMiddleware(default_retry_count=scheduling_settings.task_retry_count),
        MetricsMiddleware(),
        TracingMiddleware(),
    )

    @broker.on_event(TaskiqEvents.WORKER_STARTUP)
    async def _worker_startup(state: TaskiqState) -> None:
        """Bring up the worker-side dependencies of the execution worker."""
        from flag_service.infra.cache import start_cache
        from flag_service.infra.database import init_database

        await init_database()
        state.cache = await start_cache()
        logger.info("Taskiq worker dependencies started")

    @broker.on_event(TaskiqEvents.WORKER_SHUTDOWN)
    async def _worker_shutdown(state: TaskiqState) -> None:
        from flag_service.infra.cache import stop_cache
        from flag_service.infra.database import close_database

        await stop_cache()
        await close_database()
        logger.info("Taskiq worker dependencies stopped")

    logger.info(
        "Taskiq broker configured",
        extra={
            "queue": rabbit_settings.get_prefixed_queue(TASK_QUEUE),
            "retry_count": scheduling_settings.task_retry_count,
            "middlewares": ["SimpleRetryMiddleware", "MetricsMiddleware", "TracingMiddleware"],
        },
    )
else:
    logger.warning("RabbitMQ not configured - schedule executions will run in-process")


async def start_taskiq() -> None:
    """Start the broker for enqueuing from the API process.

    Raises:
        ConnectionError: If unable to connect to RabbitMQ.
    """
    if broker is None:
        logger.warning("Taskiq broker not configured, skipping startup")
        return

    logger.info("Starting Taskiq broker")
    try:
        await broker.startup()
    except Exception as e:
        logger.exception("Failed to start Taskiq broker", extra={"error": str(e)})
        raise
    logger.info("Taskiq broker started successfully")


async def stop_taskiq() -> None:
    """Stop the broker, closing RabbitMQ connections."""
    if broker is None:
        return

    logger.info("Stopping Taskiq broker")
    try:
        await broker.shutdown()
    except Exception as e:
        logger.exception("Error stopping Taskiq broker", extra={"error": str(e)})
        return
    logger.info("Taskiq broker stopped successfully")


# Register task modules with the broker; the worker imports only this module
if broker is not None:
    import flag_service.features.flagschedules.tasks  # noqa: F401
