"""Taskiq task executing dispatched flag schedule messages.

APScheduler calls ``enqueue_flag_schedule_execution`` when a message is
due. With RabbitMQ configured it enqueues ``execute_flag_schedule`` for
the worker fleet; otherwise the message runs in the current process.

Retries come from the broker's SimpleRetryMiddleware: the worker never
retries internally, so a failed execution is re-delivered as a whole and
the idempotency checks make that safe.
"""

from __future__ import annotations

import logging
from typing import Any

from flag_service.infra.tasks.broker import broker

from .schemas import DispatchMessage

logger = logging.getLogger(__name__)


async def run_flag_schedule(payload: dict[str, Any]) -> dict[str, Any]:
    """Handle one dispatched message with the process-wide execution worker."""
    from .dependencies import get_execution_worker

    message = DispatchMessage.model_validate(payload)
    result = await get_execution_worker().handle(message)
    return result.model_dump(mode="json")


async def enqueue_flag_schedule_execution(payload: dict[str, Any]) -> None:
    """APScheduler job function for a due message."""
    if broker is None:
        logger.debug("Running flag schedule in-process", extra={"payload": payload})
        await run_flag_schedule(payload)
        return

    task = await execute_flag_schedule.kiq(payload)
    logger.info(
        "Flag schedule execution enqueued",
        extra={"task_id": task.task_id, "schedule_id": payload.get("schedule_id")},
    )


if broker is not None:

    @broker.task(task_name="flag_schedules.execute", retry_on_error=True)
    async def execute_flag_schedule(payload: dict[str, Any]) -> dict[str, Any]:
        """Execute a dispatched flag schedule message.

        Returns:
            The ExecutionResult as JSON, e.g.
            {"schedule_id": "...", "status": "skipped", "reason": "already_executed", ...}
        """
        return await run_flag_schedule(payload)
