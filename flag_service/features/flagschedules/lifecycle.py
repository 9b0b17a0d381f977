"""Schedule lifecycle manager: validate, dispatch, cancel.

Batch schedules dispatch one message per rollout step, all at once. The
batch is all-or-nothing: if any step fails to dispatch, every step that
did succeed is cancelled before the error is raised.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import TYPE_CHECKING
from uuid import UUID

from flag_service.core.exceptions import DispatchError
from flag_service.infra.metrics.prometheus import (
    flag_schedule_compensations_total,
    flag_schedule_dispatch_total,
)

from .models import ScheduleType
from .schemas import DispatchMessage, RolloutStep
from .validation import validate_schedule

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .dispatch import DispatchGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduleDefinition:
    """What the lifecycle manager needs to dispatch a schedule."""

    id: UUID
    flag_id: UUID
    type: ScheduleType
    is_enabled: bool
    scheduled_at: datetime | None = None
    rollout_steps: tuple[RolloutStep, ...] | None = None


class ScheduleLifecycleManager:
    """Turns schedule definitions into dispatched messages.

    Example:
        manager = ScheduleLifecycleManager(gateway)
        message_ids = await manager.create(definition)
        message_ids = await manager.update(new_definition, message_ids)
        await manager.delete(message_ids)
    """

    def __init__(self, gateway: DispatchGateway) -> None:
        self._gateway = gateway

    async def create(self, schedule: ScheduleDefinition, *, now: datetime | None = None) -> list[str]:
        """Validate and dispatch a schedule.

        Returns:
            Message ids, one per single-shot schedule or one per rollout step.

        Raises:
            ScheduleValidationError: If the definition is invalid. Nothing is dispatched.
            DispatchError: If any dispatch fails. Nothing remains dispatched.
        """
        validate_schedule(
            schedule.type,
            schedule.is_enabled,
            schedule.scheduled_at,
            schedule.rollout_steps,
            now,
        )

        if schedule.type.is_batch:
            return await self._dispatch_batch(schedule)

        message = DispatchMessage(
            schedule_id=schedule.id,
            type=schedule.type,
            flag_id=schedule.flag_id,
        )
        try:
            message_id = await self._gateway.schedule(message, schedule.scheduled_at)  # type: ignore[arg-type]
        except DispatchError:
            flag_schedule_dispatch_total.labels(operation="schedule", outcome="error").inc()
            raise
        flag_schedule_dispatch_total.labels(operation="schedule", outcome="success").inc()

        logger.info(
            "Flag schedule dispatched",
            extra={
                "schedule_id": str(schedule.id),
                "flag_id": str(schedule.flag_id),
                "type": str(schedule.type),
                "message_id": message_id,
            },
        )
        return [message_id]

    async def update(
        self,
        schedule: ScheduleDefinition,
        old_message_ids: Sequence[str],
        *,
        now: datetime | None = None,
    ) -> list[str]:
        """Cancel the previous messages, then dispatch the new definition.

        The new definition is validated first so an invalid update leaves
        the existing messages in place. Cancel failures are only logged: a
        stale message that still fires is skipped by the worker.
        """
        validate_schedule(
            schedule.type,
            schedule.is_enabled,
            schedule.scheduled_at,
            schedule.rollout_steps,
            now,
        )
        await self._cancel_all(old_message_ids)
        return await self.create(schedule, now=now)

    async def delete(self, message_ids: Sequence[str]) -> None:
        """Cancel every listed message."""
        await self._cancel_all(message_ids)
        logger.info("Flag schedule messages cancelled", extra={"count": len(message_ids)})

    async def _dispatch_batch(self, schedule: ScheduleDefinition) -> list[str]:
        steps = schedule.rollout_steps or ()
        messages = [
            DispatchMessage(
                schedule_id=schedule.id,
                type=schedule.type,
                flag_id=schedule.flag_id,
                step_scheduled_at=step.scheduled_at,
                step_value=float(step.value),
            )
            for step in steps
        ]
        results = await asyncio.gather(
            *(
                self._gateway.schedule(message, step.scheduled_at)
                for message, step in zip(messages, steps, strict=True)
            ),
            return_exceptions=True,
        )

        succeeded = [r for r in results if isinstance(r, str)]
        failures = [r for r in results if isinstance(r, BaseException)]
        flag_schedule_dispatch_total.labels(operation="schedule", outcome="success").inc(len(succeeded))

        if not failures:
            logger.info(
                "Rollout schedule dispatched",
                extra={
                    "schedule_id": str(schedule.id),
                    "flag_id": str(schedule.flag_id),
                    "steps": len(succeeded),
                },
            )
            return succeeded

        flag_schedule_dispatch_total.labels(operation="schedule", outcome="error").inc(len(failures))
        logger.error(
            "Rollout schedule dispatch failed, cancelling dispatched steps",
            extra={
                "schedule_id": str(schedule.id),
                "failed": len(failures),
                "total": len(results),
                "errors": [str(f) for f in failures],
            },
        )
        await self._cancel_all(succeeded)
        flag_schedule_compensations_total.inc()

        msg = f"Failed to dispatch {len(failures)} of {len(results)} rollout steps"
        raise DispatchError(
            msg,
            failed=len(failures),
            total=len(results),
            extra={"schedule_id": str(schedule.id)},
        ) from failures[0]

    async def _cancel_all(self, message_ids: Sequence[str]) -> None:
        if not message_ids:
            return
        results = await asyncio.gather(
            *(self._gateway.cancel(message_id) for message_id in message_ids),
            return_exceptions=True,
        )
        for message_id, result in zip(message_ids, results, strict=True):
            if isinstance(result, BaseException):
                flag_schedule_dispatch_total.labels(operation="cancel", outcome="error").inc()
                logger.warning(
                    "Failed to cancel dispatched message",
                    extra={"message_id": message_id, "error": str(result)},
                )
            else:
                flag_schedule_dispatch_total.labels(operation="cancel", outcome="success").inc()


__all__ = ["ScheduleDefinition", "ScheduleLifecycleManager"]
