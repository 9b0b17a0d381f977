"""Dispatch gateway: hands schedule messages to a delayed-delivery service.

The gateway is a thin, fail-fast wrapper. It does not queue or retry;
redelivery after a failed execution is the task queue's job.

Adapters:
    APSchedulerDispatchGateway: one-shot DateTrigger job per message on
        the shared scheduler. The job enqueues the Taskiq task when it fires.
    InMemoryDispatchGateway: records messages in the instance and lets
        tests drain the due ones deterministically.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Protocol
from uuid import uuid4

from apscheduler.jobstores.base import JobLookupError
from apscheduler.triggers.date import DateTrigger

from flag_service.core.exceptions import DispatchError

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from apscheduler.schedulers.base import BaseScheduler

    from .schemas import DispatchMessage

logger = logging.getLogger(__name__)

ENQUEUE_FUNC_REF = "flag_service.features.flagschedules.tasks:enqueue_flag_schedule_execution"


class DispatchGateway(Protocol):
    """Delayed delivery of schedule messages."""

    async def schedule(self, message: DispatchMessage, not_before: datetime) -> str:
        """Deliver ``message`` at or after ``not_before``; return its message id.

        Raises:
            DispatchError: If the delivery service rejects or fails the call.
        """
        ...

    async def cancel(self, message_id: str) -> None:
        """Cancel a pending message. Best-effort; never raises."""
        ...


def _message_id(message: DispatchMessage) -> str:
    return f"flag-schedule-{message.schedule_id}-{uuid4().hex[:12]}"


class APSchedulerDispatchGateway:
    """Dispatch through APScheduler one-shot jobs.

    The job function is referenced by import path so jobs can be stored in
    the SQLAlchemy job store and survive a restart. Job store calls are
    blocking, so they run in a worker thread.
    """

    def __init__(self, scheduler: BaseScheduler) -> None:
        self._scheduler = scheduler

    async def schedule(self, message: DispatchMessage, not_before: datetime) -> str:
        message_id = _message_id(message)
        try:
            await asyncio.to_thread(
                self._scheduler.add_job,
                ENQUEUE_FUNC_REF,
                trigger=DateTrigger(run_date=not_before),
                kwargs={"payload": message.model_dump(mode="json")},
                id=message_id,
                name=f"flag-schedule:{message.type}",
                replace_existing=False,
            )
        except Exception as e:
            logger.exception(
                "Failed to dispatch flag schedule message",
                extra={"schedule_id": str(message.schedule_id), "not_before": not_before.isoformat()},
            )
            msg = f"Failed to dispatch message for schedule {message.schedule_id}: {e}"
            raise DispatchError(msg, extra={"schedule_id": str(message.schedule_id)}) from e

        logger.debug(
            "Flag schedule message dispatched",
            extra={
                "schedule_id": str(message.schedule_id),
                "message_id": message_id,
                "not_before": not_before.isoformat(),
            },
        )
        return message_id

    async def cancel(self, message_id: str) -> None:
        try:
            await asyncio.to_thread(self._scheduler.remove_job, message_id)
        except JobLookupError:
            # Already fired or cancelled
            logger.debug("Dispatch job not found on cancel", extra={"message_id": message_id})
        except Exception as e:
            logger.warning(
                "Failed to cancel dispatched message",
                extra={"message_id": message_id, "error": str(e)},
            )
        else:
            logger.debug("Dispatched message cancelled", extra={"message_id": message_id})


@dataclass(frozen=True)
class ScheduledMessage:
    message_id: str
    message: DispatchMessage
    not_before: datetime


class InMemoryDispatchGateway:
    """Dispatch gateway holding messages in the instance.

    Args:
        fail_on: Predicate; a matching message fails with ``DispatchError``.
        fail_calls: Zero-based indices of ``schedule`` calls that fail.
        fail_cancel: Make every ``cancel`` fail (the failure is logged).

    Example:
        gateway = InMemoryDispatchGateway(fail_on=lambda m: m.step_value == 75)
        ...
        for due in gateway.due(now):
            await worker.handle(due.message)
    """

    def __init__(
        self,
        *,
        fail_on: Callable[[DispatchMessage], bool] | None = None,
        fail_calls: set[int] | None = None,
        fail_cancel: bool = False,
    ) -> None:
        self.scheduled: dict[str, ScheduledMessage] = {}
        self.cancelled: list[str] = []
        self.calls = 0
        self._fail_on = fail_on
        self._fail_calls = fail_calls or set()
        self._fail_cancel = fail_cancel

    async def schedule(self, message: DispatchMessage, not_before: datetime) -> str:
        call = self.calls
        self.calls += 1
        # Yield so concurrent dispatches interleave as they would over a network
        await asyncio.sleep(0)
        if call in self._fail_calls or (self._fail_on is not None and self._fail_on(message)):
            msg = f"Dispatch rejected for schedule {message.schedule_id}"
            raise DispatchError(msg, extra={"schedule_id": str(message.schedule_id)})

        message_id = _message_id(message)
        self.scheduled[message_id] = ScheduledMessage(message_id, message, not_before)
        return message_id

    async def cancel(self, message_id: str) -> None:
        await asyncio.sleep(0)
        if self._fail_cancel:
            logger.warning("Failed to cancel dispatched message", extra={"message_id": message_id})
            return
        if self.scheduled.pop(message_id, None) is not None:
            self.cancelled.append(message_id)

    def due(self, now: datetime) -> list[ScheduledMessage]:
        """Remove and return messages whose time has come, earliest first."""
        ready = sorted(
            (item for item in self.scheduled.values() if item.not_before <= now),
            key=lambda item: item.not_before,
        )
        for item in ready:
            del self.scheduled[item.message_id]
        return ready

    def messages_for(self, schedule_id: object) -> list[ScheduledMessage]:
        return [item for item in self.scheduled.values() if item.message.schedule_id == schedule_id]


__all__ = [
    "ENQUEUE_FUNC_REF",
    "APSchedulerDispatchGateway",
    "DispatchGateway",
    "InMemoryDispatchGateway",
    "ScheduledMessage",
]
