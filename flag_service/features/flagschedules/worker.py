"""Execution worker: handles one dispatched schedule message.

Delivery is at-least-once, so the same message may arrive twice or on two
replicas at once. The checks below skip what is already done; the
executor's conditional claim settles any remaining race.

Per message:
    1. Load the schedule (missing -> ScheduleNotFoundError).
    2. Disarmed -> skip ``disabled``.
    3. Single-shot already executed -> skip ``already_executed``.
    4. Rollout step gone or already executed -> skip ``step_not_found`` or
       ``step_already_executed``. Messages left over from before an update
       -> skip ``superseded``.
    5. Apply through the executor.
    6. Status changed -> run the dependency cascade.
    7. Anything else propagates; the task queue owns retries.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
import logging
import time
from typing import TYPE_CHECKING, Protocol

from flag_service.core.exceptions import ScheduleNotFoundError
from flag_service.core.settings import get_scheduling_settings
from flag_service.features.featureflags.models import FlagStatus
from flag_service.infra.logging import remove_from_log_context, set_log_context
from flag_service.infra.metrics.prometheus import (
    flag_schedule_execution_duration_seconds,
    flag_schedule_executions_in_flight,
    flag_schedule_executions_total,
    flag_schedule_rate_limit_waits_total,
)

from .repository import FlagScheduleRepository, get_flag_schedule_repository
from .schemas import ExecutionResult, SkipReason, as_utc, steps_from_json

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from flag_service.core.settings import SchedulingSettings
    from flag_service.features.featureflags.cascade import DependencyCascadeEngine

    from .executor import FlagScheduleExecutor
    from .models import FlagSchedule
    from .schemas import DispatchMessage, RolloutStep

logger = logging.getLogger(__name__)

RATE_LIMIT_KEY = "flag-schedule-executions"


class JobRateLimiter(Protocol):
    async def check_limit(
        self,
        key: str,
        limit: int | None = None,
        window: int | None = None,
        cost: int = 1,
    ) -> tuple[bool, dict[str, int]]: ...


class ExecutionWorker:
    """Runs dispatched messages with bounded concurrency and a rate ceiling.

    At most ``max_concurrency`` messages are processed at once per worker,
    and at most ``rate_limit_max_jobs`` start per window across all
    replicas sharing the Redis limiter.

    Example:
        worker = ExecutionWorker(AsyncSessionLocal, executor=executor, cascade=cascade)
        result = await worker.handle(DispatchMessage.model_validate(payload))
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        executor: FlagScheduleExecutor,
        cascade: DependencyCascadeEngine,
        settings: SchedulingSettings | None = None,
        rate_limiter: JobRateLimiter | None = None,
        repository: FlagScheduleRepository | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._executor = executor
        self._clock = clock or (lambda: datetime.now(UTC))
        self._cascade = cascade
        self._settings = settings or get_scheduling_settings()
        self._rate_limiter = rate_limiter if self._settings.rate_limit_enabled else None
        self._repository = repository or get_flag_schedule_repository()
        self._semaphore = asyncio.Semaphore(self._settings.max_concurrency)

    async def handle(self, message: DispatchMessage) -> ExecutionResult:
        """Process one message.

        Raises:
            ScheduleNotFoundError: If the schedule no longer exists.
            FlagNotFoundError: If its flag no longer exists.
            ExecutionError: If applying the schedule fails.
            CascadeError: If the follow-up cascade fails.
        """
        async with self._semaphore:
            await self._wait_for_rate_slot()

            schedule_type = str(message.type)
            set_log_context(schedule_id=str(message.schedule_id), flag_id=str(message.flag_id))
            flag_schedule_executions_in_flight.inc()
            start = time.perf_counter()
            try:
                result = await self._process(message)
            except Exception as e:
                flag_schedule_executions_total.labels(
                    schedule_type=schedule_type, status="failed", reason=type(e).__name__
                ).inc()
                raise
            finally:
                flag_schedule_executions_in_flight.dec()
                flag_schedule_execution_duration_seconds.labels(schedule_type=schedule_type).observe(
                    time.perf_counter() - start
                )
                remove_from_log_context("schedule_id", "flag_id")

        flag_schedule_executions_total.labels(
            schedule_type=schedule_type,
            status=result.status,
            reason=str(result.reason) if result.reason else "",
        ).inc()
        return result

    async def _wait_for_rate_slot(self) -> None:
        if self._rate_limiter is None:
            return
        settings = self._settings
        while True:
            allowed, _ = await self._rate_limiter.check_limit(
                RATE_LIMIT_KEY,
                limit=settings.rate_limit_max_jobs,
                window=settings.rate_limit_window_seconds,
            )
            if allowed:
                return
            flag_schedule_rate_limit_waits_total.inc()
            await asyncio.sleep(settings.rate_limit_poll_interval)

    async def _process(self, message: DispatchMessage) -> ExecutionResult:
        async with self._session_factory() as session:
            schedule = await self._repository.get(session, message.schedule_id)
        if schedule is None:
            logger.error("Flag schedule not found", extra={"schedule_id": str(message.schedule_id)})
            raise ScheduleNotFoundError(message.schedule_id)

        checked = self._precheck(schedule, message)
        if isinstance(checked, SkipReason):
            return self._skipped(schedule, checked)

        applied = await self._executor.apply(schedule, checked)
        if not applied.applied or applied.flag is None:
            return self._skipped(schedule, applied.skip_reason or SkipReason.ALREADY_EXECUTED)

        flag = applied.flag
        cascaded = []
        if applied.status_changed and flag.status in (FlagStatus.ACTIVE, FlagStatus.INACTIVE):
            cascaded = await self._cascade.cascade(flag, flag.status)

        logger.info(
            "Flag schedule executed",
            extra={
                "schedule_id": str(schedule.id),
                "type": schedule.type,
                "flag_status": flag.status,
                "rollout_percentage": flag.rollout_percentage,
                "cascaded": len(cascaded),
            },
        )
        return ExecutionResult(
            schedule_id=schedule.id,
            status="executed",
            flag_status=flag.status,
            rollout_percentage=flag.rollout_percentage,
            cascaded=cascaded,
        )

    def _precheck(self, schedule: FlagSchedule, message: DispatchMessage) -> SkipReason | RolloutStep | None:
        """Steps 2-4: a skip reason, the firing rollout step, or ``None`` to proceed."""
        if not schedule.is_enabled:
            return SkipReason.DISABLED
        if str(message.type) != schedule.type:
            return SkipReason.SUPERSEDED

        if not schedule.schedule_type.is_batch:
            if schedule.executed_at is not None:
                return SkipReason.ALREADY_EXECUTED
            tolerance = timedelta(seconds=self._settings.early_fire_tolerance_seconds)
            fires_at = schedule.scheduled_at
            if fires_at is not None and self._clock() < as_utc(fires_at) - tolerance:
                return SkipReason.SUPERSEDED
            return None

        if message.step_scheduled_at is None:
            return SkipReason.STEP_NOT_FOUND
        step = next(
            (
                s
                for s in steps_from_json(schedule.rollout_steps)
                if s.scheduled_at == message.step_scheduled_at
            ),
            None,
        )
        if step is None:
            return SkipReason.STEP_NOT_FOUND
        if step.executed_at is not None:
            return SkipReason.STEP_ALREADY_EXECUTED
        return step

    @staticmethod
    def _skipped(schedule: FlagSchedule, reason: SkipReason) -> ExecutionResult:
        logger.info(
            "Flag schedule skipped",
            extra={"schedule_id": str(schedule.id), "type": schedule.type, "reason": str(reason)},
        )
        return ExecutionResult.skipped(schedule.id, reason)


__all__ = ["RATE_LIMIT_KEY", "ExecutionWorker", "JobRateLimiter"]
