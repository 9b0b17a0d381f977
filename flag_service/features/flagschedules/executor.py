"""Execution routine: applies one schedule (or one rollout step) to its flag.

The claim and the flag mutation share one transaction, so a schedule's
``executed_at`` (or a step's) is stamped if and only if the flag changed.
Claims are conditional UPDATEs; losing one means another delivery of the
same message already applied it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
import logging
from typing import TYPE_CHECKING

from flag_service.core.exceptions import AppException, ExecutionError, FlagNotFoundError
from flag_service.core.settings import get_scheduling_settings
from flag_service.features.featureflags.cache import invalidate_flag_caches
from flag_service.features.featureflags.models import FeatureFlag, FlagStatus

from .models import FlagSchedule, ScheduleType
from .repository import FlagScheduleRepository, get_flag_schedule_repository
from .schemas import SkipReason, steps_from_json, steps_to_json

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from flag_service.core.settings import SchedulingSettings
    from flag_service.features.featureflags.cache import FlagCache

    from .schemas import RolloutStep

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApplyResult:
    """What the execution routine did.

    ``skip_reason`` is set when the claim was lost or the step has gone;
    the flag is untouched in that case.
    """

    flag: FeatureFlag | None
    previous_status: str | None = None
    skip_reason: SkipReason | None = None

    @property
    def applied(self) -> bool:
        return self.skip_reason is None

    @property
    def status_changed(self) -> bool:
        return self.applied and self.flag is not None and self.flag.status != self.previous_status


class FlagScheduleExecutor:
    """Applies schedules to flags.

    Example:
        executor = FlagScheduleExecutor(AsyncSessionLocal, cache=flag_cache)
        result = await executor.apply(schedule)
        if result.status_changed:
            await cascade.cascade(result.flag, result.flag.status)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        cache: FlagCache,
        repository: FlagScheduleRepository | None = None,
        settings: SchedulingSettings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache
        self._repository = repository or get_flag_schedule_repository()
        self._settings = settings or get_scheduling_settings()

    async def apply(self, schedule: FlagSchedule, step: RolloutStep | None = None) -> ApplyResult:
        """Claim the schedule or step and mutate its flag in one transaction.

        Args:
            schedule: The schedule being executed.
            step: For rollout schedules, the step that is firing.

        Raises:
            FlagNotFoundError: If the flag is missing or archived.
            ExecutionError: For any other failure.
        """
        now = datetime.now(UTC)
        try:
            async with self._session_factory() as session, session.begin():
                if schedule.schedule_type.is_batch:
                    if step is None:
                        msg = "A rollout schedule is applied one step at a time"
                        raise ExecutionError(msg, schedule_id=schedule.id)
                    outcome = await self._claim_step(session, schedule, step, now)
                    if isinstance(outcome, SkipReason):
                        return ApplyResult(flag=None, skip_reason=outcome)
                    value = outcome.value
                elif not await self._repository.claim_single_shot(session, schedule.id, now):
                    return ApplyResult(flag=None, skip_reason=SkipReason.ALREADY_EXECUTED)
                else:
                    value = None

                flag = await session.get(FeatureFlag, schedule.flag_id, with_for_update=True)
                if flag is None or flag.is_deleted:
                    raise FlagNotFoundError(schedule.flag_id)

                previous_status = flag.status
                self._mutate(flag, schedule.schedule_type, value)
        except AppException:
            raise
        except Exception as e:
            logger.exception(
                "Flag schedule execution failed",
                extra={"schedule_id": str(schedule.id), "flag_id": str(schedule.flag_id)},
            )
            msg = f"Failed to apply schedule {schedule.id}: {e}"
            raise ExecutionError(msg, schedule_id=schedule.id) from e

        await invalidate_flag_caches(self._cache, flag.id, flag.scope, flag.key)
        logger.info(
            "Flag schedule applied",
            extra={
                "schedule_id": str(schedule.id),
                "flag_id": str(flag.id),
                "type": schedule.type,
                "status": flag.status,
                "rollout_percentage": flag.rollout_percentage,
            },
        )
        return ApplyResult(flag=flag, previous_status=previous_status)

    async def _claim_step(
        self,
        session: AsyncSession,
        schedule: FlagSchedule,
        step: RolloutStep,
        now: datetime,
    ) -> RolloutStep | SkipReason:
        """Stamp the firing step's ``executed_at`` with a version check.

        Sibling steps of the same schedule may be stamped concurrently, so a
        lost version race is retried against a fresh read of the row.
        """
        for _ in range(self._settings.step_claim_attempts):
            row = await session.get(FlagSchedule, schedule.id, populate_existing=True)
            if row is None or not row.is_enabled:
                return SkipReason.DISABLED

            steps = steps_from_json(row.rollout_steps)
            current = next((s for s in steps if s.scheduled_at == step.scheduled_at), None)
            if current is None:
                return SkipReason.STEP_NOT_FOUND
            if current.executed_at is not None:
                return SkipReason.STEP_ALREADY_EXECUTED

            current.executed_at = now
            if await self._repository.claim_step(session, row.id, row.version, steps_to_json(steps) or []):
                return current

            logger.debug(
                "Rollout step claim raced, retrying",
                extra={"schedule_id": str(schedule.id), "version": row.version},
            )

        msg = f"Could not claim rollout step {step.scheduled_at.isoformat()} after retries"
        raise ExecutionError(msg, schedule_id=schedule.id)

    @staticmethod
    def _mutate(flag: FeatureFlag, schedule_type: ScheduleType, value: float | str | None) -> None:
        match schedule_type:
            case ScheduleType.ENABLE:
                flag.status = FlagStatus.ACTIVE.value
            case ScheduleType.DISABLE:
                flag.status = FlagStatus.INACTIVE.value
            case ScheduleType.UPDATE_ROLLOUT:
                if isinstance(value, str) or value is None:
                    msg = f"Rollout step value {value!r} is not a percentage"
                    raise ValueError(msg)
                flag.rollout_percentage = max(0, min(100, round(value)))


__all__ = ["ApplyResult", "FlagScheduleExecutor"]
