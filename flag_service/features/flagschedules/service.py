"""Flag schedule service.

Persists schedules around the lifecycle manager. Messages are dispatched
before the row is written; if the write fails the messages are cancelled
again, so a schedule row and its messages exist together or not at all.
An update whose re-dispatch fails stores the schedule disarmed, with no
messages, because its previous messages are already cancelled.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from flag_service.core.database.base import generate_uuid7
from flag_service.core.exceptions import (
    DispatchError,
    FlagNotFoundError,
    NotFoundException,
    ScheduleNotFoundError,
    ScheduleValidationError,
)
from flag_service.features.featureflags.models import FlagType
from flag_service.features.featureflags.repository import (
    FeatureFlagRepository,
    get_feature_flag_repository,
)

from .lifecycle import ScheduleDefinition
from .models import FlagSchedule, ScheduleType
from .repository import FlagScheduleRepository, get_flag_schedule_repository
from .schemas import as_utc, steps_from_json, steps_to_json

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from flag_service.features.featureflags.models import FeatureFlag

    from .lifecycle import ScheduleLifecycleManager
    from .schemas import FlagScheduleCreate, FlagScheduleUpdate, RolloutStep

logger = logging.getLogger(__name__)


class FlagScheduleService:
    """Create, update, disable and read flag schedules.

    Example:
        service = FlagScheduleService(session, lifecycle=ScheduleLifecycleManager(gateway))
        schedule = await service.create(
            FlagScheduleCreate(flag_id=flag.id, type="enable", scheduled_at=tomorrow),
            created_by="user_1",
        )
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        lifecycle: ScheduleLifecycleManager,
        repository: FlagScheduleRepository | None = None,
        flag_repository: FeatureFlagRepository | None = None,
    ) -> None:
        self.session = session
        self._lifecycle = lifecycle
        self._repository = repository or get_flag_schedule_repository()
        self._flag_repository = flag_repository or get_feature_flag_repository()

    async def create(
        self,
        data: FlagScheduleCreate,
        *,
        created_by: str | None = None,
        now: datetime | None = None,
    ) -> FlagSchedule:
        """Validate, dispatch and store a new schedule.

        Raises:
            FlagNotFoundError: If the flag is missing or archived.
            ScheduleValidationError: If the definition is invalid.
            DispatchError: If dispatching fails.
        """
        flag = await self._get_flag(data.flag_id)
        self._check_flag_type(flag, data.type)

        steps = self._fresh_steps(data.rollout_steps)
        definition = ScheduleDefinition(
            id=generate_uuid7(),
            flag_id=flag.id,
            type=data.type,
            is_enabled=data.is_enabled,
            scheduled_at=data.scheduled_at,
            rollout_steps=steps,
        )
        message_ids = await self._lifecycle.create(definition, now=now)

        schedule = FlagSchedule(
            id=definition.id,
            flag_id=flag.id,
            type=str(data.type),
            is_enabled=data.is_enabled,
            scheduled_at=data.scheduled_at,
            rollout_steps=steps_to_json(list(steps)) if steps is not None else None,
            message_ids=message_ids,
            created_by=created_by,
        )
        try:
            schedule = await self._repository.create(self.session, schedule)
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            logger.exception(
                "Failed to store flag schedule, cancelling its messages",
                extra={"schedule_id": str(definition.id), "message_ids": message_ids},
            )
            await self._lifecycle.delete(message_ids)
            raise

        logger.info(
            "Flag schedule created",
            extra={
                "schedule_id": str(schedule.id),
                "flag_id": str(flag.id),
                "type": schedule.type,
                "message_ids": message_ids,
                "created_by": created_by,
            },
        )
        return schedule

    async def update(
        self,
        schedule_id: UUID,
        data: FlagScheduleUpdate,
        *,
        now: datetime | None = None,
    ) -> FlagSchedule:
        """Redefine a schedule and re-dispatch it.

        Unset fields keep their stored value, except that switching between
        single-shot and rollout drops the other form's timing. Execution
        markers are reset so the new definition runs in full.

        Raises:
            ScheduleNotFoundError: If the schedule does not exist.
            ScheduleValidationError: If the merged definition is invalid.
            DispatchError: If dispatching fails. The old messages are gone by
                then, so the schedule is stored disarmed with no messages.
        """
        schedule = await self.get(schedule_id)
        flag = await self._get_flag(schedule.flag_id)

        fields = data.model_fields_set
        schedule_type = data.type or schedule.schedule_type
        self._check_flag_type(flag, schedule_type)

        is_enabled = schedule.is_enabled if data.is_enabled is None else data.is_enabled
        if "scheduled_at" in fields:
            scheduled_at = data.scheduled_at
        else:
            scheduled_at = None if schedule_type.is_batch else as_utc(schedule.scheduled_at)
        if "rollout_steps" in fields:
            steps = self._fresh_steps(data.rollout_steps)
        else:
            stored = steps_from_json(schedule.rollout_steps)
            steps = self._fresh_steps(stored) if schedule_type.is_batch else None

        definition = ScheduleDefinition(
            id=schedule.id,
            flag_id=schedule.flag_id,
            type=schedule_type,
            is_enabled=is_enabled,
            scheduled_at=scheduled_at,
            rollout_steps=steps,
        )
        old_message_ids = list(schedule.message_ids or [])
        try:
            message_ids = await self._lifecycle.update(definition, old_message_ids, now=now)
        except DispatchError:
            await self._disarm_after_failed_dispatch(schedule, old_message_ids)
            raise

        schedule.type = str(schedule_type)
        schedule.is_enabled = is_enabled
        schedule.scheduled_at = scheduled_at
        schedule.rollout_steps = steps_to_json(list(steps)) if steps is not None else None
        schedule.executed_at = None
        schedule.message_ids = message_ids
        # Invalidates step claims computed against the previous definition
        schedule.version = schedule.version + 1
        try:
            schedule = await self._repository.save(self.session, schedule)
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            logger.exception(
                "Failed to store schedule update, cancelling new messages",
                extra={"schedule_id": str(schedule_id), "message_ids": message_ids},
            )
            await self._lifecycle.delete(message_ids)
            raise

        logger.info(
            "Flag schedule updated",
            extra={
                "schedule_id": str(schedule_id),
                "type": schedule.type,
                "cancelled": old_message_ids,
                "message_ids": message_ids,
            },
        )
        return schedule

    async def delete(self, schedule_id: UUID) -> FlagSchedule:
        """Cancel a schedule's messages and disarm it. The row is kept."""
        schedule = await self.get(schedule_id)
        message_ids = list(schedule.message_ids or [])
        await self._lifecycle.delete(message_ids)

        schedule.is_enabled = False
        schedule.message_ids = []
        await self.session.commit()

        logger.info(
            "Flag schedule disabled",
            extra={"schedule_id": str(schedule_id), "cancelled": message_ids},
        )
        return schedule

    async def _disarm_after_failed_dispatch(self, schedule: FlagSchedule, cancelled: list[str]) -> None:
        schedule.is_enabled = False
        schedule.message_ids = []
        schedule.version = schedule.version + 1
        await self.session.commit()
        logger.warning(
            "Flag schedule disarmed after failed re-dispatch",
            extra={"schedule_id": str(schedule.id), "cancelled": cancelled},
        )

    async def get(self, schedule_id: UUID) -> FlagSchedule:
        schedule = await self._repository.get(self.session, schedule_id)
        if schedule is None:
            raise ScheduleNotFoundError(schedule_id)
        return schedule

    async def list_for_flag(self, flag_id: UUID) -> Sequence[FlagSchedule]:
        await self._get_flag(flag_id)
        return await self._repository.list_for_flag(self.session, flag_id)

    async def get_latest_for_flag(self, flag_id: UUID) -> FlagSchedule:
        """Most recently created schedule of a flag.

        Raises:
            NotFoundException: If the flag has no schedules.
        """
        await self._get_flag(flag_id)
        schedule = await self._repository.latest_for_flag(self.session, flag_id)
        if schedule is None:
            raise NotFoundException(
                detail=f"No schedules found for flag {flag_id}",
                type="schedule-not-found",
                extra={"flag_id": str(flag_id)},
            )
        return schedule

    async def _get_flag(self, flag_id: UUID) -> FeatureFlag:
        flag = await self._flag_repository.get(self.session, flag_id)
        if flag is None or flag.is_deleted:
            raise FlagNotFoundError(flag_id)
        return flag

    @staticmethod
    def _check_flag_type(flag: FeatureFlag, schedule_type: ScheduleType) -> None:
        if schedule_type is ScheduleType.UPDATE_ROLLOUT and flag.type != FlagType.ROLLOUT:
            raise ScheduleValidationError(
                [f"update_rollout schedules require a rollout flag, '{flag.key}' is {flag.type}"],
                extra={"flag_id": str(flag.id)},
            )

    @staticmethod
    def _fresh_steps(steps: Sequence[RolloutStep] | None) -> tuple[RolloutStep, ...] | None:
        """Copy steps with their execution markers cleared."""
        if steps is None:
            return None
        return tuple(step.model_copy(update={"executed_at": None}) for step in steps)


__all__ = ["FlagScheduleService"]
