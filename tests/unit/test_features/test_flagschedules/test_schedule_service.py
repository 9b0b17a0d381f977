"""Tests for FlagScheduleService."""

from __future__ import annotations

from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from flag_service.core.exceptions import (
    DispatchError,
    FlagNotFoundError,
    NotFoundException,
    ScheduleNotFoundError,
    ScheduleValidationError,
)
from flag_service.features.featureflags.models import FlagStatus, FlagType
from flag_service.features.flagschedules.dispatch import InMemoryDispatchGateway
from flag_service.features.flagschedules.lifecycle import ScheduleLifecycleManager
from flag_service.features.flagschedules.models import FlagSchedule, ScheduleType
from flag_service.features.flagschedules.repository import FlagScheduleRepository
from flag_service.features.flagschedules.schemas import (
    FlagScheduleCreate,
    FlagScheduleUpdate,
    RolloutStep,
    steps_from_json,
)
from flag_service.features.flagschedules.service import FlagScheduleService


@pytest.mark.asyncio
async def test_create_stores_message_ids(make_flag, schedule_service, gateway, reload, future) -> None:
    flag = await make_flag("checkout", status=FlagStatus.INACTIVE)

    schedule = await schedule_service.create(
        FlagScheduleCreate(flag_id=flag.id, type=ScheduleType.ENABLE, scheduled_at=future(minutes=5)),
        created_by="user_1",
    )

    stored = await reload(FlagSchedule, schedule.id)
    assert stored.message_ids == list(gateway.scheduled)
    assert stored.is_enabled is True
    assert stored.executed_at is None
    assert stored.version == 0
    assert stored.created_by == "user_1"


@pytest.mark.asyncio
async def test_create_rollout_stores_steps_without_markers(make_flag, schedule_service, future) -> None:
    flag = await make_flag("checkout", type=FlagType.ROLLOUT)
    step = RolloutStep(scheduled_at=future(minutes=5), executed_at=future(minutes=1), value=30)

    schedule = await schedule_service.create(
        FlagScheduleCreate(flag_id=flag.id, type=ScheduleType.UPDATE_ROLLOUT, rollout_steps=[step])
    )

    (stored,) = steps_from_json(schedule.rollout_steps)
    assert stored.executed_at is None
    assert stored.value == 30
    assert schedule.scheduled_at is None


@pytest.mark.asyncio
async def test_create_disarmed_schedule_is_still_dispatched(
    make_flag, schedule_service, gateway, future
) -> None:
    flag = await make_flag("checkout")

    schedule = await schedule_service.create(
        FlagScheduleCreate(
            flag_id=flag.id, type=ScheduleType.DISABLE, is_enabled=False, scheduled_at=future(minutes=5)
        )
    )

    assert schedule.is_enabled is False
    assert len(gateway.messages_for(schedule.id)) == 1


@pytest.mark.asyncio
async def test_rollout_needs_a_rollout_flag(make_flag, schedule_service, gateway, future) -> None:
    flag = await make_flag("checkout", type=FlagType.BOOLEAN)

    with pytest.raises(ScheduleValidationError, match="require a rollout flag"):
        await schedule_service.create(
            FlagScheduleCreate(
                flag_id=flag.id,
                type=ScheduleType.UPDATE_ROLLOUT,
                rollout_steps=[RolloutStep(scheduled_at=future(minutes=5), value=10)],
            )
        )

    assert gateway.calls == 0


@pytest.mark.asyncio
async def test_create_for_unknown_flag(schedule_service, future) -> None:
    with pytest.raises(FlagNotFoundError):
        await schedule_service.create(
            FlagScheduleCreate(flag_id=uuid4(), type=ScheduleType.ENABLE, scheduled_at=future(minutes=5))
        )


@pytest.mark.asyncio
async def test_create_for_archived_flag(make_flag, schedule_service, future) -> None:
    flag = await make_flag("legacy", status=FlagStatus.ARCHIVED)

    with pytest.raises(FlagNotFoundError):
        await schedule_service.create(
            FlagScheduleCreate(flag_id=flag.id, type=ScheduleType.ENABLE, scheduled_at=future(minutes=5))
        )


@pytest.mark.asyncio
async def test_dispatch_failure_stores_nothing(make_flag, db_session, future) -> None:
    flag = await make_flag("checkout", type=FlagType.ROLLOUT)
    gateway = InMemoryDispatchGateway(fail_calls={1})
    service = FlagScheduleService(db_session, lifecycle=ScheduleLifecycleManager(gateway))

    with pytest.raises(DispatchError):
        await service.create(
            FlagScheduleCreate(
                flag_id=flag.id,
                type=ScheduleType.UPDATE_ROLLOUT,
                rollout_steps=[
                    RolloutStep(scheduled_at=future(minutes=5), value=10),
                    RolloutStep(scheduled_at=future(minutes=10), value=20),
                ],
            )
        )

    assert await service.list_for_flag(flag.id) == []
    assert gateway.scheduled == {}


@pytest.mark.asyncio
async def test_failed_write_cancels_dispatched_messages(make_flag, db_session, gateway, lifecycle, future) -> None:
    flag = await make_flag("checkout")
    repository = FlagScheduleRepository()
    repository.create = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("disk full")))
    service = FlagScheduleService(db_session, lifecycle=lifecycle, repository=repository)

    with pytest.raises(OperationalError):
        await service.create(
            FlagScheduleCreate(flag_id=flag.id, type=ScheduleType.DISABLE, scheduled_at=future(minutes=5))
        )

    assert gateway.scheduled == {}
    assert len(gateway.cancelled) == 1


@pytest.mark.asyncio
async def test_failed_update_dispatch_disarms_schedule(make_flag, db_session, reload, future) -> None:
    flag = await make_flag("checkout", status=FlagStatus.INACTIVE)
    gateway = InMemoryDispatchGateway(fail_calls={1})
    service = FlagScheduleService(db_session, lifecycle=ScheduleLifecycleManager(gateway))
    schedule = await service.create(
        FlagScheduleCreate(flag_id=flag.id, type=ScheduleType.ENABLE, scheduled_at=future(minutes=5))
    )
    old_ids = list(schedule.message_ids)

    with pytest.raises(DispatchError):
        await service.update(schedule.id, FlagScheduleUpdate(scheduled_at=future(minutes=10)))

    stored = await reload(FlagSchedule, schedule.id)
    assert stored.is_enabled is False
    assert stored.message_ids == []
    assert stored.version == 1
    assert gateway.cancelled == old_ids
    assert gateway.scheduled == {}


@pytest.mark.asyncio
async def test_update_resets_markers_and_bumps_version(
    make_flag, schedule_service, gateway, executor, reload, future
) -> None:
    flag = await make_flag("checkout", status=FlagStatus.INACTIVE)
    schedule = await schedule_service.create(
        FlagScheduleCreate(flag_id=flag.id, type=ScheduleType.ENABLE, scheduled_at=future(minutes=5))
    )
    old_ids = list(schedule.message_ids)
    await executor.apply(schedule)
    await schedule_service.session.refresh(schedule)

    new_at = future(hours=1)
    updated = await schedule_service.update(schedule.id, FlagScheduleUpdate(scheduled_at=new_at))

    stored = await reload(FlagSchedule, schedule.id)
    assert stored.executed_at is None
    assert stored.version == 2
    assert stored.message_ids == updated.message_ids
    assert set(stored.message_ids).isdisjoint(old_ids)
    assert gateway.cancelled == old_ids
    assert gateway.scheduled[stored.message_ids[0]].not_before == new_at


@pytest.mark.asyncio
async def test_update_switches_to_rollout(make_flag, schedule_service, gateway, future) -> None:
    flag = await make_flag("checkout", type=FlagType.ROLLOUT)
    schedule = await schedule_service.create(
        FlagScheduleCreate(flag_id=flag.id, type=ScheduleType.ENABLE, scheduled_at=future(minutes=5))
    )

    updated = await schedule_service.update(
        schedule.id,
        FlagScheduleUpdate(
            type=ScheduleType.UPDATE_ROLLOUT,
            rollout_steps=[
                RolloutStep(scheduled_at=future(minutes=10), value=25),
                RolloutStep(scheduled_at=future(minutes=20), value=75),
            ],
        ),
    )

    assert updated.type == ScheduleType.UPDATE_ROLLOUT
    assert updated.scheduled_at is None
    assert len(updated.message_ids) == 2
    assert len(gateway.messages_for(schedule.id)) == 2


@pytest.mark.asyncio
async def test_update_to_rollout_on_boolean_flag_fails(make_flag, schedule_service, gateway, future) -> None:
    flag = await make_flag("checkout")
    schedule = await schedule_service.create(
        FlagScheduleCreate(flag_id=flag.id, type=ScheduleType.ENABLE, scheduled_at=future(minutes=5))
    )

    with pytest.raises(ScheduleValidationError):
        await schedule_service.update(
            schedule.id,
            FlagScheduleUpdate(
                type=ScheduleType.UPDATE_ROLLOUT,
                rollout_steps=[RolloutStep(scheduled_at=future(minutes=10), value=25)],
            ),
        )

    assert list(gateway.scheduled) == schedule.message_ids


@pytest.mark.asyncio
async def test_invalid_update_keeps_schedule(make_flag, schedule_service, gateway, reload, future) -> None:
    flag = await make_flag("checkout")
    schedule = await schedule_service.create(
        FlagScheduleCreate(flag_id=flag.id, type=ScheduleType.ENABLE, scheduled_at=future(minutes=5))
    )

    with pytest.raises(ScheduleValidationError):
        await schedule_service.update(schedule.id, FlagScheduleUpdate(scheduled_at=future(minutes=-5)))

    stored = await reload(FlagSchedule, schedule.id)
    assert stored.version == 0
    assert list(gateway.scheduled) == stored.message_ids


@pytest.mark.asyncio
async def test_update_unknown_schedule(schedule_service) -> None:
    with pytest.raises(ScheduleNotFoundError):
        await schedule_service.update(uuid4(), FlagScheduleUpdate(is_enabled=False))


@pytest.mark.asyncio
async def test_delete_disarms_and_cancels(make_flag, schedule_service, gateway, reload, future) -> None:
    flag = await make_flag("checkout")
    schedule = await schedule_service.create(
        FlagScheduleCreate(flag_id=flag.id, type=ScheduleType.DISABLE, scheduled_at=future(minutes=5))
    )
    message_ids = list(schedule.message_ids)

    await schedule_service.delete(schedule.id)

    stored = await reload(FlagSchedule, schedule.id)
    assert stored is not None
    assert stored.is_enabled is False
    assert stored.message_ids == []
    assert gateway.cancelled == message_ids


@pytest.mark.asyncio
async def test_list_and_latest(make_flag, schedule_service, future) -> None:
    flag = await make_flag("checkout")
    first = await schedule_service.create(
        FlagScheduleCreate(flag_id=flag.id, type=ScheduleType.DISABLE, scheduled_at=future(minutes=5))
    )
    second = await schedule_service.create(
        FlagScheduleCreate(flag_id=flag.id, type=ScheduleType.ENABLE, scheduled_at=future(minutes=10))
    )

    listed = await schedule_service.list_for_flag(flag.id)
    latest = await schedule_service.get_latest_for_flag(flag.id)

    assert [s.id for s in listed] == [second.id, first.id]
    assert latest.id == second.id


@pytest.mark.asyncio
async def test_latest_without_schedules(make_flag, schedule_service) -> None:
    flag = await make_flag("checkout")

    with pytest.raises(NotFoundException, match="No schedules found"):
        await schedule_service.get_latest_for_flag(flag.id)
