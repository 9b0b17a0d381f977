"""Tests for the schedule lifecycle manager."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from flag_service.core.exceptions import DispatchError, ScheduleValidationError
from flag_service.features.flagschedules.dispatch import InMemoryDispatchGateway
from flag_service.features.flagschedules.lifecycle import ScheduleDefinition, ScheduleLifecycleManager
from flag_service.features.flagschedules.models import ScheduleType
from flag_service.features.flagschedules.schemas import RolloutStep

NOW = datetime(2026, 11, 1, 9, 0, tzinfo=UTC)


def _single(scheduled_at: datetime | None = None, **overrides) -> ScheduleDefinition:
    values = {
        "id": uuid4(),
        "flag_id": uuid4(),
        "type": ScheduleType.ENABLE,
        "is_enabled": True,
        "scheduled_at": scheduled_at or NOW + timedelta(hours=1),
    }
    values.update(overrides)
    return ScheduleDefinition(**values)


def _rollout(values: list[float], schedule_id=None) -> ScheduleDefinition:
    steps = tuple(
        RolloutStep(scheduled_at=NOW + timedelta(hours=i + 1), value=value) for i, value in enumerate(values)
    )
    return ScheduleDefinition(
        id=schedule_id or uuid4(),
        flag_id=uuid4(),
        type=ScheduleType.UPDATE_ROLLOUT,
        is_enabled=True,
        rollout_steps=steps,
    )


@pytest.mark.asyncio
async def test_single_shot_dispatches_one_message(lifecycle: ScheduleLifecycleManager, gateway) -> None:
    schedule = _single()

    message_ids = await lifecycle.create(schedule, now=NOW)

    assert len(message_ids) == 1
    item = gateway.scheduled[message_ids[0]]
    assert item.not_before == schedule.scheduled_at
    assert item.message.schedule_id == schedule.id
    assert item.message.step_scheduled_at is None
    assert item.message.step_value is None


@pytest.mark.asyncio
async def test_rollout_dispatches_one_message_per_step(lifecycle: ScheduleLifecycleManager, gateway) -> None:
    schedule = _rollout([10, 50, 100])

    message_ids = await lifecycle.create(schedule, now=NOW)

    assert len(message_ids) == 3
    items = [gateway.scheduled[m] for m in message_ids]
    assert [i.message.step_value for i in items] == [10.0, 50.0, 100.0]
    assert [i.not_before for i in items] == [s.scheduled_at for s in schedule.rollout_steps]
    assert all(i.message.step_scheduled_at == i.not_before for i in items)


@pytest.mark.asyncio
async def test_invalid_definition_dispatches_nothing(lifecycle: ScheduleLifecycleManager, gateway) -> None:
    with pytest.raises(ScheduleValidationError):
        await lifecycle.create(_single(NOW - timedelta(minutes=1)), now=NOW)

    assert gateway.calls == 0


@pytest.mark.asyncio
async def test_single_shot_dispatch_failure_propagates() -> None:
    lifecycle = ScheduleLifecycleManager(InMemoryDispatchGateway(fail_calls={0}))

    with pytest.raises(DispatchError):
        await lifecycle.create(_single(), now=NOW)


@pytest.mark.asyncio
async def test_partial_batch_failure_cancels_dispatched_steps() -> None:
    gateway = InMemoryDispatchGateway(fail_calls={2})
    lifecycle = ScheduleLifecycleManager(gateway)

    with pytest.raises(DispatchError) as exc_info:
        await lifecycle.create(_rollout([10, 25, 50, 75, 100]), now=NOW)

    assert exc_info.value.failed == 1
    assert exc_info.value.total == 5
    assert gateway.calls == 5
    assert gateway.scheduled == {}
    assert len(gateway.cancelled) == 4


@pytest.mark.asyncio
async def test_update_replaces_messages(lifecycle: ScheduleLifecycleManager, gateway) -> None:
    schedule = _single()
    old_ids = await lifecycle.create(schedule, now=NOW)

    moved = _single(NOW + timedelta(hours=3), id=schedule.id, flag_id=schedule.flag_id)
    new_ids = await lifecycle.update(moved, old_ids, now=NOW)

    assert gateway.cancelled == old_ids
    assert list(gateway.scheduled) == new_ids
    assert gateway.scheduled[new_ids[0]].not_before == NOW + timedelta(hours=3)


@pytest.mark.asyncio
async def test_invalid_update_keeps_existing_messages(lifecycle: ScheduleLifecycleManager, gateway) -> None:
    schedule = _single()
    old_ids = await lifecycle.create(schedule, now=NOW)

    with pytest.raises(ScheduleValidationError):
        await lifecycle.update(_single(NOW - timedelta(hours=1), id=schedule.id), old_ids, now=NOW)

    assert list(gateway.scheduled) == old_ids
    assert gateway.cancelled == []


@pytest.mark.asyncio
async def test_update_from_single_shot_to_rollout(lifecycle: ScheduleLifecycleManager, gateway) -> None:
    schedule_id = uuid4()
    old_ids = await lifecycle.create(_single(id=schedule_id), now=NOW)

    new_ids = await lifecycle.update(_rollout([20, 40], schedule_id=schedule_id), old_ids, now=NOW)

    assert len(new_ids) == 2
    assert len(gateway.messages_for(schedule_id)) == 2


@pytest.mark.asyncio
async def test_update_survives_cancel_failures() -> None:
    gateway = InMemoryDispatchGateway(fail_cancel=True)
    lifecycle = ScheduleLifecycleManager(gateway)
    schedule = _single()
    old_ids = await lifecycle.create(schedule, now=NOW)

    new_ids = await lifecycle.update(_single(id=schedule.id), old_ids, now=NOW)

    # The stale message stays dispatched; the worker skips it when it fires
    assert set(gateway.scheduled) == {*old_ids, *new_ids}


@pytest.mark.asyncio
async def test_delete_cancels_every_message(lifecycle: ScheduleLifecycleManager, gateway) -> None:
    message_ids = await lifecycle.create(_rollout([10, 20, 30]), now=NOW)

    await lifecycle.delete(message_ids)

    assert gateway.scheduled == {}
    assert sorted(gateway.cancelled) == sorted(message_ids)


@pytest.mark.asyncio
async def test_delete_with_no_messages(lifecycle: ScheduleLifecycleManager, gateway) -> None:
    await lifecycle.delete([])

    assert gateway.cancelled == []
