"""Tests for the schedule execution routine."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from flag_service.core.exceptions import ExecutionError, FlagNotFoundError
from flag_service.core.settings import SchedulingSettings
from flag_service.features.featureflags.models import FeatureFlag, FlagStatus, FlagType
from flag_service.features.featureflags.service import FeatureFlagService
from flag_service.features.flagschedules.executor import FlagScheduleExecutor
from flag_service.features.flagschedules.models import FlagSchedule, ScheduleType
from flag_service.features.flagschedules.repository import FlagScheduleRepository
from flag_service.features.flagschedules.schemas import (
    FlagScheduleCreate,
    RolloutStep,
    SkipReason,
    steps_from_json,
)


@pytest.fixture
async def rollout_flag(make_flag) -> FeatureFlag:
    return await make_flag("checkout", type=FlagType.ROLLOUT)


@pytest.fixture
def create_rollout(schedule_service, rollout_flag, future):
    async def _create(*values: float) -> FlagSchedule:
        steps = [RolloutStep(scheduled_at=future(minutes=10 * (i + 1)), value=v) for i, v in enumerate(values)]
        return await schedule_service.create(
            FlagScheduleCreate(flag_id=rollout_flag.id, type=ScheduleType.UPDATE_ROLLOUT, rollout_steps=steps)
        )

    return _create


@pytest.mark.asyncio
async def test_enable_applies_once(make_flag, schedule_service, executor, reload, cache, future) -> None:
    flag = await make_flag("checkout", status=FlagStatus.INACTIVE)
    schedule = await schedule_service.create(
        FlagScheduleCreate(flag_id=flag.id, type=ScheduleType.ENABLE, scheduled_at=future(minutes=5))
    )

    first = await executor.apply(schedule)
    second = await executor.apply(schedule)

    assert first.applied
    assert first.status_changed
    assert first.previous_status == FlagStatus.INACTIVE
    assert first.flag.status == FlagStatus.ACTIVE
    assert second.skip_reason is SkipReason.ALREADY_EXECUTED

    stored = await reload(FlagSchedule, schedule.id)
    assert stored.executed_at is not None
    assert stored.version == 1
    assert (await reload(FeatureFlag, flag.id)).status == FlagStatus.ACTIVE
    assert cache.invalidated_ids == [str(flag.id)]


@pytest.mark.asyncio
async def test_rollout_step_evicts_cached_flag_read(
    db_session, cache, cascade_engine, create_rollout, rollout_flag, executor
) -> None:
    flags = FeatureFlagService(db_session, cache=cache, cascade=cascade_engine)
    schedule = await create_rollout(30)
    assert (await flags.read(rollout_flag.id, rollout_flag.scope)).rollout_percentage == 0

    await executor.apply(schedule, steps_from_json(schedule.rollout_steps)[0])

    assert (await flags.read(rollout_flag.id, rollout_flag.scope)).rollout_percentage == 30
    assert (await flags.read_by_key(rollout_flag.scope, "checkout")).rollout_percentage == 30


@pytest.mark.asyncio
async def test_disable_on_inactive_flag_reports_no_status_change(
    make_flag, schedule_service, executor, future
) -> None:
    flag = await make_flag("checkout", status=FlagStatus.INACTIVE)
    schedule = await schedule_service.create(
        FlagScheduleCreate(flag_id=flag.id, type=ScheduleType.DISABLE, scheduled_at=future(minutes=5))
    )

    result = await executor.apply(schedule)

    assert result.applied
    assert not result.status_changed


@pytest.mark.asyncio
async def test_disarmed_single_shot_cannot_be_claimed(make_flag, schedule_service, executor, future) -> None:
    flag = await make_flag("checkout", status=FlagStatus.INACTIVE)
    schedule = await schedule_service.create(
        FlagScheduleCreate(flag_id=flag.id, type=ScheduleType.ENABLE, scheduled_at=future(minutes=5))
    )
    await schedule_service.delete(schedule.id)

    result = await executor.apply(schedule)

    assert not result.applied


@pytest.mark.asyncio
@pytest.mark.parametrize(("value", "expected"), [(33.6, 34), (0.4, 0), (100, 100), (42, 42)])
async def test_rollout_step_sets_rounded_percentage(
    create_rollout, executor, rollout_flag, reload, value: float, expected: int
) -> None:
    schedule = await create_rollout(value)
    step = steps_from_json(schedule.rollout_steps)[0]

    result = await executor.apply(schedule, step)

    assert result.applied
    assert (await reload(FeatureFlag, rollout_flag.id)).rollout_percentage == expected


@pytest.mark.asyncio
async def test_rollout_step_is_stamped_once(create_rollout, executor, reload) -> None:
    schedule = await create_rollout(10, 50)
    first, second = steps_from_json(schedule.rollout_steps)

    await executor.apply(schedule, first)
    again = await executor.apply(schedule, first)

    assert again.skip_reason is SkipReason.STEP_ALREADY_EXECUTED
    stored = steps_from_json((await reload(FlagSchedule, schedule.id)).rollout_steps)
    assert stored[0].executed_at is not None
    assert stored[1].executed_at is None
    assert stored[1].scheduled_at == second.scheduled_at


@pytest.mark.asyncio
async def test_unknown_step_is_not_found(create_rollout, executor) -> None:
    schedule = await create_rollout(10)
    stranger = RolloutStep(scheduled_at=datetime(2030, 1, 1, tzinfo=UTC), value=99)

    result = await executor.apply(schedule, stranger)

    assert result.skip_reason is SkipReason.STEP_NOT_FOUND


@pytest.mark.asyncio
async def test_rollout_requires_a_step(create_rollout, executor) -> None:
    schedule = await create_rollout(10)

    with pytest.raises(ExecutionError, match="one step at a time"):
        await executor.apply(schedule)


@pytest.mark.asyncio
async def test_lost_step_claim_is_retried(create_rollout, session_factory, cache, reload) -> None:
    attempts: list[int] = []

    class RacingRepository(FlagScheduleRepository):
        async def claim_step(self, session, schedule_id, seen_version, rollout_steps):
            attempts.append(seen_version)
            if len(attempts) == 1:
                return False
            return await super().claim_step(session, schedule_id, seen_version, rollout_steps)

    executor = FlagScheduleExecutor(session_factory, cache=cache, repository=RacingRepository())
    schedule = await create_rollout(25)

    result = await executor.apply(schedule, steps_from_json(schedule.rollout_steps)[0])

    assert result.applied
    assert attempts == [0, 0]
    assert (await reload(FlagSchedule, schedule.id)).version == 1


@pytest.mark.asyncio
async def test_step_claim_gives_up_after_configured_attempts(create_rollout, session_factory, cache) -> None:
    class AlwaysLosing(FlagScheduleRepository):
        async def claim_step(self, session, schedule_id, seen_version, rollout_steps):
            return False

    executor = FlagScheduleExecutor(
        session_factory,
        cache=cache,
        repository=AlwaysLosing(),
        settings=SchedulingSettings(step_claim_attempts=2),
    )
    schedule = await create_rollout(25)

    with pytest.raises(ExecutionError, match="after retries"):
        await executor.apply(schedule, steps_from_json(schedule.rollout_steps)[0])


@pytest.mark.asyncio
async def test_archived_flag_rolls_back_the_claim(
    make_flag, schedule_service, executor, session_factory, reload, future
) -> None:
    flag = await make_flag("checkout", status=FlagStatus.INACTIVE)
    schedule = await schedule_service.create(
        FlagScheduleCreate(flag_id=flag.id, type=ScheduleType.ENABLE, scheduled_at=future(minutes=5))
    )
    async with session_factory() as session:
        row = await session.get(FeatureFlag, flag.id)
        row.status = FlagStatus.ARCHIVED.value
        row.deleted_at = datetime.now(UTC)
        await session.commit()

    with pytest.raises(FlagNotFoundError):
        await executor.apply(schedule)

    assert (await reload(FlagSchedule, schedule.id)).executed_at is None
