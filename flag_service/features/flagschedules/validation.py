"""Schedule definition checks run before anything is dispatched."""

from __future__ import annotations

from datetime import UTC, datetime
import math
from typing import TYPE_CHECKING

from flag_service.core.exceptions import ScheduleValidationError

from .models import ScheduleType

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .schemas import RolloutStep


def validate_schedule(
    type: ScheduleType | str,  # noqa: A002
    is_enabled: bool,
    scheduled_at: datetime | None,
    rollout_steps: Sequence[RolloutStep] | None,
    now: datetime | None = None,
) -> None:
    """Check a schedule definition and report every violation at once.

    Enable/disable schedules need a future ``scheduled_at`` and no steps.
    Rollout schedules need at least one step, each with a future
    ``scheduled_at`` and a numeric value in [0, 100], and no top-level
    ``scheduled_at``. Disarmed schedules are held to the same rules since
    they can be re-armed without being redefined.

    Raises:
        ScheduleValidationError: If any rule is violated.
    """
    now = now or datetime.now(UTC)
    schedule_type = ScheduleType(type)
    errors: list[str] = []

    if not schedule_type.is_batch:
        if rollout_steps:
            errors.append("rollout_steps are allowed only for update_rollout schedules")
        if scheduled_at is None:
            errors.append(f"scheduled_at is required for {schedule_type} schedules")
        elif scheduled_at <= now:
            errors.append("scheduled_at must be in the future")
    else:
        if scheduled_at is not None:
            errors.append("scheduled_at is not allowed for update_rollout schedules")
        if not rollout_steps:
            errors.append("rollout_steps are required for update_rollout schedules")
        for index, step in enumerate(rollout_steps or []):
            if isinstance(step.value, str) or not math.isfinite(step.value):
                errors.append(f"rollout_steps[{index}].value must be a number between 0 and 100")
            elif not 0 <= step.value <= 100:
                errors.append(f"rollout_steps[{index}].value must be between 0 and 100")
            if step.scheduled_at <= now:
                errors.append(f"rollout_steps[{index}].scheduled_at must be in the future")

        seen: set[datetime] = set()
        for step in rollout_steps or []:
            if step.scheduled_at in seen:
                errors.append(f"rollout step time {step.scheduled_at.isoformat()} is used more than once")
            seen.add(step.scheduled_at)

    if errors:
        raise ScheduleValidationError(
            errors,
            extra={"schedule_type": str(schedule_type), "is_enabled": is_enabled},
        )


__all__ = ["validate_schedule"]
