"""Flag schedule schemas: API payloads, dispatched messages and results."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from .models import ScheduleType


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC and normalise aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class RolloutStep(BaseModel):
    """One step of a batch rollout schedule.

    ``value`` is the rollout percentage applied when the step fires. The
    ``enable``/``disable`` tags are accepted on input but rejected by
    schedule validation, which also does the range checks so every
    violation is reported together.
    """

    scheduled_at: datetime
    executed_at: datetime | None = None
    value: float | Literal["enable", "disable"]

    @field_validator("scheduled_at", "executed_at")
    @classmethod
    def normalize_timezone(cls, v: datetime | None) -> datetime | None:
        return as_utc(v)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


def steps_to_json(steps: list[RolloutStep] | None) -> list[dict[str, Any]] | None:
    """Serialise steps for the ``rollout_steps`` JSON column."""
    if steps is None:
        return None
    return [step.to_json() for step in steps]


def steps_from_json(raw: list[dict[str, Any]] | None) -> list[RolloutStep]:
    """Parse the ``rollout_steps`` JSON column."""
    return [RolloutStep.model_validate(item) for item in raw or []]


class FlagScheduleCreate(BaseModel):
    """Schema for creating a flag schedule."""

    flag_id: UUID
    type: ScheduleType
    is_enabled: bool = True
    scheduled_at: datetime | None = Field(default=None, description="Fire time for enable/disable")
    rollout_steps: list[RolloutStep] | None = Field(
        default=None, description="Ordered steps for update_rollout"
    )

    @field_validator("scheduled_at")
    @classmethod
    def normalize_timezone(cls, v: datetime | None) -> datetime | None:
        return as_utc(v)

    model_config = {
        "json_schema_extra": {
            "example": {
                "flag_id": "0192f5a0-7c1e-7b7a-9d8e-1f2a3b4c5d6e",
                "type": "update_rollout",
                "is_enabled": True,
                "rollout_steps": [
                    {"scheduled_at": "2026-11-01T09:00:00Z", "value": 10},
                    {"scheduled_at": "2026-11-02T09:00:00Z", "value": 50},
                    {"scheduled_at": "2026-11-03T09:00:00Z", "value": 100},
                ],
            },
        },
    }


class FlagScheduleUpdate(BaseModel):
    """Schema for updating a flag schedule.

    Unset fields keep their stored value. The merged definition is
    validated as a whole and re-dispatched; execution markers are reset.
    """

    type: ScheduleType | None = None
    is_enabled: bool | None = None
    scheduled_at: datetime | None = None
    rollout_steps: list[RolloutStep] | None = None

    @field_validator("scheduled_at")
    @classmethod
    def normalize_timezone(cls, v: datetime | None) -> datetime | None:
        return as_utc(v)


class FlagScheduleResponse(BaseModel):
    """Response schema for a flag schedule."""

    id: UUID
    flag_id: UUID
    type: ScheduleType
    is_enabled: bool
    scheduled_at: datetime | None
    executed_at: datetime | None
    rollout_steps: list[RolloutStep] | None
    message_ids: list[str]
    version: int
    created_by: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class FlagScheduleListResponse(BaseModel):
    items: list[FlagScheduleResponse]
    total: int


class DispatchMessage(BaseModel):
    """Payload of a delayed message. A trigger only; state lives in the row.

    Batch messages carry the step they fire for; single-shot messages
    leave the step fields unset.
    """

    schedule_id: UUID
    type: ScheduleType
    flag_id: UUID
    step_scheduled_at: datetime | None = None
    step_value: float | None = None

    @field_validator("step_scheduled_at")
    @classmethod
    def normalize_timezone(cls, v: datetime | None) -> datetime | None:
        return as_utc(v)


class SkipReason(StrEnum):
    """Why a delivered message changed nothing."""

    DISABLED = "disabled"
    ALREADY_EXECUTED = "already_executed"
    STEP_ALREADY_EXECUTED = "step_already_executed"
    STEP_NOT_FOUND = "step_not_found"
    SUPERSEDED = "superseded"


class ExecutionResult(BaseModel):
    """Outcome of handling one dispatched message."""

    schedule_id: UUID
    status: Literal["executed", "skipped"]
    reason: SkipReason | None = None
    flag_status: str | None = None
    rollout_percentage: int | None = None
    cascaded: list[UUID] = Field(default_factory=list)

    @classmethod
    def skipped(cls, schedule_id: UUID, reason: SkipReason) -> ExecutionResult:
        return cls(schedule_id=schedule_id, status="skipped", reason=reason)

    @property
    def executed(self) -> bool:
        return self.status == "executed"


__all__ = [
    "DispatchMessage",
    "ExecutionResult",
    "FlagScheduleCreate",
    "FlagScheduleListResponse",
    "FlagScheduleResponse",
    "FlagScheduleUpdate",
    "RolloutStep",
    "SkipReason",
    "as_utc",
    "steps_from_json",
    "steps_to_json",
]
