"""Flag schedule REST API endpoints."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Header, status

from .dependencies import FlagScheduleServiceDep
from .schemas import (
    FlagScheduleCreate,
    FlagScheduleListResponse,
    FlagScheduleResponse,
    FlagScheduleUpdate,
)

router = APIRouter(prefix="/flag-schedules", tags=["flag-schedules"])


@router.post(
    "",
    response_model=FlagScheduleResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create flag schedule",
    description=(
        "Validate and dispatch a schedule. A rollout schedule dispatches one "
        "message per step; if any step fails to dispatch none remain."
    ),
)
async def create_schedule(
    data: FlagScheduleCreate,
    service: FlagScheduleServiceDep,
    x_user_id: Annotated[str | None, Header()] = None,
) -> FlagScheduleResponse:
    schedule = await service.create(data, created_by=x_user_id)
    return FlagScheduleResponse.model_validate(schedule)


@router.get(
    "/by-flag/{flag_id}",
    response_model=FlagScheduleResponse,
    summary="Get latest schedule of a flag",
)
async def get_latest_schedule(flag_id: UUID, service: FlagScheduleServiceDep) -> FlagScheduleResponse:
    schedule = await service.get_latest_for_flag(flag_id)
    return FlagScheduleResponse.model_validate(schedule)


@router.get(
    "/for-flag/{flag_id}",
    response_model=FlagScheduleListResponse,
    summary="List schedules of a flag",
    description="All schedules of a flag, including disabled ones, newest first.",
)
async def list_schedules(flag_id: UUID, service: FlagScheduleServiceDep) -> FlagScheduleListResponse:
    schedules = await service.list_for_flag(flag_id)
    return FlagScheduleListResponse(
        items=[FlagScheduleResponse.model_validate(s) for s in schedules],
        total=len(schedules),
    )


@router.get(
    "/{schedule_id}",
    response_model=FlagScheduleResponse,
    summary="Get flag schedule",
)
async def get_schedule(schedule_id: UUID, service: FlagScheduleServiceDep) -> FlagScheduleResponse:
    schedule = await service.get(schedule_id)
    return FlagScheduleResponse.model_validate(schedule)


@router.patch(
    "/{schedule_id}",
    response_model=FlagScheduleResponse,
    summary="Update flag schedule",
    description="Cancel the schedule's pending messages and dispatch the new definition.",
)
async def update_schedule(
    schedule_id: UUID,
    data: FlagScheduleUpdate,
    service: FlagScheduleServiceDep,
) -> FlagScheduleResponse:
    schedule = await service.update(schedule_id, data)
    return FlagScheduleResponse.model_validate(schedule)


@router.delete(
    "/{schedule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Disable flag schedule",
)
async def delete_schedule(schedule_id: UUID, service: FlagScheduleServiceDep) -> None:
    await service.delete(schedule_id)
