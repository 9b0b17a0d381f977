"""Feature flag REST API endpoints."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Header, Query, status

from .dependencies import FeatureFlagServiceDep, ScopeDep
from .models import FlagStatus
from .schemas import (
    FeatureFlagCreate,
    FeatureFlagListResponse,
    FeatureFlagResponse,
    FeatureFlagUpdate,
)

router = APIRouter(prefix="/feature-flags", tags=["feature-flags"])


@router.post(
    "",
    response_model=FeatureFlagResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create feature flag",
    description="Create a flag in its scope, or restore an archived flag with the same key.",
)
async def create_flag(
    data: FeatureFlagCreate,
    service: FeatureFlagServiceDep,
    x_user_id: Annotated[str | None, Header()] = None,
) -> FeatureFlagResponse:
    flag = await service.create(data, created_by=x_user_id)
    return FeatureFlagResponse.model_validate(flag)


@router.get(
    "",
    response_model=FeatureFlagListResponse,
    summary="List feature flags",
    description="List the flags of one scope, newest first.",
)
async def list_flags(
    scope: ScopeDep,
    service: FeatureFlagServiceDep,
    flag_status: Annotated[FlagStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> FeatureFlagListResponse:
    return await service.list_flags(scope, status=flag_status, limit=limit, offset=offset)


@router.get(
    "/by-key/{key}",
    response_model=FeatureFlagResponse,
    summary="Get active feature flag by key",
)
async def get_flag_by_key(
    key: str,
    scope: ScopeDep,
    service: FeatureFlagServiceDep,
) -> FeatureFlagResponse:
    return await service.read_by_key(scope, key)


@router.get(
    "/{flag_id}",
    response_model=FeatureFlagResponse,
    summary="Get feature flag",
)
async def get_flag(flag_id: UUID, scope: ScopeDep, service: FeatureFlagServiceDep) -> FeatureFlagResponse:
    return await service.read(flag_id, scope)


@router.patch(
    "/{flag_id}",
    response_model=FeatureFlagResponse,
    summary="Update feature flag",
    description="Partially update a flag. A status change cascades to dependent flags.",
)
async def update_flag(
    flag_id: UUID,
    data: FeatureFlagUpdate,
    service: FeatureFlagServiceDep,
) -> FeatureFlagResponse:
    flag = await service.update(flag_id, data)
    return FeatureFlagResponse.model_validate(flag)


@router.delete(
    "/{flag_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Archive feature flag",
)
async def archive_flag(flag_id: UUID, service: FeatureFlagServiceDep) -> None:
    await service.archive(flag_id)
