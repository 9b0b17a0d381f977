"""Feature flag dependencies for FastAPI and the worker."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002

from flag_service.core.dependencies import get_db_session
from flag_service.core.exceptions import ValidationException
from flag_service.infra.database import AsyncSessionLocal

from .cache import get_flag_cache
from .cascade import DependencyCascadeEngine, ScopeLockRegistry
from .models import build_scope
from .service import FeatureFlagService


@lru_cache(maxsize=1)
def get_scope_locks() -> ScopeLockRegistry:
    """Lock registry shared by every cascade in this process."""
    return ScopeLockRegistry()


def get_cascade_engine() -> DependencyCascadeEngine:
    """Cascade engine bound to the process session factory and cache."""
    return DependencyCascadeEngine(
        AsyncSessionLocal,
        cache=get_flag_cache(),
        locks=get_scope_locks(),
    )


async def get_feature_flag_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> FeatureFlagService:
    return FeatureFlagService(
        session,
        cache=get_flag_cache(),
        cascade=get_cascade_engine(),
    )


def get_scope(
    website_id: Annotated[str | None, Query()] = None,
    organization_id: Annotated[str | None, Query()] = None,
    user_id: Annotated[str | None, Query()] = None,
) -> str:
    """Resolve the owner query parameters into a scope string.

    Raises:
        ValidationException: Unless exactly one owner is given.
    """
    try:
        return build_scope(website_id=website_id, organization_id=organization_id, user_id=user_id)
    except ValueError as e:
        raise ValidationException(detail=str(e), type="invalid-scope") from e


FeatureFlagServiceDep = Annotated[FeatureFlagService, Depends(get_feature_flag_service)]
ScopeDep = Annotated[str, Depends(get_scope)]

__all__ = [
    "FeatureFlagServiceDep",
    "ScopeDep",
    "get_cascade_engine",
    "get_feature_flag_service",
    "get_scope",
    "get_scope_locks",
]
