"""Feature flags: storage, operator CRUD and the dependency cascade.

Usage:
    from flag_service.features.featureflags import (
        DependencyCascadeEngine,
        FeatureFlagService,
        FlagStatus,
    )

    updated = await engine.cascade(flag, FlagStatus.INACTIVE)

The HTTP routes live in ``flag_service.features.featureflags.router``.
"""

from __future__ import annotations

from .cache import FlagCache, InMemoryFlagCache, RedisFlagCache
from .cascade import DependencyCascadeEngine, ScopeLockRegistry
from .models import FeatureFlag, FlagStatus, FlagType, build_scope
from .repository import FeatureFlagRepository
from .schemas import (
    FeatureFlagCreate,
    FeatureFlagListResponse,
    FeatureFlagResponse,
    FeatureFlagUpdate,
    TargetingRule,
    Variant,
)
from .service import FeatureFlagService

__all__ = [
    "DependencyCascadeEngine",
    "FeatureFlag",
    "FeatureFlagCreate",
    "FeatureFlagListResponse",
    "FeatureFlagRepository",
    "FeatureFlagResponse",
    "FeatureFlagService",
    "FeatureFlagUpdate",
    "FlagCache",
    "FlagStatus",
    "FlagType",
    "InMemoryFlagCache",
    "RedisFlagCache",
    "ScopeLockRegistry",
    "TargetingRule",
    "Variant",
    "build_scope",
]
