"""Feature flag schemas for API requests and responses."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
import math
from typing import Any, Self
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from .models import FlagStatus, FlagType, build_scope

FLAG_KEY_PATTERN = r"^[a-zA-Z0-9_-]+$"


class RuleType(StrEnum):
    USER_ID = "user_id"
    EMAIL = "email"
    PROPERTY = "property"


class RuleOperator(StrEnum):
    EQUALS = "equals"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    IN = "in"
    NOT_IN = "not_in"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


class TargetingRule(BaseModel):
    """A single targeting rule.

    Rules are stored in order and handed to the evaluator untouched;
    scheduling never reads or rewrites them.
    """

    type: RuleType = Field(description="What the rule matches on")
    operator: RuleOperator = Field(description="Comparison operator")
    field: str | None = Field(default=None, description="Property name for property rules")
    value: Any = Field(default=None, description="Value to compare against")
    values: list[Any] | None = Field(default=None, description="Values for in/not_in")
    enabled: bool = Field(description="Whether a match serves the flag")
    batch: bool = Field(default=False, description="Match against batch_values")
    batch_values: list[str] | None = Field(default=None)


class Variant(BaseModel):
    """One value of a multivariant flag."""

    key: str = Field(min_length=1, max_length=100)
    value: Any = Field(description="Value served for this variant")
    weight: float | None = Field(default=None, ge=0, le=100, description="Traffic share")
    type: str = Field(default="string", max_length=20)


def _check_variant_weights(variants: list[Variant] | None) -> None:
    if not variants:
        return
    weights = [v.weight for v in variants if v.weight is not None]
    total = math.fsum(weights)
    if weights and not math.isclose(total, 100, abs_tol=1e-9):
        msg = f"Variant weights must sum to 100, got {total:g}"
        raise ValueError(msg)


def _normalize_dependencies(dependencies: list[str] | None, key: str | None) -> list[str] | None:
    if dependencies is None:
        return None
    seen: list[str] = []
    for dep in dependencies:
        if dep not in seen:
            seen.append(dep)
    if key is not None and key in seen:
        msg = f"Flag '{key}' cannot depend on itself"
        raise ValueError(msg)
    return seen


class FeatureFlagCreate(BaseModel):
    """Schema for creating a feature flag."""

    key: str = Field(
        min_length=1,
        max_length=100,
        pattern=FLAG_KEY_PATTERN,
        description="Flag key, unique within its scope",
    )
    name: str | None = Field(default=None, max_length=100)
    description: str | None = Field(default=None)
    type: FlagType = Field(default=FlagType.BOOLEAN)
    status: FlagStatus = Field(default=FlagStatus.ACTIVE)
    default_value: bool = Field(default=False)
    rollout_percentage: int = Field(default=0, ge=0, le=100)
    rollout_by: str | None = Field(default=None, max_length=100)
    rules: list[TargetingRule] = Field(default_factory=list)
    variants: list[Variant] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list, description="Keys of required flags")
    website_id: str | None = Field(default=None, max_length=64)
    organization_id: str | None = Field(default=None, max_length=64)
    user_id: str | None = Field(default=None, max_length=64)
    environment: str | None = Field(default=None, max_length=50)

    @field_validator("dependencies")
    @classmethod
    def validate_dependency_keys(cls, v: list[str]) -> list[str]:
        for dep in v:
            if not dep or len(dep) > 100:
                msg = f"Invalid dependency key: {dep!r}"
                raise ValueError(msg)
        return v

    @model_validator(mode="after")
    def validate_flag(self) -> Self:
        """Enforce single ownership, variant weights and dependency rules."""
        build_scope(
            website_id=self.website_id,
            organization_id=self.organization_id,
            user_id=self.user_id,
        )
        _check_variant_weights(self.variants)
        self.dependencies = _normalize_dependencies(self.dependencies, self.key) or []
        return self

    @property
    def scope(self) -> str:
        return build_scope(
            website_id=self.website_id,
            organization_id=self.organization_id,
            user_id=self.user_id,
        )

    model_config = {
        "json_schema_extra": {
            "example": {
                "key": "checkout-v2",
                "name": "Checkout v2",
                "type": "rollout",
                "status": "inactive",
                "rollout_percentage": 10,
                "dependencies": ["payments-v2"],
                "website_id": "site_123",
            },
        },
    }


class FeatureFlagUpdate(BaseModel):
    """Schema for updating a feature flag.

    Key and owner are immutable. A status change triggers the dependency
    cascade.
    """

    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None)
    type: FlagType | None = Field(default=None)
    status: FlagStatus | None = Field(default=None)
    default_value: bool | None = Field(default=None)
    rollout_percentage: int | None = Field(default=None, ge=0, le=100)
    rollout_by: str | None = Field(default=None, max_length=100)
    rules: list[TargetingRule] | None = Field(default=None)
    variants: list[Variant] | None = Field(default=None)
    dependencies: list[str] | None = Field(default=None)
    environment: str | None = Field(default=None, max_length=50)

    @model_validator(mode="after")
    def validate_flag(self) -> Self:
        _check_variant_weights(self.variants)
        self.dependencies = _normalize_dependencies(self.dependencies, None)
        return self


class FeatureFlagResponse(BaseModel):
    """Response schema for a feature flag."""

    id: UUID
    key: str
    name: str | None
    description: str | None
    type: FlagType
    status: FlagStatus
    default_value: bool
    rollout_percentage: int
    rollout_by: str | None
    rules: list[TargetingRule]
    variants: list[Variant]
    dependencies: list[str]
    website_id: str | None
    organization_id: str | None
    user_id: str | None
    scope: str
    environment: str | None
    created_by: str | None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None

    model_config = {"from_attributes": True}


class FeatureFlagListResponse(BaseModel):
    """Response schema for listing feature flags."""

    items: list[FeatureFlagResponse]
    total: int


__all__ = [
    "FLAG_KEY_PATTERN",
    "FeatureFlagCreate",
    "FeatureFlagListResponse",
    "FeatureFlagResponse",
    "FeatureFlagUpdate",
    "RuleOperator",
    "RuleType",
    "TargetingRule",
    "Variant",
]
