"""Feature flag database models.

Flags are owned by exactly one scope (website, organization or user) and
are never deleted: archiving sets ``status=archived`` and ``deleted_at``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from sqlalchemy import JSON, Boolean, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from flag_service.core.database.base import (
    AuditColumnsMixin,
    Base,
    SoftDeleteMixin,
    TimestampMixin,
    UUIDv7PKMixin,
)


class FlagType(StrEnum):
    """Kind of value a flag serves."""

    BOOLEAN = "boolean"
    ROLLOUT = "rollout"
    MULTIVARIANT = "multivariant"


class FlagStatus(StrEnum):
    """Lifecycle status of a flag."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class FeatureFlag(Base, UUIDv7PKMixin, TimestampMixin, AuditColumnsMixin, SoftDeleteMixin):
    """Feature flag configuration.

    Attributes:
        key: Flag identifier, unique within its scope.
        scope: Canonical owner string (``website:<id>``, ``org:<id>``, ``user:<id>``).
        status: active, inactive or archived.
        rollout_percentage: Share of traffic served the flag (0-100).
        rollout_by: Attribute the evaluator buckets on. Opaque here.
        rules: Ordered targeting rules, consumed only by the evaluator.
        variants: Multivariant values with optional weights.
        dependencies: Keys of flags that must all be active for this one to be.
    """

    __tablename__ = "feature_flags"

    key: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Flag key, unique within scope",
    )
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=FlagType.BOOLEAN.value,
        comment="boolean, rollout or multivariant",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=FlagStatus.ACTIVE.value,
        comment="active, inactive or archived",
    )
    default_value: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    rollout_percentage: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Rollout percentage (0-100)",
    )
    rollout_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    rules: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB().with_variant(JSON(), "sqlite"),
        nullable=False,
        default=list,
    )
    variants: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB().with_variant(JSON(), "sqlite"),
        nullable=False,
        default=list,
    )
    dependencies: Mapped[list[str]] = mapped_column(
        JSONB().with_variant(JSON(), "sqlite"),
        nullable=False,
        default=list,
        comment="Keys of flags this flag depends on",
    )

    # Exactly one owner is set
    website_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    organization_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    scope: Mapped[str] = mapped_column(
        String(80),
        nullable=False,
        comment="Canonical owner, e.g. website:abc",
    )

    environment: Mapped[str | None] = mapped_column(String(50), nullable=True)

    __table_args__ = (
        UniqueConstraint("scope", "key", name="uq_feature_flags_scope_key"),
        Index("ix_feature_flags_scope_status", "scope", "status"),
    )

    @property
    def is_archived(self) -> bool:
        return self.status == FlagStatus.ARCHIVED

    def __repr__(self) -> str:
        return f"FeatureFlag(key={self.key!r}, scope={self.scope!r}, status={self.status!r})"


def build_scope(
    *,
    website_id: str | None = None,
    organization_id: str | None = None,
    user_id: str | None = None,
) -> str:
    """Return the canonical scope string for exactly one owner.

    Raises:
        ValueError: If zero or several owners are given.
    """
    owners = [
        (prefix, value)
        for prefix, value in (("website", website_id), ("org", organization_id), ("user", user_id))
        if value
    ]
    if len(owners) != 1:
        msg = "Exactly one of website_id, organization_id or user_id is required"
        raise ValueError(msg)
    prefix, value = owners[0]
    return f"{prefix}:{value}"


__all__ = ["FeatureFlag", "FlagStatus", "FlagType", "build_scope"]
