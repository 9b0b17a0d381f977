"""Flag schedule database models.

A schedule changes one flag at a future time (``enable``/``disable``) or
across an ordered list of rollout steps (``update_rollout``). Rows are
never removed by the service: deleting a schedule disables it.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any
import uuid

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from flag_service.core.database.base import AuditColumnsMixin, Base, TimestampMixin, UUIDv7PKMixin


class ScheduleType(StrEnum):
    """What a schedule does to its flag when it fires."""

    ENABLE = "enable"
    DISABLE = "disable"
    UPDATE_ROLLOUT = "update_rollout"

    @property
    def is_batch(self) -> bool:
        return self is ScheduleType.UPDATE_ROLLOUT


class FlagSchedule(Base, UUIDv7PKMixin, TimestampMixin, AuditColumnsMixin):
    """Scheduled change to a feature flag.

    Attributes:
        type: enable, disable or update_rollout.
        is_enabled: Disabled schedules are kept but never executed.
        scheduled_at: Fire time of a single-shot schedule. Null for batches.
        executed_at: Set once when a single-shot schedule runs.
        rollout_steps: Ordered ``{scheduled_at, executed_at, value}`` dicts
            of a batch schedule, timestamps as ISO-8601 strings.
        message_ids: Ids of the delayed messages currently dispatched.
        version: Bumped by every execution claim; guards step updates.
    """

    __tablename__ = "flag_schedules"

    flag_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("feature_flags.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    scheduled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    executed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    rollout_steps: Mapped[list[dict[str, Any]] | None] = mapped_column(
        JSONB().with_variant(JSON(), "sqlite"),
        nullable=True,
    )
    message_ids: Mapped[list[str]] = mapped_column(
        JSONB().with_variant(JSON(), "sqlite"),
        nullable=False,
        default=list,
        comment="Delayed message ids for cancellation",
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (Index("ix_flag_schedules_flag_created", "flag_id", "created_at"),)

    @property
    def schedule_type(self) -> ScheduleType:
        return ScheduleType(self.type)

    def __repr__(self) -> str:
        return f"FlagSchedule(id={self.id!s}, type={self.type!r}, flag_id={self.flag_id!s})"


__all__ = ["FlagSchedule", "ScheduleType"]
