"""Flag schedule repository, including the atomic execution claims."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import select, update

from flag_service.core.database.repository import BaseRepository
from flag_service.infra.logging import get_lazy_logger

from .models import FlagSchedule

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

_lazy = get_lazy_logger(__name__)


class FlagScheduleRepository(BaseRepository[FlagSchedule]):
    """Repository for FlagSchedule rows.

    The ``claim_*`` methods are compare-and-set UPDATEs: exactly one of
    several concurrent callers sees ``True``, so at-least-once delivery
    applies each schedule or step once.
    """

    def __init__(self) -> None:
        super().__init__(FlagSchedule)

    async def list_for_flag(
        self,
        session: AsyncSession,
        flag_id: UUID,
        *,
        include_disabled: bool = True,
    ) -> Sequence[FlagSchedule]:
        """All schedules of a flag, newest first."""
        stmt = select(FlagSchedule).where(FlagSchedule.flag_id == flag_id)
        if not include_disabled:
            stmt = stmt.where(FlagSchedule.is_enabled.is_(True))
        stmt = stmt.order_by(FlagSchedule.created_at.desc(), FlagSchedule.id.desc())
        result = await session.execute(stmt)
        return result.scalars().all()

    async def latest_for_flag(self, session: AsyncSession, flag_id: UUID) -> FlagSchedule | None:
        stmt = (
            select(FlagSchedule)
            .where(FlagSchedule.flag_id == flag_id)
            .order_by(FlagSchedule.created_at.desc(), FlagSchedule.id.desc())
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def claim_single_shot(
        self,
        session: AsyncSession,
        schedule_id: UUID,
        executed_at: datetime,
    ) -> bool:
        """Stamp ``executed_at`` if it is still unset and the schedule armed.

        Returns:
            Whether this caller won the claim.
        """
        stmt = (
            update(FlagSchedule)
            .where(
                FlagSchedule.id == schedule_id,
                FlagSchedule.executed_at.is_(None),
                FlagSchedule.is_enabled.is_(True),
            )
            .values(executed_at=executed_at, version=FlagSchedule.version + 1)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        claimed = result.rowcount == 1
        _lazy.debug(lambda: f"claim_single_shot: {schedule_id} -> {claimed}")
        return claimed

    async def claim_step(
        self,
        session: AsyncSession,
        schedule_id: UUID,
        seen_version: int,
        rollout_steps: list[dict[str, Any]],
    ) -> bool:
        """Write ``rollout_steps`` if nobody changed the row since ``seen_version``.

        Returns:
            Whether this caller won the claim.
        """
        stmt = (
            update(FlagSchedule)
            .where(
                FlagSchedule.id == schedule_id,
                FlagSchedule.version == seen_version,
                FlagSchedule.is_enabled.is_(True),
            )
            .values(rollout_steps=rollout_steps, version=seen_version + 1)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        claimed = result.rowcount == 1
        _lazy.debug(lambda: f"claim_step: {schedule_id}@{seen_version} -> {claimed}")
        return claimed


_schedule_repository: FlagScheduleRepository | None = None


def get_flag_schedule_repository() -> FlagScheduleRepository:
    """Get the shared FlagScheduleRepository instance."""
    global _schedule_repository
    if _schedule_repository is None:
        _schedule_repository = FlagScheduleRepository()
    return _schedule_repository


__all__ = ["FlagScheduleRepository", "get_flag_schedule_repository"]
