"""Feature flag repository for database operations.

All lookups are confined to a scope; archived flags are returned only when
a caller asks for them explicitly.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select

from flag_service.core.database.repository import BaseRepository, SearchResult
from flag_service.infra.logging import get_lazy_logger

from .models import FeatureFlag, FlagStatus

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

_lazy = get_lazy_logger(__name__)


class FeatureFlagRepository(BaseRepository[FeatureFlag]):
    """Repository for FeatureFlag database operations.

    Example:
        repo = FeatureFlagRepository()
        flag = await repo.get_by_key(session, "website:abc", "checkout-v2")
        dependents = await repo.find_dependents(
            session, "website:abc", {"checkout-v2"}, status=FlagStatus.ACTIVE
        )
    """

    def __init__(self) -> None:
        super().__init__(FeatureFlag)

    async def get_by_key(
        self,
        session: AsyncSession,
        scope: str,
        key: str,
        *,
        include_archived: bool = False,
        populate_existing: bool = False,
    ) -> FeatureFlag | None:
        """Get a flag by key within a scope."""
        stmt = select(FeatureFlag).where(FeatureFlag.scope == scope, FeatureFlag.key == key)
        if not include_archived:
            stmt = stmt.where(FeatureFlag.deleted_at.is_(None))
        if populate_existing:
            stmt = stmt.execution_options(populate_existing=True)
        result = await session.execute(stmt)
        flag = result.scalar_one_or_none()

        _lazy.debug(lambda: f"get_by_key: {scope}/{key} -> {'found' if flag else 'not found'}")
        return flag

    async def get_by_keys(
        self,
        session: AsyncSession,
        scope: str,
        keys: Iterable[str],
    ) -> dict[str, FeatureFlag]:
        """Get non-archived flags by key within a scope, keyed by flag key.

        Keys with no matching flag are absent from the result. Rows already
        loaded in the session are refreshed.
        """
        wanted = set(keys)
        if not wanted:
            return {}

        stmt = select(FeatureFlag).where(
            FeatureFlag.scope == scope,
            FeatureFlag.key.in_(wanted),
            FeatureFlag.deleted_at.is_(None),
        ).execution_options(populate_existing=True)
        result = await session.execute(stmt)
        flags = {flag.key: flag for flag in result.scalars().all()}

        _lazy.debug(lambda: f"get_by_keys: {len(wanted)} requested -> {len(flags)} found")
        return flags

    async def find_dependents(
        self,
        session: AsyncSession,
        scope: str,
        keys: Iterable[str],
        *,
        status: FlagStatus,
    ) -> Sequence[FeatureFlag]:
        """Flags in ``scope`` with ``status`` that depend on any of ``keys``.

        Runs a single query per call and refreshes rows already loaded in
        the session. The dependency match happens in Python because the JSON
        containment operators differ between PostgreSQL and SQLite.
        """
        wanted = set(keys)
        if not wanted:
            return []

        stmt = (
            select(FeatureFlag)
            .where(
                FeatureFlag.scope == scope,
                FeatureFlag.status == status.value,
                FeatureFlag.deleted_at.is_(None),
            )
            .order_by(FeatureFlag.key)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        dependents = [
            flag
            for flag in result.scalars().all()
            if wanted.intersection(flag.dependencies or [])
        ]

        _lazy.debug(
            lambda: f"find_dependents: {scope} {sorted(wanted)} status={status} -> {len(dependents)}"
        )
        return dependents

    async def list_for_scope(
        self,
        session: AsyncSession,
        scope: str,
        *,
        status: FlagStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> SearchResult[FeatureFlag]:
        """List flags in a scope, newest first.

        Archived flags are listed only when ``status=archived`` is requested.
        """
        stmt = select(FeatureFlag).where(FeatureFlag.scope == scope)
        if status is FlagStatus.ARCHIVED:
            stmt = stmt.where(FeatureFlag.status == status.value)
        else:
            stmt = stmt.where(FeatureFlag.deleted_at.is_(None))
            if status is not None:
                stmt = stmt.where(FeatureFlag.status == status.value)

        stmt = stmt.order_by(FeatureFlag.created_at.desc(), FeatureFlag.key).execution_options(
            populate_existing=True
        )
        return await self.search(session, stmt, limit=limit, offset=offset)


_flag_repository: FeatureFlagRepository | None = None


def get_feature_flag_repository() -> FeatureFlagRepository:
    """Get the shared FeatureFlagRepository instance."""
    global _flag_repository
    if _flag_repository is None:
        _flag_repository = FeatureFlagRepository()
    return _flag_repository


__all__ = ["FeatureFlagRepository", "get_feature_flag_repository"]
