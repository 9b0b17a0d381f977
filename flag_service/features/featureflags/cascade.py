"""Dependency cascade engine.

When a flag changes status its dependents follow:

- deactivation: every active dependent becomes inactive, transitively;
- activation: an inactive dependent becomes active only once every key in
  its ``dependencies`` resolves to an active flag of the same scope.

Archived flags never act as a source or a target. The walk proceeds one
dependency level at a time with one dependents query per level, and a
visited set keeps dependency cycles from looping. Each dependent update is
committed on its own; a failure part-way stops the walk but leaves earlier
updates committed.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from flag_service.core.exceptions import CascadeError
from flag_service.infra.metrics.prometheus import flag_cascade_failures_total, flag_cascade_updates_total

from .cache import invalidate_flag_caches
from .models import FeatureFlag, FlagStatus
from .repository import FeatureFlagRepository, get_feature_flag_repository

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from .cache import FlagCache

logger = logging.getLogger(__name__)

_DIRECTIONS = {
    FlagStatus.ACTIVE: "activate",
    FlagStatus.INACTIVE: "deactivate",
}


@dataclass
class ScopeLockRegistry:
    """Per-scope locks serialising cascades within one process.

    Owned by whoever builds the engine so tests get isolated instances.
    """

    _locks: dict[str, asyncio.Lock] = field(default_factory=dict)

    def lock_for(self, scope: str) -> asyncio.Lock:
        lock = self._locks.get(scope)
        if lock is None:
            lock = self._locks[scope] = asyncio.Lock()
        return lock

    def __len__(self) -> int:
        return len(self._locks)


class DependencyCascadeEngine:
    """Propagates a flag's status change to the flags that depend on it.

    Example:
        engine = DependencyCascadeEngine(AsyncSessionLocal, cache=flag_cache)
        updated_ids = await engine.cascade(flag, FlagStatus.INACTIVE)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        cache: FlagCache,
        repository: FeatureFlagRepository | None = None,
        locks: ScopeLockRegistry | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache
        self._repository = repository or get_feature_flag_repository()
        self._locks = locks if locks is not None else ScopeLockRegistry()

    async def cascade(self, flag: FeatureFlag, new_status: FlagStatus | str) -> list[uuid.UUID]:
        """Cascade ``new_status`` of ``flag`` to its dependents.

        Args:
            flag: The flag whose status just changed (already committed).
            new_status: ``active`` or ``inactive``.

        Returns:
            Ids of the dependents updated, in update order.

        Raises:
            ValueError: If ``new_status`` is not active or inactive.
            CascadeError: If reading or writing a dependent fails.
        """
        new_status = FlagStatus(new_status)
        if new_status not in _DIRECTIONS:
            msg = f"Cannot cascade status {new_status!r}"
            raise ValueError(msg)
        direction = _DIRECTIONS[new_status]

        if flag.is_archived:
            logger.debug(
                "Skipping cascade from archived flag",
                extra={"flag_id": str(flag.id), "scope": flag.scope},
            )
            return []

        async with self._locks.lock_for(flag.scope):
            updated = await self._walk(flag, new_status, direction)

        logger.info(
            "Dependency cascade completed",
            extra={
                "flag_id": str(flag.id),
                "flag_key": flag.key,
                "scope": flag.scope,
                "direction": direction,
                "updated": len(updated),
            },
        )
        return updated

    async def _walk(
        self,
        source: FeatureFlag,
        new_status: FlagStatus,
        direction: str,
    ) -> list[uuid.UUID]:
        scope = source.scope
        from_status = FlagStatus.ACTIVE if new_status is FlagStatus.INACTIVE else FlagStatus.INACTIVE
        visited: set[uuid.UUID] = {source.id}
        updated: list[uuid.UUID] = []
        frontier: set[str] = {source.key}
        current: FeatureFlag = source

        async with self._session_factory() as session:
            while frontier:
                try:
                    candidates = await self._repository.find_dependents(
                        session, scope, frontier, status=from_status
                    )
                except SQLAlchemyError as e:
                    raise self._failure(current, direction, "read dependents", e) from e

                next_frontier: set[str] = set()
                for candidate in candidates:
                    if candidate.id in visited:
                        continue
                    current = candidate
                    if new_status is FlagStatus.ACTIVE and not await self._dependencies_active(
                        session, candidate, direction
                    ):
                        continue

                    try:
                        candidate.status = new_status.value
                        await session.commit()
                    except SQLAlchemyError as e:
                        await session.rollback()
                        raise self._failure(candidate, direction, "update dependent", e) from e

                    visited.add(candidate.id)
                    updated.append(candidate.id)
                    next_frontier.add(candidate.key)
                    flag_cascade_updates_total.labels(direction=direction).inc()
                    logger.info(
                        "Dependent flag %s",
                        "activated" if new_status is FlagStatus.ACTIVE else "deactivated",
                        extra={
                            "flag_id": str(candidate.id),
                            "flag_key": candidate.key,
                            "scope": scope,
                            "source_flag_id": str(source.id),
                        },
                    )
                    await invalidate_flag_caches(self._cache, candidate.id, scope, candidate.key)

                frontier = next_frontier

        return updated

    async def _dependencies_active(
        self,
        session: AsyncSession,
        candidate: FeatureFlag,
        direction: str,
    ) -> bool:
        """Whether every dependency of ``candidate`` is an active flag in its scope.

        A missing or archived dependency blocks activation.
        """
        keys = list(candidate.dependencies or [])
        try:
            found = await self._repository.get_by_keys(session, candidate.scope, keys)
        except SQLAlchemyError as e:
            raise self._failure(candidate, direction, "read dependencies", e) from e

        blocking = [
            key for key in keys if key not in found or found[key].status != FlagStatus.ACTIVE
        ]
        if blocking:
            logger.debug(
                "Dependent flag left inactive",
                extra={"flag_id": str(candidate.id), "blocking": blocking},
            )
            return False
        return True

    def _failure(self, flag: FeatureFlag, direction: str, action: str, error: Exception) -> CascadeError:
        flag_cascade_failures_total.labels(direction=direction).inc()
        logger.error(
            "Dependency cascade failed",
            extra={
                "flag_id": str(flag.id),
                "scope": flag.scope,
                "direction": direction,
                "action": action,
                "error": str(error),
            },
        )
        return CascadeError(
            f"Cascade failed to {action} for flag {flag.key}",
            flag_id=flag.id,
            direction=direction,
        )


__all__ = ["DependencyCascadeEngine", "ScopeLockRegistry"]
