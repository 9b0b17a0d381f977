"""Feature flag service.

Operator-facing flag management. Reads served to the API go through the
flag cache; every committed write invalidates the flag's cache entries, and
a status change to active or inactive runs the dependency cascade.
"""

from __future__ import annotations

from datetime import UTC, datetime
import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import IntegrityError

from flag_service.core.exceptions import ConflictException, FlagNotFoundError, ValidationException

from .cache import (
    cached_flag_read,
    flag_by_id_key,
    flag_by_key_key,
    flag_list_key,
    invalidate_flag_caches,
)
from .models import FeatureFlag, FlagStatus
from .repository import FeatureFlagRepository, get_feature_flag_repository
from .schemas import FeatureFlagListResponse, FeatureFlagResponse

if TYPE_CHECKING:
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from .cache import FlagCache
    from .cascade import DependencyCascadeEngine
    from .schemas import FeatureFlagCreate, FeatureFlagUpdate

logger = logging.getLogger(__name__)

_NOT_NULL_FIELDS = frozenset(
    {"type", "status", "default_value", "rollout_percentage", "rules", "variants", "dependencies"}
)


class FeatureFlagService:
    """Service for managing feature flags.

    Example:
        service = FeatureFlagService(session, cache=flag_cache, cascade=engine)
        flag = await service.create(
            FeatureFlagCreate(key="checkout-v2", website_id="site_123"),
            created_by="user_1",
        )
        await service.update(flag.id, FeatureFlagUpdate(status=FlagStatus.INACTIVE))
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        cache: FlagCache,
        cascade: DependencyCascadeEngine,
        repository: FeatureFlagRepository | None = None,
    ) -> None:
        self.session = session
        self._cache = cache
        self._cascade = cascade
        self._repository = repository or get_feature_flag_repository()

    async def create(self, data: FeatureFlagCreate, *, created_by: str | None = None) -> FeatureFlag:
        """Create a flag, or restore an archived flag with the same key.

        Raises:
            ConflictException: If a live flag with the key exists in the scope.
        """
        scope = data.scope
        existing = await self._repository.get_by_key(
            self.session, scope, data.key, include_archived=True
        )
        if existing is not None and not existing.is_deleted:
            msg = f"A flag with key '{data.key}' already exists in {scope}"
            raise ConflictException(detail=msg, type="flag-key-conflict", extra={"key": data.key})

        values = self._column_values(
            data.model_dump(mode="json", exclude={"website_id", "organization_id", "user_id"})
        )

        if existing is not None:
            for field, value in values.items():
                setattr(existing, field, value)
            existing.deleted_at = None
            flag = await self._repository.save(self.session, existing)
            action = "restored"
        else:
            flag = FeatureFlag(
                **values,
                website_id=data.website_id,
                organization_id=data.organization_id,
                user_id=data.user_id,
                scope=scope,
                created_by=created_by,
            )
            try:
                flag = await self._repository.create(self.session, flag)
            except IntegrityError as e:
                await self.session.rollback()
                msg = f"A flag with key '{data.key}' already exists in {scope}"
                raise ConflictException(detail=msg, type="flag-key-conflict", extra={"key": data.key}) from e
            action = "created"

        await self.session.commit()
        await invalidate_flag_caches(self._cache, flag.id, flag.scope, flag.key)

        logger.info(
            "Feature flag %s",
            action,
            extra={"flag_id": str(flag.id), "flag_key": flag.key, "scope": scope, "created_by": created_by},
        )
        return flag

    async def get(self, flag_id: UUID, *, populate_existing: bool = False) -> FeatureFlag:
        """Get a non-archived flag by id.

        Raises:
            FlagNotFoundError: If missing or archived.
        """
        flag = await self._repository.get(self.session, flag_id, populate_existing=populate_existing)
        if flag is None or flag.is_deleted:
            raise FlagNotFoundError(flag_id)
        return flag

    async def get_by_key(self, scope: str, key: str, *, populate_existing: bool = False) -> FeatureFlag:
        """Get the active flag with ``key`` in ``scope``.

        Raises:
            FlagNotFoundError: If no active flag has that key.
        """
        flag = await self._repository.get_by_key(
            self.session, scope, key, populate_existing=populate_existing
        )
        if flag is None or flag.status != FlagStatus.ACTIVE:
            raise FlagNotFoundError(key, field="key")
        return flag

    async def read(self, flag_id: UUID, scope: str) -> FeatureFlagResponse:
        """Cached read of a non-archived flag owned by ``scope``.

        Raises:
            FlagNotFoundError: If missing, archived, or owned by another scope.
        """

        async def load() -> dict[str, Any]:
            flag = await self.get(flag_id, populate_existing=True)
            if flag.scope != scope:
                raise FlagNotFoundError(flag_id)
            return FeatureFlagResponse.model_validate(flag).model_dump(mode="json")

        data = await cached_flag_read(self._cache, flag_by_id_key(flag_id, scope), load, kind="id")
        return FeatureFlagResponse.model_validate(data)

    async def read_by_key(self, scope: str, key: str) -> FeatureFlagResponse:
        """Cached :meth:`get_by_key`."""

        async def load() -> dict[str, Any]:
            flag = await self.get_by_key(scope, key, populate_existing=True)
            return FeatureFlagResponse.model_validate(flag).model_dump(mode="json")

        data = await cached_flag_read(self._cache, flag_by_key_key(key, scope), load, kind="key")
        return FeatureFlagResponse.model_validate(data)

    async def list_flags(
        self,
        scope: str,
        *,
        status: FlagStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> FeatureFlagListResponse:
        """Cached page of a scope's flags, newest first."""

        async def load() -> dict[str, Any]:
            result = await self._repository.list_for_scope(
                self.session, scope, status=status, limit=limit, offset=offset
            )
            return FeatureFlagListResponse(
                items=[FeatureFlagResponse.model_validate(f) for f in result.items],
                total=result.total,
            ).model_dump(mode="json")

        cache_key = f"{flag_list_key(scope, status.value if status else None)}:{limit}:{offset}"
        data = await cached_flag_read(self._cache, cache_key, load, kind="list")
        return FeatureFlagListResponse.model_validate(data)

    async def update(self, flag_id: UUID, data: FeatureFlagUpdate) -> FeatureFlag:
        """Apply a partial update; cascade when the status changes.

        Setting ``status=archived`` is the same as calling :meth:`archive`.

        Raises:
            FlagNotFoundError: If the flag is missing or archived.
            ValidationException: If the flag would depend on itself.
            CascadeError: If the cascade fails. The flag update stays committed.
        """
        if data.status is FlagStatus.ARCHIVED:
            return await self.archive(flag_id)

        flag = await self.get(flag_id)
        changes = data.model_dump(mode="json", exclude_unset=True)
        if flag.key in (changes.get("dependencies") or []):
            msg = f"Flag '{flag.key}' cannot depend on itself"
            raise ValidationException(detail=msg, extra={"dependencies": changes["dependencies"]})

        previous_status = flag.status
        for field, value in self._column_values(changes).items():
            setattr(flag, field, value)

        flag = await self._repository.save(self.session, flag)
        await self.session.commit()
        await invalidate_flag_caches(self._cache, flag.id, flag.scope, flag.key)

        logger.info(
            "Feature flag updated",
            extra={"flag_id": str(flag.id), "flag_key": flag.key, "fields": sorted(changes)},
        )

        if flag.status != previous_status:
            await self._cascade.cascade(flag, flag.status)
        return flag

    async def archive(self, flag_id: UUID) -> FeatureFlag:
        """Archive a flag. Archived flags are hidden and never cascade.

        Raises:
            FlagNotFoundError: If the flag is missing or already archived.
        """
        flag = await self.get(flag_id)
        flag.status = FlagStatus.ARCHIVED.value
        flag.deleted_at = datetime.now(UTC)
        await self.session.commit()
        await invalidate_flag_caches(self._cache, flag.id, flag.scope, flag.key)

        logger.info(
            "Feature flag archived",
            extra={"flag_id": str(flag.id), "flag_key": flag.key, "scope": flag.scope},
        )
        return flag

    @staticmethod
    def _column_values(values: dict[str, Any]) -> dict[str, Any]:
        """Drop explicit nulls for columns that cannot hold them."""
        return {
            field: value
            for field, value in values.items()
            if value is not None or field not in _NOT_NULL_FIELDS
        }


__all__ = ["FeatureFlagService"]
