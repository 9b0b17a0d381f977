"""Flag read cache.

Flag reads are cached under three key families:

    flags:byId:{flag_id}:{scope}
    flags:byKey:{key}:{scope}
    flags:list:{scope}:{status|all}[:{limit}:{offset}]

Reads go through :func:`cached_flag_read`. Every write to a flag (operator
update, scheduled execution, cascade) invalidates the first two for that
flag and every list of its scope. The cache is best-effort: a stale entry
expires with its TTL, so failures are logged and counted but never raised
to the reader or the writer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import fnmatch
import logging
from typing import TYPE_CHECKING, Any, Protocol

from redis.exceptions import RedisError

from flag_service.infra.cache import get_cache_instance
from flag_service.infra.metrics.prometheus import cache_invalidations_total, cache_reads_total

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from flag_service.infra.cache import RedisCache

logger = logging.getLogger(__name__)


def flag_by_id_key(flag_id: Any, scope: str) -> str:
    return f"flags:byId:{flag_id}:{scope}"


def flag_by_key_key(key: str, scope: str) -> str:
    return f"flags:byKey:{key}:{scope}"


def flag_list_key(scope: str, status: str | None = None) -> str:
    return f"flags:list:{scope}:{status or 'all'}"


class FlagCache(Protocol):
    """Caches flag reads and drops them after a write."""

    async def get(self, key: str) -> Any | None:
        """Cached JSON value, or ``None`` on a miss."""
        ...

    async def set(self, key: str, value: Any) -> None:
        """Store a JSON value with the cache's TTL."""
        ...

    async def invalidate_flag(self, flag_id: Any, scope: str, key: str) -> None:
        """Invalidate the by-id and by-key entries of one flag."""
        ...

    async def invalidate_scope_flag_list(self, scope: str) -> None:
        """Invalidate every cached flag list of a scope."""
        ...


class RedisFlagCache:
    """Flag entries in the shared Redis cache."""

    def __init__(self, cache: RedisCache) -> None:
        self._cache = cache

    async def get(self, key: str) -> Any | None:
        return await self._cache.get(self._cache.key(key))

    async def set(self, key: str, value: Any) -> None:
        await self._cache.set(self._cache.key(key), value)

    async def invalidate_flag(self, flag_id: Any, scope: str, key: str) -> None:
        keys = [
            self._cache.key(flag_by_id_key(flag_id, scope)),
            self._cache.key(flag_by_key_key(key, scope)),
        ]
        try:
            deleted = await self._cache.delete(*keys)
        except (RedisError, OSError) as e:
            cache_invalidations_total.labels(kind="flag", outcome="error").inc()
            logger.warning(
                "Flag cache invalidation failed",
                extra={"flag_id": str(flag_id), "scope": scope, "key": key, "error": str(e)},
            )
            return

        cache_invalidations_total.labels(kind="flag", outcome="success").inc()
        logger.debug(
            "Flag cache invalidated",
            extra={"flag_id": str(flag_id), "scope": scope, "deleted": deleted},
        )

    async def invalidate_scope_flag_list(self, scope: str) -> None:
        pattern = self._cache.key(flag_list_key(scope, "*"))
        try:
            deleted = await self._cache.delete_pattern(pattern)
        except (RedisError, OSError) as e:
            cache_invalidations_total.labels(kind="list", outcome="error").inc()
            logger.warning(
                "Flag list cache invalidation failed",
                extra={"scope": scope, "error": str(e)},
            )
            return

        cache_invalidations_total.labels(kind="list", outcome="success").inc()
        logger.debug("Flag list cache invalidated", extra={"scope": scope, "deleted": deleted})


class NullFlagCache:
    """Used when the process runs without Redis. Every read is a miss."""

    async def get(self, key: str) -> Any | None:
        return None

    async def set(self, key: str, value: Any) -> None:
        return None

    async def invalidate_flag(self, flag_id: Any, scope: str, key: str) -> None:
        cache_invalidations_total.labels(kind="flag", outcome="skipped").inc()

    async def invalidate_scope_flag_list(self, scope: str) -> None:
        cache_invalidations_total.labels(kind="list", outcome="skipped").inc()


@dataclass
class InMemoryFlagCache:
    """Process-local flag cache that records invalidations. For tests and local runs.

    Attributes:
        entries: Cached values by key.
        flags: ``(flag_id, scope, key)`` per ``invalidate_flag`` call.
        scopes: Scope per ``invalidate_scope_flag_list`` call.
        fail: When set, every call raises instead of touching the cache.
    """

    entries: dict[str, Any] = field(default_factory=dict)
    flags: list[tuple[str, str, str]] = field(default_factory=list)
    scopes: list[str] = field(default_factory=list)
    fail: bool = False

    def _check(self) -> None:
        if self.fail:
            msg = "cache unavailable"
            raise ConnectionError(msg)

    async def get(self, key: str) -> Any | None:
        self._check()
        return self.entries.get(key)

    async def set(self, key: str, value: Any) -> None:
        self._check()
        self.entries[key] = value

    async def invalidate_flag(self, flag_id: Any, scope: str, key: str) -> None:
        self._check()
        self.entries.pop(flag_by_id_key(flag_id, scope), None)
        self.entries.pop(flag_by_key_key(key, scope), None)
        self.flags.append((str(flag_id), scope, key))

    async def invalidate_scope_flag_list(self, scope: str) -> None:
        self._check()
        pattern = flag_list_key(scope, "*")
        for cached_key in fnmatch.filter(list(self.entries), pattern):
            del self.entries[cached_key]
        self.scopes.append(scope)

    @property
    def invalidated_ids(self) -> list[str]:
        return [flag_id for flag_id, _, _ in self.flags]


async def cached_flag_read(
    cache: FlagCache,
    key: str,
    load: Callable[[], Awaitable[Any]],
    *,
    kind: str,
) -> Any:
    """Return the cached value for ``key``, or load and cache it.

    ``load`` must return a JSON-serialisable value; it is not cached when
    it raises. Cache failures fall back to ``load`` and are never raised.

    Example:
        data = await cached_flag_read(
            cache, flag_by_id_key(flag_id, scope), load_flag, kind="id"
        )
    """
    try:
        cached = await cache.get(key)
    except Exception as e:
        cache_reads_total.labels(kind=kind, outcome="error").inc()
        logger.warning("Flag cache read failed", extra={"key": key, "error": str(e)})
        return await load()

    if cached is not None:
        cache_reads_total.labels(kind=kind, outcome="hit").inc()
        logger.debug("Flag cache hit", extra={"key": key})
        return cached

    cache_reads_total.labels(kind=kind, outcome="miss").inc()
    value = await load()
    try:
        await cache.set(key, value)
    except Exception as e:
        logger.warning("Flag cache write failed", extra={"key": key, "error": str(e)})
    return value


async def invalidate_flag_caches(
    cache: FlagCache,
    flag_id: Any,
    scope: str,
    key: str,
) -> None:
    """Invalidate one flag and its scope lists, logging any adapter failure.

    Called after every committed flag write. Never raises.
    """
    try:
        await cache.invalidate_flag(flag_id, scope, key)
        await cache.invalidate_scope_flag_list(scope)
    except Exception as e:
        cache_invalidations_total.labels(kind="flag", outcome="error").inc()
        logger.warning(
            "Flag cache invalidation failed",
            extra={"flag_id": str(flag_id), "scope": scope, "key": key, "error": str(e)},
        )


def get_flag_cache() -> FlagCache:
    """Flag cache bound to the process-wide Redis cache, or a no-op without Redis."""
    cache = get_cache_instance()
    if cache is None:
        return NullFlagCache()
    return RedisFlagCache(cache)


__all__ = [
    "FlagCache",
    "InMemoryFlagCache",
    "NullFlagCache",
    "RedisFlagCache",
    "cached_flag_read",
    "flag_by_id_key",
    "flag_by_key_key",
    "flag_list_key",
    "get_flag_cache",
    "invalidate_flag_caches",
]
