"""Redis cache client with retry and connection pooling.

Used for cached flag lookups (by id, by key, per-scope lists) and as the
backing store of the worker rate limiter.
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any, cast

from redis.asyncio import ConnectionPool, Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from flag_service.core.settings import get_redis_settings
from flag_service.infra.metrics.prometheus import cache_invalidations_total

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable

    from flag_service.core.settings import RedisSettings

logger = logging.getLogger(__name__)


class RedisCache:
    """Redis cache client with retry logic and connection pooling.

    Example:
        cache = RedisCache()
        await cache.connect()
        await cache.set(cache.key("flags:byId:123:website:abc"), {"status": "active"}, ttl=60)
        await cache.delete(cache.key("flags:byId:123:website:abc"))
        await cache.delete_pattern(cache.key("flags:list:website:abc:*"))
        await cache.disconnect()
    """

    def __init__(self, settings: RedisSettings | None = None) -> None:
        self._settings = settings or get_redis_settings()
        self._pool: ConnectionPool | None = None
        self._client: Redis | None = None

    async def connect(self) -> None:
        """Establish a pooled connection and ping the server.

        Raises:
            RedisConnectionError: If unable to connect to Redis.
        """
        settings = self._settings
        logger.info(
            "Connecting to Redis",
            extra={
                "host": settings.host,
                "port": settings.port,
                "db": settings.db,
                "max_connections": settings.max_connections,
            },
        )

        try:
            self._pool = ConnectionPool.from_url(
                settings.url,
                max_connections=settings.max_connections,
                socket_timeout=settings.socket_timeout,
                socket_connect_timeout=settings.socket_connect_timeout,
                decode_responses=True,
                retry=Retry(
                    ExponentialBackoff(cap=5.0, base=settings.retry_delay or 0.1),
                    settings.max_retries,
                ),
                retry_on_error=[RedisConnectionError, RedisTimeoutError],
            )
            self._client = Redis(connection_pool=self._pool)
            await cast("Awaitable[bool]", self._client.ping())
            logger.info("Redis connection established successfully")
        except Exception as e:
            logger.exception("Failed to connect to Redis", extra={"error": str(e)})
            raise

    async def disconnect(self) -> None:
        """Close Redis connection and cleanup resources."""
        logger.info("Disconnecting from Redis")
        if self._client:
            await self._client.aclose()
            self._client = None
        if self._pool:
            await self._pool.aclose()
            self._pool = None
        logger.info("Redis connection closed")

    @property
    def client(self) -> Redis:
        """Get the Redis client instance.

        Raises:
            RuntimeError: If not connected.
        """
        if self._client is None:
            msg = "Redis client not connected. Call connect() first."
            raise RuntimeError(msg)
        return self._client

    def key(self, key: str) -> str:
        """Apply the configured key prefix."""
        return self._settings.get_prefixed_key(key)

    async def get(self, key: str) -> Any | None:
        """Get a JSON value from cache, or ``None`` when absent."""
        value = await self.client.get(key)
        if value is None:
            return None
        try:
            return json.loads(value)
        except (json.JSONDecodeError, TypeError):
            return value

    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """Set a value, JSON-encoding anything that is not already a string."""
        if not isinstance(value, str):
            value = json.dumps(value, default=str)
        result = await self.client.set(key, value, ex=ttl or self._settings.default_ttl)
        return bool(result)

    async def delete(self, *keys: str) -> int:
        """Delete one or more keys. Returns how many existed."""
        if not keys:
            return 0
        start_time = time.perf_counter()
        deleted = await self.client.delete(*keys)
        logger.debug(
            "Cache keys deleted",
            extra={"keys": list(keys), "duration": time.perf_counter() - start_time},
        )
        return int(deleted or 0)

    async def scan_iter(self, match: str, count: int = 100) -> AsyncIterator[str]:
        async for key in self.client.scan_iter(match=match, count=count):
            yield key

    async def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching a glob pattern."""
        keys = [key async for key in self.scan_iter(match=pattern)]
        if not keys:
            return 0
        return await self.delete(*keys)


_cache: RedisCache | None = None


async def start_cache() -> RedisCache | None:
    """Initialize the process-wide Redis cache.

    Returns ``None`` in degraded mode, when Redis is unreachable and
    ``startup_require_cache`` is off.
    """
    global _cache
    settings = get_redis_settings()
    logger.info("Starting Redis cache")

    cache = RedisCache(settings)
    try:
        await cache.connect()
    except (RedisConnectionError, RedisTimeoutError, OSError) as e:
        if settings.startup_require_cache:
            raise
        logger.warning(
            "Redis unavailable, continuing without cache",
            extra={"error": str(e)},
        )
        cache_invalidations_total.labels(kind="startup", outcome="unavailable").inc()
        return None

    _cache = cache
    return _cache


async def stop_cache() -> None:
    """Close the process-wide Redis cache."""
    global _cache
    if _cache is None:
        return
    logger.info("Stopping Redis cache")
    await _cache.disconnect()
    _cache = None


def get_cache_instance() -> RedisCache | None:
    """Return the process-wide cache if it was started."""
    return _cache
