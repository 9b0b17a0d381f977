"""Redis-backed sliding window rate limiter.

The execution worker uses it as a fleet-wide ceiling on how many schedule
executions start per window, across every worker replica.
"""

from __future__ import annotations

import hashlib
import logging
import time
import uuid
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

# Atomic sliding window: drop expired entries, count, admit if room remains
_SLIDING_WINDOW_LUA = """
local key = KEYS[1]
local limit = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local now = tonumber(ARGV[3])
local cost = tonumber(ARGV[4])
local nonce = ARGV[5]

redis.call('ZREMRANGEBYSCORE', key, 0, now - window)
local current = redis.call('ZCARD', key)

if current + cost <= limit then
    for i = 1, cost do
        redis.call('ZADD', key, now, nonce .. ':' .. i)
    end
    redis.call('EXPIRE', key, window)
    return {1, limit - (current + cost)}
else
    return {0, 0}
end
"""


class RateLimiter:
    """Redis-backed rate limiter using a sorted-set sliding window.

    Attributes:
        redis: Redis client instance.
        key_prefix: Prefix for Redis keys.
        default_limit: Default number of admissions per window.
        default_window: Default time window in seconds.

    Example:
        limiter = RateLimiter(redis_client, key_prefix="flag-service:ratelimit")
        allowed, meta = await limiter.check_limit("flag-schedule-executions", limit=10, window=1)
    """

    def __init__(
        self,
        redis: Redis,
        key_prefix: str = "ratelimit",
        default_limit: int = 100,
        default_window: int = 60,
    ) -> None:
        self.redis = redis
        self.key_prefix = key_prefix
        self.default_limit = default_limit
        self.default_window = default_window

    def _make_key(self, identifier: str) -> str:
        # Hash long identifiers to keep key size reasonable
        if len(identifier) > 50:
            identifier = hashlib.sha256(identifier.encode()).hexdigest()[:16]
        return f"{self.key_prefix}:{identifier}"

    async def check_limit(
        self,
        key: str,
        limit: int | None = None,
        window: int | None = None,
        cost: int = 1,
    ) -> tuple[bool, dict[str, int]]:
        """Try to consume ``cost`` slots from the window for ``key``.

        Args:
            key: Identifier being limited.
            limit: Admissions allowed per window (uses default if None).
            window: Window length in seconds (uses default if None).
            cost: Slots to consume.

        Returns:
            Tuple of (is_allowed, metadata) where metadata contains
            ``limit``, ``remaining``, ``reset`` and ``retry_after``.

        When Redis fails the check fails open: the error is logged and the
        call is allowed.
        """
        limit = limit or self.default_limit
        window = window or self.default_window
        redis_key = self._make_key(key)
        now = time.time()

        try:
            result = await self.redis.eval(
                _SLIDING_WINDOW_LUA,
                1,
                redis_key,
                limit,
                window,
                now,
                cost,
                uuid.uuid4().hex,
            )
        except Exception as e:
            logger.error(
                "Rate limit check failed, allowing request",
                extra={"key": key, "error": str(e)},
                exc_info=True,
            )
            return True, {
                "limit": limit,
                "remaining": limit - cost,
                "reset": int(now + window),
                "retry_after": 0,
            }

        allowed = bool(result[0])
        remaining = int(result[1])
        if not allowed:
            logger.debug(
                "Rate limit reached",
                extra={"key": key, "limit": limit, "window": window},
            )

        return allowed, {
            "limit": limit,
            "remaining": remaining,
            "reset": int(now + window),
            "retry_after": window if not allowed else 0,
        }

    async def reset_limit(self, key: str) -> bool:
        """Reset the window for ``key``."""
        try:
            await self.redis.delete(self._make_key(key))
        except Exception:
            logger.exception("Failed to reset rate limit", extra={"key": key})
            return False
        logger.info("Rate limit reset", extra={"key": key})
        return True
