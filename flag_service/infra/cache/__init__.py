"""Redis cache client."""

from .redis import RedisCache, get_cache_instance, start_cache, stop_cache

__all__ = ["RedisCache", "get_cache_instance", "start_cache", "stop_cache"]
