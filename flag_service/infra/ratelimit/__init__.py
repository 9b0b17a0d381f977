"""Distributed rate limiting."""

from .limiter import RateLimiter

__all__ = ["RateLimiter"]
