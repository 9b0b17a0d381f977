"""Redis connection settings."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote, urlparse

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ._sanitizers import sanitize_inline_numeric


class RedisSettings(BaseSettings):
    """Redis settings for the flag cache and the worker rate limiter.

    Environment variables use REDIS_ prefix.
    Example: REDIS_REDIS_URL=redis://cache:6379/0, REDIS_KEY_PREFIX=flags:
    """

    redis_url: str | None = Field(
        default=None,
        description="Full Redis URL; populates the component fields",
    )
    host: str = Field(default="localhost")
    port: int = Field(default=6379, ge=1, le=65535)
    db: int = Field(default=0, ge=0, le=15)
    username: str | None = Field(default=None)
    password: SecretStr | None = Field(default=None)
    ssl_enabled: bool = Field(default=False)

    max_connections: int = Field(default=50, ge=1, le=1000)
    socket_timeout: float = Field(default=5.0, ge=0.1, le=60.0)
    socket_connect_timeout: float = Field(default=5.0, ge=0.1, le=60.0)

    default_ttl: int = Field(
        default=60,
        ge=1,
        le=86400,
        description="TTL in seconds for cached flag reads",
    )

    max_retries: int = Field(default=3, ge=0, le=10)
    retry_delay: float = Field(default=0.5, ge=0.0, le=10.0)
    startup_require_cache: bool = Field(
        default=False,
        description="Fail startup if Redis is unavailable (False = degraded mode)",
    )

    key_prefix: str = Field(
        default="flag-service:",
        min_length=1,
        max_length=100,
        pattern=r"^[a-zA-Z0-9_-]+:?$",
        description="Prefix for all cache keys",
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @model_validator(mode="after")
    def _apply_url(self) -> RedisSettings:
        """Parse redis_url into component fields if provided."""
        if not self.redis_url:
            return self

        parsed = urlparse(self.redis_url)
        if parsed.hostname:
            object.__setattr__(self, "host", parsed.hostname)
        if parsed.port:
            object.__setattr__(self, "port", parsed.port)
        if parsed.path and len(parsed.path) > 1 and parsed.path.lstrip("/").isdigit():
            object.__setattr__(self, "db", int(parsed.path.lstrip("/")))
        if parsed.username:
            object.__setattr__(self, "username", parsed.username)
        if parsed.password:
            object.__setattr__(self, "password", SecretStr(parsed.password))
        if parsed.scheme == "rediss":
            object.__setattr__(self, "ssl_enabled", True)

        return self

    @field_validator("default_ttl", mode="before")
    @classmethod
    def _normalize_ttl(cls, value: Any) -> Any:
        """Allow numeric env vars with inline comments (e.g., "60  # 1 minute")."""
        return sanitize_inline_numeric(value)

    @property
    def url(self) -> str:
        """Build Redis URL: redis[s]://[username:password@]host:port/db."""
        scheme = "rediss" if self.ssl_enabled else "redis"

        auth = ""
        if self.username or self.password:
            username_part = quote(self.username) if self.username else ""
            password_part = quote(self.password.get_secret_value()) if self.password else ""
            if username_part and password_part:
                auth = f"{username_part}:{password_part}@"
            elif password_part:
                auth = f":{password_part}@"

        return f"{scheme}://{auth}{self.host}:{self.port}/{self.db}"

    @property
    def is_configured(self) -> bool:
        return self.redis_url is not None or self.host != "localhost"

    def get_prefixed_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"
