"""PostgreSQL connection settings."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote_plus, unquote, urlparse

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ._sanitizers import sanitize_inline_numeric

SQLITE_FALLBACK_URL = "sqlite+aiosqlite:///./flag_service.db"


class PostgresSettings(BaseSettings):
    """Database settings.

    Environment variables use DB_ prefix.
    Example: DB_DSN=postgresql+psycopg://flags:secret@db:5432/flags

    Either ``dsn`` or the individual components may be provided; the DSN
    wins and populates the components. When the database is disabled the
    engine falls back to a local SQLite file.
    """

    enabled: bool = Field(default=False, description="Use PostgreSQL instead of SQLite")
    dsn: str | None = Field(default=None, description="Full SQLAlchemy DSN")

    host: str = Field(default="localhost")
    port: int = Field(default=5432, ge=1, le=65535)
    user: str = Field(default="postgres")
    password: SecretStr = Field(default=SecretStr("postgres"))
    name: str = Field(default="flag_service")
    driver: str = Field(default="psycopg", description="SQLAlchemy async driver")
    application_name: str = Field(default="flag-service")

    pool_size: int = Field(default=10, ge=1, le=100)
    max_overflow: int = Field(default=10, ge=0, le=100)
    pool_timeout: float = Field(default=30.0, ge=1.0, le=300.0)
    pool_recycle: int = Field(default=1800, ge=60, le=86400)
    pool_pre_ping: bool = Field(default=True)
    echo: bool = Field(default=False, description="Log SQL statements")

    sqlite_url: str = Field(
        default=SQLITE_FALLBACK_URL,
        description="URL used when PostgreSQL is not configured",
    )

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @field_validator("pool_size", "max_overflow", "pool_recycle", mode="before")
    @classmethod
    def _normalize_numbers(cls, value: Any) -> Any:
        return sanitize_inline_numeric(value)

    @model_validator(mode="after")
    def _apply_dsn(self) -> PostgresSettings:
        """Populate connection components from DSN if provided.

        Uses object.__setattr__ because the model is frozen.
        """
        if not self.dsn:
            return self

        parsed = urlparse(self.dsn)
        if parsed.hostname:
            object.__setattr__(self, "host", parsed.hostname)
        if parsed.port:
            object.__setattr__(self, "port", parsed.port)
        if parsed.username:
            object.__setattr__(self, "user", unquote(parsed.username))
        if parsed.password:
            object.__setattr__(self, "password", SecretStr(unquote(parsed.password)))
        if parsed.path and parsed.path != "/":
            object.__setattr__(self, "name", parsed.path.lstrip("/"))
        if parsed.scheme and "+" in parsed.scheme:
            object.__setattr__(self, "driver", parsed.scheme.split("+")[1])
        object.__setattr__(self, "enabled", True)

        return self

    @property
    def url(self) -> str:
        """SQLAlchemy async URL built from the component fields."""
        safe_password = quote_plus(self.password.get_secret_value())
        safe_app_name = quote_plus(self.application_name)
        return (
            f"postgresql+{self.driver}://{self.user}:{safe_password}"
            f"@{self.host}:{self.port}/{self.name}?application_name={safe_app_name}"
        )

    @property
    def is_configured(self) -> bool:
        """Check if database is configured with valid connection info."""
        return self.enabled and bool(self.host and self.name)

    def get_sqlalchemy_url(self) -> str:
        """Return the async URL, or the SQLite fallback when unconfigured."""
        return self.url if self.is_configured else self.sqlite_url

    def sqlalchemy_engine_kwargs(self) -> dict[str, Any]:
        """Engine keyword arguments. Pool sizing only applies to PostgreSQL."""
        if not self.is_configured:
            return {"echo": self.echo}
        return {
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_timeout": self.pool_timeout,
            "pool_recycle": self.pool_recycle,
            "pool_pre_ping": self.pool_pre_ping,
            "echo": self.echo,
        }
