"""Modular settings, one pydantic-settings class per concern."""

from __future__ import annotations

from .app import AppSettings
from .loader import (
    clear_all_caches,
    get_app_settings,
    get_db_settings,
    get_logging_settings,
    get_rabbit_settings,
    get_redis_settings,
    get_scheduling_settings,
)
from .logs import LoggingSettings
from .postgres import PostgresSettings
from .rabbit import RabbitSettings
from .redis import RedisSettings
from .scheduling import SchedulingSettings

__all__ = [
    "AppSettings",
    "LoggingSettings",
    "PostgresSettings",
    "RabbitSettings",
    "RedisSettings",
    "SchedulingSettings",
    "clear_all_caches",
    "get_app_settings",
    "get_db_settings",
    "get_logging_settings",
    "get_rabbit_settings",
    "get_redis_settings",
    "get_scheduling_settings",
]
