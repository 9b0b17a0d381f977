"""Flag scheduling and execution settings.

Environment variables use SCHEDULING_ prefix.
Example: SCHEDULING_MAX_CONCURRENCY=10, SCHEDULING_RATE_LIMIT_MAX_JOBS=20
"""

from __future__ import annotations

from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ._sanitizers import sanitize_inline_numeric


class SchedulingSettings(BaseSettings):
    """Settings for dispatch, the execution worker and the cascade engine.

    The worker limits protect the flag store when many schedules fire at
    the same moment: at most ``max_concurrency`` executions are in flight
    and at most ``rate_limit_max_jobs`` start per ``rate_limit_window_seconds``.
    """

    # ──────────────────────────────────────────────────────────────
    # Execution worker
    # ──────────────────────────────────────────────────────────────
    max_concurrency: int = Field(
        default=5,
        ge=1,
        le=500,
        description="Maximum schedule executions in flight per worker process",
    )
    rate_limit_enabled: bool = Field(
        default=True,
        description="Apply the Redis-backed jobs-per-window ceiling",
    )
    rate_limit_max_jobs: int = Field(
        default=10,
        ge=1,
        le=100_000,
        description="Maximum executions started per rate window",
    )
    rate_limit_window_seconds: int = Field(
        default=1,
        ge=1,
        le=3600,
        description="Length of the rate window in seconds",
    )
    rate_limit_poll_interval: float = Field(
        default=0.1,
        gt=0.0,
        le=10.0,
        description="Seconds to wait before re-checking a saturated rate window",
    )
    step_claim_attempts: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Optimistic retries when stamping a rollout step races another writer",
    )
    early_fire_tolerance_seconds: float = Field(
        default=1.0,
        ge=0.0,
        le=3600.0,
        description=(
            "A single-shot message that fires more than this many seconds before "
            "the schedule's scheduled_at is treated as superseded"
        ),
    )

    # ──────────────────────────────────────────────────────────────
    # Dispatch (APScheduler job store + Taskiq)
    # ──────────────────────────────────────────────────────────────
    jobstore_url: str | None = Field(
        default=None,
        description="Synchronous SQLAlchemy URL for persisted dispatch jobs (None = in-memory)",
    )
    jobstore_table: str = Field(
        default="flag_schedule_dispatch_jobs",
        pattern=r"^[a-z_][a-z0-9_]*$",
    )
    task_retry_count: int = Field(
        default=3,
        ge=0,
        le=20,
        description="Taskiq retries for a failed execution before it is reported as failed",
    )

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULING_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @field_validator(
        "max_concurrency",
        "rate_limit_max_jobs",
        "rate_limit_window_seconds",
        "task_retry_count",
        mode="before",
    )
    @classmethod
    def _normalize_numbers(cls, value: Any) -> Any:
        return sanitize_inline_numeric(value)
