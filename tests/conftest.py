"""Pytest configuration and shared fixtures.

Organization:
    - Environment: settings that keep tests off external infrastructure
    - Database Fixtures: SQLite engine (file-backed, WAL) and session factory
    - Adapter Fixtures: in-memory dispatch gateway and flag cache
    - Data Factories: flags persisted directly, schedules through the service
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import UTC, datetime, timedelta
import os
from typing import TYPE_CHECKING, Any

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Ensure tests run without external infrastructure
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("DB_ENABLED", "false")
os.environ.setdefault("REDIS_REDIS_URL", "")
os.environ.setdefault("RABBIT_ENABLED", "false")
os.environ.setdefault("LOG_FILE_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("SCHEDULING_RATE_LIMIT_ENABLED", "false")

from flag_service.core.database import Base  # noqa: E402
from flag_service.core.settings import SchedulingSettings  # noqa: E402
from flag_service.features.featureflags.cache import InMemoryFlagCache  # noqa: E402
from flag_service.features.featureflags.cascade import (  # noqa: E402
    DependencyCascadeEngine,
    ScopeLockRegistry,
)
from flag_service.features.featureflags.models import FeatureFlag, FlagStatus, FlagType  # noqa: E402
from flag_service.features.flagschedules.dispatch import InMemoryDispatchGateway  # noqa: E402
from flag_service.features.flagschedules.executor import FlagScheduleExecutor  # noqa: E402
from flag_service.features.flagschedules.lifecycle import ScheduleLifecycleManager  # noqa: E402
from flag_service.features.flagschedules.service import FlagScheduleService  # noqa: E402
from flag_service.features.flagschedules.worker import ExecutionWorker  # noqa: E402

if TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

SCOPE = "website:site_1"


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine]:
    """File-backed SQLite engine with every table created.

    A file (not ``:memory:``) so each session gets its own connection, and
    WAL mode so an open read transaction never blocks another session's
    commit.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'flags.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection: Any, _record: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    # Register models on Base.metadata
    import flag_service.features.featureflags.models
    import flag_service.features.flagschedules.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def reload(session_factory: async_sessionmaker[AsyncSession]) -> Callable[..., Awaitable[Any]]:
    """Read a row through a fresh session, bypassing any identity map.

    Example:
        flag = await reload(FeatureFlag, flag_id)
    """

    async def _reload(model: type, pk: Any) -> Any:
        async with session_factory() as session:
            return await session.get(model, pk)

    return _reload


# ============================================================================
# Adapter Fixtures
# ============================================================================


@pytest.fixture
def cache() -> InMemoryFlagCache:
    return InMemoryFlagCache()


@pytest.fixture
def gateway() -> InMemoryDispatchGateway:
    return InMemoryDispatchGateway()


@pytest.fixture
def scheduling_settings() -> SchedulingSettings:
    return SchedulingSettings(rate_limit_enabled=False, max_concurrency=5)


@pytest.fixture
def cascade_engine(
    session_factory: async_sessionmaker[AsyncSession],
    cache: InMemoryFlagCache,
) -> DependencyCascadeEngine:
    return DependencyCascadeEngine(session_factory, cache=cache, locks=ScopeLockRegistry())


@pytest.fixture
def lifecycle(gateway: InMemoryDispatchGateway) -> ScheduleLifecycleManager:
    return ScheduleLifecycleManager(gateway)


@pytest.fixture
def executor(
    session_factory: async_sessionmaker[AsyncSession],
    cache: InMemoryFlagCache,
    scheduling_settings: SchedulingSettings,
) -> FlagScheduleExecutor:
    return FlagScheduleExecutor(session_factory, cache=cache, settings=scheduling_settings)


@pytest.fixture
def clock() -> list[datetime]:
    """Mutable clock for the worker: tests assign ``clock[0]``."""
    return [datetime.now(UTC)]


@pytest.fixture
def worker(
    session_factory: async_sessionmaker[AsyncSession],
    executor: FlagScheduleExecutor,
    cascade_engine: DependencyCascadeEngine,
    scheduling_settings: SchedulingSettings,
    clock: list[datetime],
) -> ExecutionWorker:
    return ExecutionWorker(
        session_factory,
        executor=executor,
        cascade=cascade_engine,
        settings=scheduling_settings,
        clock=lambda: clock[0],
    )


# ============================================================================
# Data Factories
# ============================================================================


@pytest.fixture
def make_flag(session_factory: async_sessionmaker[AsyncSession]) -> Callable[..., Awaitable[FeatureFlag]]:
    """Persist a flag directly, bypassing service validation.

    Example:
        flag = await make_flag("checkout", status=FlagStatus.INACTIVE, dependencies=["payments"])
    """

    async def _make(
        key: str,
        *,
        status: FlagStatus = FlagStatus.ACTIVE,
        type: FlagType = FlagType.BOOLEAN,  # noqa: A002
        dependencies: list[str] | None = None,
        scope: str = SCOPE,
        rollout_percentage: int = 0,
    ) -> FeatureFlag:
        flag = FeatureFlag(
            key=key,
            name=key.replace("-", " ").title(),
            type=type.value,
            status=status.value,
            rollout_percentage=rollout_percentage,
            dependencies=dependencies or [],
            website_id=scope.split(":", 1)[1],
            scope=scope,
            deleted_at=datetime.now(UTC) if status is FlagStatus.ARCHIVED else None,
        )
        async with session_factory() as session:
            session.add(flag)
            await session.commit()
        return flag

    return _make


@pytest.fixture
def future() -> Callable[..., datetime]:
    """``future(minutes=5)`` -> an aware UTC time that many minutes ahead."""

    def _future(**delta: float) -> datetime:
        return datetime.now(UTC).replace(microsecond=0) + timedelta(**delta)

    return _future


@pytest.fixture
def schedule_service(db_session: AsyncSession, lifecycle: ScheduleLifecycleManager) -> FlagScheduleService:
    return FlagScheduleService(db_session, lifecycle=lifecycle)
