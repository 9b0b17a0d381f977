"""Flag schedules: validation, dispatch, execution.

Usage:
    from flag_service.features.flagschedules import (
        ExecutionWorker,
        FlagScheduleService,
        ScheduleLifecycleManager,
    )

The HTTP routes live in ``flag_service.features.flagschedules.router`` and
the Taskiq task in ``flag_service.features.flagschedules.tasks``.
"""

from __future__ import annotations

from .dispatch import APSchedulerDispatchGateway, DispatchGateway, InMemoryDispatchGateway
from .executor import ApplyResult, FlagScheduleExecutor
from .lifecycle import ScheduleDefinition, ScheduleLifecycleManager
from .models import FlagSchedule, ScheduleType
from .repository import FlagScheduleRepository
from .schemas import (
    DispatchMessage,
    ExecutionResult,
    FlagScheduleCreate,
    FlagScheduleResponse,
    FlagScheduleUpdate,
    RolloutStep,
    SkipReason,
)
from .service import FlagScheduleService
from .validation import validate_schedule
from .worker import ExecutionWorker

__all__ = [
    "APSchedulerDispatchGateway",
    "ApplyResult",
    "DispatchGateway",
    "DispatchMessage",
    "ExecutionResult",
    "ExecutionWorker",
    "FlagSchedule",
    "FlagScheduleCreate",
    "FlagScheduleExecutor",
    "FlagScheduleRepository",
    "FlagScheduleResponse",
    "FlagScheduleService",
    "FlagScheduleUpdate",
    "InMemoryDispatchGateway",
    "RolloutStep",
    "ScheduleDefinition",
    "ScheduleLifecycleManager",
    "ScheduleType",
    "SkipReason",
    "validate_schedule",
]
