"""APScheduler instance acting as the delayed-delivery service.

Each dispatched flag schedule message becomes a one-shot ``DateTrigger``
job. With ``SCHEDULING_JOBSTORE_URL`` set, jobs live in a SQLAlchemy job
store so pending messages survive restarts; otherwise they are kept in
memory.

Architecture:
    APScheduler (in-process) -> Taskiq kiq() -> RabbitMQ -> Taskiq worker
"""

from __future__ import annotations

import logging
from typing import Any

from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from flag_service.core.settings import get_scheduling_settings

logger = logging.getLogger(__name__)


def _build_jobstores() -> dict[str, Any]:
    settings = get_scheduling_settings()
    if settings.jobstore_url:
        return {
            "default": SQLAlchemyJobStore(
                url=settings.jobstore_url,
                tablename=settings.jobstore_table,
            )
        }
    return {"default": MemoryJobStore()}


def create_scheduler() -> AsyncIOScheduler:
    """Build a scheduler configured for one-shot dispatch jobs.

    ``misfire_grace_time=None`` runs a job however late the scheduler gets
    to it (for example after downtime); the worker's idempotency checks
    make late or duplicate firing safe.
    """
    return AsyncIOScheduler(
        timezone="UTC",
        jobstores=_build_jobstores(),
        job_defaults={
            "coalesce": False,
            "max_instances": 1,
            "misfire_grace_time": None,
        },
    )


scheduler = create_scheduler()


async def start_scheduler() -> None:
    """Start the APScheduler. Call during application startup."""
    if scheduler.running:
        logger.warning("APScheduler is already running")
        return

    logger.info("Starting APScheduler")
    scheduler.start()
    logger.info(
        "APScheduler started",
        extra={"pending_jobs": len(scheduler.get_jobs())},
    )


async def stop_scheduler() -> None:
    """Stop the APScheduler. Pending jobs stay in the job store."""
    if not scheduler.running:
        logger.debug("APScheduler is not running")
        return

    logger.info("Stopping APScheduler")
    scheduler.shutdown(wait=False)
    logger.info("APScheduler stopped")


def get_job_status() -> list[dict[str, Any]]:
    """Describe every pending dispatch job."""
    return [
        {
            "id": job.id,
            "name": job.name,
            "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
            "trigger": str(job.trigger),
        }
        for job in scheduler.get_jobs()
    ]
