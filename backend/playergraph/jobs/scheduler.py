"""Scheduler for the background graph maintenance jobs."""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple, Type

import structlog
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from playergraph.core.config import Settings, get_global_settings
from playergraph.core.database import get_db_manager
from playergraph.core.enums import JobStatus, JobType
from .base import BaseJob
from .graph_integrity import GraphIntegrityJob
from .models import JobConfiguration, JobExecution
from .relationship_sync import RelationshipSyncJob

logger = structlog.get_logger(__name__)

_scheduler: Optional[AsyncIOScheduler] = None

JOB_REGISTRY: Dict[JobType, Type[BaseJob]] = {
    JobType.RELATIONSHIP_SYNC: RelationshipSyncJob,
    JobType.GRAPH_INTEGRITY_CHECK: GraphIntegrityJob,
}


def get_scheduler() -> Optional[AsyncIOScheduler]:
    return _scheduler


def build_trigger(schedule: str) -> BaseTrigger:
    """Parse a schedule string into an APScheduler trigger.

    Supported formats:
    - ``"cron:0 3 * * *"`` - five-field crontab, evaluated in UTC
    - ``"interval:60"`` - interval prefix
    - ``"60s"`` - seconds suffix
    - ``"60"`` - plain number of seconds

    :raises ValueError: If the schedule is empty or not recognised
    """
    value = (schedule or "").strip()
    if not value:
        raise ValueError("Schedule must not be empty")

    if value.lower().startswith("cron:"):
        return CronTrigger.from_crontab(value.split(":", 1)[1].strip(), timezone="UTC")

    seconds = _parse_interval_seconds(value.lower())
    if seconds is None:
        raise ValueError(f"Unrecognised schedule '{schedule}'")
    return IntervalTrigger(seconds=seconds, timezone="UTC")


def _parse_interval_seconds(schedule: str) -> Optional[int]:
    if schedule.startswith("interval:"):
        schedule = schedule.split(":", 1)[1].strip()
    elif schedule.endswith("s"):
        schedule = schedule[:-1]

    if not schedule.isdigit():
        return None
    return max(int(schedule), 1)


def default_job_configurations(settings: Settings) -> List[Tuple[JobType, str, str]]:
    """``(job_type, name, schedule)`` for every job driven by settings."""
    return [
        (JobType.RELATIONSHIP_SYNC, "relationship-sync", settings.relationship_sync_schedule),
        (
            JobType.GRAPH_INTEGRITY_CHECK,
            "graph-integrity-check",
            settings.graph_integrity_schedule,
        ),
    ]


async def seed_job_configurations(db: AsyncSession, settings: Settings) -> None:
    """Create missing job configurations and keep schedules in line with settings."""
    for job_type, name, schedule in default_job_configurations(settings):
        stmt = select(JobConfiguration).where(JobConfiguration.name == name)
        job_config = (await db.execute(stmt)).scalar_one_or_none()

        if job_config is None:
            db.add(JobConfiguration(job_type=job_type, name=name, schedule=schedule))
            logger.info("Created job configuration", job_name=name, schedule=schedule)
        elif job_config.schedule != schedule:
            logger.info(
                "Updating job schedule from settings",
                job_name=name,
                old_schedule=job_config.schedule,
                new_schedule=schedule,
            )
            job_config.schedule = schedule

    await db.commit()


async def mark_stale_jobs_as_failed(db: AsyncSession) -> int:
    """Fail executions left RUNNING by an ungraceful shutdown.

    Nothing can be running while the process starts, so every RUNNING row
    is stale.
    """
    stmt = (
        update(JobExecution)
        .where(JobExecution.status == JobStatus.RUNNING)
        .values(
            status=JobStatus.FAILED,
            completed_at=datetime.now(timezone.utc),
            error_message="Marked as failed on startup: still running at shutdown",
        )
    )
    result = await db.execute(stmt)
    await db.commit()

    if result.rowcount:
        logger.warning("Marked stale job executions as failed", count=result.rowcount)
    return result.rowcount or 0


def schedule_jobs(
    scheduler: AsyncIOScheduler, job_configs: List[JobConfiguration]
) -> int:
    """Add one scheduler entry per active configuration; returns how many were added."""
    scheduled = 0
    for job_config in job_configs:
        job_class = JOB_REGISTRY.get(job_config.job_type)
        if job_class is None:
            logger.warning(
                "Unknown job type, skipping",
                job_type=str(job_config.job_type),
                job_name=job_config.name,
            )
            continue

        try:
            trigger = build_trigger(job_config.schedule)
        except ValueError as e:
            logger.error(
                "Invalid job schedule, skipping",
                job_name=job_config.name,
                schedule=job_config.schedule,
                error=str(e),
            )
            continue

        scheduler.add_job(
            job_class(job_config.id).run,
            trigger=trigger,
            id=f"job_{job_config.id}",
            name=job_config.name,
            replace_existing=True,
        )
        scheduled += 1
        logger.info(
            "Scheduled job",
            job_id=job_config.id,
            job_name=job_config.name,
            job_type=job_config.job_type.value,
            schedule=job_config.schedule,
        )
    return scheduled


async def _load_active_configurations(db: AsyncSession) -> List[JobConfiguration]:
    stmt = select(JobConfiguration).where(JobConfiguration.is_active.is_(True))
    return list((await db.execute(stmt)).scalars().all())


async def start_scheduler(settings: Optional[Settings] = None) -> Optional[AsyncIOScheduler]:
    """Create, seed and start the scheduler.

    Returns ``None`` when the scheduler is disabled in settings.
    """
    global _scheduler

    settings = settings or get_global_settings()
    if not settings.job_scheduler_enabled:
        logger.info("Job scheduler is disabled via configuration")
        return None

    if _scheduler is not None:
        logger.warning("Scheduler already initialized")
        return _scheduler

    scheduler = AsyncIOScheduler(
        executors={"default": AsyncIOExecutor()},
        job_defaults={
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": 300,
        },
        timezone="UTC",
    )

    async with get_db_manager().get_session() as db:
        await mark_stale_jobs_as_failed(db)
        await seed_job_configurations(db, settings)
        job_configs = await _load_active_configurations(db)

    count = schedule_jobs(scheduler, job_configs)
    scheduler.start()
    _scheduler = scheduler
    logger.info("Job scheduler started", scheduled_jobs=count)
    return _scheduler


async def shutdown_scheduler() -> None:
    """Stop the scheduler, waiting for running jobs to finish."""
    global _scheduler

    if _scheduler is None:
        logger.info("Scheduler is not running, nothing to shut down")
        return

    logger.info("Shutting down job scheduler")
    _scheduler.shutdown(wait=True)
    _scheduler = None
    logger.info("Job scheduler shut down")


__all__ = [
    "JOB_REGISTRY",
    "build_trigger",
    "get_scheduler",
    "mark_stale_jobs_as_failed",
    "schedule_jobs",
    "seed_job_configurations",
    "shutdown_scheduler",
    "start_scheduler",
]
