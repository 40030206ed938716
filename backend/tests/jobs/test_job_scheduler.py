from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select

from playergraph.core.config import Settings
from playergraph.core.enums import JobStatus, JobType
from playergraph.jobs.graph_integrity import GraphIntegrityJob
from playergraph.jobs.models import JobConfiguration, JobExecution
from playergraph.jobs.scheduler import (
    build_trigger,
    mark_stale_jobs_as_failed,
    schedule_jobs,
    seed_job_configurations,
    start_scheduler,
)


class TestBuildTrigger:
    def test_cron(self):
        trigger = build_trigger("cron:0 3 * * *")

        assert isinstance(trigger, CronTrigger)
        assert str(trigger.timezone) == "UTC"

    @pytest.mark.parametrize("schedule", ["interval:60", "60s", "60", " 60 "])
    def test_interval_formats(self, schedule):
        trigger = build_trigger(schedule)

        assert isinstance(trigger, IntervalTrigger)
        assert trigger.interval.total_seconds() == 60

    def test_zero_interval_is_raised_to_one_second(self):
        assert build_trigger("0").interval.total_seconds() == 1

    @pytest.mark.parametrize("schedule", ["", "   ", "every day", "interval:soon", "-5"])
    def test_invalid_schedules(self, schedule):
        with pytest.raises(ValueError):
            build_trigger(schedule)


def job_config(id, job_type, schedule, name=None):
    return JobConfiguration(
        id=id, job_type=job_type, name=name or f"job-{id}", schedule=schedule
    )


class TestScheduleJobs:
    def test_adds_one_entry_per_valid_configuration(self):
        scheduler = MagicMock()
        configs = [
            job_config(1, JobType.RELATIONSHIP_SYNC, "cron:0 3 * * *"),
            job_config(2, JobType.GRAPH_INTEGRITY_CHECK, "3600"),
        ]

        assert schedule_jobs(scheduler, configs) == 2

        ids = [call.kwargs["id"] for call in scheduler.add_job.call_args_list]
        assert ids == ["job_1", "job_2"]
        run = scheduler.add_job.call_args_list[1].args[0]
        assert isinstance(run.__self__, GraphIntegrityJob)
        assert scheduler.add_job.call_args_list[0].kwargs["replace_existing"] is True

    def test_skips_invalid_schedule(self):
        scheduler = MagicMock()
        configs = [
            job_config(1, JobType.RELATIONSHIP_SYNC, "whenever"),
            job_config(2, JobType.GRAPH_INTEGRITY_CHECK, "60s"),
        ]

        assert schedule_jobs(scheduler, configs) == 1
        assert scheduler.add_job.call_args.kwargs["id"] == "job_2"


class TestSchedulerStartup:
    """Test cases for seeding and startup recovery"""

    @pytest.mark.asyncio
    async def test_disabled_scheduler(self):
        assert await start_scheduler(Settings(job_scheduler_enabled=False)) is None

    @pytest.mark.asyncio
    async def test_seed_creates_and_updates_schedules(self, job_db):
        async with job_db() as db:
            await seed_job_configurations(db, Settings())
            await seed_job_configurations(
                db, Settings(relationship_sync_schedule="interval:600")
            )

            configs = {
                c.name: c for c in (await db.execute(select(JobConfiguration))).scalars()
            }

        assert set(configs) == {"relationship-sync", "graph-integrity-check"}
        assert configs["relationship-sync"].schedule == "interval:600"
        assert configs["graph-integrity-check"].job_type == JobType.GRAPH_INTEGRITY_CHECK

    @pytest.mark.asyncio
    async def test_stale_running_executions_are_failed(self, job_db, sync_job_config):
        async with job_db() as db:
            for status in (JobStatus.RUNNING, JobStatus.SUCCESS):
                db.add(
                    JobExecution(
                        job_config_id=sync_job_config.id,
                        started_at=datetime(2024, 3, 1, tzinfo=timezone.utc),
                        status=status,
                    )
                )
            await db.commit()

            assert await mark_stale_jobs_as_failed(db) == 1

        async with job_db() as db:
            statuses = [
                e.status
                for e in (
                    await db.execute(select(JobExecution).order_by(JobExecution.id))
                ).scalars()
            ]

        assert statuses == [JobStatus.FAILED, JobStatus.SUCCESS]
