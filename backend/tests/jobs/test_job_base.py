"""
Tests for job execution bookkeeping against an in-memory database.
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import select
from structlog import contextvars as structlog_contextvars

from playergraph.core.enums import JobStatus
from playergraph.jobs.base import BaseJob
from playergraph.jobs.models import JobExecution


class CountingJob(BaseJob):
    def __init__(self, job_config_id, error=None):
        super().__init__(job_config_id)
        self.error = error
        self.bound_context = None

    async def execute(self, db):
        self.bound_context = structlog_contextvars.get_contextvars()
        self.increment_metric("rounds_processed", 4)
        self.increment_metric("rounds_processed")
        self.add_log_entry("lookback_days", self.config_options.get("lookback_days"))
        if self.error is not None:
            raise self.error


async def executions(session_factory):
    async with session_factory() as db:
        result = await db.execute(select(JobExecution).order_by(JobExecution.id))
        return list(result.scalars().all())


class TestBaseJob:
    """Test cases for BaseJob.run"""

    @pytest.mark.asyncio
    async def test_successful_run_records_metrics(self, job_db, sync_job_config):
        job = CountingJob(sync_job_config.id)

        await job.run()

        (execution,) = await executions(job_db)
        assert execution.status == JobStatus.SUCCESS
        assert execution.rounds_processed == 5
        assert execution.execution_log == {"lookback_days": 3}
        assert execution.completed_at is not None
        assert execution.duration_seconds >= 0
        assert job.bound_context["job_name"] == "relationship-sync"
        assert job.bound_context["job_execution_id"] == execution.id

    @pytest.mark.asyncio
    async def test_failure_marks_execution_failed(self, job_db, sync_job_config):
        job = CountingJob(sync_job_config.id, error=RuntimeError("boom"))

        await job.run()

        (execution,) = await executions(job_db)
        assert execution.status == JobStatus.FAILED
        assert execution.error_message == "RuntimeError: boom"
        assert execution.rounds_processed == 5

    @pytest.mark.asyncio
    async def test_context_is_cleared_after_run(self, job_db, sync_job_config):
        await CountingJob(sync_job_config.id).run()

        assert "job_execution_id" not in structlog_contextvars.get_contextvars()

    @pytest.mark.asyncio
    async def test_skips_while_already_running(self, job_db, sync_job_config):
        async with job_db() as db:
            db.add(
                JobExecution(
                    job_config_id=sync_job_config.id,
                    started_at=datetime(2024, 3, 1, tzinfo=timezone.utc),
                    status=JobStatus.RUNNING,
                )
            )
            await db.commit()
        job = CountingJob(sync_job_config.id)

        await job.run()

        assert len(await executions(job_db)) == 1
        assert job.bound_context is None

    @pytest.mark.asyncio
    async def test_missing_configuration_fails_execution(self, job_db):
        job = CountingJob(999)

        await job.run()

        (execution,) = await executions(job_db)
        assert execution.status == JobStatus.FAILED
        assert execution.error_message.startswith("JobConfigurationMissingError")
        assert job.bound_context is None

    @pytest.mark.asyncio
    async def test_completion_without_start_is_ignored(self, job_db):
        job = CountingJob(1)

        async with job_db() as db:
            await job.log_completion(db, success=True)

        assert await executions(job_db) == []
