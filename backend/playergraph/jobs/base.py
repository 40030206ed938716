"""Base class for scheduled jobs."""

from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from pydantic_core import to_jsonable_python
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import contextvars as structlog_contextvars

from playergraph.core.database import get_db_manager
from playergraph.core.enums import JobStatus
from playergraph.core.models import as_utc
from .log_capture import job_log_capture
from .models import JobConfiguration, JobExecution

logger = structlog.get_logger(__name__)

METRIC_FIELDS = (
    "rounds_processed",
    "rounds_failed",
    "relationships_written",
    "records_updated",
)

# Stored per entry in job_executions already, so dropped from detailed_logs.
REDUNDANT_LOG_FIELDS = {"job_execution_id", "job_name", "job_type", "logger"}


class JobConfigurationMissingError(Exception):
    """The configuration row a scheduled job points at no longer exists."""


class BaseJob(ABC):
    """Abstract base for scheduled jobs.

    ``run()`` owns the bookkeeping: it refuses to start while another
    execution of the same configuration is RUNNING, records a
    ``JobExecution`` row, binds the execution id into structlog context
    vars and stores metrics plus captured log lines when the job ends.

    Subclasses implement ``execute()`` and report progress through
    ``increment_metric`` and ``add_log_entry``.
    """

    def __init__(self, job_config_id: int):
        self.job_config_id = job_config_id
        self.job_config: Optional[JobConfiguration] = None
        self.job_execution: Optional[JobExecution] = None
        self.metrics: Dict[str, int] = defaultdict(int)
        self.execution_log: Dict[str, Any] = {}

    @abstractmethod
    async def execute(self, db: AsyncSession) -> None:
        """Run the job body. Exceptions mark the execution FAILED."""

    async def _refresh_config(self, db: AsyncSession) -> None:
        stmt = select(JobConfiguration).where(JobConfiguration.id == self.job_config_id)
        job_config = (await db.execute(stmt)).scalar_one_or_none()
        if job_config is None:
            raise JobConfigurationMissingError(
                f"Job configuration {self.job_config_id} not found or deleted"
            )
        self.job_config = job_config

    @property
    def config_options(self) -> Dict[str, Any]:
        if self.job_config is None:
            return {}
        return self.job_config.config_json or {}

    async def is_already_running(self, db: AsyncSession) -> bool:
        stmt = (
            select(JobExecution)
            .where(
                JobExecution.job_config_id == self.job_config_id,
                JobExecution.status == JobStatus.RUNNING,
            )
            .limit(1)
        )
        running = (await db.execute(stmt)).scalar_one_or_none()
        if running is None:
            return False

        logger.info(
            "Job is already running, skipping execution",
            job_config_id=self.job_config_id,
            running_execution_id=running.id,
            running_since=running.started_at.isoformat() if running.started_at else None,
        )
        return True

    async def log_start(self, db: AsyncSession) -> None:
        self.job_execution = JobExecution(
            job_config_id=self.job_config_id,
            started_at=datetime.now(timezone.utc),
            status=JobStatus.RUNNING,
            execution_log={},
        )
        db.add(self.job_execution)
        try:
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            self.job_execution = None
            raise
        await db.refresh(self.job_execution)
        logger.debug(
            "Job execution started",
            job_config_id=self.job_config_id,
            execution_id=self.job_execution.id,
        )

    async def log_completion(
        self,
        db: AsyncSession,
        success: bool,
        error_message: Optional[str] = None,
    ) -> None:
        if self.job_execution is None:
            logger.warning(
                "Cannot log completion, job execution not started",
                job_config_id=self.job_config_id,
            )
            return

        # Rollback expires ORM state, so read what is needed up front.
        execution_id = self.job_execution.id
        started_at = as_utc(self.job_execution.started_at)
        completed_at = datetime.now(timezone.utc)
        status = JobStatus.SUCCESS if success else JobStatus.FAILED
        logs = self._get_job_logs()

        stmt = (
            update(JobExecution)
            .where(JobExecution.id == execution_id)
            .values(
                completed_at=completed_at,
                status=status,
                error_message=error_message,
                execution_log=self.execution_log,
                detailed_logs={"logs": self._strip_redundant_fields(logs)} if logs else None,
                **{name: self.metrics[name] for name in METRIC_FIELDS},
            )
        )

        # One retry after rollback; a failed completion must not crash the scheduler.
        for attempt in (1, 2):
            try:
                await db.execute(stmt)
                await db.commit()
                break
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error(
                    "Failed to record job completion",
                    execution_id=execution_id,
                    attempt=attempt,
                    error=str(e),
                    error_type=type(e).__name__,
                )
        else:
            logger.warning(
                "Job execution may remain stuck in RUNNING",
                execution_id=execution_id,
            )
            return

        logger.info(
            "Job execution completed",
            job_config_id=self.job_config_id,
            execution_id=execution_id,
            status=status.value,
            duration_seconds=(completed_at - started_at).total_seconds(),
            **dict(self.metrics),
        )
        self.job_execution.completed_at = completed_at
        self.job_execution.status = status

    async def run(self) -> None:
        """Execute the job with execution tracking and error capture."""
        async with get_db_manager().get_session() as db:
            if await self.is_already_running(db):
                return

            try:
                await self.log_start(db)
            except SQLAlchemyError as e:
                logger.error(
                    "Failed to initialize job execution",
                    job_config_id=self.job_config_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return

            try:
                await self._refresh_config(db)
                structlog_contextvars.bind_contextvars(
                    job_execution_id=self.job_execution.id,
                    job_name=self.job_config.name,
                    job_type=self.job_config.job_type.value,
                )
                await self.execute(db)
            except Exception as e:
                error_message = f"{type(e).__name__}: {e}"
                logger.error(
                    "Job execution failed",
                    job_config_id=self.job_config_id,
                    execution_id=self.job_execution.id,
                    error=error_message,
                    error_type=type(e).__name__,
                )
                await self.log_completion(db, success=False, error_message=error_message)
            else:
                await self.log_completion(db, success=True)
            finally:
                structlog_contextvars.clear_contextvars()

    def increment_metric(self, metric_name: str, count: int = 1) -> None:
        self.metrics[metric_name] += count

    def add_log_entry(self, key: str, value: Any) -> None:
        self.execution_log[key] = value

    def _get_job_logs(self) -> List[Dict[str, Any]]:
        if self.job_execution is None:
            return []
        return [
            entry
            for entry in job_log_capture.entries
            if entry.get("job_execution_id") == self.job_execution.id
        ]

    @staticmethod
    def _strip_redundant_fields(logs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [
            to_jsonable_python(
                {k: v for k, v in entry.items() if k not in REDUNDANT_LOG_FIELDS},
                fallback=str,
            )
            for entry in logs
        ]
