from contextlib import asynccontextmanager
from unittest.mock import patch

import pytest_asyncio

from playergraph.core.enums import JobType
from playergraph.jobs.models import JobConfiguration


class SqliteDbManager:
    """Stands in for ``DatabaseManager`` on top of the test session factory."""

    def __init__(self, session_factory):
        self.async_session_factory = session_factory

    @asynccontextmanager
    async def get_session(self):
        async with self.async_session_factory() as session:
            yield session


@pytest_asyncio.fixture
async def job_db(sqlite_session_factory):
    manager = SqliteDbManager(sqlite_session_factory)
    with patch("playergraph.jobs.base.get_db_manager", return_value=manager), patch(
        "playergraph.jobs.scheduler.get_db_manager", return_value=manager
    ):
        yield sqlite_session_factory


@pytest_asyncio.fixture
async def sync_job_config(job_db):
    async with job_db() as db:
        job_config = JobConfiguration(
            job_type=JobType.RELATIONSHIP_SYNC,
            name="relationship-sync",
            schedule="cron:0 3 * * *",
            config_json={"lookback_days": 3},
        )
        db.add(job_config)
        await db.commit()
        await db.refresh(job_config)
        return job_config
