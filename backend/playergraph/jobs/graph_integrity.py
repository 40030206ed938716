"""Scheduled verification of the relationship graph invariants."""

from typing import Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from playergraph.core.config import get_global_settings
from playergraph.core.database import get_db_manager
from playergraph.core.exceptions import SyncInconsistencyError
from playergraph.core.graph import get_graph_manager
from playergraph.features.relationships.dependencies import (
    get_checkpoint_store,
    get_graph_store,
    get_relationship_graph_service,
)
from playergraph.features.relationships.service import RelationshipGraphService
from .base import BaseJob

logger = structlog.get_logger(__name__)

# Violations kept in the execution log; the full list goes to the log stream.
MAX_LOGGED_VIOLATIONS = 50


def build_relationship_graph_service() -> RelationshipGraphService:
    settings = get_global_settings()
    return get_relationship_graph_service(
        get_graph_store(get_graph_manager(), settings),
        get_checkpoint_store(get_db_manager().async_session_factory, settings),
    )


class GraphIntegrityJob(BaseJob):
    """Purges player nodes with a missing or blank name, then verifies edge
    symmetry and timelines.

    Violations fail the execution so they show up in the job history. Apart
    from that purge the graph is never rewritten here.
    """

    def __init__(
        self,
        job_config_id: int,
        service_factory: Callable[[], RelationshipGraphService] = build_relationship_graph_service,
    ):
        super().__init__(job_config_id)
        self.service_factory = service_factory

    async def execute(self, db: AsyncSession) -> None:
        service = self.service_factory()

        purged = await service.purge_empty_player_nodes()
        self.increment_metric("records_updated", purged)
        self.add_log_entry("purged_player_nodes", purged)

        try:
            report = await service.verify_graph(raise_on_violation=True)
        except SyncInconsistencyError as e:
            self.add_log_entry("violation_count", len(e.violations))
            self.add_log_entry("violations", e.violations[:MAX_LOGGED_VIOLATIONS])
            raise

        self.add_log_entry("edges_checked", report.edges_checked)
        self.add_log_entry("violation_count", 0)
        logger.info(
            "Graph integrity check passed",
            edges_checked=report.edges_checked,
            purged_player_nodes=purged,
        )
