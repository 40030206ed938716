"""Scheduled incremental sync of the relationship graph."""

from typing import Callable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from playergraph.core.config import get_global_settings
from playergraph.core.database import get_db_manager
from playergraph.core.exceptions import SyncAlreadyRunningError
from playergraph.core.graph import get_graph_manager
from playergraph.features.relationships.dependencies import (
    get_checkpoint_store,
    get_graph_store,
    get_relationship_sync_service,
    get_session_store,
)
from playergraph.features.relationships.sync import RelationshipSyncService
from .base import BaseJob

logger = structlog.get_logger(__name__)


def build_relationship_sync_service() -> RelationshipSyncService:
    """Wire the sync service outside a request, from the global managers."""
    settings = get_global_settings()
    session_factory = get_db_manager().async_session_factory
    return get_relationship_sync_service(
        get_session_store(session_factory, settings),
        get_graph_store(get_graph_manager(), settings),
        get_checkpoint_store(session_factory, settings),
        settings,
    )


class RelationshipSyncJob(BaseJob):
    """Syncs the trailing window; the watermark keeps reruns from double counting.

    ``config_json`` may set ``lookback_days`` to override the configured
    sync lookback.
    """

    def __init__(
        self,
        job_config_id: int,
        service_factory: Callable[[], RelationshipSyncService] = build_relationship_sync_service,
    ):
        super().__init__(job_config_id)
        self.service_factory = service_factory

    async def execute(self, db: AsyncSession) -> None:
        lookback_days: Optional[int] = self.config_options.get("lookback_days")
        service = self.service_factory()

        try:
            result = await service.sync_recent(lookback_days)
        except SyncAlreadyRunningError:
            logger.warning("Relationship sync already in progress, skipping this run")
            self.add_log_entry("skipped", "sync already running")
            return

        self.increment_metric("rounds_processed", result.rounds_processed)
        self.increment_metric("rounds_failed", result.rounds_failed)
        self.increment_metric("relationships_written", result.relationships_written)
        self.increment_metric("records_updated", result.player_server_rows)

        self.add_log_entry("window_from", result.effective_from.isoformat())
        self.add_log_entry(
            "window_to", result.effective_to.isoformat() if result.effective_to else None
        )
        self.add_log_entry("rounds_expected", result.rounds_expected)
        self.add_log_entry("flushes", result.flushes)
        self.add_log_entry("rounds_already_synced", result.rounds_already_synced)
        self.add_log_entry("skipped_already_synced", result.skipped_already_synced)
        if result.failed_round_ids:
            self.add_log_entry("failed_round_ids", result.failed_round_ids)

        logger.info(
            "Relationship sync job finished",
            rounds_expected=result.rounds_expected,
            rounds_processed=result.rounds_processed,
            rounds_failed=result.rounds_failed,
            relationships_written=result.relationships_written,
        )
