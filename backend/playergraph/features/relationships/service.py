"""Read and maintenance operations over the relationship graph."""

from typing import List, Optional

import structlog

from playergraph.core.decorators import input_validation
from playergraph.core.exceptions import SyncInconsistencyError
from .checkpoints import PLAYED_WITH_SYNC, CheckpointStoreInterface
from .graph_repository import GraphStoreInterface
from .schemas import EdgeStats, SymmetryReport, SyncCheckpointResponse, TeammateInfo

logger = structlog.get_logger(__name__)


class RelationshipGraphService:
    """Teammate lookups, edge inspection and graph integrity checks."""

    def __init__(
        self,
        graph_store: GraphStoreInterface,
        checkpoint_store: CheckpointStoreInterface,
    ):
        self.graph_store = graph_store
        self.checkpoint_store = checkpoint_store

    @input_validation(validate_non_empty=["player_name"])
    async def get_teammates(self, player_name: str, limit: int = 50) -> List[TeammateInfo]:
        return await self.graph_store.get_teammate_details(player_name.strip(), limit)

    @input_validation(validate_non_empty=["player1", "player2"])
    async def get_edge_stats(self, player1: str, player2: str) -> Optional[EdgeStats]:
        return await self.graph_store.get_edge_stats(player1.strip(), player2.strip())

    async def get_checkpoint(
        self, sync_kind: str = PLAYED_WITH_SYNC
    ) -> Optional[SyncCheckpointResponse]:
        return await self.checkpoint_store.get(sync_kind)

    async def verify_graph(self, raise_on_violation: bool = False) -> SymmetryReport:
        """
        Check the symmetry and timeline invariants of every PLAYED_WITH edge.

        Violations are logged and returned for manual cleanup; nothing is
        rewritten.

        :param raise_on_violation: Raise instead of returning a failing report
        :raises SyncInconsistencyError: If violations exist and raising was requested
        """
        report = await self.graph_store.verify_symmetry()
        if not report.is_consistent:
            logger.error(
                "Relationship graph failed verification",
                violations=len(report.violations),
                edges_checked=report.edges_checked,
            )
            if raise_on_violation:
                raise SyncInconsistencyError(
                    f"{len(report.violations)} edge(s) violate graph invariants",
                    violations=[v.model_dump(mode="json") for v in report.violations],
                    service="RelationshipGraphService",
                    operation="verify_graph",
                )
        return report

    async def purge_empty_player_nodes(self) -> int:
        return await self.graph_store.purge_empty_player_nodes()
