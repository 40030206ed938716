"""
Network and temporal analyzer.

Both signals come from the relationship graph, so they are computed in one
pass and fail together when the graph store is unreachable.

Network: teammate-set Jaccard plus a degree-ratio shape similarity.
Temporal: whether the two players ever met directly, and whether their
co-play activity windows are separated. High teammate overlap without a
single direct co-session is the strongest alias pattern.

Only edges last played within ``lookback_days`` of each player's latest
co-play are read.
"""

from datetime import datetime, timedelta
from typing import Optional, Set

from pydantic import BaseModel

from playergraph.core.enums import SignalName
from playergraph.features.relationships.graph_repository import GraphStoreInterface
from playergraph.features.relationships.schemas import ActivityWindow, EdgeStats
from playergraph.utils.concurrency import gather_or_cancel
from playergraph.utils.statistics import clamp, interval_overlap_ratio, jaccard
from ..config import NETWORK_COMPONENT_WEIGHTS, TEMPORAL_COMPONENT_WEIGHTS
from ..schemas import NetworkAnalysis, TemporalAnalysis
from .base_analyzer import BaseSignalAnalyzer

NEUTRAL_SEPARATION = 0.5


class GraphSignals(BaseModel):
    network: NetworkAnalysis
    temporal: TemporalAnalysis


class NetworkAnalyzer(BaseSignalAnalyzer):
    """Analyzer for the network and temporal signals."""

    def __init__(self, graph_store: GraphStoreInterface):
        super().__init__(SignalName.NETWORK)
        self.graph_store = graph_store

    async def analyze(self, player1: str, player2: str, lookback_days: int) -> GraphSignals:
        self._log_analysis_start(player1, player2, {"lookback_days": lookback_days})

        # Each player's lookback ends at their own last co-play.
        latest1, latest2 = await gather_or_cancel(
            self.graph_store.get_activity_window(player1),
            self.graph_store.get_activity_window(player2),
        )
        since1 = self.lookback_start(latest1, lookback_days)
        since2 = self.lookback_start(latest2, lookback_days)
        pair_since = min(since1, since2) if since1 and since2 else None

        (
            teammates1,
            teammates2,
            direct,
            degree1,
            degree2,
            window1,
            window2,
        ) = await gather_or_cancel(
            self.graph_store.get_teammates(player1, since=since1),
            self.graph_store.get_teammates(player2, since=since2),
            self.graph_store.has_direct_edge(player1, player2, since=pair_since),
            self.graph_store.get_player_degree(player1, since=since1),
            self.graph_store.get_player_degree(player2, since=since2),
            self.graph_store.get_activity_window(player1, since=since1),
            self.graph_store.get_activity_window(player2, since=since2),
        )
        edge = (
            await self.graph_store.get_edge_stats(player1, player2, since=pair_since)
            if direct
            else None
        )

        # The pair's own edge is not evidence of a shared circle.
        others1 = set(teammates1) - {player2}
        others2 = set(teammates2) - {player1}

        network = self.network_analysis(others1, others2, degree1, degree2, direct)
        temporal = self.temporal_analysis(
            network, edge, window1, window2, insufficient=network.insufficient_data
        )

        self._log_analysis_result(
            player1,
            player2,
            network.score,
            {
                "temporal_score": round(temporal.score, 4),
                "shared_teammates": network.shared_teammate_count,
                "has_direct_edge": direct,
            },
        )
        return GraphSignals(network=network, temporal=temporal)

    @staticmethod
    def lookback_start(window: ActivityWindow, lookback_days: int) -> Optional[datetime]:
        if window.last_activity is None:
            return None
        return window.last_activity - timedelta(days=lookback_days)

    def network_analysis(
        self,
        teammates1: Set[str],
        teammates2: Set[str],
        degree1: int,
        degree2: int,
        direct: bool,
    ) -> NetworkAnalysis:
        if not teammates1 or not teammates2:
            return NetworkAnalysis(
                score=0.0,
                player1_teammate_count=len(teammates1),
                player2_teammate_count=len(teammates2),
                player1_degree=degree1,
                player2_degree=degree2,
                has_direct_edge=direct,
                insufficient_data=True,
                analysis="Insufficient graph data: a player has no teammates",
            )

        shared = len(teammates1 & teammates2)
        teammate_jaccard = jaccard(teammates1, teammates2)
        shape = self.shape_similarity(degree1, degree2)

        score = (
            NETWORK_COMPONENT_WEIGHTS["teammate_jaccard"] * teammate_jaccard
            + NETWORK_COMPONENT_WEIGHTS["shape"] * shape
        )
        if direct:
            score *= self._get_threshold("direct_edge_network_factor")

        return NetworkAnalysis(
            score=clamp(score),
            teammate_jaccard=teammate_jaccard,
            shape_similarity=shape,
            shared_teammate_count=shared,
            player1_teammate_count=len(teammates1),
            player2_teammate_count=len(teammates2),
            player1_degree=degree1,
            player2_degree=degree2,
            has_direct_edge=direct,
            analysis=(
                f"{shared} shared teammates ({teammate_jaccard:.0%} overlap), "
                f"network shape {shape:.0%} similar"
            ),
        )

    @staticmethod
    def shape_similarity(degree1: int, degree2: int) -> float:
        """Degree ratio mapped so that a 3x difference or more scores zero."""
        low, high = sorted((degree1, degree2))
        if low == 0:
            return 0.0
        ratio = high / low
        return max(0.0, 1.0 - min(1.0, (ratio - 1.0) / 2.0))

    def temporal_analysis(
        self,
        network: NetworkAnalysis,
        edge: Optional[EdgeStats],
        window1: ActivityWindow,
        window2: ActivityWindow,
        insufficient: bool = False,
    ) -> TemporalAnalysis:
        windows = dict(
            player1_first_activity=window1.first_activity,
            player1_last_activity=window1.last_activity,
            player2_first_activity=window2.first_activity,
            player2_last_activity=window2.last_activity,
        )
        if insufficient:
            return TemporalAnalysis(
                score=0.0,
                has_direct_edge=network.has_direct_edge,
                analysis="Insufficient graph data for temporal analysis",
                **windows,
            )

        direct_sessions = edge.session_count if edge else 0
        if network.has_direct_edge:
            significant = self._get_threshold("significant_co_sessions")
            co_occurrence = 0.3 * max(0.0, 1.0 - direct_sessions / significant)
        else:
            saturation = self._get_threshold("jaccard_saturation")
            co_occurrence = 0.5 + 0.5 * min(1.0, network.teammate_jaccard / saturation)

        overlap_ratio = self.window_overlap(window1, window2)
        separation = NEUTRAL_SEPARATION if overlap_ratio is None else 1.0 - overlap_ratio

        score = clamp(
            TEMPORAL_COMPONENT_WEIGHTS["co_occurrence"] * co_occurrence
            + TEMPORAL_COMPONENT_WEIGHTS["separation"] * separation
        )

        if network.has_direct_edge:
            summary = f"Played together in {direct_sessions} sessions"
        else:
            summary = "Never played together directly"
        if overlap_ratio is not None:
            summary += f", activity windows overlap {overlap_ratio:.0%}"

        return TemporalAnalysis(
            score=score,
            co_occurrence_score=clamp(co_occurrence),
            separation_score=clamp(separation),
            has_direct_edge=network.has_direct_edge,
            direct_session_count=direct_sessions,
            direct_minutes=edge.total_minutes if edge else 0.0,
            activity_overlap_ratio=overlap_ratio,
            analysis=summary,
            **windows,
        )

    @staticmethod
    def window_overlap(window1: ActivityWindow, window2: ActivityWindow) -> Optional[float]:
        if not (
            window1.first_activity
            and window1.last_activity
            and window2.first_activity
            and window2.last_activity
        ):
            return None
        return interval_overlap_ratio(
            window1.first_activity.timestamp(),
            window1.last_activity.timestamp(),
            window2.first_activity.timestamp(),
            window2.last_activity.timestamp(),
        )
