"""
Stat similarity analyzer.

Compares two players' windowed aggregate stats: K/D, kill rate, score per
round, and per-map / per-server K/D vectors restricted to what both played.
"""

from typing import Dict, Tuple

from playergraph.core.enums import SignalName
from playergraph.features.stats.repository import StatStoreInterface
from playergraph.features.stats.schemas import PlayerAggregateStats
from playergraph.utils.concurrency import gather_or_cancel
from playergraph.utils.statistics import clamp, cosine_similarity, ratio_similarity
from ..config import STAT_COMPONENT_WEIGHTS
from ..schemas import StatSimilarityAnalysis
from .base_analyzer import BaseSignalAnalyzer

# Vector similarity when a player has no per-map (per-server) data at all,
# and when both have data but nothing in common.
NO_VECTOR_DATA_SIMILARITY = 0.5
NO_COMMON_KEYS_SIMILARITY = 0.3


def vector_similarity(first: Dict[str, float], second: Dict[str, float]) -> Tuple[float, int]:
    """Cosine similarity over shared keys, plus the number of shared keys."""
    if not first or not second:
        return NO_VECTOR_DATA_SIMILARITY, 0
    common = first.keys() & second.keys()
    if not common:
        return NO_COMMON_KEYS_SIMILARITY, 0
    return cosine_similarity(first, second, common), len(common)


class StatSimilarityAnalyzer(BaseSignalAnalyzer):
    """Analyzer for the statistical similarity signal."""

    def __init__(self, stat_store: StatStoreInterface):
        super().__init__(SignalName.STAT)
        self.stat_store = stat_store

    async def analyze(
        self, player1: str, player2: str, lookback_days: int
    ) -> StatSimilarityAnalysis:
        self._log_analysis_start(player1, player2, {"lookback_days": lookback_days})

        stats1, stats2 = await gather_or_cancel(
            self.stat_store.get_player_aggregate_stats(player1, lookback_days),
            self.stat_store.get_player_aggregate_stats(player2, lookback_days),
        )

        if not stats1.has_rounds or not stats2.has_rounds:
            missing = [s.player_name for s in (stats1, stats2) if not s.has_rounds]
            self.logger.info(
                "Insufficient stat data", players_without_rounds=missing
            )
            return StatSimilarityAnalysis(
                score=0.0,
                player1_rounds=stats1.total_rounds,
                player2_rounds=stats2.total_rounds,
                insufficient_data=True,
                analysis=f"Insufficient data: no qualifying rounds for {', '.join(missing)}",
            )

        analysis = self.compare_stats(stats1, stats2)
        self._log_analysis_result(
            player1,
            player2,
            analysis.score,
            {"common_maps": analysis.common_maps, "kd_similarity": analysis.kd_similarity},
        )
        return analysis

    @staticmethod
    def compare_stats(
        stats1: PlayerAggregateStats, stats2: PlayerAggregateStats
    ) -> StatSimilarityAnalysis:
        """Pure scoring of two non-empty stat aggregates."""
        kd_sim = ratio_similarity(stats1.kd, stats2.kd)
        kill_rate_sim = ratio_similarity(stats1.kill_rate, stats2.kill_rate)
        spr_sim = ratio_similarity(stats1.score_per_round, stats2.score_per_round)
        map_sim, common_maps = vector_similarity(stats1.per_map_kd, stats2.per_map_kd)
        server_sim, common_servers = vector_similarity(
            stats1.per_server_kd, stats2.per_server_kd
        )

        score = clamp(
            STAT_COMPONENT_WEIGHTS["kd"] * kd_sim
            + STAT_COMPONENT_WEIGHTS["kill_rate"] * kill_rate_sim
            + STAT_COMPONENT_WEIGHTS["score_per_round"] * spr_sim
            + STAT_COMPONENT_WEIGHTS["map_performance"] * map_sim
            + STAT_COMPONENT_WEIGHTS["server_performance"] * server_sim
        )

        return StatSimilarityAnalysis(
            score=score,
            kd_similarity=kd_sim,
            kill_rate_similarity=kill_rate_sim,
            score_per_round_similarity=spr_sim,
            map_performance_similarity=map_sim,
            server_performance_similarity=server_sim,
            player1_kd=stats1.kd,
            player2_kd=stats2.kd,
            player1_kill_rate=stats1.kill_rate,
            player2_kill_rate=stats2.kill_rate,
            player1_rounds=stats1.total_rounds,
            player2_rounds=stats2.total_rounds,
            common_maps=common_maps,
            common_servers=common_servers,
            analysis=(
                f"K/D {stats1.kd:.2f} vs {stats2.kd:.2f} ({kd_sim:.0%} similar), "
                f"kill rate {kill_rate_sim:.0%} similar, "
                f"{common_maps} common maps ({map_sim:.0%} similar)"
            ),
        )
