"""
Behavioral pattern analyzer.

Every input is a small grouped result computed by the session store: a
24-bucket hour histogram, server intersection/union counts, per-server ping
averages and one session-stats row per player. Raw sessions are never loaded.

The window of each player ends at that player's own last activity, so a
dormant account is compared on the period it was actually played.
"""

from datetime import timedelta
from typing import Dict, Tuple

from playergraph.core.enums import SignalName
from playergraph.features.sessions.repository import SessionStoreInterface
from playergraph.features.sessions.schemas import SessionStats
from playergraph.utils.concurrency import gather_or_cancel
from playergraph.utils.statistics import (
    clamp,
    jaccard_from_counts,
    jensen_shannon_divergence,
    normalize_distribution,
    ratio_similarity,
    safe_divide,
)
from ..config import BEHAVIORAL_COMPONENT_WEIGHTS
from ..schemas import BehavioralAnalysis
from .base_analyzer import BaseSignalAnalyzer

NEUTRAL_SIMILARITY = 0.5
NO_COMMON_PING_SIMILARITY = 0.3


class BehavioralAnalyzer(BaseSignalAnalyzer):
    """Analyzer for play-time, server affinity, ping and session habits."""

    def __init__(self, session_store: SessionStoreInterface):
        super().__init__(SignalName.BEHAVIORAL)
        self.session_store = session_store

    async def analyze(
        self, player1: str, player2: str, lookback_days: int
    ) -> BehavioralAnalysis:
        self._log_analysis_start(player1, player2, {"lookback_days": lookback_days})

        last1, last2 = await gather_or_cancel(
            self.session_store.get_last_activity(player1),
            self.session_store.get_last_activity(player2),
        )
        if last1 is None or last2 is None:
            return BehavioralAnalysis(
                score=0.0,
                insufficient_data=True,
                analysis="Insufficient session data",
            )

        since1 = last1 - timedelta(days=lookback_days)
        since2 = last2 - timedelta(days=lookback_days)

        (
            hours1,
            hours2,
            common_servers,
            union_servers,
            pings1,
            pings2,
            sessions1,
            sessions2,
        ) = await gather_or_cancel(
            self.session_store.get_hour_histogram(player1, since1),
            self.session_store.get_hour_histogram(player2, since2),
            self.session_store.count_common_servers(player1, since1, player2, since2),
            self.session_store.count_union_servers(player1, since1, player2, since2),
            self.session_store.get_ping_averages(player1, since1),
            self.session_store.get_ping_averages(player2, since2),
            self.session_store.get_session_stats(player1, since1),
            self.session_store.get_session_stats(player2, since2),
        )

        play_time = self.play_time_similarity(hours1, hours2)
        affinity = jaccard_from_counts(common_servers, union_servers)
        ping, common_ping_servers = self.ping_similarity(
            pings1, pings2, self._get_threshold("ping_tolerance")
        )
        session_pattern = self.session_pattern_similarity(sessions1, sessions2)

        score = clamp(
            BEHAVIORAL_COMPONENT_WEIGHTS["play_time"] * play_time
            + BEHAVIORAL_COMPONENT_WEIGHTS["server_affinity"] * affinity
            + BEHAVIORAL_COMPONENT_WEIGHTS["ping"] * ping
            + BEHAVIORAL_COMPONENT_WEIGHTS["session_pattern"] * session_pattern
        )

        analysis = BehavioralAnalysis(
            score=score,
            play_time_similarity=play_time,
            server_affinity=affinity,
            ping_similarity=ping,
            session_pattern_similarity=session_pattern,
            common_servers=common_servers,
            union_servers=union_servers,
            common_ping_servers=common_ping_servers,
            player1_hour_histogram=list(hours1),
            player2_hour_histogram=list(hours2),
            player1_session_count=sessions1.session_count,
            player2_session_count=sessions2.session_count,
            player1_avg_session_minutes=sessions1.average_duration_minutes,
            player2_avg_session_minutes=sessions2.average_duration_minutes,
            analysis=(
                f"Play times {play_time:.0%} similar, "
                f"{common_servers}/{union_servers} servers shared, "
                f"ping {ping:.0%} similar on {common_ping_servers} common servers"
            ),
        )
        self._log_analysis_result(
            player1,
            player2,
            score,
            {"common_servers": common_servers, "play_time": round(play_time, 4)},
        )
        return analysis

    @staticmethod
    def play_time_similarity(hours1, hours2) -> float:
        """``1 - JS divergence`` of the two hour-of-day distributions."""
        if sum(hours1) <= 0 or sum(hours2) <= 0:
            return NEUTRAL_SIMILARITY
        divergence = jensen_shannon_divergence(
            normalize_distribution(hours1), normalize_distribution(hours2)
        )
        return clamp(1.0 - divergence)

    @staticmethod
    def ping_similarity(
        pings1: Dict[str, float], pings2: Dict[str, float], tolerance: float
    ) -> Tuple[float, int]:
        """
        Similarity of average pings on the servers both players used.

        The mean normalized difference ``|a-b| / max(a, b)`` is mapped linearly
        so that a difference of ``tolerance`` or more scores zero.
        """
        if not pings1 or not pings2:
            return NEUTRAL_SIMILARITY, 0
        common = pings1.keys() & pings2.keys()
        if not common:
            return NO_COMMON_PING_SIMILARITY, 0

        differences = [
            safe_divide(
                abs(pings1[guid] - pings2[guid]), max(pings1[guid], pings2[guid], 1.0)
            )
            for guid in common
        ]
        mean_difference = sum(differences) / len(differences)
        return clamp(1.0 - min(1.0, mean_difference / tolerance)), len(common)

    @staticmethod
    def session_pattern_similarity(first: SessionStats, second: SessionStats) -> float:
        duration = ratio_similarity(
            first.average_duration_minutes, second.average_duration_minutes
        )
        count = ratio_similarity(first.session_count, second.session_count)
        return clamp(0.6 * duration + 0.4 * count)
