from playergraph.features.alias_detection.flags import FlagContext, evaluate_flags
from playergraph.features.alias_detection.schemas import (
    ActivityTimeline,
    GapAnalysis,
    NetworkAnalysis,
    StatSimilarityAnalysis,
    TemporalAnalysis,
    TimelineActivityPeriod,
)

CLASSIC_ALIAS = "High teammate overlap but no direct co-session (classic alias pattern)"


def timeline(score, overlap=0.0, window=2):
    return ActivityTimeline(
        player1_activity=TimelineActivityPeriod(player_name="a"),
        player2_activity=TimelineActivityPeriod(player_name="b"),
        gap=GapAnalysis(
            days_between=window,
            switchover_window_days=window,
            overlap_ratio=overlap,
            pattern_description="Very tight switchover",
        ),
        switchover_suspicion_score=score,
    )


class TestEvaluateFlags:
    """Test cases for the red/green flag rule table"""

    def test_shared_circle_without_co_session(self):
        red, green = evaluate_flags(
            FlagContext(
                score=0.9,
                network=NetworkAnalysis(score=0.88, teammate_jaccard=0.8),
                temporal=TemporalAnalysis(score=1.0, activity_overlap_ratio=0.0),
            )
        )

        assert "Very high teammate overlap" in red
        assert CLASSIC_ALIAS in red
        assert "Zero temporal overlap with high teammate overlap (likely same person)" in red
        assert green == []

    def test_direct_co_play_is_green(self):
        red, green = evaluate_flags(
            FlagContext(
                score=0.2,
                network=NetworkAnalysis(score=0.36, has_direct_edge=True),
                temporal=TemporalAnalysis(
                    score=0.04, has_direct_edge=True, direct_session_count=8, activity_overlap_ratio=1.0
                ),
            )
        )

        assert red == []
        assert green == [
            "Played together in multiple sessions",
            "Played together - suggests different accounts",
        ]

    def test_insufficient_stats_never_flag(self):
        red, green = evaluate_flags(
            FlagContext(
                score=0.5,
                stat=StatSimilarityAnalysis(score=0.0, kd_similarity=1.0, insufficient_data=True),
            )
        )

        assert red == []
        assert green == []

    def test_contradicting_signals_lean_by_score(self):
        stat = StatSimilarityAnalysis(score=0.4, kd_similarity=0.95, kill_rate_similarity=0.1)
        network = NetworkAnalysis(score=0.4, has_direct_edge=True)

        _, green_low = evaluate_flags(FlagContext(score=0.3, stat=stat, network=network))
        red_high, _ = evaluate_flags(FlagContext(score=0.7, stat=stat, network=network))

        assert green_low[-1] == "Multiple contradicting signals suggest they are different players"
        assert red_high[-1] == "Multiple matching signals despite some differences"

    def test_switchover_flags(self):
        red, _ = evaluate_flags(FlagContext(score=0.5, timeline=timeline(0.9)))

        assert red == [
            "Suspicious switchover: Very tight switchover",
            "Zero temporal overlap - accounts never played simultaneously",
            "TIGHT SWITCHOVER: Only 2 days between accounts",
        ]

    def test_weak_switchover_is_ignored(self):
        red, green = evaluate_flags(FlagContext(score=0.5, timeline=timeline(0.3)))

        assert red == []
        assert green == []
