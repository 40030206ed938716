import pytest

from playergraph.core.exceptions import ExternalStoreError
from playergraph.features.alias_detection.analyzers.stat_similarity import (
    NO_COMMON_KEYS_SIMILARITY,
    NO_VECTOR_DATA_SIMILARITY,
    StatSimilarityAnalyzer,
    vector_similarity,
)
from playergraph.features.stats.schemas import PlayerAggregateStats


def make_stats(name, kd=2.0, kill_rate=1.0, spr=50.0, maps=None, servers=None, rounds=20):
    return PlayerAggregateStats(
        player_name=name,
        kd=kd,
        kill_rate=kill_rate,
        score_per_round=spr,
        per_map_kd=maps if maps is not None else {"dust": 2.0, "snow": 1.5},
        per_server_kd=servers if servers is not None else {"srv-1": 2.0},
        total_rounds=rounds,
    )


class TestVectorSimilarity:
    def test_missing_vector_is_neutral(self):
        assert vector_similarity({}, {"dust": 1.0}) == (NO_VECTOR_DATA_SIMILARITY, 0)

    def test_no_common_keys(self):
        assert vector_similarity({"dust": 1.0}, {"snow": 1.0}) == (NO_COMMON_KEYS_SIMILARITY, 0)

    def test_restricted_to_common_keys(self):
        score, common = vector_similarity(
            {"dust": 2.0, "snow": 1.0}, {"dust": 4.0, "snow": 2.0, "desert": 9.0}
        )

        assert common == 2
        assert score == pytest.approx(1.0)


class TestStatSimilarityAnalyzer:
    """Test cases for the statistical similarity signal"""

    def test_identical_stats_score_one(self):
        analysis = StatSimilarityAnalyzer.compare_stats(make_stats("a"), make_stats("b"))

        assert analysis.score == pytest.approx(1.0)
        assert analysis.kd_similarity == 1.0
        assert analysis.common_maps == 2
        assert analysis.common_servers == 1

    def test_different_stats_score_low(self):
        carol = make_stats("carol", kd=0.4, kill_rate=0.2, spr=10.0, maps={"dust": 0.4}, servers={"srv-1": 0.4})
        dave = make_stats("dave", kd=3.2, kill_rate=1.6, spr=80.0, maps={"snow": 3.2}, servers={"srv-2": 3.2})

        analysis = StatSimilarityAnalyzer.compare_stats(carol, dave)

        assert analysis.kd_similarity == pytest.approx(0.125)
        assert analysis.map_performance_similarity == NO_COMMON_KEYS_SIMILARITY
        assert analysis.score == pytest.approx(0.16)

    def test_score_is_symmetric(self):
        first = make_stats("a", kd=1.2, maps={"dust": 1.0, "snow": 3.0})
        second = make_stats("b", kd=2.5, maps={"dust": 2.0})

        forward = StatSimilarityAnalyzer.compare_stats(first, second)
        backward = StatSimilarityAnalyzer.compare_stats(second, first)

        assert forward.score == pytest.approx(backward.score)

    @pytest.mark.asyncio
    async def test_player_without_rounds_is_insufficient(self, stat_store):
        stat_store.stats["alice"] = make_stats("alice")
        analyzer = StatSimilarityAnalyzer(stat_store)

        analysis = await analyzer.analyze("alice", "newbie", 90)

        assert analysis.insufficient_data
        assert analysis.score == 0.0
        assert analysis.player1_rounds == 20
        assert analysis.player2_rounds == 0

    @pytest.mark.asyncio
    async def test_store_errors_propagate(self, stat_store):
        stat_store.unreachable = True
        analyzer = StatSimilarityAnalyzer(stat_store)

        with pytest.raises(ExternalStoreError):
            await analyzer.analyze("alice", "bob", 90)
