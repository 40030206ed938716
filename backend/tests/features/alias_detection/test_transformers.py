from playergraph.core.enums import SignalName, SuspicionLevel
from playergraph.features.alias_detection.schemas import (
    NetworkAnalysis,
    SimilarityReport,
    StatSimilarityAnalysis,
)
from playergraph.features.alias_detection.transformers import (
    RECOMMENDATIONS,
    AliasReportTransformer,
)
from tests.conftest import utc


def make_report(**overrides):
    values = dict(
        player1="alice",
        player2="bob",
        lookback_days=90,
        overall_score=0.9,
        suspicion_level=SuspicionLevel.VERY_LIKELY,
        confidence=0.75,
        stat_analysis=StatSimilarityAnalysis(score=1.0, analysis="Nearly identical stats"),
        network_analysis=NetworkAnalysis(score=0.88, analysis="Shared circle"),
        red_flags=["K/D ratios nearly identical"],
        analyzed_at=utc(2024, 3, 1),
    )
    values.update(overrides)
    return SimilarityReport(**values)


class TestAliasReportTransformer:
    """Test cases for the prose explanation"""

    def test_header_and_dimensions(self):
        text = AliasReportTransformer.explain(make_report())

        lines = text.splitlines()
        assert lines[0] == "Alias Detection Report: alice vs bob"
        assert "Overall Suspicion Score: 90% (VeryLikely)" in lines
        assert "Analysis Confidence: 75%" in lines
        assert "- Statistics Similarity: 100% - Nearly identical stats" in lines
        assert "- Network Overlap: 88% - Shared circle" in lines

    def test_missing_analysis_is_marked_unavailable(self):
        text = AliasReportTransformer.explain(
            make_report(omitted_signals=[SignalName.BEHAVIORAL, SignalName.TEMPORAL])
        )

        assert "- Behavioral Match: unavailable (signal omitted)" in text
        assert "(omitted: behavioral, temporal; weights renormalized over the rest)" in text

    def test_flags_sections(self):
        text = AliasReportTransformer.explain(
            make_report(green_flags=["Different server preferences"])
        )

        assert "RED FLAGS (suggest the same player):\n  ! K/D ratios nearly identical" in text
        assert "GREEN FLAGS (suggest different players):\n  + Different server preferences" in text

    def test_no_flags_no_sections(self):
        text = AliasReportTransformer.explain(make_report(red_flags=[]))

        assert "RED FLAGS" not in text
        assert "GREEN FLAGS" not in text

    def test_recommendation_follows_level(self):
        report = make_report(overall_score=0.1, suspicion_level=SuspicionLevel.UNRELATED)

        response = AliasReportTransformer.to_explain_response(report)

        assert response.suspicion_level == SuspicionLevel.UNRELATED
        assert response.explanation.endswith(
            "RECOMMENDATION:\n" + RECOMMENDATIONS[SuspicionLevel.UNRELATED]
        )
