"""Transformers turning similarity reports into human-readable output."""

from typing import List, Optional

from pydantic import BaseModel

from playergraph.core.enums import SuspicionLevel
from .schemas import ExplainResponse, SimilarityReport

RECOMMENDATIONS = {
    SuspicionLevel.VERY_LIKELY: (
        "VERY LIKELY ALIASES - Strong evidence suggests the same player. "
        "Consider investigation."
    ),
    SuspicionLevel.LIKELY: (
        "LIKELY ALIASES - Multiple similar patterns detected. Worth investigating."
    ),
    SuspicionLevel.POTENTIAL: (
        "POTENTIAL ALIASES - Some similarities found, but inconclusive. Review manually."
    ),
    SuspicionLevel.UNRELATED: (
        "PROBABLY DIFFERENT - Insufficient evidence of an alias relationship."
    ),
}


class AliasReportTransformer:
    """Formats a SimilarityReport as prose with a recommendation."""

    @staticmethod
    def _dimension_line(label: str, analysis: Optional[BaseModel]) -> str:
        if analysis is None:
            return f"- {label}: unavailable (signal omitted)"
        return f"- {label}: {analysis.score:.0%} - {analysis.analysis}"

    @staticmethod
    def explain(report: SimilarityReport) -> str:
        lines: List[str] = [
            f"Alias Detection Report: {report.player1} vs {report.player2}",
            f"Overall Suspicion Score: {report.overall_score:.0%} ({report.suspicion_level.value})",
            f"Analysis Confidence: {report.confidence:.0%}",
            "",
            "BREAKDOWN BY DIMENSION:",
            AliasReportTransformer._dimension_line("Statistics Similarity", report.stat_analysis),
            AliasReportTransformer._dimension_line("Behavioral Match", report.behavioral_analysis),
            AliasReportTransformer._dimension_line("Network Overlap", report.network_analysis),
            AliasReportTransformer._dimension_line(
                "Temporal Consistency", report.temporal_analysis
            ),
        ]
        if report.timeline and not report.timeline.insufficient_data:
            lines.append(
                f"- Account Switchover: {report.timeline.switchover_suspicion_score:.0%} - "
                f"{report.timeline.gap.pattern_description}"
            )
        if report.omitted_signals:
            omitted = ", ".join(s.value for s in report.omitted_signals)
            lines.append(f"  (omitted: {omitted}; weights renormalized over the rest)")
        lines.append("")

        if report.red_flags:
            lines.append("RED FLAGS (suggest the same player):")
            lines.extend(f"  ! {flag}" for flag in report.red_flags)
            lines.append("")

        if report.green_flags:
            lines.append("GREEN FLAGS (suggest different players):")
            lines.extend(f"  + {flag}" for flag in report.green_flags)
            lines.append("")

        lines.append("RECOMMENDATION:")
        lines.append(RECOMMENDATIONS[report.suspicion_level])
        return "\n".join(lines)

    @staticmethod
    def to_explain_response(report: SimilarityReport) -> ExplainResponse:
        return ExplainResponse(
            player1=report.player1,
            player2=report.player2,
            suspicion_level=report.suspicion_level,
            explanation=AliasReportTransformer.explain(report),
        )
