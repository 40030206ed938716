"""
Alias detection service.

Orchestrates the signal analyzers for a pair of players:
- runs stat, behavioral, network/temporal and timeline analysis concurrently
- combines the available signals into a weighted composite score
- classifies suspicion, derives red/green flags and a separate confidence

A store failure only removes the signals that depend on that store; the
remaining weights are renormalized and confidence is reduced instead of
failing the comparison.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog

from playergraph.core.decorators import input_validation
from playergraph.core.enums import SignalName
from playergraph.core.exceptions import (
    ExternalStoreError,
    InvalidInputError,
    PlayerNotFoundError,
    ServiceException,
)
from playergraph.features.relationships.graph_repository import GraphStoreInterface
from playergraph.features.sessions.repository import SessionStoreInterface
from playergraph.features.stats.repository import StatStoreInterface
from playergraph.utils.concurrency import gather_or_cancel
from playergraph.utils.statistics import clamp
from .analyzers import (
    ActivityTimelineAnalyzer,
    BehavioralAnalyzer,
    GraphSignals,
    NetworkAnalyzer,
    StatSimilarityAnalyzer,
)
from .config import ANALYSIS_THRESHOLDS, AliasDetectionConfig, get_detection_config
from .flags import FlagContext, evaluate_flags
from .schemas import (
    ActivityTimeline,
    BatchReport,
    BehavioralAnalysis,
    CustomWeights,
    NetworkAnalysis,
    SimilarityReport,
    StatSimilarityAnalysis,
    TemporalAnalysis,
)

logger = structlog.get_logger(__name__)

DEFAULT_TIMELINE_LOOKBACK_DAYS = 180


def normalize_weights(weights: Dict[SignalName, float]) -> Dict[SignalName, float]:
    """Scale non-negative weights to sum 1; all-zero weights are invalid."""
    if any(w < 0 for w in weights.values()):
        raise InvalidInputError("signal weights must not be negative", field="weights")
    total = sum(weights.values())
    if total <= 0:
        raise InvalidInputError(
            "at least one signal weight must be positive", field="weights"
        )
    return {signal: weight / total for signal, weight in weights.items()}


def _reject_self_comparison(player1: str, player2: str) -> None:
    if player1.strip().casefold() == player2.strip().casefold():
        raise InvalidInputError(
            "cannot compare a player with themselves",
            field="player2",
            value=player2,
        )


def _validate_limit(limit: int) -> None:
    if limit < 1 or limit > 100:
        raise InvalidInputError("limit must be between 1 and 100", field="limit", value=limit)


class AliasDetectionService:
    """Service comparing players for multi-account (alias) patterns."""

    def __init__(
        self,
        stat_store: StatStoreInterface,
        session_store: SessionStoreInterface,
        graph_store: GraphStoreInterface,
        config: Optional[AliasDetectionConfig] = None,
    ):
        """
        Initialize alias detection service.

        :param stat_store: Aggregated stat store
        :param session_store: Session/observation store
        :param graph_store: Relationship graph store
        :param config: Scoring policy (defaults to the settings-backed policy)
        """
        self.session_store = session_store
        self.graph_store = graph_store
        self.config = config or get_detection_config()

        self.stat_analyzer = StatSimilarityAnalyzer(stat_store)
        self.behavioral_analyzer = BehavioralAnalyzer(session_store)
        self.network_analyzer = NetworkAnalyzer(graph_store)
        self.timeline_analyzer = ActivityTimelineAnalyzer(session_store)

    # Public operations

    @input_validation(
        validate_non_empty=["player1", "player2"],
        validate_non_negative=["lookback_days"],
    )
    async def compare(
        self,
        player1: str,
        player2: str,
        lookback_days: Optional[int] = None,
        weights: Optional[CustomWeights] = None,
    ) -> SimilarityReport:
        """
        Compare two players and produce a similarity report.

        :param player1: First player name
        :param player2: Second player name
        :param lookback_days: Days of history (defaults to configuration)
        :param weights: Optional per-request signal weights
        :returns: SimilarityReport with score, level, flags and confidence
        :raises InvalidInputError: For blank or identical names, negative
            lookback, invalid weights
        :raises PlayerNotFoundError: If a player has never been observed
        """
        player1, player2 = player1.strip(), player2.strip()
        _reject_self_comparison(player1, player2)
        signal_weights = normalize_weights(
            weights.as_signal_weights() if weights else self.config.weights
        )
        if lookback_days is None:
            lookback_days = self.config.default_lookback_days

        await self._ensure_players_exist(player1, player2)
        return await self._compare(player1, player2, lookback_days, signal_weights)

    @input_validation(
        validate_non_empty=["player_name"],
        validate_non_negative=["lookback_days", "min_score"],
        custom_validators={"limit": _validate_limit},
    )
    async def find_potential_aliases(
        self,
        player_name: str,
        candidates: Optional[Iterable[str]] = None,
        lookback_days: Optional[int] = None,
        limit: int = 10,
        min_score: float = 0.0,
    ) -> BatchReport:
        """
        Compare a player against candidates and return the top suspects.

        Without explicit candidates, players sharing the most teammates with
        the target are taken from the graph. Comparisons run with bounded
        concurrency; a failing candidate is reported, not fatal.
        """
        target = player_name.strip()
        if lookback_days is None:
            lookback_days = self.config.default_lookback_days
        await self._ensure_players_exist(target)

        if candidates is None:
            found = await self.graph_store.get_alias_candidates(
                target, limit=max(limit * 3, 20)
            )
            candidates = [c.name for c in found]

        unique: List[str] = []
        seen = {target.casefold()}
        for name in candidates:
            cleaned = (name or "").strip()
            if cleaned and cleaned.casefold() not in seen:
                seen.add(cleaned.casefold())
                unique.append(cleaned)

        logger.info(
            "Finding potential aliases",
            player_name=target,
            candidates=len(unique),
            lookback_days=lookback_days,
        )

        signal_weights = normalize_weights(self.config.weights)
        semaphore = asyncio.Semaphore(self.config.max_parallel_comparisons)

        async def _compare_candidate(candidate: str) -> SimilarityReport:
            async with semaphore:
                await self._ensure_players_exist(candidate)
                return await self._compare(target, candidate, lookback_days, signal_weights)

        outcomes = await asyncio.gather(
            *(_compare_candidate(name) for name in unique), return_exceptions=True
        )

        reports: List[SimilarityReport] = []
        failed: List[str] = []
        for name, outcome in zip(unique, outcomes):
            if isinstance(outcome, ServiceException):
                logger.warning(
                    "Candidate comparison failed",
                    player_name=target,
                    candidate=name,
                    error=str(outcome),
                )
                failed.append(name)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                reports.append(outcome)

        suspects = sorted(
            (r for r in reports if r.overall_score >= min_score),
            key=lambda r: (-r.overall_score, r.player2.casefold()),
        )[:limit]

        return BatchReport(
            target_player=target,
            total_comparisons=len(reports),
            top_suspects=suspects,
            failed_candidates=failed,
            analyzed_at=datetime.now(timezone.utc),
        )

    @input_validation(
        validate_non_empty=["player1", "player2"],
        validate_non_negative=["lookback_days"],
    )
    async def get_activity_timeline(
        self,
        player1: str,
        player2: str,
        lookback_days: int = DEFAULT_TIMELINE_LOOKBACK_DAYS,
    ) -> ActivityTimeline:
        """Activity periods, gap analysis and switchover score for a pair."""
        player1, player2 = player1.strip(), player2.strip()
        _reject_self_comparison(player1, player2)
        await self._ensure_players_exist(player1, player2)
        return await self.timeline_analyzer.analyze(player1, player2, lookback_days)

    # Orchestration

    async def _ensure_players_exist(self, *players: str) -> None:
        try:
            exists = await gather_or_cancel(
                *(self.session_store.player_exists(p) for p in players)
            )
        except ExternalStoreError as e:
            # Existence cannot be checked; the analyzers degrade on their own.
            logger.warning(
                "Player existence check skipped", players=list(players), error=str(e)
            )
            return
        for player, found in zip(players, exists):
            if not found:
                raise PlayerNotFoundError(player, service="AliasDetectionService")

    async def _compare(
        self,
        player1: str,
        player2: str,
        lookback_days: int,
        signal_weights: Dict[SignalName, float],
    ) -> SimilarityReport:
        stat, behavioral, graph, timeline = await self._run_analyzers(
            player1, player2, lookback_days
        )
        network: Optional[NetworkAnalysis] = graph.network if graph else None
        temporal: Optional[TemporalAnalysis] = graph.temporal if graph else None

        scores: Dict[SignalName, Optional[float]] = {
            SignalName.STAT: stat.score if stat else None,
            SignalName.BEHAVIORAL: behavioral.score if behavioral else None,
            SignalName.NETWORK: network.score if network else None,
            SignalName.TEMPORAL: temporal.score if temporal else None,
            SignalName.SWITCHOVER: timeline.switchover_suspicion_score if timeline else None,
        }
        overall, effective_weights, omitted = self.composite_score(scores, signal_weights)
        level = self.config.classify(overall)

        red_flags, green_flags = evaluate_flags(
            FlagContext(
                score=overall,
                stat=stat,
                behavioral=behavioral,
                network=network,
                temporal=temporal,
                timeline=timeline,
            )
        )
        confidence = self.confidence(stat, behavioral, network, omitted)

        logger.info(
            "Alias comparison completed",
            player1=player1,
            player2=player2,
            overall_score=round(overall, 4),
            suspicion_level=level.value,
            confidence=round(confidence, 4),
            omitted_signals=[s.value for s in omitted],
            red_flags=len(red_flags),
            green_flags=len(green_flags),
        )

        return SimilarityReport(
            player1=player1,
            player2=player2,
            lookback_days=lookback_days,
            overall_score=overall,
            suspicion_level=level,
            confidence=confidence,
            stat_analysis=stat,
            behavioral_analysis=behavioral,
            network_analysis=network,
            temporal_analysis=temporal,
            timeline=timeline,
            red_flags=red_flags,
            green_flags=green_flags,
            omitted_signals=omitted,
            effective_weights=effective_weights,
            analyzed_at=datetime.now(timezone.utc),
        )

    async def _run_analyzers(
        self, player1: str, player2: str, lookback_days: int
    ) -> Tuple[
        Optional[StatSimilarityAnalysis],
        Optional[BehavioralAnalysis],
        Optional[GraphSignals],
        Optional[ActivityTimeline],
    ]:
        """Run every analyzer concurrently; a failed analyzer yields ``None``."""
        names = ("stat", "behavioral", "network", "timeline")
        outcomes = await asyncio.gather(
            self.stat_analyzer.analyze(player1, player2, lookback_days),
            self.behavioral_analyzer.analyze(player1, player2, lookback_days),
            self.network_analyzer.analyze(player1, player2, lookback_days),
            self.timeline_analyzer.analyze(player1, player2, lookback_days),
            return_exceptions=True,
        )

        results: List[Any] = []
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, InvalidInputError):
                raise outcome
            if isinstance(outcome, ServiceException):
                logger.warning(
                    "Analyzer failed, omitting its signals",
                    analyzer=name,
                    player1=player1,
                    player2=player2,
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )
                results.append(None)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results.append(outcome)
        return tuple(results)  # type: ignore[return-value]

    @staticmethod
    def composite_score(
        scores: Dict[SignalName, Optional[float]],
        weights: Dict[SignalName, float],
    ) -> Tuple[float, Dict[SignalName, float], List[SignalName]]:
        """
        Weighted mean over the signals that produced a score.

        :returns: ``(score, effective_weights, omitted_signals)``; a signal
            with zero weight is neither used nor reported as omitted
        """
        available = {
            signal: weight
            for signal, weight in weights.items()
            if weight > 0 and scores.get(signal) is not None
        }
        omitted = [
            signal
            for signal, weight in weights.items()
            if weight > 0 and scores.get(signal) is None
        ]
        total_weight = sum(available.values())
        if total_weight <= 0:
            return 0.0, {}, omitted

        effective = {signal: weight / total_weight for signal, weight in available.items()}
        score = sum(scores[signal] * weight for signal, weight in effective.items())
        return clamp(score), effective, omitted

    def confidence(
        self,
        stat: Optional[StatSimilarityAnalysis],
        behavioral: Optional[BehavioralAnalysis],
        network: Optional[NetworkAnalysis],
        omitted: List[SignalName],
    ) -> float:
        """How much data backed the score, independent of the score itself."""
        min_rounds = ANALYSIS_THRESHOLDS["min_stat_rounds"]
        min_sessions = ANALYSIS_THRESHOLDS["min_behavioral_sessions"]

        confidence = self.config.confidence_base
        stat_sample_ok = (
            stat is not None
            and not stat.insufficient_data
            and min(stat.player1_rounds, stat.player2_rounds) >= min_rounds
        )
        if stat_sample_ok:
            confidence += self.config.confidence_stat_bonus
        if (
            behavioral is not None
            and not behavioral.insufficient_data
            and min(behavioral.player1_session_count, behavioral.player2_session_count)
            >= min_sessions
        ):
            confidence += self.config.confidence_behavioral_bonus
        if (
            network is not None
            and network.shared_teammate_count >= ANALYSIS_THRESHOLDS["min_shared_teammates"]
        ):
            confidence += self.config.confidence_network_bonus

        confidence -= ANALYSIS_THRESHOLDS["omitted_signal_penalty"] * len(omitted)
        if stat is not None and not stat_sample_ok:
            confidence = min(confidence, ANALYSIS_THRESHOLDS["insufficient_confidence_cap"])
        return clamp(confidence)

