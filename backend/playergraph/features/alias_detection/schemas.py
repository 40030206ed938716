"""
Pydantic schemas for alias detection.

Each analyzer returns its own analysis model with a normalized ``score`` and
the component values behind it, so a report can always be explained.
"""

from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from playergraph.core.enums import SignalName, SuspicionLevel


class StatSimilarityAnalysis(BaseModel):
    """Statistical similarity of two players' aggregated performance."""

    score: float = Field(..., ge=0.0, le=1.0, description="Weighted similarity (0.0-1.0)")
    kd_similarity: float = Field(default=0.0, ge=0.0, le=1.0)
    kill_rate_similarity: float = Field(default=0.0, ge=0.0, le=1.0)
    score_per_round_similarity: float = Field(default=0.0, ge=0.0, le=1.0)
    map_performance_similarity: float = Field(default=0.0, ge=0.0, le=1.0)
    server_performance_similarity: float = Field(default=0.0, ge=0.0, le=1.0)
    player1_kd: float = 0.0
    player2_kd: float = 0.0
    player1_kill_rate: float = 0.0
    player2_kill_rate: float = 0.0
    player1_rounds: int = 0
    player2_rounds: int = 0
    common_maps: int = 0
    common_servers: int = 0
    insufficient_data: bool = Field(
        default=False, description="Either player has no qualifying rounds"
    )
    analysis: str = ""


class BehavioralAnalysis(BaseModel):
    """Play-time, server, ping and session habits compared."""

    score: float = Field(..., ge=0.0, le=1.0)
    play_time_similarity: float = Field(default=0.0, ge=0.0, le=1.0)
    server_affinity: float = Field(default=0.0, ge=0.0, le=1.0)
    ping_similarity: float = Field(default=0.0, ge=0.0, le=1.0)
    session_pattern_similarity: float = Field(default=0.0, ge=0.0, le=1.0)
    common_servers: int = 0
    union_servers: int = 0
    common_ping_servers: int = 0
    player1_hour_histogram: List[int] = Field(default_factory=list)
    player2_hour_histogram: List[int] = Field(default_factory=list)
    player1_session_count: int = 0
    player2_session_count: int = 0
    player1_avg_session_minutes: float = 0.0
    player2_avg_session_minutes: float = 0.0
    insufficient_data: bool = False
    analysis: str = ""


class NetworkAnalysis(BaseModel):
    """Teammate-set overlap and network shape of two players."""

    score: float = Field(..., ge=0.0, le=1.0)
    teammate_jaccard: float = Field(default=0.0, ge=0.0, le=1.0)
    shape_similarity: float = Field(default=0.0, ge=0.0, le=1.0)
    shared_teammate_count: int = 0
    player1_teammate_count: int = 0
    player2_teammate_count: int = 0
    player1_degree: int = 0
    player2_degree: int = 0
    has_direct_edge: bool = False
    insufficient_data: bool = False
    analysis: str = ""


class TemporalAnalysis(BaseModel):
    """Direct co-occurrence and activity-window separation."""

    score: float = Field(..., ge=0.0, le=1.0)
    co_occurrence_score: float = Field(default=0.0, ge=0.0, le=1.0)
    separation_score: float = Field(default=0.0, ge=0.0, le=1.0)
    has_direct_edge: bool = False
    direct_session_count: int = 0
    direct_minutes: float = 0.0
    activity_overlap_ratio: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Overlap of the two activity windows over the shorter one; None when unknown",
    )
    player1_first_activity: Optional[datetime] = None
    player1_last_activity: Optional[datetime] = None
    player2_first_activity: Optional[datetime] = None
    player2_last_activity: Optional[datetime] = None
    analysis: str = ""


class TimelineActivityPeriod(BaseModel):
    """Activity span of one player inside the timeline window."""

    player_name: str
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    total_sessions: int = 0
    total_active_days: int = 0
    total_minutes: float = 0.0
    days_since_last: Optional[int] = None
    avg_sessions_per_day: float = 0.0

    @property
    def is_currently_active(self) -> bool:
        return self.days_since_last is not None and self.days_since_last < 7


class GapAnalysis(BaseModel):
    """How the two activity periods relate: overlap, handoff or gap."""

    days_between: int = 0
    account_stopped_first: Optional[str] = None
    account_started_second: Optional[str] = None
    switchover_start: Optional[datetime] = None
    switchover_end: Optional[datetime] = None
    switchover_window_days: int = 0
    overlap_ratio: float = Field(default=0.0, ge=0.0, le=1.0)
    pattern_description: str = ""


class TimelineDay(BaseModel):
    day: date
    session_count: int = 0
    total_minutes: float = 0.0


class ActivityTimeline(BaseModel):
    """Activity periods, daily timelines and switchover assessment of a pair."""

    player1_activity: TimelineActivityPeriod
    player2_activity: TimelineActivityPeriod
    gap: GapAnalysis
    player1_timeline: List[TimelineDay] = Field(default_factory=list)
    player2_timeline: List[TimelineDay] = Field(default_factory=list)
    text_timeline: str = ""
    analysis: str = ""
    switchover_suspicion_score: float = Field(default=0.0, ge=0.0, le=1.0)
    insufficient_data: bool = False


class SimilarityReport(BaseModel):
    """Outcome of one alias comparison."""

    player1: str
    player2: str
    lookback_days: int
    overall_score: float = Field(..., ge=0.0, le=1.0)
    suspicion_level: SuspicionLevel
    confidence: float = Field(
        ..., ge=0.0, le=1.0, description="How much data supported the score"
    )
    stat_analysis: Optional[StatSimilarityAnalysis] = None
    behavioral_analysis: Optional[BehavioralAnalysis] = None
    network_analysis: Optional[NetworkAnalysis] = None
    temporal_analysis: Optional[TemporalAnalysis] = None
    timeline: Optional[ActivityTimeline] = None
    red_flags: List[str] = Field(default_factory=list)
    green_flags: List[str] = Field(default_factory=list)
    omitted_signals: List[SignalName] = Field(
        default_factory=list,
        description="Signals dropped from the composite because their store failed",
    )
    effective_weights: Dict[SignalName, float] = Field(
        default_factory=dict, description="Renormalized weights actually applied"
    )
    analyzed_at: datetime


class BatchReport(BaseModel):
    """Target player compared against a set of candidates."""

    target_player: str
    total_comparisons: int = 0
    top_suspects: List[SimilarityReport] = Field(default_factory=list)
    failed_candidates: List[str] = Field(default_factory=list)
    analyzed_at: datetime


class CustomWeights(BaseModel):
    """Per-request signal weights, normalized to sum 1 before use."""

    stat: float = Field(default=0.30, ge=0.0)
    behavioral: float = Field(default=0.20, ge=0.0)
    network: float = Field(default=0.25, ge=0.0)
    temporal: float = Field(default=0.15, ge=0.0)
    switchover: float = Field(default=0.0, ge=0.0)

    def as_signal_weights(self) -> Dict[SignalName, float]:
        return {
            SignalName.STAT: self.stat,
            SignalName.BEHAVIORAL: self.behavioral,
            SignalName.NETWORK: self.network,
            SignalName.TEMPORAL: self.temporal,
            SignalName.SWITCHOVER: self.switchover,
        }


class ComparisonRequest(BaseModel):
    """Request to compare two players."""

    player1: str = Field(..., min_length=1, description="First player name")
    player2: str = Field(..., min_length=1, description="Second player name")
    lookback_days: Optional[int] = Field(
        None, ge=0, le=3650, description="Days of history to analyze"
    )
    weights: Optional[CustomWeights] = Field(
        None, description="Custom signal weights (defaults from configuration)"
    )

    @field_validator("player1", "player2")
    @classmethod
    def strip_names(cls, value: str) -> str:
        return value.strip()

    @model_validator(mode="after")
    def check_distinct_players(self) -> "ComparisonRequest":
        if self.player1 and self.player1.casefold() == self.player2.casefold():
            raise ValueError("Cannot compare a player with themselves")
        return self


class ExplainResponse(BaseModel):
    player1: str
    player2: str
    suspicion_level: SuspicionLevel
    explanation: str


class WeightsResponse(BaseModel):
    weights: CustomWeights
    thresholds: Dict[SuspicionLevel, float]
    description: Dict[str, str]
