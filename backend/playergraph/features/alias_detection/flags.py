"""
Red/green flag rule table.

Each rule is a predicate over the sub-analyses, a flag text and a polarity.
Rules are evaluated uniformly in three stages: signal rules, switchover
rules (only when a timeline is available), then meta rules that look at the
flags already raised. Adding or tuning a rule means editing a table entry.

Unavailable or insufficient analyses never satisfy a predicate.
"""

from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional, Tuple, Union

from playergraph.core.enums import FlagPolarity
from .config import ANALYSIS_THRESHOLDS
from .schemas import (
    ActivityTimeline,
    BehavioralAnalysis,
    NetworkAnalysis,
    StatSimilarityAnalysis,
    TemporalAnalysis,
)


@dataclass(frozen=True)
class FlagContext:
    """Everything a rule may look at for one comparison."""

    score: float
    stat: Optional[StatSimilarityAnalysis] = None
    behavioral: Optional[BehavioralAnalysis] = None
    network: Optional[NetworkAnalysis] = None
    temporal: Optional[TemporalAnalysis] = None
    timeline: Optional[ActivityTimeline] = None
    red_flags: Tuple[str, ...] = field(default_factory=tuple)
    green_flags: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def usable_stat(self) -> Optional[StatSimilarityAnalysis]:
        return self.stat if self.stat and not self.stat.insufficient_data else None

    @property
    def usable_behavioral(self) -> Optional[BehavioralAnalysis]:
        if self.behavioral and not self.behavioral.insufficient_data:
            return self.behavioral
        return None

    @property
    def usable_network(self) -> Optional[NetworkAnalysis]:
        return self.network if self.network and not self.network.insufficient_data else None

    @property
    def usable_timeline(self) -> Optional[ActivityTimeline]:
        return self.timeline if self.timeline and not self.timeline.insufficient_data else None


FlagText = Union[str, Callable[[FlagContext], str]]


@dataclass(frozen=True)
class FlagRule:
    name: str
    polarity: FlagPolarity
    text: FlagText
    predicate: Callable[[FlagContext], bool]

    def render(self, context: FlagContext) -> str:
        return self.text(context) if callable(self.text) else self.text


def _stat(predicate: Callable[[StatSimilarityAnalysis], bool]) -> Callable[[FlagContext], bool]:
    return lambda ctx: ctx.usable_stat is not None and predicate(ctx.usable_stat)


def _behavior(predicate: Callable[[BehavioralAnalysis], bool]) -> Callable[[FlagContext], bool]:
    return lambda ctx: ctx.usable_behavioral is not None and predicate(ctx.usable_behavioral)


def _network(predicate: Callable[[NetworkAnalysis], bool]) -> Callable[[FlagContext], bool]:
    return lambda ctx: ctx.usable_network is not None and predicate(ctx.usable_network)


def _timeline(predicate: Callable[[ActivityTimeline], bool]) -> Callable[[FlagContext], bool]:
    def check(ctx: FlagContext) -> bool:
        timeline = ctx.usable_timeline
        return (
            timeline is not None
            and timeline.switchover_suspicion_score > ANALYSIS_THRESHOLDS["switchover_flag_score"]
            and predicate(timeline)
        )

    return check


def _zero_overlap_with_shared_circle(ctx: FlagContext) -> bool:
    network = ctx.usable_network
    return (
        network is not None
        and ctx.temporal is not None
        and ctx.temporal.activity_overlap_ratio == 0
        and network.teammate_jaccard > 0.50
    )


def _played_together_multiple(ctx: FlagContext) -> bool:
    return (
        ctx.temporal is not None
        and ctx.temporal.direct_session_count >= ANALYSIS_THRESHOLDS["multiple_co_sessions"]
    )


def _played_together(ctx: FlagContext) -> bool:
    network = ctx.usable_network
    return (
        network is not None
        and network.has_direct_edge
        and not _zero_overlap_with_shared_circle(ctx)
    )


def _tight_switchover_text(ctx: FlagContext) -> str:
    days = ctx.timeline.gap.switchover_window_days
    return f"TIGHT SWITCHOVER: Only {days} day{'s' if days != 1 else ''} between accounts"


SIGNAL_RULES: List[FlagRule] = [
    # Red flags (suggest the same player)
    FlagRule(
        "identical_kd",
        FlagPolarity.RED,
        "K/D ratios nearly identical",
        _stat(lambda s: s.kd_similarity > 0.85),
    ),
    FlagRule(
        "identical_map_performance",
        FlagPolarity.RED,
        "Identical map performance patterns",
        _stat(lambda s: s.common_maps > 0 and s.map_performance_similarity > 0.80),
    ),
    FlagRule(
        "identical_play_times",
        FlagPolarity.RED,
        "Play at nearly identical times of day",
        _behavior(lambda b: b.play_time_similarity > 0.75),
    ),
    FlagRule(
        "server_affinity_match",
        FlagPolarity.RED,
        "Strong server affinity match",
        _behavior(lambda b: b.server_affinity > 0.70),
    ),
    FlagRule(
        "same_location_ping",
        FlagPolarity.RED,
        "Nearly identical ping on same servers (same location)",
        _behavior(lambda b: b.common_ping_servers > 0 and b.ping_similarity > 0.85),
    ),
    FlagRule(
        "very_high_teammate_overlap",
        FlagPolarity.RED,
        "Very high teammate overlap",
        _network(lambda n: n.teammate_jaccard > 0.70),
    ),
    FlagRule(
        "shared_circle_never_together",
        FlagPolarity.RED,
        "High teammate overlap but no direct co-session (classic alias pattern)",
        _network(lambda n: not n.has_direct_edge and n.teammate_jaccard > 0.60),
    ),
    FlagRule(
        "zero_temporal_overlap",
        FlagPolarity.RED,
        "Zero temporal overlap with high teammate overlap (likely same person)",
        _zero_overlap_with_shared_circle,
    ),
    FlagRule(
        "identical_kill_rate",
        FlagPolarity.RED,
        "Kill rate patterns nearly identical",
        _stat(lambda s: s.kill_rate_similarity > 0.80),
    ),
    # Green flags (suggest different players)
    FlagRule(
        "played_together_often",
        FlagPolarity.GREEN,
        "Played together in multiple sessions",
        _played_together_multiple,
    ),
    FlagRule(
        "different_play_times",
        FlagPolarity.GREEN,
        "Play at significantly different times",
        _behavior(lambda b: b.play_time_similarity < 0.25),
    ),
    FlagRule(
        "different_location_ping",
        FlagPolarity.GREEN,
        "Very different pings on same servers (different locations)",
        _behavior(
            lambda b: b.common_ping_servers > 0
            and b.ping_similarity < 0.30
            and b.server_affinity > 0.50
        ),
    ),
    FlagRule(
        "different_map_performance",
        FlagPolarity.GREEN,
        "Map-specific performance differs significantly",
        _stat(lambda s: s.common_maps > 0 and s.map_performance_similarity < 0.40),
    ),
    FlagRule(
        "played_together",
        FlagPolarity.GREEN,
        "Played together - suggests different accounts",
        _played_together,
    ),
    FlagRule(
        "different_kd",
        FlagPolarity.GREEN,
        "K/D ratios significantly different",
        _stat(lambda s: s.kd_similarity < 0.30),
    ),
    FlagRule(
        "different_servers",
        FlagPolarity.GREEN,
        "Different server preferences",
        _behavior(lambda b: b.server_affinity < 0.30),
    ),
]

SWITCHOVER_RULES: List[FlagRule] = [
    FlagRule(
        "suspicious_switchover",
        FlagPolarity.RED,
        lambda ctx: f"Suspicious switchover: {ctx.timeline.gap.pattern_description}",
        _timeline(lambda t: True),
    ),
    FlagRule(
        "never_simultaneous",
        FlagPolarity.RED,
        "Zero temporal overlap - accounts never played simultaneously",
        _timeline(lambda t: t.gap.overlap_ratio == 0),
    ),
    FlagRule(
        "tight_switchover",
        FlagPolarity.RED,
        _tight_switchover_text,
        _timeline(
            lambda t: t.gap.switchover_window_days
            <= ANALYSIS_THRESHOLDS["tight_switchover_days"]
        ),
    ),
]

META_RULES: List[FlagRule] = [
    FlagRule(
        "conflict_leans_different",
        FlagPolarity.GREEN,
        "Multiple contradicting signals suggest they are different players",
        lambda ctx: bool(ctx.red_flags and ctx.green_flags)
        and ctx.score < ANALYSIS_THRESHOLDS["conflict_score_cutoff"],
    ),
    FlagRule(
        "conflict_leans_same",
        FlagPolarity.RED,
        "Multiple matching signals despite some differences",
        lambda ctx: bool(ctx.red_flags and ctx.green_flags)
        and ctx.score >= ANALYSIS_THRESHOLDS["conflict_score_cutoff"],
    ),
]


def _apply(
    rules: List[FlagRule], context: FlagContext, red: List[str], green: List[str]
) -> None:
    for rule in rules:
        if not rule.predicate(context):
            continue
        text = rule.render(context)
        (red if rule.polarity == FlagPolarity.RED else green).append(text)


def evaluate_flags(context: FlagContext) -> Tuple[List[str], List[str]]:
    """Evaluate every rule stage; returns ``(red_flags, green_flags)``."""
    red: List[str] = []
    green: List[str] = []

    _apply(SIGNAL_RULES, context, red, green)
    _apply(SWITCHOVER_RULES, context, red, green)

    meta_context = replace(context, red_flags=tuple(red), green_flags=tuple(green))
    _apply(META_RULES, meta_context, red, green)
    return red, green
