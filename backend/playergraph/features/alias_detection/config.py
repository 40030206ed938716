"""
Configuration for alias detection.

Signal weights, suspicion thresholds and confidence bonuses are policy and
come from ``Settings`` so they can be tuned per deployment. The constants in
``ANALYSIS_THRESHOLDS`` are sample-size and shaping parameters of the
analyzers themselves.
"""

from typing import Dict, Optional

import structlog
from pydantic import BaseModel, Field

from playergraph.core.config import Settings, get_global_settings
from playergraph.core.enums import SignalName, SuspicionLevel

logger = structlog.get_logger(__name__)

ANALYSIS_THRESHOLDS: Dict[str, float] = {
    "min_stat_rounds": 10,  # Rounds per player for a trustworthy stat sample
    "min_behavioral_sessions": 5,  # Sessions per player for behavioral bonus
    "min_shared_teammates": 5,  # Shared teammates for the network bonus
    "significant_co_sessions": 10,  # Direct sessions that fully rule out aliasing
    "multiple_co_sessions": 2,  # Direct sessions counted as "multiple"
    "jaccard_saturation": 0.5,  # Teammate Jaccard at which co-occurrence maxes out
    "ping_tolerance": 0.30,  # Mean normalized ping difference treated as unrelated
    "omitted_signal_penalty": 0.15,  # Confidence lost per omitted signal
    "insufficient_confidence_cap": 0.50,  # Max confidence when a player lacks rounds
    "direct_edge_network_factor": 0.9,  # Network score damping when players met
    "conflict_score_cutoff": 0.60,  # Meta flag: below -> different, above -> same
    "switchover_flag_score": 0.40,  # Switchover score that emits switchover flags
    "tight_switchover_days": 3,
}

# Component weights inside each analyzer (sum to 1.0 each)
STAT_COMPONENT_WEIGHTS: Dict[str, float] = {
    "kd": 0.40,
    "kill_rate": 0.25,
    "score_per_round": 0.15,
    "map_performance": 0.15,
    "server_performance": 0.05,
}

BEHAVIORAL_COMPONENT_WEIGHTS: Dict[str, float] = {
    "play_time": 0.30,
    "server_affinity": 0.30,
    "ping": 0.20,
    "session_pattern": 0.20,
}

NETWORK_COMPONENT_WEIGHTS: Dict[str, float] = {
    "teammate_jaccard": 0.60,
    "shape": 0.40,
}

TEMPORAL_COMPONENT_WEIGHTS: Dict[str, float] = {
    "co_occurrence": 0.60,
    "separation": 0.40,
}


class AliasDetectionConfig(BaseModel):
    """Scoring policy of the alias engine."""

    weights: Dict[SignalName, float]
    threshold_potential: float = Field(..., gt=0.0, le=1.0)
    threshold_likely: float = Field(..., gt=0.0, le=1.0)
    threshold_very_likely: float = Field(..., gt=0.0, le=1.0)
    confidence_base: float = 0.50
    confidence_stat_bonus: float = 0.25
    confidence_behavioral_bonus: float = 0.15
    confidence_network_bonus: float = 0.10
    default_lookback_days: int = 90
    max_parallel_comparisons: int = 5

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "AliasDetectionConfig":
        settings = settings or get_global_settings()
        return cls(
            weights={
                SignalName.STAT: settings.alias_weight_stat,
                SignalName.BEHAVIORAL: settings.alias_weight_behavioral,
                SignalName.NETWORK: settings.alias_weight_network,
                SignalName.TEMPORAL: settings.alias_weight_temporal,
                SignalName.SWITCHOVER: settings.alias_weight_switchover,
            },
            threshold_potential=settings.alias_threshold_potential,
            threshold_likely=settings.alias_threshold_likely,
            threshold_very_likely=settings.alias_threshold_very_likely,
            confidence_base=settings.alias_confidence_base,
            confidence_stat_bonus=settings.alias_confidence_stat_bonus,
            confidence_behavioral_bonus=settings.alias_confidence_behavioral_bonus,
            confidence_network_bonus=settings.alias_confidence_network_bonus,
            default_lookback_days=settings.alias_default_lookback_days,
            max_parallel_comparisons=settings.alias_max_parallel_comparisons,
        )

    def classify(self, score: float) -> SuspicionLevel:
        """Map a composite score onto the ordinal suspicion scale."""
        if score >= self.threshold_very_likely:
            return SuspicionLevel.VERY_LIKELY
        if score >= self.threshold_likely:
            return SuspicionLevel.LIKELY
        if score >= self.threshold_potential:
            return SuspicionLevel.POTENTIAL
        return SuspicionLevel.UNRELATED


def validate_configuration(config: AliasDetectionConfig) -> None:
    """
    Validate an alias detection policy.

    Raises:
        ValueError: If configuration is invalid
    """
    for name, weight in config.weights.items():
        if weight < 0:
            raise ValueError(f"Weight {name.value} must be non-negative")

    total_weight = sum(config.weights.values())
    if total_weight <= 0:
        raise ValueError("At least one signal weight must be positive")

    if not (
        config.threshold_potential
        < config.threshold_likely
        < config.threshold_very_likely
    ):
        raise ValueError("Suspicion thresholds must be strictly increasing")

    for name, weights in (
        ("stat", STAT_COMPONENT_WEIGHTS),
        ("behavioral", BEHAVIORAL_COMPONENT_WEIGHTS),
        ("network", NETWORK_COMPONENT_WEIGHTS),
        ("temporal", TEMPORAL_COMPONENT_WEIGHTS),
    ):
        component_total = sum(weights.values())
        if not (0.99 <= component_total <= 1.01):
            raise ValueError(
                f"{name} component weights must sum to 1.0, current sum: {component_total:.4f}"
            )

    logger.debug(
        "Alias detection configuration validated",
        total_weight=total_weight,
        thresholds=(
            config.threshold_potential,
            config.threshold_likely,
            config.threshold_very_likely,
        ),
    )


def get_detection_config(settings: Optional[Settings] = None) -> AliasDetectionConfig:
    """Build and validate the alias detection policy from settings."""
    config = AliasDetectionConfig.from_settings(settings)
    validate_configuration(config)
    return config
