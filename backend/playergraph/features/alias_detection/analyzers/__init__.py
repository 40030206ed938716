"""
Alias signal analyzers.

One module per signal; each analyzer depends only on the store it reads.
"""

from .base_analyzer import BaseSignalAnalyzer
from .behavioral import BehavioralAnalyzer
from .network import GraphSignals, NetworkAnalyzer
from .stat_similarity import StatSimilarityAnalyzer
from .timeline import ActivityTimelineAnalyzer

__all__ = [
    "BaseSignalAnalyzer",
    "StatSimilarityAnalyzer",
    "BehavioralAnalyzer",
    "NetworkAnalyzer",
    "GraphSignals",
    "ActivityTimelineAnalyzer",
]
