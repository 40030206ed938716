"""
Base class for alias signal analyzers.

Every analyzer compares two players over a lookback window and returns its
own analysis model with a normalized score. Analyzers never swallow store
errors: the orchestrator decides how to degrade when one of them fails.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import structlog
from pydantic import BaseModel

from playergraph.core.enums import SignalName
from ..config import ANALYSIS_THRESHOLDS


class BaseSignalAnalyzer(ABC):
    """
    Abstract base class for alias signal analyzers.

    All analyzers inherit from this class and implement ``analyze`` so the
    orchestrator can run them uniformly and concurrently.
    """

    def __init__(self, signal_name: SignalName):
        self.signal_name = signal_name
        self.logger = structlog.get_logger(f"{__name__}.{signal_name.value}")

    @abstractmethod
    async def analyze(self, player1: str, player2: str, lookback_days: int) -> BaseModel:
        """
        Compare two players on this signal.

        :param player1: First player name (trimmed, known to exist)
        :type player1: str
        :param player2: Second player name (trimmed, known to exist)
        :type player2: str
        :param lookback_days: Days of history to consider
        :type lookback_days: int
        :returns: Signal-specific analysis with a score in [0, 1]
        :rtype: BaseModel
        :raises ExternalStoreError: If a backing store fails or times out
        """

    def _get_threshold(self, threshold_name: str) -> float:
        """
        Get a threshold value from configuration.

        :param threshold_name: Name of the threshold
        :type threshold_name: str
        :returns: Threshold value
        :rtype: float
        :raises KeyError: If threshold is not found
        """
        if threshold_name not in ANALYSIS_THRESHOLDS:
            raise KeyError(f"Threshold '{threshold_name}' not found in configuration")
        return ANALYSIS_THRESHOLDS[threshold_name]

    def _log_analysis_start(
        self, player1: str, player2: str, context: Optional[Dict[str, Any]] = None
    ) -> None:
        self.logger.debug(
            "Starting signal analysis",
            signal=self.signal_name.value,
            player1=player1,
            player2=player2,
            **(context or {}),
        )

    def _log_analysis_result(
        self,
        player1: str,
        player2: str,
        score: float,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.logger.info(
            "Signal analysis completed",
            signal=self.signal_name.value,
            player1=player1,
            player2=player2,
            score=round(score, 4),
            **(context or {}),
        )
