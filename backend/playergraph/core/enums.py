"""Shared enums used across features.

This module provides a single source of truth for enums used in both models and schemas.
"""

from enum import Enum


class SuspicionLevel(str, Enum):
    """Ordinal classification of a composite alias score."""

    UNRELATED = "Unrelated"
    POTENTIAL = "Potential"
    LIKELY = "Likely"
    VERY_LIKELY = "VeryLikely"


class FlagPolarity(str, Enum):
    """Whether a flag raises (red) or lowers (green) suspicion."""

    RED = "red"
    GREEN = "green"


class SyncState(str, Enum):
    """States of the incremental relationship sync driver."""

    IDLE = "Idle"
    PAGING = "Paging"
    FLUSHING = "Flushing"


class SignalName(str, Enum):
    """The independently computed similarity signals."""

    STAT = "stat"
    BEHAVIORAL = "behavioral"
    NETWORK = "network"
    TEMPORAL = "temporal"
    SWITCHOVER = "switchover"


class JobStatus(str, Enum):
    """Enumeration of job execution statuses."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class JobType(str, Enum):
    """Enumeration of scheduled job types."""

    RELATIONSHIP_SYNC = "RELATIONSHIP_SYNC"
    GRAPH_INTEGRITY_CHECK = "GRAPH_INTEGRITY_CHECK"
