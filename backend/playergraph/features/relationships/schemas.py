"""Relationship graph data models."""

from datetime import datetime
from typing import List, Optional, Set

from pydantic import BaseModel, Field, model_validator

from playergraph.core.enums import SyncState


class CoPlayPair(BaseModel):
    """Two players seen at the same timestamp on the same server.

    ``player1 < player2`` always holds; ``score_diff`` is ``|score1 - score2|``
    at that timestamp.
    """

    player1: str
    player2: str
    timestamp: datetime
    server_guid: str
    score_diff: float = 0.0

    @model_validator(mode="after")
    def check_canonical_order(self) -> "CoPlayPair":
        if not self.player1 < self.player2:
            raise ValueError("player1 must sort strictly before player2")
        return self


class RelationshipMetrics(BaseModel):
    """Accumulated co-play counters of one canonical pair."""

    player1: str
    player2: str
    observation_count: int = Field(default=0, ge=0)
    session_count: int = Field(default=0, ge=0)
    total_minutes: float = Field(default=0.0, ge=0.0)
    first_seen: datetime
    last_seen: datetime
    server_guids: Set[str] = Field(default_factory=set)
    score_diff_total: float = Field(default=0.0, ge=0.0)

    @property
    def avg_score_diff(self) -> float:
        if self.observation_count == 0:
            return 0.0
        return self.score_diff_total / self.observation_count

    def absorb(self, other: "RelationshipMetrics") -> None:
        """Add another tally of the same pair into this one."""
        self.observation_count += other.observation_count
        self.session_count += other.session_count
        self.total_minutes += other.total_minutes
        self.first_seen = min(self.first_seen, other.first_seen)
        self.last_seen = max(self.last_seen, other.last_seen)
        self.server_guids |= other.server_guids
        self.score_diff_total += other.score_diff_total


class EdgeStats(BaseModel):
    """Symmetric view of a PLAYED_WITH edge."""

    player1: str
    player2: str
    session_count: int = 0
    observation_count: int = 0
    total_minutes: float = 0.0
    first_played_together: Optional[datetime] = None
    last_played_together: Optional[datetime] = None
    avg_score_diff: float = 0.0
    servers: List[str] = Field(default_factory=list)


class TeammateInfo(BaseModel):
    name: str
    session_count: int = 0
    total_minutes: float = 0.0
    last_played_together: Optional[datetime] = None


class ActivityWindow(BaseModel):
    """Earliest and latest co-play timestamp of a player across all edges."""

    player_name: str
    first_activity: Optional[datetime] = None
    last_activity: Optional[datetime] = None


class AliasCandidate(BaseModel):
    name: str
    shared_teammates: int = Field(..., ge=0)


class SymmetryViolation(BaseModel):
    kind: str
    player1: str
    player2: str
    detail: str = ""


class SymmetryReport(BaseModel):
    edges_checked: int = 0
    violations: List[SymmetryViolation] = Field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not self.violations


class SyncCheckpointResponse(BaseModel):
    sync_kind: str
    last_synced_to: Optional[datetime] = None
    window_from: Optional[datetime] = None
    last_round_start: Optional[datetime] = None
    last_round_id: Optional[str] = None
    covered_from: Optional[datetime] = None
    covered_round_start: Optional[datetime] = None
    covered_round_id: Optional[str] = None
    rounds_synced: int = 0
    relationships_written: int = 0
    updated_at: Optional[datetime] = None


class SyncRequest(BaseModel):
    window_from: Optional[datetime] = None
    window_to: Optional[datetime] = None
    days: Optional[int] = Field(default=None, ge=1, le=365)


class SyncResult(BaseModel):
    """Outcome of one windowed sync run.

    ``rounds_expected`` versus ``rounds_processed + rounds_failed`` makes
    gaps visible.
    """

    window_from: datetime
    window_to: datetime
    effective_from: datetime
    effective_to: Optional[datetime] = None
    state: SyncState = SyncState.IDLE
    rounds_expected: int = 0
    rounds_processed: int = 0
    rounds_failed: int = 0
    failed_round_ids: List[str] = Field(default_factory=list)
    relationships_written: int = 0
    flushes: int = 0
    rounds_already_synced: int = 0
    skipped_already_synced: bool = False
    player_server_rows: int = 0
