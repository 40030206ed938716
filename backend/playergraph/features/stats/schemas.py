"""Aggregate stat read model consumed by the stat similarity analyzer."""

from typing import Dict

from pydantic import BaseModel, Field


class PlayerAggregateStats(BaseModel):
    """Windowed performance summary of one player."""

    player_name: str
    kd: float = Field(default=0.0, ge=0.0, description="Kills per death")
    kill_rate: float = Field(default=0.0, ge=0.0, description="Kills per minute")
    score_per_round: float = Field(default=0.0, ge=0.0)
    per_map_kd: Dict[str, float] = Field(default_factory=dict)
    per_server_kd: Dict[str, float] = Field(default_factory=dict)
    total_rounds: int = Field(default=0, ge=0)
    total_kills: int = Field(default=0, ge=0)
    total_deaths: int = Field(default=0, ge=0)

    @property
    def has_rounds(self) -> bool:
        return self.total_rounds > 0
