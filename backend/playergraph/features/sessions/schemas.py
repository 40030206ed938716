"""Read models returned by the session/observation store."""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field


class RoundObservation(BaseModel):
    """One observation of a round, joined with its session's player and server."""

    player_name: str
    server_guid: str
    timestamp: datetime
    score: int = 0


class RoundRef(BaseModel):
    """Keyset position of a round inside a sync window."""

    round_id: str
    server_guid: str
    start_time: datetime


class ServerInfo(BaseModel):
    guid: str
    name: str = ""
    game: str = ""


class PlayerServerActivity(BaseModel):
    """Grouped session activity of one player on one server."""

    player_name: str
    server_guid: str
    session_count: int = Field(..., ge=0)
    total_minutes: float = Field(..., ge=0.0)
    last_played: datetime


class SessionStats(BaseModel):
    session_count: int = Field(default=0, ge=0)
    average_duration_minutes: float = Field(default=0.0, ge=0.0)


class ActivityPeriod(BaseModel):
    """First and last activity of a player plus totals over the window."""

    player_name: str
    first_activity: Optional[datetime] = None
    last_activity: Optional[datetime] = None
    session_count: int = 0
    total_minutes: float = 0.0

    @property
    def has_activity(self) -> bool:
        return self.first_activity is not None and self.last_activity is not None


class DailyActivity(BaseModel):
    day: date
    session_count: int = 0
    total_minutes: float = 0.0
