"""Session tracker models: servers, players, rounds, sessions and observations.

These tables are written by the upstream poller; the relationship graph ETL
and the behavioral analyzer only read them.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from playergraph.core.models import Base


class ServerORM(Base):
    """A game server identified by a stable GUID."""

    __tablename__ = "servers"

    guid: Mapped[str] = mapped_column(
        String(64), primary_key=True, comment="Stable server GUID"
    )
    name: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    game: Mapped[str] = mapped_column(String(32), nullable=False, default="")

    def __repr__(self) -> str:
        return f"<ServerORM(guid='{self.guid}', name='{self.name}')>"


class PlayerORM(Base):
    """A player identified by trimmed name."""

    __tablename__ = "players"

    name: Mapped[str] = mapped_column(String(128), primary_key=True)
    first_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    total_play_time_minutes: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0
    )

    def __repr__(self) -> str:
        return f"<PlayerORM(name='{self.name}')>"


class RoundORM(Base):
    """One play round on a server/map, immutable once closed."""

    __tablename__ = "rounds"
    __table_args__ = (
        Index("ix_rounds_window", "is_active", "start_time", "round_id"),
    )

    round_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    server_guid: Mapped[str] = mapped_column(
        String(64), ForeignKey("servers.guid"), nullable=False, index=True
    )
    server_name: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    map_name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    game_type: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<RoundORM(round_id='{self.round_id}', server='{self.server_guid}')>"


class PlayerSessionORM(Base):
    """A continuous stretch of one player on one server within a round."""

    __tablename__ = "player_sessions"
    __table_args__ = (
        Index("ix_player_sessions_player_time", "player_name", "start_time"),
        Index("ix_player_sessions_server_time", "server_guid", "last_seen_time"),
    )

    session_id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    player_name: Mapped[str] = mapped_column(String(128), nullable=False)
    server_guid: Mapped[str] = mapped_column(
        String(64), ForeignKey("servers.guid"), nullable=False
    )
    round_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("rounds.round_id"), nullable=True, index=True
    )
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_seen_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    observation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_kills: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_deaths: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    map_name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    game_type: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    average_ping: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    observations = relationship(
        "PlayerObservationORM",
        back_populates="session",
        cascade="all, delete-orphan",
    )


class PlayerObservationORM(Base):
    """A single poll reading of a player's score, kills, deaths and ping."""

    __tablename__ = "player_observations"

    observation_id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    session_id: Mapped[int] = mapped_column(
        ForeignKey("player_sessions.session_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    kills: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deaths: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ping: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    team: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    session = relationship("PlayerSessionORM", back_populates="observations")
