"""Pre-aggregated monthly player stats per map (and per server)."""

from sqlalchemy import Float, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from playergraph.core.models import Base

GLOBAL_SERVER = ""


class PlayerMapStatsORM(Base):
    """Monthly totals of one player on one map.

    Rows with ``server_guid == ""`` aggregate the map across every server;
    the others break the same totals down per server.
    """

    __tablename__ = "player_map_stats"
    __table_args__ = (
        Index("ix_player_map_stats_player_period", "player_name", "year", "month"),
    )

    player_name: Mapped[str] = mapped_column(String(128), primary_key=True)
    map_name: Mapped[str] = mapped_column(String(128), primary_key=True)
    server_guid: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        default=GLOBAL_SERVER,
        comment="Empty string for the all-servers aggregate",
    )
    year: Mapped[int] = mapped_column(Integer, primary_key=True)
    month: Mapped[int] = mapped_column(Integer, primary_key=True)

    total_rounds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_kills: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_deaths: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_play_time_minutes: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0
    )

    def __repr__(self) -> str:
        return (
            f"<PlayerMapStatsORM(player='{self.player_name}', map='{self.map_name}', "
            f"server='{self.server_guid}', period={self.year}-{self.month:02d})>"
        )
