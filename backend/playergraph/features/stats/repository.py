"""Stat store repository over the monthly player map stats table."""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from playergraph.core.decorators import store_query
from playergraph.utils.statistics import kill_death_ratio, safe_divide
from .orm_models import GLOBAL_SERVER, PlayerMapStatsORM
from .schemas import PlayerAggregateStats

logger = structlog.get_logger(__name__)


class StatStoreInterface(ABC):
    """Read interface over pre-aggregated player stats."""

    @abstractmethod
    async def get_player_aggregate_stats(
        self,
        player_name: str,
        window_days: int,
        as_of: Optional[datetime] = None,
    ) -> PlayerAggregateStats:
        """
        Aggregate a player's stats over the months overlapping the window.

        :param player_name: Player name
        :param window_days: Lookback in days ending at ``as_of``
        :param as_of: End of the window (defaults to now, UTC)
        :returns: Aggregate stats, with ``total_rounds == 0`` when nothing qualifies
        """


class SQLAlchemyStatRepository(StatStoreInterface):
    """SQLAlchemy implementation of the stat store."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        query_timeout: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.query_timeout = query_timeout

    @staticmethod
    def _period_key(moment: datetime) -> int:
        return moment.year * 100 + moment.month

    @store_query("stat")
    async def get_player_aggregate_stats(
        self,
        player_name: str,
        window_days: int,
        as_of: Optional[datetime] = None,
    ) -> PlayerAggregateStats:
        as_of = as_of or datetime.now(timezone.utc)
        cutoff_key = self._period_key(as_of - timedelta(days=window_days))
        upper_key = self._period_key(as_of)
        period = PlayerMapStatsORM.year * 100 + PlayerMapStatsORM.month

        base_filter = (
            PlayerMapStatsORM.player_name == player_name,
            period >= cutoff_key,
            period <= upper_key,
        )

        per_map_stmt = (
            select(
                PlayerMapStatsORM.map_name,
                func.sum(PlayerMapStatsORM.total_rounds).label("rounds"),
                func.sum(PlayerMapStatsORM.total_kills).label("kills"),
                func.sum(PlayerMapStatsORM.total_deaths).label("deaths"),
                func.sum(PlayerMapStatsORM.total_score).label("score"),
                func.sum(PlayerMapStatsORM.total_play_time_minutes).label("minutes"),
            )
            .where(*base_filter, PlayerMapStatsORM.server_guid == GLOBAL_SERVER)
            .group_by(PlayerMapStatsORM.map_name)
        )

        per_server_stmt = (
            select(
                PlayerMapStatsORM.server_guid,
                func.sum(PlayerMapStatsORM.total_kills).label("kills"),
                func.sum(PlayerMapStatsORM.total_deaths).label("deaths"),
            )
            .where(*base_filter, PlayerMapStatsORM.server_guid != GLOBAL_SERVER)
            .group_by(PlayerMapStatsORM.server_guid)
        )

        async with self.session_factory() as session:
            map_rows = (await session.execute(per_map_stmt)).all()
            server_rows = (await session.execute(per_server_stmt)).all()

        rounds = sum(int(row.rounds or 0) for row in map_rows)
        kills = sum(int(row.kills or 0) for row in map_rows)
        deaths = sum(int(row.deaths or 0) for row in map_rows)
        score = sum(int(row.score or 0) for row in map_rows)
        minutes = sum(float(row.minutes or 0.0) for row in map_rows)

        stats = PlayerAggregateStats(
            player_name=player_name,
            kd=kill_death_ratio(kills, deaths),
            kill_rate=safe_divide(kills, minutes),
            score_per_round=max(safe_divide(score, rounds), 0.0),
            per_map_kd={
                row.map_name: kill_death_ratio(int(row.kills or 0), int(row.deaths or 0))
                for row in map_rows
                if (row.rounds or 0) > 0
            },
            per_server_kd={
                row.server_guid: kill_death_ratio(
                    int(row.kills or 0), int(row.deaths or 0)
                )
                for row in server_rows
            },
            total_rounds=rounds,
            total_kills=kills,
            total_deaths=deaths,
        )

        logger.debug(
            "Loaded aggregate stats",
            player_name=player_name,
            window_days=window_days,
            total_rounds=rounds,
            maps=len(stats.per_map_kd),
            servers=len(stats.per_server_kd),
        )
        return stats
