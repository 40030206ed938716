"""
Session/observation store repository.

Every query here is a grouped aggregate or a bounded page: the ETL reads one
round at a time and the behavioral analyzer only ever receives small,
fixed-size result sets (24 hour buckets, one row per server, one summary
row), never a player's raw session list.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional

import structlog
from sqlalchemy import and_, extract, func, intersect, or_, select, union
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from playergraph.core.decorators import store_query
from playergraph.core.models import as_utc
from .orm_models import (
    PlayerObservationORM,
    PlayerSessionORM,
    RoundORM,
    ServerORM,
)
from .schemas import (
    ActivityPeriod,
    DailyActivity,
    PlayerServerActivity,
    RoundObservation,
    RoundRef,
    ServerInfo,
    SessionStats,
)

logger = structlog.get_logger(__name__)

HOURS_PER_DAY = 24


class SessionStoreInterface(ABC):
    """Read interface over the session tracker tables."""

    @abstractmethod
    async def get_round_observations(self, round_id: str) -> List[RoundObservation]:
        """Observations of one round with trimmed, non-empty player names."""

    @abstractmethod
    async def get_rounds_in_window(
        self,
        window_from: datetime,
        window_to: datetime,
        page_size: int,
        offset: int = 0,
        after: Optional[RoundRef] = None,
    ) -> List[RoundRef]:
        """Closed rounds starting in [from, to), ordered by (start_time, round_id)."""

    @abstractmethod
    async def count_rounds_in_window(
        self,
        window_from: datetime,
        window_to: datetime,
        after: Optional[RoundRef] = None,
    ) -> int:
        pass

    @abstractmethod
    async def get_earliest_open_round_start(
        self, window_from: datetime, window_to: datetime
    ) -> Optional[datetime]:
        """Start of the oldest still-active round starting in the window."""

    @abstractmethod
    async def get_earliest_open_session_start(
        self, window_from: datetime, window_to: datetime
    ) -> Optional[datetime]:
        pass

    @abstractmethod
    async def get_player_server_activity(
        self, window_from: datetime, window_to: datetime
    ) -> List[PlayerServerActivity]:
        """One grouped row per (player, server) for sessions closed in the window."""

    @abstractmethod
    async def get_servers(self, guids: Iterable[str]) -> Dict[str, ServerInfo]:
        pass

    @abstractmethod
    async def player_exists(self, player_name: str) -> bool:
        pass

    @abstractmethod
    async def get_last_activity(self, player_name: str) -> Optional[datetime]:
        pass

    @abstractmethod
    async def get_hour_histogram(
        self, player_name: str, since: datetime
    ) -> List[int]:
        """Session starts per hour of day (UTC), always 24 buckets."""

    @abstractmethod
    async def count_common_servers(
        self,
        player1: str,
        since1: datetime,
        player2: str,
        since2: datetime,
    ) -> int:
        pass

    @abstractmethod
    async def count_union_servers(
        self,
        player1: str,
        since1: datetime,
        player2: str,
        since2: datetime,
    ) -> int:
        pass

    @abstractmethod
    async def get_ping_averages(
        self, player_name: str, since: datetime
    ) -> Dict[str, float]:
        """Average ping per server, ignoring sessions without a ping reading."""

    @abstractmethod
    async def get_session_stats(
        self, player_name: str, since: datetime
    ) -> SessionStats:
        pass

    @abstractmethod
    async def get_activity_period(
        self, player_name: str, since: datetime
    ) -> ActivityPeriod:
        pass

    @abstractmethod
    async def get_daily_activity(
        self, player_name: str, since: datetime
    ) -> List[DailyActivity]:
        pass


class SQLAlchemySessionRepository(SessionStoreInterface):
    """SQLAlchemy implementation of the session store.

    Each call opens its own short-lived session so that the analyzers can
    run their queries concurrently.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        query_timeout: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.query_timeout = query_timeout

    @staticmethod
    def _minutes_between(session: AsyncSession, start, end):
        """Dialect-aware SQL expression for (end - start) in minutes."""
        if session.bind.dialect.name == "sqlite":
            return (func.julianday(end) - func.julianday(start)) * 1440.0
        return extract("epoch", end - start) / 60.0

    @staticmethod
    def _player_filter(player_name: str, since: datetime):
        return and_(
            PlayerSessionORM.player_name == player_name,
            PlayerSessionORM.start_time >= since,
        )

    @store_query("session")
    async def get_round_observations(self, round_id: str) -> List[RoundObservation]:
        stmt = (
            select(
                PlayerSessionORM.player_name,
                PlayerSessionORM.server_guid,
                PlayerObservationORM.timestamp,
                PlayerObservationORM.score,
            )
            .join(
                PlayerSessionORM,
                PlayerSessionORM.session_id == PlayerObservationORM.session_id,
            )
            .where(
                PlayerSessionORM.round_id == round_id,
                func.trim(PlayerSessionORM.player_name) != "",
            )
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            rows = result.all()

        observations = []
        for row in rows:
            name = (row.player_name or "").strip()
            if not name:
                continue
            observations.append(
                RoundObservation(
                    player_name=name,
                    server_guid=row.server_guid,
                    timestamp=as_utc(row.timestamp),
                    score=row.score or 0,
                )
            )
        return observations

    @staticmethod
    def _window_conditions(
        window_from: datetime, window_to: datetime, after: Optional[RoundRef]
    ) -> list:
        conditions = [
            RoundORM.is_active.is_(False),
            RoundORM.start_time >= window_from,
            RoundORM.start_time < window_to,
        ]
        if after is not None:
            conditions.append(
                or_(
                    RoundORM.start_time > after.start_time,
                    and_(
                        RoundORM.start_time == after.start_time,
                        RoundORM.round_id > after.round_id,
                    ),
                )
            )
        return conditions

    @store_query("session")
    async def get_rounds_in_window(
        self,
        window_from: datetime,
        window_to: datetime,
        page_size: int,
        offset: int = 0,
        after: Optional[RoundRef] = None,
    ) -> List[RoundRef]:
        stmt = (
            select(RoundORM.round_id, RoundORM.server_guid, RoundORM.start_time)
            .where(*self._window_conditions(window_from, window_to, after))
            .order_by(RoundORM.start_time, RoundORM.round_id)
            .offset(offset)
            .limit(page_size)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [
                RoundRef(
                    round_id=row.round_id,
                    server_guid=row.server_guid,
                    start_time=as_utc(row.start_time),
                )
                for row in result.all()
            ]

    @store_query("session")
    async def count_rounds_in_window(
        self,
        window_from: datetime,
        window_to: datetime,
        after: Optional[RoundRef] = None,
    ) -> int:
        stmt = select(func.count(RoundORM.round_id)).where(
            *self._window_conditions(window_from, window_to, after)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one() or 0

    @store_query("session")
    async def get_earliest_open_round_start(
        self, window_from: datetime, window_to: datetime
    ) -> Optional[datetime]:
        stmt = select(func.min(RoundORM.start_time)).where(
            RoundORM.is_active.is_(True),
            RoundORM.start_time >= window_from,
            RoundORM.start_time < window_to,
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return as_utc(result.scalar_one_or_none())

    @store_query("session")
    async def get_earliest_open_session_start(
        self, window_from: datetime, window_to: datetime
    ) -> Optional[datetime]:
        stmt = select(func.min(PlayerSessionORM.start_time)).where(
            PlayerSessionORM.is_active.is_(True),
            PlayerSessionORM.start_time >= window_from,
            PlayerSessionORM.start_time < window_to,
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return as_utc(result.scalar_one_or_none())

    @store_query("session")
    async def get_player_server_activity(
        self, window_from: datetime, window_to: datetime
    ) -> List[PlayerServerActivity]:
        async with self.session_factory() as session:
            minutes = self._minutes_between(
                session, PlayerSessionORM.start_time, PlayerSessionORM.last_seen_time
            )
            stmt = (
                select(
                    PlayerSessionORM.player_name,
                    PlayerSessionORM.server_guid,
                    func.count(PlayerSessionORM.session_id).label("session_count"),
                    func.coalesce(func.sum(minutes), 0.0).label("total_minutes"),
                    func.max(PlayerSessionORM.last_seen_time).label("last_played"),
                )
                .where(
                    PlayerSessionORM.is_active.is_(False),
                    PlayerSessionORM.last_seen_time >= window_from,
                    PlayerSessionORM.last_seen_time < window_to,
                    func.trim(PlayerSessionORM.player_name) != "",
                )
                .group_by(PlayerSessionORM.player_name, PlayerSessionORM.server_guid)
            )
            result = await session.execute(stmt)
            rows = result.all()

        # Names differing only by surrounding whitespace collapse into one row.
        merged: Dict[tuple, PlayerServerActivity] = {}
        for row in rows:
            key = (row.player_name.strip(), row.server_guid)
            last_played = as_utc(row.last_played)
            existing = merged.get(key)
            if existing is None:
                merged[key] = PlayerServerActivity(
                    player_name=key[0],
                    server_guid=row.server_guid,
                    session_count=row.session_count,
                    total_minutes=max(float(row.total_minutes or 0.0), 0.0),
                    last_played=last_played,
                )
            else:
                existing.session_count += row.session_count
                existing.total_minutes += max(float(row.total_minutes or 0.0), 0.0)
                existing.last_played = max(existing.last_played, last_played)

        return list(merged.values())

    @store_query("session")
    async def get_servers(self, guids: Iterable[str]) -> Dict[str, ServerInfo]:
        guid_list = list(set(guids))
        if not guid_list:
            return {}
        stmt = select(ServerORM).where(ServerORM.guid.in_(guid_list))
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return {
                server.guid: ServerInfo(
                    guid=server.guid, name=server.name, game=server.game
                )
                for server in result.scalars().all()
            }

    @store_query("session")
    async def player_exists(self, player_name: str) -> bool:
        stmt = (
            select(PlayerSessionORM.session_id)
            .where(PlayerSessionORM.player_name == player_name)
            .limit(1)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none() is not None

    @store_query("session")
    async def get_last_activity(self, player_name: str) -> Optional[datetime]:
        stmt = select(func.max(PlayerSessionORM.last_seen_time)).where(
            PlayerSessionORM.player_name == player_name
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return as_utc(result.scalar_one_or_none())

    @store_query("session")
    async def get_hour_histogram(self, player_name: str, since: datetime) -> List[int]:
        hour = extract("hour", PlayerSessionORM.start_time).label("hour")
        stmt = (
            select(hour, func.count(PlayerSessionORM.session_id).label("sessions"))
            .where(self._player_filter(player_name, since))
            .group_by(hour)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            rows = result.all()

        histogram = [0] * HOURS_PER_DAY
        for row in rows:
            bucket = int(row.hour)
            if 0 <= bucket < HOURS_PER_DAY:
                histogram[bucket] += int(row.sessions)
        return histogram

    def _server_set(self, player_name: str, since: datetime):
        return (
            select(PlayerSessionORM.server_guid)
            .where(self._player_filter(player_name, since))
            .distinct()
        )

    @store_query("session")
    async def count_common_servers(
        self,
        player1: str,
        since1: datetime,
        player2: str,
        since2: datetime,
    ) -> int:
        common = intersect(
            self._server_set(player1, since1), self._server_set(player2, since2)
        ).subquery()
        stmt = select(func.count()).select_from(common)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one() or 0

    @store_query("session")
    async def count_union_servers(
        self,
        player1: str,
        since1: datetime,
        player2: str,
        since2: datetime,
    ) -> int:
        combined = union(
            self._server_set(player1, since1), self._server_set(player2, since2)
        ).subquery()
        stmt = select(func.count()).select_from(combined)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one() or 0

    @store_query("session")
    async def get_ping_averages(
        self, player_name: str, since: datetime
    ) -> Dict[str, float]:
        stmt = (
            select(
                PlayerSessionORM.server_guid,
                func.avg(PlayerSessionORM.average_ping).label("avg_ping"),
            )
            .where(
                self._player_filter(player_name, since),
                PlayerSessionORM.average_ping > 0,
            )
            .group_by(PlayerSessionORM.server_guid)
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return {
                row.server_guid: float(row.avg_ping)
                for row in result.all()
                if row.avg_ping is not None
            }

    @store_query("session")
    async def get_session_stats(self, player_name: str, since: datetime) -> SessionStats:
        async with self.session_factory() as session:
            minutes = self._minutes_between(
                session, PlayerSessionORM.start_time, PlayerSessionORM.last_seen_time
            )
            stmt = select(
                func.count(PlayerSessionORM.session_id).label("session_count"),
                func.avg(minutes).label("avg_minutes"),
            ).where(self._player_filter(player_name, since))
            result = await session.execute(stmt)
            row = result.one()

        return SessionStats(
            session_count=row.session_count or 0,
            average_duration_minutes=max(float(row.avg_minutes or 0.0), 0.0),
        )

    @store_query("session")
    async def get_activity_period(
        self, player_name: str, since: datetime
    ) -> ActivityPeriod:
        async with self.session_factory() as session:
            minutes = self._minutes_between(
                session, PlayerSessionORM.start_time, PlayerSessionORM.last_seen_time
            )
            stmt = select(
                func.min(PlayerSessionORM.start_time).label("first_activity"),
                func.max(PlayerSessionORM.last_seen_time).label("last_activity"),
                func.count(PlayerSessionORM.session_id).label("session_count"),
                func.coalesce(func.sum(minutes), 0.0).label("total_minutes"),
            ).where(self._player_filter(player_name, since))
            result = await session.execute(stmt)
            row = result.one()

        return ActivityPeriod(
            player_name=player_name,
            first_activity=as_utc(row.first_activity),
            last_activity=as_utc(row.last_activity),
            session_count=row.session_count or 0,
            total_minutes=max(float(row.total_minutes or 0.0), 0.0),
        )

    @store_query("session")
    async def get_daily_activity(
        self, player_name: str, since: datetime
    ) -> List[DailyActivity]:
        async with self.session_factory() as session:
            minutes = self._minutes_between(
                session, PlayerSessionORM.start_time, PlayerSessionORM.last_seen_time
            )
            day = func.date(PlayerSessionORM.start_time).label("day")
            stmt = (
                select(
                    day,
                    func.count(PlayerSessionORM.session_id).label("session_count"),
                    func.coalesce(func.sum(minutes), 0.0).label("total_minutes"),
                )
                .where(self._player_filter(player_name, since))
                .group_by(day)
                .order_by(day)
            )
            result = await session.execute(stmt)
            rows = result.all()

        return [
            DailyActivity(
                day=_as_date(row.day),
                session_count=row.session_count,
                total_minutes=max(float(row.total_minutes or 0.0), 0.0),
            )
            for row in rows
        ]


def _as_date(value) -> date:
    # sqlite returns date() as text, postgres as a date
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))
