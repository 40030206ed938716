"""
Shared fixtures: in-memory fakes of the three stores plus an aiosqlite
backed session factory for repository tests.
"""

import os

os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JOB_SCHEDULER_ENABLED", "false")

from dataclasses import dataclass, field  # noqa: E402
from datetime import date, datetime, timedelta, timezone  # noqa: E402
from typing import Dict, Iterable, List, Optional, Set, Tuple  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from playergraph.core.exceptions import (  # noqa: E402
    ExternalStoreError,
    ExternalStoreUnreachableError,
)
from playergraph.core.models import Base  # noqa: E402
from playergraph.features.relationships.checkpoints import (  # noqa: E402
    CheckpointStoreInterface,
    reached,
)
from playergraph.features.relationships.graph_repository import (  # noqa: E402
    GraphStoreInterface,
    canonical_pair,
)
from playergraph.features.relationships.schemas import (  # noqa: E402
    ActivityWindow,
    AliasCandidate,
    EdgeStats,
    RelationshipMetrics,
    SymmetryReport,
    SyncCheckpointResponse,
    TeammateInfo,
)
from playergraph.features.sessions.repository import SessionStoreInterface  # noqa: E402
from playergraph.features.sessions.schemas import (  # noqa: E402
    ActivityPeriod,
    DailyActivity,
    PlayerServerActivity,
    RoundObservation,
    RoundRef,
    ServerInfo,
    SessionStats,
)
from playergraph.features.stats.repository import StatStoreInterface  # noqa: E402
from playergraph.features.stats.schemas import PlayerAggregateStats  # noqa: E402

UTC = timezone.utc


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=UTC)


# Session store


@dataclass
class PlayerProfile:
    """Pre-aggregated session data of one fake player."""

    last_activity: Optional[datetime] = None
    hours: List[int] = field(default_factory=lambda: [0] * 24)
    servers: Set[str] = field(default_factory=set)
    pings: Dict[str, float] = field(default_factory=dict)
    session_count: int = 0
    average_minutes: float = 0.0
    first_activity: Optional[datetime] = None
    active_days: List[date] = field(default_factory=list)


class FakeSessionStore(SessionStoreInterface):
    def __init__(self) -> None:
        self.rounds: Dict[str, Tuple[RoundRef, List[RoundObservation]]] = {}
        self.failing_rounds: Set[str] = set()
        self.open_round_start: Optional[datetime] = None
        self.open_session_start: Optional[datetime] = None
        self.player_server_activity: List[PlayerServerActivity] = []
        self.profiles: Dict[str, PlayerProfile] = {}
        self.unreachable = False

    def add_round(
        self,
        round_id: str,
        start_time: datetime,
        observations: Iterable[Tuple[str, int, int]],
        server_guid: str = "srv-1",
    ) -> None:
        """``observations`` are ``(player, tick_offset_seconds, score)`` tuples."""
        ref = RoundRef(round_id=round_id, server_guid=server_guid, start_time=start_time)
        rows = [
            RoundObservation(
                player_name=player,
                server_guid=server_guid,
                timestamp=start_time + timedelta(seconds=offset),
                score=score,
            )
            for player, offset, score in observations
        ]
        self.rounds[round_id] = (ref, rows)

    def _check(self) -> None:
        if self.unreachable:
            raise ExternalStoreError("session store down", store="session")

    def _window(
        self, window_from: datetime, window_to: datetime, after: Optional[RoundRef]
    ) -> List[RoundRef]:
        refs = sorted(
            (ref for ref, _ in self.rounds.values()),
            key=lambda r: (r.start_time, r.round_id),
        )
        refs = [r for r in refs if window_from <= r.start_time < window_to]
        if after is not None:
            refs = [r for r in refs if (r.start_time, r.round_id) > (after.start_time, after.round_id)]
        return refs

    async def get_round_observations(self, round_id: str) -> List[RoundObservation]:
        self._check()
        if round_id in self.failing_rounds:
            raise ExternalStoreError(f"cannot read round {round_id}", store="session")
        return list(self.rounds[round_id][1])

    async def get_rounds_in_window(
        self,
        window_from: datetime,
        window_to: datetime,
        page_size: int,
        offset: int = 0,
        after: Optional[RoundRef] = None,
    ) -> List[RoundRef]:
        self._check()
        return self._window(window_from, window_to, after)[offset : offset + page_size]

    async def count_rounds_in_window(
        self,
        window_from: datetime,
        window_to: datetime,
        after: Optional[RoundRef] = None,
    ) -> int:
        return len(self._window(window_from, window_to, after))

    async def get_earliest_open_round_start(self, window_from, window_to):
        return self.open_round_start

    async def get_earliest_open_session_start(self, window_from, window_to):
        return self.open_session_start

    async def get_player_server_activity(self, window_from, window_to):
        return list(self.player_server_activity)

    async def get_servers(self, guids: Iterable[str]) -> Dict[str, ServerInfo]:
        return {guid: ServerInfo(guid=guid, name=f"Server {guid}") for guid in set(guids)}

    async def player_exists(self, player_name: str) -> bool:
        self._check()
        return player_name in self.profiles

    async def get_last_activity(self, player_name: str) -> Optional[datetime]:
        self._check()
        profile = self.profiles.get(player_name)
        return profile.last_activity if profile else None

    async def get_hour_histogram(self, player_name: str, since: datetime) -> List[int]:
        return list(self.profiles[player_name].hours)

    async def count_common_servers(self, player1, since1, player2, since2) -> int:
        return len(self.profiles[player1].servers & self.profiles[player2].servers)

    async def count_union_servers(self, player1, since1, player2, since2) -> int:
        return len(self.profiles[player1].servers | self.profiles[player2].servers)

    async def get_ping_averages(self, player_name: str, since: datetime) -> Dict[str, float]:
        return dict(self.profiles[player_name].pings)

    async def get_session_stats(self, player_name: str, since: datetime) -> SessionStats:
        profile = self.profiles[player_name]
        return SessionStats(
            session_count=profile.session_count,
            average_duration_minutes=profile.average_minutes,
        )

    async def get_activity_period(self, player_name: str, since: datetime) -> ActivityPeriod:
        self._check()
        profile = self.profiles.get(player_name)
        if profile is None or profile.first_activity is None:
            return ActivityPeriod(player_name=player_name)
        return ActivityPeriod(
            player_name=player_name,
            first_activity=profile.first_activity,
            last_activity=profile.last_activity,
            session_count=profile.session_count,
            total_minutes=profile.session_count * profile.average_minutes,
        )

    async def get_daily_activity(self, player_name: str, since: datetime) -> List[DailyActivity]:
        profile = self.profiles.get(player_name)
        if profile is None:
            return []
        return [DailyActivity(day=d, session_count=1, total_minutes=30.0) for d in profile.active_days]


# Graph store


class FakeGraphStore(GraphStoreInterface):
    """Dictionary-backed graph keeping one edge per canonical pair."""

    def __init__(self) -> None:
        self.edges: Dict[Tuple[str, str], RelationshipMetrics] = {}
        self.plays_on: List[PlayerServerActivity] = []
        self.failing_players: Set[str] = set()
        self.write_calls: List[int] = []
        self.timeouts_after_commit = 0
        self.unreachable = False
        self.violations: List = []
        self.purged = 0

    def _check(self) -> None:
        if self.unreachable:
            raise ExternalStoreError("graph store down", store="graph")

    def add_edge(
        self,
        player1: str,
        player2: str,
        sessions: int = 1,
        first_seen: datetime = utc(2024, 1, 1),
        last_seen: Optional[datetime] = None,
        minutes: float = 10.0,
    ) -> None:
        p1, p2 = canonical_pair(player1, player2)
        self.edges[(p1, p2)] = RelationshipMetrics(
            player1=p1,
            player2=p2,
            observation_count=sessions,
            session_count=sessions,
            total_minutes=minutes,
            first_seen=first_seen,
            last_seen=last_seen or first_seen,
        )

    async def upsert_player(self, name, seen_at=None) -> None:
        self._check()

    async def upsert_server(self, guid, name, game) -> None:
        self._check()

    async def upsert_played_with(
        self, player1, player2, count_delta, minutes_delta, timestamp, server_guid
    ) -> None:
        await self.upsert_relationships(
            [
                RelationshipMetrics(
                    player1=min(player1, player2),
                    player2=max(player1, player2),
                    observation_count=count_delta,
                    session_count=count_delta,
                    total_minutes=minutes_delta,
                    first_seen=timestamp,
                    last_seen=timestamp,
                    server_guids={server_guid},
                )
            ]
        )

    async def upsert_plays_on(
        self, player, server_guid, count_delta, minutes_delta, timestamp, server=None
    ):
        self._check()

    async def upsert_relationships(self, relationships: List[RelationshipMetrics]) -> int:
        self._check()
        self.write_calls.append(len(relationships))
        if any(
            r.player1 in self.failing_players or r.player2 in self.failing_players
            for r in relationships
        ):
            raise ExternalStoreError("write rejected", store="graph")
        for rel in relationships:
            key = (rel.player1, rel.player2)
            if key in self.edges:
                self.edges[key].absorb(rel)
            else:
                self.edges[key] = rel.model_copy(update={"server_guids": set(rel.server_guids)})
        if self.timeouts_after_commit:
            self.timeouts_after_commit -= 1
            raise ExternalStoreUnreachableError("graph store did not answer", store="graph")
        return len(relationships)

    async def upsert_player_server_activity(self, activity, servers) -> int:
        self._check()
        self.plays_on.extend(activity)
        return len(activity)

    def _neighbours(
        self, player: str, since: Optional[datetime] = None
    ) -> Dict[str, RelationshipMetrics]:
        out = {}
        for (p1, p2), rel in self.edges.items():
            if since is not None and rel.last_seen < since:
                continue
            if p1 == player:
                out[p2] = rel
            elif p2 == player:
                out[p1] = rel
        return out

    async def get_teammates(self, player: str, since=None) -> Set[str]:
        self._check()
        return set(self._neighbours(player, since))

    async def get_teammate_details(self, player: str, limit: int = 50) -> List[TeammateInfo]:
        self._check()
        details = [
            TeammateInfo(
                name=name,
                session_count=rel.session_count,
                total_minutes=rel.total_minutes,
                last_played_together=rel.last_seen,
            )
            for name, rel in self._neighbours(player).items()
        ]
        details.sort(key=lambda t: (-t.session_count, t.name))
        return details[:limit]

    async def has_direct_edge(self, player1: str, player2: str, since=None) -> bool:
        self._check()
        rel = self.edges.get(tuple(sorted((player1, player2))))
        return rel is not None and (since is None or rel.last_seen >= since)

    async def get_edge_stats(self, player1: str, player2: str, since=None) -> Optional[EdgeStats]:
        self._check()
        p1, p2 = canonical_pair(player1, player2)
        rel = self.edges.get((p1, p2))
        if rel is None or (since is not None and rel.last_seen < since):
            return None
        return EdgeStats(
            player1=p1,
            player2=p2,
            session_count=rel.session_count,
            observation_count=rel.observation_count,
            total_minutes=rel.total_minutes,
            first_played_together=rel.first_seen,
            last_played_together=rel.last_seen,
            avg_score_diff=rel.avg_score_diff,
            servers=sorted(rel.server_guids),
        )

    async def get_player_degree(self, player: str, since=None) -> int:
        self._check()
        return len(self._neighbours(player, since))

    async def get_activity_window(self, player: str, since=None) -> ActivityWindow:
        self._check()
        rels = list(self._neighbours(player, since).values())
        if not rels:
            return ActivityWindow(player_name=player)
        return ActivityWindow(
            player_name=player,
            first_activity=min(r.first_seen for r in rels),
            last_activity=max(r.last_seen for r in rels),
        )

    async def get_alias_candidates(self, player: str, limit: int = 20) -> List[AliasCandidate]:
        self._check()
        mine = set(self._neighbours(player))
        shared: Dict[str, int] = {}
        for mutual in mine:
            for candidate in self._neighbours(mutual):
                if candidate != player and candidate not in mine:
                    shared[candidate] = shared.get(candidate, 0) + 1
        ranked = sorted(shared.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]
        return [AliasCandidate(name=name, shared_teammates=count) for name, count in ranked]

    async def verify_symmetry(self, limit: int = 1000) -> SymmetryReport:
        self._check()
        return SymmetryReport(edges_checked=len(self.edges), violations=list(self.violations))

    async def purge_empty_player_nodes(self) -> int:
        self._check()
        return self.purged


# Checkpoint store


class FakeCheckpointStore(CheckpointStoreInterface):
    """Mirrors the watermark and keyset-cursor rules of the SQL repository."""

    def __init__(self) -> None:
        self.checkpoints: Dict[str, SyncCheckpointResponse] = {}
        self.progress_calls: List[Tuple[str, Optional[str]]] = []

    async def get(self, sync_kind: str) -> Optional[SyncCheckpointResponse]:
        checkpoint = self.checkpoints.get(sync_kind)
        return checkpoint.model_copy() if checkpoint else None

    def _load(self, sync_kind: str) -> SyncCheckpointResponse:
        return self.checkpoints.setdefault(
            sync_kind, SyncCheckpointResponse(sync_kind=sync_kind)
        )

    async def save_progress(
        self, sync_kind, window_from, window_to, last_round, rounds_delta, relationships_delta
    ) -> None:
        checkpoint = self._load(sync_kind)
        checkpoint.window_from = window_from
        if last_round is not None:
            checkpoint.last_round_start = last_round.start_time
            checkpoint.last_round_id = last_round.round_id
            if checkpoint.covered_round_id is not None and reached(
                last_round, checkpoint.covered_round_start, checkpoint.covered_round_id
            ):
                self._clear_covered(checkpoint)
        checkpoint.rounds_synced += rounds_delta
        checkpoint.relationships_written += relationships_delta
        self.progress_calls.append((sync_kind, last_round.round_id if last_round else None))

    async def park_cursor(self, sync_kind) -> None:
        checkpoint = self._load(sync_kind)
        if checkpoint.last_round_id is None:
            return
        checkpoint.covered_from = checkpoint.window_from
        checkpoint.covered_round_start = checkpoint.last_round_start
        checkpoint.covered_round_id = checkpoint.last_round_id
        checkpoint.window_from = None
        checkpoint.last_round_start = None
        checkpoint.last_round_id = None

    @staticmethod
    def _clear_covered(checkpoint: SyncCheckpointResponse) -> None:
        checkpoint.covered_from = None
        checkpoint.covered_round_start = None
        checkpoint.covered_round_id = None

    async def complete_window(self, sync_kind, window_to, relationships_delta=0) -> None:
        checkpoint = self._load(sync_kind)
        checkpoint.last_synced_to = window_to
        if checkpoint.last_round_start is None or checkpoint.last_round_start < window_to:
            checkpoint.window_from = None
            checkpoint.last_round_start = None
            checkpoint.last_round_id = None
        else:
            checkpoint.window_from = window_to
        if checkpoint.covered_round_start is None or checkpoint.covered_round_start < window_to:
            self._clear_covered(checkpoint)
        else:
            checkpoint.covered_from = max(checkpoint.covered_from, window_to)
        checkpoint.relationships_written += relationships_delta


# Stat store


class FakeStatStore(StatStoreInterface):
    def __init__(self) -> None:
        self.stats: Dict[str, PlayerAggregateStats] = {}
        self.unreachable = False

    async def get_player_aggregate_stats(
        self, player_name: str, window_days: int, as_of: Optional[datetime] = None
    ) -> PlayerAggregateStats:
        if self.unreachable:
            raise ExternalStoreError("stat store down", store="stat")
        return self.stats.get(player_name, PlayerAggregateStats(player_name=player_name))


@pytest.fixture
def session_store():
    return FakeSessionStore()


@pytest.fixture
def graph_store():
    return FakeGraphStore()


@pytest.fixture
def checkpoint_store():
    return FakeCheckpointStore()


@pytest.fixture
def stat_store():
    return FakeStatStore()


@pytest_asyncio.fixture
async def sqlite_session_factory():
    """In-memory sqlite database with every table created."""
    import playergraph.features.relationships.orm_models  # noqa: F401
    import playergraph.features.sessions.orm_models  # noqa: F401
    import playergraph.features.stats.orm_models  # noqa: F401
    import playergraph.jobs.models  # noqa: F401

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()
