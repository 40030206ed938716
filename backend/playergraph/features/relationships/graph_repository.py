"""
Relationship graph repository backed by Neo4j.

PLAYED_WITH edges are stored once per pair in canonical direction
``(p1)-[:PLAYED_WITH]->(p2)`` with ``p1 < p2``. Every read normalizes the
queried pair to the same order, so ``get_edge_stats(a, b)`` and
``get_edge_stats(b, a)`` read the very same edge.

All counters accumulate: an upsert adds its deltas, moves ``lastPlayed``
forward only and keeps ``firstPlayed`` at the minimum seen.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import structlog
from neo4j import AsyncManagedTransaction

from playergraph.core.decorators import store_query
from playergraph.core.exceptions import InvalidInputError
from playergraph.core.graph import GraphDatabaseManager
from playergraph.core.models import as_utc
from playergraph.features.sessions.schemas import PlayerServerActivity, ServerInfo
from .schemas import (
    ActivityWindow,
    AliasCandidate,
    EdgeStats,
    RelationshipMetrics,
    SymmetryReport,
    SymmetryViolation,
    TeammateInfo,
)

logger = structlog.get_logger(__name__)


UPSERT_PLAYER = """
MERGE (p:Player {name: $name})
ON CREATE SET p.firstSeen = $seen_at, p.lastSeen = $seen_at, p.totalMinutes = 0.0
ON MATCH SET p.firstSeen = CASE
        WHEN $seen_at IS NOT NULL AND (p.firstSeen IS NULL OR $seen_at < p.firstSeen)
        THEN $seen_at ELSE p.firstSeen END,
    p.lastSeen = CASE
        WHEN $seen_at IS NOT NULL AND (p.lastSeen IS NULL OR $seen_at > p.lastSeen)
        THEN $seen_at ELSE p.lastSeen END
"""

UPSERT_SERVER = """
MERGE (s:Server {guid: $guid})
SET s.name = $name, s.game = $game
"""

UPSERT_PLAYED_WITH = """
UNWIND $rows AS rel
MERGE (p1:Player {name: rel.player1})
ON CREATE SET p1.firstSeen = rel.firstSeen, p1.lastSeen = rel.lastSeen, p1.totalMinutes = 0.0
ON MATCH SET p1.firstSeen = CASE
        WHEN p1.firstSeen IS NULL OR rel.firstSeen < p1.firstSeen
        THEN rel.firstSeen ELSE p1.firstSeen END,
    p1.lastSeen = CASE
        WHEN p1.lastSeen IS NULL OR rel.lastSeen > p1.lastSeen
        THEN rel.lastSeen ELSE p1.lastSeen END
MERGE (p2:Player {name: rel.player2})
ON CREATE SET p2.firstSeen = rel.firstSeen, p2.lastSeen = rel.lastSeen, p2.totalMinutes = 0.0
ON MATCH SET p2.firstSeen = CASE
        WHEN p2.firstSeen IS NULL OR rel.firstSeen < p2.firstSeen
        THEN rel.firstSeen ELSE p2.firstSeen END,
    p2.lastSeen = CASE
        WHEN p2.lastSeen IS NULL OR rel.lastSeen > p2.lastSeen
        THEN rel.lastSeen ELSE p2.lastSeen END
MERGE (p1)-[r:PLAYED_WITH]->(p2)
ON CREATE SET r.sessionCount = rel.sessionCount,
    r.observationCount = rel.observationCount,
    r.totalMinutes = rel.totalMinutes,
    r.firstPlayedTogether = rel.firstSeen,
    r.lastPlayedTogether = rel.lastSeen,
    r.servers = rel.serverGuids,
    r.scoreDiffTotal = rel.scoreDiffTotal
ON MATCH SET r.sessionCount = r.sessionCount + rel.sessionCount,
    r.observationCount = r.observationCount + rel.observationCount,
    r.totalMinutes = r.totalMinutes + rel.totalMinutes,
    r.firstPlayedTogether = CASE
        WHEN rel.firstSeen < r.firstPlayedTogether
        THEN rel.firstSeen ELSE r.firstPlayedTogether END,
    r.lastPlayedTogether = CASE
        WHEN rel.lastSeen > r.lastPlayedTogether
        THEN rel.lastSeen ELSE r.lastPlayedTogether END,
    r.servers = r.servers + [x IN rel.serverGuids WHERE NOT x IN r.servers],
    r.scoreDiffTotal = coalesce(r.scoreDiffTotal, 0.0) + rel.scoreDiffTotal
SET r.avgScoreDiff = CASE
        WHEN r.observationCount > 0 THEN r.scoreDiffTotal / r.observationCount
        ELSE 0.0 END
RETURN count(r) AS written
"""

UPSERT_PLAYS_ON = """
UNWIND $rows AS rel
MERGE (p:Player {name: rel.playerName})
ON CREATE SET p.firstSeen = rel.lastPlayed, p.lastSeen = rel.lastPlayed,
    p.totalMinutes = rel.totalMinutes
ON MATCH SET p.totalMinutes = coalesce(p.totalMinutes, 0.0) + rel.totalMinutes,
    p.lastSeen = CASE
        WHEN p.lastSeen IS NULL OR rel.lastPlayed > p.lastSeen
        THEN rel.lastPlayed ELSE p.lastSeen END
MERGE (s:Server {guid: rel.serverGuid})
ON CREATE SET s.name = coalesce(rel.serverName, "Unknown"),
    s.game = coalesce(rel.game, "unknown")
ON MATCH SET s.name = CASE
        WHEN rel.serverName IS NOT NULL AND coalesce(s.name, "Unknown") = "Unknown"
        THEN rel.serverName ELSE s.name END,
    s.game = CASE
        WHEN rel.game IS NOT NULL AND coalesce(s.game, "unknown") = "unknown"
        THEN rel.game ELSE s.game END
MERGE (p)-[r:PLAYS_ON]->(s)
ON CREATE SET r.sessionCount = rel.sessionCount,
    r.totalMinutes = rel.totalMinutes,
    r.lastPlayed = rel.lastPlayed
ON MATCH SET r.sessionCount = r.sessionCount + rel.sessionCount,
    r.totalMinutes = coalesce(r.totalMinutes, 0.0) + rel.totalMinutes,
    r.lastPlayed = CASE
        WHEN rel.lastPlayed > r.lastPlayed THEN rel.lastPlayed ELSE r.lastPlayed END
RETURN count(r) AS written
"""

TEAMMATES = """
MATCH (p:Player {name: $name})-[r:PLAYED_WITH]-(t:Player)
WHERE $since IS NULL OR r.lastPlayedTogether >= $since
RETURN DISTINCT t.name AS name
"""

TEAMMATE_DETAILS = """
MATCH (p:Player {name: $name})-[r:PLAYED_WITH]-(t:Player)
RETURN t.name AS name, r.sessionCount AS sessionCount,
    r.totalMinutes AS totalMinutes, r.lastPlayedTogether AS lastPlayedTogether
ORDER BY r.sessionCount DESC, t.name
LIMIT $limit
"""

DIRECT_EDGE = """
MATCH (a:Player {name: $player1})-[r:PLAYED_WITH]-(b:Player {name: $player2})
WHERE $since IS NULL OR r.lastPlayedTogether >= $since
RETURN count(r) > 0 AS connected
"""

EDGE_STATS = """
MATCH (a:Player {name: $player1})-[r:PLAYED_WITH]->(b:Player {name: $player2})
WHERE $since IS NULL OR r.lastPlayedTogether >= $since
RETURN r.sessionCount AS sessionCount, r.observationCount AS observationCount,
    r.totalMinutes AS totalMinutes, r.firstPlayedTogether AS firstPlayedTogether,
    r.lastPlayedTogether AS lastPlayedTogether, r.avgScoreDiff AS avgScoreDiff,
    r.servers AS servers
"""

PLAYER_DEGREE = """
MATCH (p:Player {name: $name})-[r:PLAYED_WITH]-(t:Player)
WHERE $since IS NULL OR r.lastPlayedTogether >= $since
RETURN count(DISTINCT t) AS degree
"""

ACTIVITY_WINDOW = """
MATCH (p:Player {name: $name})-[r:PLAYED_WITH]-(:Player)
WHERE $since IS NULL OR r.lastPlayedTogether >= $since
RETURN min(r.firstPlayedTogether) AS firstActivity,
    max(r.lastPlayedTogether) AS lastActivity
"""

ALIAS_CANDIDATES = """
MATCH (p:Player {name: $name})-[:PLAYED_WITH]-(mutual:Player)-[:PLAYED_WITH]-(c:Player)
WHERE c <> p AND trim(c.name) <> '' AND NOT (p)-[:PLAYED_WITH]-(c)
RETURN c.name AS name, count(DISTINCT mutual) AS shared
ORDER BY shared DESC, name
LIMIT $limit
"""

NON_CANONICAL_EDGES = """
MATCH (a:Player)-[r:PLAYED_WITH]->(b:Player)
WHERE a.name >= b.name
RETURN a.name AS player1, b.name AS player2
LIMIT $limit
"""

DUPLICATE_EDGES = """
MATCH (a:Player)-[r:PLAYED_WITH]-(b:Player)
WHERE a.name < b.name
WITH a, b, count(r) AS edges
WHERE edges > 1
RETURN a.name AS player1, b.name AS player2, edges
LIMIT $limit
"""

INVALID_EDGES = """
MATCH (a:Player)-[r:PLAYED_WITH]->(b:Player)
WHERE r.lastPlayedTogether < r.firstPlayedTogether
    OR coalesce(r.sessionCount, 0) < 1
    OR coalesce(r.totalMinutes, 0.0) < 0
RETURN a.name AS player1, b.name AS player2, r.sessionCount AS sessionCount,
    r.totalMinutes AS totalMinutes, r.firstPlayedTogether AS firstPlayedTogether,
    r.lastPlayedTogether AS lastPlayedTogether
LIMIT $limit
"""

COUNT_EDGES = """
MATCH (:Player)-[r:PLAYED_WITH]->(:Player)
RETURN count(r) AS edges
"""

PURGE_EMPTY_PLAYERS = """
MATCH (p:Player)
WHERE p.name IS NULL OR trim(p.name) = ''
DETACH DELETE p
RETURN count(*) AS purged
"""


def canonical_pair(player1: str, player2: str) -> Tuple[str, str]:
    """Order two player names so that the first sorts before the second."""
    if player1 == player2:
        raise InvalidInputError(
            "a player cannot be related to itself",
            operation="canonical_pair",
            field="player2",
            value=player2,
        )
    return (player1, player2) if player1 < player2 else (player2, player1)


def _native(value: Any) -> Optional[datetime]:
    # neo4j.time.DateTime -> datetime.datetime
    if value is None:
        return None
    if hasattr(value, "to_native"):
        value = value.to_native()
    return as_utc(value)


def _chunks(rows: Sequence[Dict[str, Any]], size: int) -> Iterable[Sequence[Dict[str, Any]]]:
    for start in range(0, len(rows), size):
        yield rows[start : start + size]


class GraphStoreInterface(ABC):
    """Write and read interface of the relationship graph."""

    @abstractmethod
    async def upsert_player(self, name: str, seen_at: Optional[datetime] = None) -> None:
        pass

    @abstractmethod
    async def upsert_server(self, guid: str, name: str, game: str) -> None:
        pass

    @abstractmethod
    async def upsert_played_with(
        self,
        player1: str,
        player2: str,
        count_delta: int,
        minutes_delta: float,
        timestamp: datetime,
        server_guid: str,
    ) -> None:
        pass

    @abstractmethod
    async def upsert_plays_on(
        self,
        player: str,
        server_guid: str,
        count_delta: int,
        minutes_delta: float,
        timestamp: datetime,
        server: Optional[ServerInfo] = None,
    ) -> None:
        pass

    @abstractmethod
    async def upsert_relationships(self, relationships: List[RelationshipMetrics]) -> int:
        """Apply every relationship as one atomic unit; returns edges written."""

    @abstractmethod
    async def upsert_player_server_activity(
        self,
        activity: List[PlayerServerActivity],
        servers: Dict[str, ServerInfo],
    ) -> int:
        pass

    @abstractmethod
    async def get_teammates(self, player: str, since: Optional[datetime] = None) -> Set[str]:
        """Names linked to ``player`` by an edge last played at or after ``since``."""

    @abstractmethod
    async def get_teammate_details(self, player: str, limit: int = 50) -> List[TeammateInfo]:
        pass

    @abstractmethod
    async def has_direct_edge(
        self, player1: str, player2: str, since: Optional[datetime] = None
    ) -> bool:
        pass

    @abstractmethod
    async def get_edge_stats(
        self, player1: str, player2: str, since: Optional[datetime] = None
    ) -> Optional[EdgeStats]:
        pass

    @abstractmethod
    async def get_player_degree(self, player: str, since: Optional[datetime] = None) -> int:
        pass

    @abstractmethod
    async def get_activity_window(
        self, player: str, since: Optional[datetime] = None
    ) -> ActivityWindow:
        pass

    @abstractmethod
    async def get_alias_candidates(self, player: str, limit: int = 20) -> List[AliasCandidate]:
        pass

    @abstractmethod
    async def verify_symmetry(self, limit: int = 1000) -> SymmetryReport:
        pass

    @abstractmethod
    async def purge_empty_player_nodes(self) -> int:
        pass


class Neo4jGraphRepository(GraphStoreInterface):
    """Neo4j implementation of the relationship graph store."""

    def __init__(
        self,
        graph: GraphDatabaseManager,
        write_batch_size: int = 1000,
        query_timeout: Optional[float] = None,
    ):
        self.graph = graph
        self.write_batch_size = write_batch_size
        self.query_timeout = query_timeout

    # Writes

    @store_query("graph")
    async def upsert_player(self, name: str, seen_at: Optional[datetime] = None) -> None:
        name = name.strip()
        if not name:
            raise InvalidInputError("player name cannot be empty", field="name")

        async def _work(tx: AsyncManagedTransaction) -> None:
            result = await tx.run(UPSERT_PLAYER, name=name, seen_at=seen_at)
            await result.consume()

        await self.graph.execute_write(_work)

    @store_query("graph")
    async def upsert_server(self, guid: str, name: str, game: str) -> None:
        async def _work(tx: AsyncManagedTransaction) -> None:
            result = await tx.run(UPSERT_SERVER, guid=guid, name=name, game=game)
            await result.consume()

        await self.graph.execute_write(_work)

    async def upsert_played_with(
        self,
        player1: str,
        player2: str,
        count_delta: int,
        minutes_delta: float,
        timestamp: datetime,
        server_guid: str,
    ) -> None:
        p1, p2 = canonical_pair(player1.strip(), player2.strip())
        await self.upsert_relationships(
            [
                RelationshipMetrics(
                    player1=p1,
                    player2=p2,
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
        self,
        player: str,
        server_guid: str,
        count_delta: int,
        minutes_delta: float,
        timestamp: datetime,
        server: Optional[ServerInfo] = None,
    ) -> None:
        """Accumulate one player->server delta; ``server`` names a new Server node."""
        await self.upsert_player_server_activity(
            [
                PlayerServerActivity(
                    player_name=player.strip(),
                    server_guid=server_guid,
                    session_count=count_delta,
                    total_minutes=minutes_delta,
                    last_played=timestamp,
                )
            ],
            servers={server_guid: server} if server else {},
        )

    @staticmethod
    def _relationship_row(metrics: RelationshipMetrics) -> Dict[str, Any]:
        p1, p2 = canonical_pair(metrics.player1, metrics.player2)
        return {
            "player1": p1,
            "player2": p2,
            "sessionCount": metrics.session_count,
            "observationCount": metrics.observation_count,
            "totalMinutes": float(metrics.total_minutes),
            "firstSeen": metrics.first_seen,
            "lastSeen": metrics.last_seen,
            "serverGuids": sorted(metrics.server_guids),
            "scoreDiffTotal": float(metrics.score_diff_total),
        }

    @store_query("graph")
    async def upsert_relationships(self, relationships: List[RelationshipMetrics]) -> int:
        rows = [self._relationship_row(m) for m in relationships]
        if not rows:
            return 0

        async def _work(tx: AsyncManagedTransaction) -> int:
            written = 0
            for chunk in _chunks(rows, self.write_batch_size):
                result = await tx.run(UPSERT_PLAYED_WITH, rows=list(chunk))
                record = await result.single()
                written += record["written"] if record else 0
            return written

        written = await self.graph.execute_write(_work)
        logger.debug(
            "Upserted PLAYED_WITH edges",
            relationships=len(rows),
            written=written,
            batches=(len(rows) + self.write_batch_size - 1) // self.write_batch_size,
        )
        return written

    @store_query("graph")
    async def upsert_player_server_activity(
        self,
        activity: List[PlayerServerActivity],
        servers: Dict[str, ServerInfo],
    ) -> int:
        rows = []
        for entry in activity:
            name = entry.player_name.strip()
            if not name:
                continue
            server = servers.get(entry.server_guid)
            rows.append(
                {
                    "playerName": name,
                    "serverGuid": entry.server_guid,
                    "serverName": server.name if server and server.name else None,
                    "game": server.game if server and server.game else None,
                    "sessionCount": entry.session_count,
                    "totalMinutes": float(entry.total_minutes),
                    "lastPlayed": entry.last_played,
                }
            )
        if not rows:
            return 0

        async def _work(tx: AsyncManagedTransaction) -> int:
            written = 0
            for chunk in _chunks(rows, self.write_batch_size):
                result = await tx.run(UPSERT_PLAYS_ON, rows=list(chunk))
                record = await result.single()
                written += record["written"] if record else 0
            return written

        return await self.graph.execute_write(_work)

    # Reads

    @store_query("graph")
    async def get_teammates(self, player: str, since: Optional[datetime] = None) -> Set[str]:
        records = await self.graph.read_records(TEAMMATES, {"name": player, "since": since})
        return {r["name"] for r in records if r.get("name")}

    @store_query("graph")
    async def get_teammate_details(self, player: str, limit: int = 50) -> List[TeammateInfo]:
        records = await self.graph.read_records(
            TEAMMATE_DETAILS, {"name": player, "limit": limit}
        )
        return [
            TeammateInfo(
                name=r["name"],
                session_count=r.get("sessionCount") or 0,
                total_minutes=r.get("totalMinutes") or 0.0,
                last_played_together=_native(r.get("lastPlayedTogether")),
            )
            for r in records
        ]

    @store_query("graph")
    async def has_direct_edge(
        self, player1: str, player2: str, since: Optional[datetime] = None
    ) -> bool:
        p1, p2 = canonical_pair(player1, player2)
        records = await self.graph.read_records(
            DIRECT_EDGE, {"player1": p1, "player2": p2, "since": since}
        )
        return bool(records and records[0].get("connected"))

    @store_query("graph")
    async def get_edge_stats(
        self, player1: str, player2: str, since: Optional[datetime] = None
    ) -> Optional[EdgeStats]:
        p1, p2 = canonical_pair(player1, player2)
        records = await self.graph.read_records(
            EDGE_STATS, {"player1": p1, "player2": p2, "since": since}
        )
        if not records:
            return None

        record = records[0]
        return EdgeStats(
            player1=p1,
            player2=p2,
            session_count=record.get("sessionCount") or 0,
            observation_count=record.get("observationCount") or 0,
            total_minutes=record.get("totalMinutes") or 0.0,
            first_played_together=_native(record.get("firstPlayedTogether")),
            last_played_together=_native(record.get("lastPlayedTogether")),
            avg_score_diff=record.get("avgScoreDiff") or 0.0,
            servers=sorted(record.get("servers") or []),
        )

    @store_query("graph")
    async def get_player_degree(self, player: str, since: Optional[datetime] = None) -> int:
        records = await self.graph.read_records(
            PLAYER_DEGREE, {"name": player, "since": since}
        )
        return int(records[0]["degree"]) if records else 0

    @store_query("graph")
    async def get_activity_window(
        self, player: str, since: Optional[datetime] = None
    ) -> ActivityWindow:
        records = await self.graph.read_records(
            ACTIVITY_WINDOW, {"name": player, "since": since}
        )
        record = records[0] if records else {}
        return ActivityWindow(
            player_name=player,
            first_activity=_native(record.get("firstActivity")),
            last_activity=_native(record.get("lastActivity")),
        )

    @store_query("graph")
    async def get_alias_candidates(self, player: str, limit: int = 20) -> List[AliasCandidate]:
        records = await self.graph.read_records(
            ALIAS_CANDIDATES, {"name": player, "limit": limit}
        )
        return [
            AliasCandidate(name=r["name"], shared_teammates=int(r["shared"]))
            for r in records
        ]

    # Maintenance

    @store_query("graph")
    async def verify_symmetry(self, limit: int = 1000) -> SymmetryReport:
        """Report edges that break the canonical single-edge invariants.

        Nothing is modified: violations are logged for manual cleanup.
        """
        params = {"limit": limit}
        count_records = await self.graph.read_records(COUNT_EDGES)
        non_canonical = await self.graph.read_records(NON_CANONICAL_EDGES, params)
        duplicates = await self.graph.read_records(DUPLICATE_EDGES, params)
        invalid = await self.graph.read_records(INVALID_EDGES, params)

        violations: List[SymmetryViolation] = []
        for r in non_canonical:
            violations.append(
                SymmetryViolation(
                    kind="non_canonical_direction",
                    player1=r["player1"],
                    player2=r["player2"],
                    detail="edge stored from the later name to the earlier one",
                )
            )
        for r in duplicates:
            violations.append(
                SymmetryViolation(
                    kind="duplicate_edge",
                    player1=r["player1"],
                    player2=r["player2"],
                    detail=f"{r['edges']} PLAYED_WITH edges between the pair",
                )
            )
        for r in invalid:
            first = _native(r.get("firstPlayedTogether"))
            last = _native(r.get("lastPlayedTogether"))
            if first and last and last < first:
                kind, detail = "timeline_inverted", f"last {last} < first {first}"
            elif (r.get("sessionCount") or 0) < 1:
                kind, detail = "empty_edge", f"sessionCount={r.get('sessionCount')}"
            else:
                kind, detail = "negative_minutes", f"totalMinutes={r.get('totalMinutes')}"
            violations.append(
                SymmetryViolation(
                    kind=kind, player1=r["player1"], player2=r["player2"], detail=detail
                )
            )

        report = SymmetryReport(
            edges_checked=int(count_records[0]["edges"]) if count_records else 0,
            violations=violations,
        )

        for violation in violations:
            logger.error(
                "Relationship graph inconsistency",
                kind=violation.kind,
                player1=violation.player1,
                player2=violation.player2,
                detail=violation.detail,
            )
        logger.info(
            "Graph symmetry verification finished",
            edges_checked=report.edges_checked,
            violations=len(violations),
        )
        return report

    @store_query("graph")
    async def purge_empty_player_nodes(self) -> int:
        async def _work(tx: AsyncManagedTransaction) -> int:
            result = await tx.run(PURGE_EMPTY_PLAYERS)
            record = await result.single()
            return int(record["purged"]) if record else 0

        purged = await self.graph.execute_write(_work)
        logger.info("Purged empty-name player nodes", purged=purged)
        return purged
