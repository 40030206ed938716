import asyncio
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from neo4j.exceptions import ServiceUnavailable

from playergraph.core.exceptions import (
    ExternalStoreError,
    ExternalStoreUnreachableError,
    InvalidInputError,
)
from playergraph.features.relationships.graph_repository import (
    EDGE_STATS,
    NON_CANONICAL_EDGES,
    TEAMMATES,
    UPSERT_PLAYED_WITH,
    UPSERT_PLAYS_ON,
    Neo4jGraphRepository,
    canonical_pair,
)
from playergraph.features.relationships.schemas import RelationshipMetrics
from playergraph.features.sessions.schemas import ServerInfo
from tests.conftest import utc


class FakeGraphManager:
    """Stands in for GraphDatabaseManager; records are looked up by query text."""

    def __init__(self, records=None, written=1):
        self.records = records or {}
        self.tx = MagicMock()
        result = MagicMock()
        result.single = AsyncMock(return_value={"written": written, "purged": written})
        result.consume = AsyncMock()
        self.tx.run = AsyncMock(return_value=result)
        self.write_calls = 0
        self.read_calls = []

    async def execute_write(self, work):
        self.write_calls += 1
        return await work(self.tx)

    async def read_records(self, query, parameters=None):
        self.read_calls.append((query, parameters))
        return self.records.get(query, [])


def metrics(p1, p2, sessions=1):
    return RelationshipMetrics(
        player1=p1,
        player2=p2,
        observation_count=sessions * 2,
        session_count=sessions,
        total_minutes=sessions * 1.0,
        first_seen=utc(2024, 3, 1),
        last_seen=utc(2024, 3, 2),
        server_guids={"srv-2", "srv-1"},
        score_diff_total=4.0,
    )


class TestCanonicalPair:
    def test_orders_names(self):
        assert canonical_pair("bob", "alice") == ("alice", "bob")
        assert canonical_pair("alice", "bob") == ("alice", "bob")

    def test_rejects_self_pair(self):
        with pytest.raises(InvalidInputError):
            canonical_pair("alice", "alice")


class TestNeo4jGraphRepository:
    """Test cases for the Cypher-backed graph repository"""

    @pytest.mark.asyncio
    async def test_upsert_relationships_sends_canonical_rows_in_batches(self):
        """Test that rows are canonical and chunked by the write batch size"""
        graph = FakeGraphManager(written=1)
        repository = Neo4jGraphRepository(graph, write_batch_size=1)

        written = await repository.upsert_relationships(
            [metrics("alice", "bob"), metrics("carol", "dave", sessions=2)]
        )

        assert written == 2
        assert graph.write_calls == 1
        assert graph.tx.run.await_count == 2

        query, = graph.tx.run.await_args_list[0].args
        assert query == UPSERT_PLAYED_WITH
        row = graph.tx.run.await_args_list[0].kwargs["rows"][0]
        assert row["player1"] == "alice"
        assert row["player2"] == "bob"
        assert row["serverGuids"] == ["srv-1", "srv-2"]
        assert row["scoreDiffTotal"] == 4.0

    @pytest.mark.asyncio
    async def test_upsert_relationships_with_nothing_to_write(self):
        graph = FakeGraphManager()
        repository = Neo4jGraphRepository(graph)

        assert await repository.upsert_relationships([]) == 0
        assert graph.write_calls == 0

    @pytest.mark.asyncio
    async def test_upsert_plays_on_names_the_server(self):
        graph = FakeGraphManager()
        repository = Neo4jGraphRepository(graph)

        await repository.upsert_plays_on(
            " alice ",
            "srv-1",
            2,
            30.0,
            utc(2024, 3, 1),
            server=ServerInfo(guid="srv-1", name="Dust Only", game="bf1942"),
        )

        query, = graph.tx.run.await_args.args
        assert query == UPSERT_PLAYS_ON
        row = graph.tx.run.await_args.kwargs["rows"][0]
        assert row["playerName"] == "alice"
        assert row["serverName"] == "Dust Only"
        assert row["game"] == "bf1942"
        assert row["sessionCount"] == 2

    @pytest.mark.asyncio
    async def test_upsert_plays_on_without_server_keeps_name_unset(self):
        graph = FakeGraphManager()
        repository = Neo4jGraphRepository(graph)

        await repository.upsert_plays_on("alice", "srv-1", 1, 10.0, utc(2024, 3, 1))

        row = graph.tx.run.await_args.kwargs["rows"][0]
        assert row["serverName"] is None
        assert row["game"] is None

    @pytest.mark.asyncio
    async def test_upsert_player_rejects_blank_name(self):
        repository = Neo4jGraphRepository(FakeGraphManager())

        with pytest.raises(InvalidInputError):
            await repository.upsert_player("   ")

    @pytest.mark.asyncio
    async def test_get_edge_stats_is_order_independent(self):
        """Test that both argument orders read the same canonical edge"""
        graph = FakeGraphManager(
            records={
                EDGE_STATS: [
                    {
                        "sessionCount": 3,
                        "observationCount": 9,
                        "totalMinutes": 4.5,
                        "firstPlayedTogether": datetime(2024, 3, 1),
                        "lastPlayedTogether": datetime(2024, 3, 5),
                        "avgScoreDiff": 1.5,
                        "servers": ["srv-2", "srv-1"],
                    }
                ]
            }
        )
        repository = Neo4jGraphRepository(graph)

        forward = await repository.get_edge_stats("alice", "bob")
        backward = await repository.get_edge_stats("bob", "alice")

        assert forward == backward
        assert forward.player1 == "alice"
        assert forward.session_count == 3
        assert forward.first_played_together == utc(2024, 3, 1)
        assert forward.servers == ["srv-1", "srv-2"]
        assert [params for _, params in graph.read_calls] == [
            {"player1": "alice", "player2": "bob", "since": None},
            {"player1": "alice", "player2": "bob", "since": None},
        ]

    @pytest.mark.asyncio
    async def test_reads_pass_the_lookback_start(self):
        graph = FakeGraphManager(records={TEAMMATES: [{"name": "bob"}, {"name": None}]})
        repository = Neo4jGraphRepository(graph)
        since = utc(2024, 1, 1)

        teammates = await repository.get_teammates("alice", since=since)
        await repository.get_player_degree("alice", since=since)

        assert teammates == {"bob"}
        assert [params for _, params in graph.read_calls] == [
            {"name": "alice", "since": since},
            {"name": "alice", "since": since},
        ]
        assert "lastPlayedTogether >= $since" in TEAMMATES

    @pytest.mark.asyncio
    async def test_get_edge_stats_missing_edge(self):
        repository = Neo4jGraphRepository(FakeGraphManager())

        assert await repository.get_edge_stats("alice", "bob") is None

    @pytest.mark.asyncio
    async def test_verify_symmetry_reports_without_modifying(self):
        graph = FakeGraphManager(
            records={
                NON_CANONICAL_EDGES: [{"player1": "zed", "player2": "amy"}],
            }
        )
        repository = Neo4jGraphRepository(graph)

        report = await repository.verify_symmetry()

        assert not report.is_consistent
        assert report.violations[0].kind == "non_canonical_direction"
        assert graph.write_calls == 0

    @pytest.mark.asyncio
    async def test_unreachable_graph_is_translated(self):
        graph = FakeGraphManager()
        graph.read_records = AsyncMock(side_effect=ServiceUnavailable("connection refused"))
        repository = Neo4jGraphRepository(graph)

        with pytest.raises(ExternalStoreUnreachableError) as exc_info:
            await repository.get_teammates("alice")

        assert exc_info.value.store == "graph"
        assert isinstance(exc_info.value, ExternalStoreError)

    @pytest.mark.asyncio
    async def test_slow_query_times_out(self):
        graph = FakeGraphManager()

        async def slow_read(query, parameters=None):
            await asyncio.sleep(1)
            return []

        graph.read_records = slow_read
        repository = Neo4jGraphRepository(graph, query_timeout=0.01)

        with pytest.raises(ExternalStoreUnreachableError):
            await repository.get_player_degree("alice")
