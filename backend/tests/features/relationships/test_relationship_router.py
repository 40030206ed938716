from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from playergraph.core.exceptions import (
    ExternalStoreUnreachableError,
    InvalidInputError,
    SyncAlreadyRunningError,
)
from playergraph.features.relationships.dependencies import (
    get_relationship_graph_service,
    get_relationship_sync_service,
)
from playergraph.features.relationships.schemas import (
    EdgeStats,
    SymmetryReport,
    SyncResult,
    TeammateInfo,
)
from playergraph.main import app
from tests.conftest import utc


@pytest.fixture
def sync_service():
    service = MagicMock()
    service.default_lookback_days = 7
    service.sync_recent = AsyncMock()
    service.sync_window = AsyncMock()
    return service


@pytest.fixture
def graph_service():
    return AsyncMock()


@pytest.fixture
def client(sync_service, graph_service):
    app.dependency_overrides[get_relationship_sync_service] = lambda: sync_service
    app.dependency_overrides[get_relationship_graph_service] = lambda: graph_service
    yield TestClient(app)
    app.dependency_overrides.clear()


def sync_result(**kwargs):
    return SyncResult(
        window_from=utc(2024, 3, 1),
        window_to=utc(2024, 3, 8),
        effective_from=utc(2024, 3, 1),
        effective_to=utc(2024, 3, 8),
        **kwargs,
    )


def test_sync_recent_endpoint(client, sync_service):
    """Test sync endpoint with only a lookback in days"""
    sync_service.sync_recent.return_value = sync_result(rounds_expected=3, rounds_processed=3)

    response = client.post("/api/v1/relationships/sync", json={"days": 7})

    assert response.status_code == 200
    assert response.json()["rounds_processed"] == 3
    sync_service.sync_recent.assert_awaited_once_with(7)


def test_sync_explicit_window_endpoint(client, sync_service):
    sync_service.sync_window.return_value = sync_result()

    response = client.post(
        "/api/v1/relationships/sync",
        json={"window_from": "2024-03-01T00:00:00Z", "window_to": "2024-03-08T00:00:00Z"},
    )

    assert response.status_code == 200
    sync_service.sync_window.assert_awaited_once_with(utc(2024, 3, 1), utc(2024, 3, 8))


@pytest.mark.parametrize(
    "error, status_code",
    [
        (SyncAlreadyRunningError("already running"), 409),
        (InvalidInputError("window_from must be before window_to"), 400),
        (ExternalStoreUnreachableError("graph down", store="graph"), 503),
    ],
)
def test_sync_errors_map_to_status_codes(client, sync_service, error, status_code):
    sync_service.sync_recent.side_effect = error

    response = client.post("/api/v1/relationships/sync", json={})

    assert response.status_code == status_code


def test_checkpoint_not_found(client, graph_service):
    graph_service.get_checkpoint.return_value = None

    response = client.get("/api/v1/relationships/checkpoint")

    assert response.status_code == 404


def test_verify_endpoint(client, graph_service):
    graph_service.verify_graph.return_value = SymmetryReport(edges_checked=12)

    response = client.get("/api/v1/relationships/verify")

    assert response.status_code == 200
    assert response.json() == {"edges_checked": 12, "violations": []}


def test_edge_endpoint(client, graph_service):
    graph_service.get_edge_stats.return_value = EdgeStats(
        player1="alice", player2="bob", session_count=4
    )

    response = client.get(
        "/api/v1/relationships/edge", params={"player1": "bob", "player2": "alice"}
    )

    assert response.status_code == 200
    assert response.json()["session_count"] == 4
    graph_service.get_edge_stats.assert_awaited_once_with("bob", "alice")


def test_edge_endpoint_never_played_together(client, graph_service):
    graph_service.get_edge_stats.return_value = None

    response = client.get(
        "/api/v1/relationships/edge", params={"player1": "alice", "player2": "zed"}
    )

    assert response.status_code == 404


def test_teammates_endpoint(client, graph_service):
    graph_service.get_teammates.return_value = [
        TeammateInfo(name="bob", session_count=9, total_minutes=120.0)
    ]

    response = client.get("/api/v1/relationships/alice/teammates", params={"limit": 10})

    assert response.status_code == 200
    assert response.json()[0]["name"] == "bob"
    graph_service.get_teammates.assert_awaited_once_with("alice", 10)
