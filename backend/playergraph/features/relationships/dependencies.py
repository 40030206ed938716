from typing import Annotated

from fastapi import Depends

from playergraph.core.dependencies import GraphManagerDep, SessionFactoryDep, SettingsDep
from playergraph.features.sessions.repository import (
    SessionStoreInterface,
    SQLAlchemySessionRepository,
)
from .checkpoints import CheckpointStoreInterface, SQLAlchemyCheckpointRepository
from .graph_repository import GraphStoreInterface, Neo4jGraphRepository
from .service import RelationshipGraphService
from .sync import RelationshipSyncService


# Repository dependencies
def get_session_store(
    session_factory: SessionFactoryDep, settings: SettingsDep
) -> SessionStoreInterface:
    return SQLAlchemySessionRepository(
        session_factory, query_timeout=settings.session_store_timeout_seconds
    )


SessionStoreDep = Annotated[SessionStoreInterface, Depends(get_session_store)]


def get_graph_store(graph: GraphManagerDep, settings: SettingsDep) -> GraphStoreInterface:
    return Neo4jGraphRepository(
        graph,
        write_batch_size=settings.sync_write_batch_size,
        query_timeout=settings.graph_store_timeout_seconds,
    )


GraphStoreDep = Annotated[GraphStoreInterface, Depends(get_graph_store)]


def get_checkpoint_store(
    session_factory: SessionFactoryDep, settings: SettingsDep
) -> CheckpointStoreInterface:
    return SQLAlchemyCheckpointRepository(
        session_factory, query_timeout=settings.session_store_timeout_seconds
    )


CheckpointStoreDep = Annotated[CheckpointStoreInterface, Depends(get_checkpoint_store)]


# Service dependencies
def get_relationship_graph_service(
    graph_store: GraphStoreDep, checkpoint_store: CheckpointStoreDep
) -> RelationshipGraphService:
    return RelationshipGraphService(graph_store, checkpoint_store)


RelationshipGraphServiceDep = Annotated[
    RelationshipGraphService, Depends(get_relationship_graph_service)
]


def get_relationship_sync_service(
    session_store: SessionStoreDep,
    graph_store: GraphStoreDep,
    checkpoint_store: CheckpointStoreDep,
    settings: SettingsDep,
) -> RelationshipSyncService:
    return RelationshipSyncService(session_store, graph_store, checkpoint_store, settings)


RelationshipSyncServiceDep = Annotated[
    RelationshipSyncService, Depends(get_relationship_sync_service)
]
