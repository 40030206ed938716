"""Dependencies for the alias detection feature."""

from typing import Annotated

from fastapi import Depends

from playergraph.core.dependencies import SessionFactoryDep, SettingsDep
from playergraph.features.relationships.dependencies import (
    GraphStoreDep,
    SessionStoreDep,
)
from playergraph.features.stats.repository import (
    SQLAlchemyStatRepository,
    StatStoreInterface,
)
from .config import AliasDetectionConfig, get_detection_config
from .service import AliasDetectionService


def get_stat_store(
    session_factory: SessionFactoryDep, settings: SettingsDep
) -> StatStoreInterface:
    """Get stat store instance."""
    return SQLAlchemyStatRepository(
        session_factory, query_timeout=settings.stat_store_timeout_seconds
    )


StatStoreDep = Annotated[StatStoreInterface, Depends(get_stat_store)]


def get_alias_config(settings: SettingsDep) -> AliasDetectionConfig:
    """Get the validated scoring policy."""
    return get_detection_config(settings)


AliasConfigDep = Annotated[AliasDetectionConfig, Depends(get_alias_config)]


def get_alias_detection_service(
    stat_store: StatStoreDep,
    session_store: SessionStoreDep,
    graph_store: GraphStoreDep,
    config: AliasConfigDep,
) -> AliasDetectionService:
    """Get alias detection service instance."""
    return AliasDetectionService(stat_store, session_store, graph_store, config)


AliasDetectionServiceDep = Annotated[
    AliasDetectionService, Depends(get_alias_detection_service)
]

__all__ = [
    "get_stat_store",
    "get_alias_config",
    "get_alias_detection_service",
    "StatStoreDep",
    "AliasConfigDep",
    "AliasDetectionServiceDep",
]
