"""Core dependencies for FastAPI application."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .config import Settings, get_global_settings
from .database import get_db_manager
from .graph import GraphDatabaseManager, get_graph_manager


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory shared by repositories that open their own sessions."""
    return get_db_manager().async_session_factory


# Type aliases for cleaner dependency injection
SettingsDep = Annotated[Settings, Depends(get_global_settings)]
SessionFactoryDep = Annotated[
    async_sessionmaker[AsyncSession], Depends(get_session_factory)
]
GraphManagerDep = Annotated[GraphDatabaseManager, Depends(get_graph_manager)]

__all__ = [
    "get_session_factory",
    "SettingsDep",
    "SessionFactoryDep",
    "GraphManagerDep",
]
