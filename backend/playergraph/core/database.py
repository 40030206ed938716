"""
Database connection and session management for the relational store using
SQLAlchemy with async support.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import Settings, get_global_settings


class DatabaseManager:
    """Database connection and session manager."""

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or get_global_settings()
        self.database_url = settings.database_url

        engine_kwargs = {"echo": settings.debug}
        # sqlite (tests, local runs) does not take queue pool options
        if not self.database_url.startswith("sqlite"):
            engine_kwargs.update(
                pool_size=settings.db_pool_size,
                max_overflow=settings.db_max_overflow,
                pool_timeout=settings.db_pool_timeout,
                pool_recycle=settings.db_pool_recycle,
            )

        self.engine = create_async_engine(self.database_url, **engine_kwargs)

        self.async_session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a database session with proper cleanup."""
        async with self.async_session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def create_tables(self) -> None:
        """Create all database tables."""
        from .models import Base

        # Register every ORM model on the metadata before create_all.
        import playergraph.features.sessions.orm_models  # noqa: F401
        import playergraph.features.stats.orm_models  # noqa: F401
        import playergraph.features.relationships.orm_models  # noqa: F401
        import playergraph.jobs.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Close database connections."""
        await self.engine.dispose()


_db_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    """Get or create the global database manager."""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager


# Dependency for FastAPI routes
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for getting a database session."""
    async with get_db_manager().get_session() as session:
        yield session
