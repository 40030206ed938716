"""
Graph store connection management using the neo4j async driver.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, List, Optional, TypeVar

import structlog
from neo4j import AsyncDriver, AsyncGraphDatabase, AsyncManagedTransaction, AsyncSession

from .config import Settings, get_global_settings

logger = structlog.get_logger(__name__)

T = TypeVar("T")

CONSTRAINTS = (
    "CREATE CONSTRAINT player_name_unique IF NOT EXISTS "
    "FOR (p:Player) REQUIRE p.name IS UNIQUE",
    "CREATE CONSTRAINT server_guid_unique IF NOT EXISTS "
    "FOR (s:Server) REQUIRE s.guid IS UNIQUE",
)


class GraphDatabaseManager:
    """Graph store driver and session manager."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        driver: Optional[AsyncDriver] = None,
    ):
        settings = settings or get_global_settings()
        self.database = settings.neo4j_database
        self.driver = driver or AsyncGraphDatabase.driver(
            settings.neo4j_uri,
            auth=(settings.neo4j_user, settings.neo4j_password),
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Open a session bound to the configured database."""
        async with self.driver.session(database=self.database) as session:
            yield session

    async def execute_read(
        self, work: Callable[[AsyncManagedTransaction], Awaitable[T]]
    ) -> T:
        """Run ``work`` inside a managed read transaction."""
        async with self.session() as session:
            return await session.execute_read(work)

    async def execute_write(
        self, work: Callable[[AsyncManagedTransaction], Awaitable[T]]
    ) -> T:
        """Run ``work`` inside a managed write transaction.

        The transaction commits only if ``work`` returns; any exception rolls
        back everything it wrote.
        """
        async with self.session() as session:
            return await session.execute_write(work)

    async def read_records(
        self, query: str, parameters: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """Run a read query and return its records as plain dicts."""

        async def _work(tx: AsyncManagedTransaction) -> List[Dict[str, Any]]:
            result = await tx.run(query, parameters or {})
            return [record.data() async for record in result]

        return await self.execute_read(_work)

    async def ensure_constraints(self) -> None:
        """Create the uniqueness constraints the upserts rely on."""
        async with self.session() as session:
            for statement in CONSTRAINTS:
                await session.run(statement)
        logger.info("Graph constraints ensured", count=len(CONSTRAINTS))

    async def verify_connectivity(self) -> bool:
        try:
            await self.driver.verify_connectivity()
            return True
        except Exception as e:
            logger.warning(
                "Graph store connectivity check failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    async def close(self) -> None:
        """Close the driver and its connection pool."""
        await self.driver.close()


_graph_manager: Optional[GraphDatabaseManager] = None


def get_graph_manager() -> GraphDatabaseManager:
    """Get or create the global graph database manager."""
    global _graph_manager
    if _graph_manager is None:
        _graph_manager = GraphDatabaseManager()
    return _graph_manager
