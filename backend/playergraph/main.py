"""Main FastAPI application for the player relationship graph service."""

from contextlib import asynccontextmanager
from typing import Any, Dict

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from neo4j.exceptions import DriverError, Neo4jError
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from playergraph.core.config import get_global_settings
from playergraph.core.database import get_db_manager
from playergraph.core.graph import get_graph_manager
from playergraph.core.logging import setup_logging
from playergraph.core.rate_limiter import limiter
from playergraph.features.alias_detection.router import router as aliases_router
from playergraph.features.relationships.router import router as relationships_router
from playergraph.jobs.scheduler import shutdown_scheduler, start_scheduler

settings = get_global_settings()
setup_logging(settings.log_level)
logger = structlog.get_logger(__name__)


async def _prepare_stores() -> None:
    await get_db_manager().create_tables()
    try:
        await get_graph_manager().ensure_constraints()
    except (DriverError, Neo4jError) as e:
        # Reads degrade per request; the constraints are retried on next start.
        logger.error("Could not ensure graph constraints", error=str(e))


async def _start_scheduler_safely() -> None:
    try:
        await start_scheduler(settings)
    except Exception as e:
        logger.error(
            "Failed to start job scheduler",
            error=str(e),
            error_type=type(e).__name__,
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting player graph service")
    await _prepare_stores()
    await _start_scheduler_safely()
    yield
    logger.info("Shutting down player graph service")
    await shutdown_scheduler()
    await get_graph_manager().close()
    await get_db_manager().close()


tags_metadata = [
    {
        "name": "relationships",
        "description": "Co-play graph sync, teammate lookups and graph verification.",
    },
    {
        "name": "aliases",
        "description": "Pairwise alias scoring, candidate search and activity timelines.",
    },
    {"name": "health", "description": "Health check endpoint."},
]

app = FastAPI(
    title="Player Graph - Relationship and Alias Detection Service",
    description="""
    Builds a weighted co-play graph from game-server sessions and scores
    whether two player names belong to the same person.

    * **Relationships**: incremental PLAYED_WITH / PLAYS_ON sync and teammate queries
    * **Aliases**: stat, behavioral, network and temporal similarity with explainable flags
    """,
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    openapi_tags=tags_metadata,
    lifespan=lifespan,
    debug=settings.debug,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(relationships_router, prefix="/api/v1")
app.include_router(aliases_router, prefix="/api/v1")


@app.get("/health", tags=["health"])
async def health_check() -> Dict[str, Any]:
    """Liveness plus graph connectivity; the service answers even when the graph is down."""
    graph_ok = await get_graph_manager().verify_connectivity()
    return {
        "status": "healthy" if graph_ok else "degraded",
        "graph_store": "up" if graph_ok else "down",
        "version": "0.1.0",
        "debug": settings.debug,
    }
