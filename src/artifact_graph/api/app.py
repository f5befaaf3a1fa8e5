"""FastAPI application factory.

Creates and configures the Artifact Graph API with lifespan management
for the graph engine: the schema is applied before the first request is
served and the engine is closed on shutdown.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI
from fastapi.responses import ORJSONResponse

from artifact_graph.adapters.memory.engine import MemoryGraphEngine
from artifact_graph.adapters.neo4j.engine import Neo4jGraphEngine
from artifact_graph.api.middleware import register_middleware
from artifact_graph.api.routes.artifacts import router as artifacts_router
from artifact_graph.api.routes.coordinates import router as coordinates_router
from artifact_graph.api.routes.dependencies import router as dependencies_router
from artifact_graph.api.routes.health import router as health_router
from artifact_graph.domain.schema import ARTIFACT_SCHEMA
from artifact_graph.repositories.artifacts import (
    ArtifactCoordinatesRepository,
    ArtifactDependencyRepository,
    ArtifactRepository,
)
from artifact_graph.schema_manager import SchemaManager
from artifact_graph.settings import Settings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from artifact_graph.ports.graph_engine import GraphEngine

logger = structlog.get_logger(__name__)


def configure_logging(level: str) -> None:
    """Route structlog output through a filtering logger at ``level``."""
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level.upper())),
        cache_logger_on_first_use=False,
    )


def build_engine(settings: Settings) -> GraphEngine:
    if settings.graph.backend == "memory":
        return MemoryGraphEngine(index_build_polls=settings.graph.memory_index_build_polls)
    return Neo4jGraphEngine(settings.neo4j)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage the graph engine across the app lifecycle."""
    settings: Settings = getattr(app.state, "settings", None) or Settings()
    configure_logging(settings.log_level)

    # -- Startup: engine, schema, repositories ------------------------------
    engine = build_engine(settings)
    created = await SchemaManager(ARTIFACT_SCHEMA, settings.graph_schema).apply_schema(engine)

    app.state.settings = settings
    app.state.engine = engine
    app.state.artifacts = ArtifactRepository(engine, ARTIFACT_SCHEMA, settings.query)
    app.state.coordinates = ArtifactCoordinatesRepository(engine, ARTIFACT_SCHEMA)
    app.state.dependencies = ArtifactDependencyRepository(engine, ARTIFACT_SCHEMA)

    logger.info(
        "app_started",
        backend=settings.graph.backend,
        created_indexes=sorted(created),
    )

    yield

    # -- Shutdown: release connections -------------------------------------
    await engine.close()
    logger.info("app_stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build and return the configured FastAPI application."""
    app = FastAPI(
        title="Artifact Graph API",
        description="Artifact metadata stored in a property graph",
        version="0.1.0",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )
    if settings is not None:
        app.state.settings = settings

    register_middleware(app)

    app.include_router(health_router, prefix="/v1")
    app.include_router(artifacts_router, prefix="/v1")
    app.include_router(coordinates_router, prefix="/v1")
    app.include_router(dependencies_router, prefix="/v1")

    return app
