"""Application settings via Pydantic BaseSettings.

All configuration uses the AG_ environment variable prefix.
Centralized here to prevent hardcoded magic numbers across the codebase.
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


class Neo4jSettings(BaseSettings):
    """Neo4j connection settings."""

    model_config = {"env_prefix": "AG_NEO4J_"}

    uri: str = "bolt://localhost:7687"
    username: str = "neo4j"
    password: str = "artifact-graph-dev-password"
    database: str = "neo4j"
    max_connection_pool_size: int = 50


class SchemaSettings(BaseSettings):
    """Schema manager settings."""

    model_config = {"env_prefix": "AG_SCHEMA_"}

    # Upper bound for a newly built index to become ENABLED (None = wait forever)
    index_await_timeout_s: float | None = 60.0

    # Status polling backoff: doubles from the interval up to the max
    index_poll_interval_s: float = 0.1
    index_poll_max_interval_s: float = 2.0


class QuerySettings(BaseSettings):
    """Bounded query limits."""

    model_config = {"env_prefix": "AG_QUERY_"}

    # Dependency traversal bounds (hops through ArtifactDependency edges);
    # None walks the whole transitive closure
    default_dependency_depth: int | None = None
    max_dependency_depth: int = 32


class GraphSettings(BaseSettings):
    """Graph engine selection."""

    model_config = {"env_prefix": "AG_GRAPH_"}

    backend: Literal["neo4j", "memory"] = "neo4j"

    # Status polls a new index stays REGISTERED on the memory backend
    memory_index_build_polls: int = 1


class Settings(BaseSettings):
    """Root application settings."""

    model_config = {"env_prefix": "AG_"}

    app_name: str = "artifact-graph"
    debug: bool = False
    log_level: str = "INFO"

    neo4j: Neo4jSettings = Field(default_factory=Neo4jSettings)
    graph_schema: SchemaSettings = Field(default_factory=SchemaSettings)
    query: QuerySettings = Field(default_factory=QuerySettings)
    graph: GraphSettings = Field(default_factory=GraphSettings)
