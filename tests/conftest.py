"""Shared pytest fixtures for the artifact-graph test suite.

This conftest provides entity factory fixtures that wrap the helpers in
``tests.fixtures.entities`` and an in-memory graph engine with the artifact
schema applied. No external service dependencies are required for unit
tests.
"""

from __future__ import annotations

import pytest

from artifact_graph.adapters.memory.engine import MemoryGraphEngine
from artifact_graph.domain.schema import ARTIFACT_SCHEMA
from artifact_graph.schema_manager import SchemaManager
from artifact_graph.settings import QuerySettings, SchemaSettings
from tests.fixtures.entities import make_artifact, make_coordinates, make_dependency


@pytest.fixture()
def artifact_factory():
    """Return the ``make_artifact`` factory callable."""
    return make_artifact


@pytest.fixture()
def coordinates_factory():
    """Return the ``make_coordinates`` factory callable."""
    return make_coordinates


@pytest.fixture()
def dependency_factory():
    """Return the ``make_dependency`` factory callable."""
    return make_dependency


@pytest.fixture()
def schema_settings() -> SchemaSettings:
    """Fast polling so index waits do not slow the suite down."""
    return SchemaSettings(
        index_await_timeout_s=5.0,
        index_poll_interval_s=0.0,
        index_poll_max_interval_s=0.0,
    )


@pytest.fixture()
def query_settings() -> QuerySettings:
    return QuerySettings()


@pytest.fixture()
def memory_engine() -> MemoryGraphEngine:
    """A fresh in-memory engine without any schema."""
    return MemoryGraphEngine(index_build_polls=0)


@pytest.fixture()
async def engine(memory_engine: MemoryGraphEngine, schema_settings: SchemaSettings):
    """In-memory engine with the artifact schema applied and indexes enabled."""
    await SchemaManager(ARTIFACT_SCHEMA, schema_settings).apply_schema(memory_engine)
    return memory_engine
