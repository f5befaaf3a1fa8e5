"""FastAPI dependency injection helpers.

Extracts shared resources from ``app.state`` so route handlers can
declare them via ``Depends()``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Request  # noqa: TCH002 — runtime: FastAPI dependency injection

if TYPE_CHECKING:
    from artifact_graph.ports.graph_engine import GraphEngine
    from artifact_graph.repositories.artifacts import (
        ArtifactCoordinatesRepository,
        ArtifactDependencyRepository,
        ArtifactRepository,
    )
    from artifact_graph.settings import Settings


def get_settings(request: Request) -> Settings:
    """Return the application settings from app state."""
    return request.app.state.settings  # type: ignore[no-any-return]


def get_engine(request: Request) -> GraphEngine:
    return request.app.state.engine  # type: ignore[no-any-return]


def get_artifact_repository(request: Request) -> ArtifactRepository:
    return request.app.state.artifacts  # type: ignore[no-any-return]


def get_coordinates_repository(request: Request) -> ArtifactCoordinatesRepository:
    return request.app.state.coordinates  # type: ignore[no-any-return]


def get_dependency_repository(request: Request) -> ArtifactDependencyRepository:
    return request.app.state.dependencies  # type: ignore[no-any-return]
