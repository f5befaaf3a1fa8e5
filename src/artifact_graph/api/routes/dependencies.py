"""Artifact dependency endpoint.

POST /v1/dependencies — record that an artifact depends on coordinates.
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException

from artifact_graph.api.dependencies import get_dependency_repository
from artifact_graph.domain.models import (  # noqa: TCH001 — runtime: request body
    ArtifactDependency,
)
from artifact_graph.repositories.artifacts import (  # noqa: TCH001 — runtime: Depends()
    ArtifactDependencyRepository,
)

router = APIRouter(tags=["dependencies"])

DependencyRepositoryDep = Annotated[
    ArtifactDependencyRepository, Depends(get_dependency_repository)
]


@router.post("/dependencies", status_code=201)
async def save_dependency(
    dependency: ArtifactDependency,
    repository: DependencyRepositoryDep,
) -> dict[str, Any]:
    if dependency.subject is None or dependency.dependency is None:
        raise HTTPException(
            status_code=422,
            detail="Both subject and dependency are required",
        )
    saved = await repository.save(dependency)
    return saved.model_dump(by_alias=True, mode="json")
