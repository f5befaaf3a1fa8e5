"""Artifact coordinates endpoints.

POST /v1/coordinates                    — upsert coordinates
GET  /v1/coordinates/{uuid}             — retrieve coordinates
GET  /v1/coordinates?path=              — retrieve coordinates by path
GET  /v1/coordinates/{uuid}/dependents  — artifacts depending on them
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query

from artifact_graph.api.dependencies import (
    get_artifact_repository,
    get_coordinates_repository,
)
from artifact_graph.domain.models import (  # noqa: TCH001 — runtime: request body
    ArtifactCoordinates,
)
from artifact_graph.repositories.artifacts import (  # noqa: TCH001 — runtime: Depends()
    ArtifactCoordinatesRepository,
    ArtifactRepository,
)

router = APIRouter(tags=["coordinates"])

CoordinatesRepositoryDep = Annotated[
    ArtifactCoordinatesRepository, Depends(get_coordinates_repository)
]
ArtifactRepositoryDep = Annotated[ArtifactRepository, Depends(get_artifact_repository)]


@router.post("/coordinates", status_code=201)
async def save_coordinates(
    coordinates: ArtifactCoordinates,
    repository: CoordinatesRepositoryDep,
) -> dict[str, Any]:
    saved = await repository.save(coordinates)
    return saved.model_dump(by_alias=True, mode="json")


@router.get("/coordinates/{uuid}")
async def get_coordinates(
    uuid: str,
    repository: CoordinatesRepositoryDep,
) -> dict[str, Any]:
    found = await repository.find_by_id(uuid)
    if found is None:
        raise HTTPException(status_code=404, detail="Coordinates not found")
    return found.model_dump(by_alias=True, mode="json")


@router.get("/coordinates")
async def find_coordinates_by_path(
    repository: CoordinatesRepositoryDep,
    path: Annotated[str, Query(min_length=1)],
) -> dict[str, Any]:
    found = await repository.find_by_path(path)
    if found is None:
        raise HTTPException(status_code=404, detail="Coordinates not found")
    return found.model_dump(by_alias=True, mode="json")


@router.get("/coordinates/{uuid}/dependents")
async def get_dependents(
    uuid: str,
    coordinates: CoordinatesRepositoryDep,
    artifacts: ArtifactRepositoryDep,
    max_depth: Annotated[int | None, Query(ge=1)] = None,
) -> dict[str, Any]:
    """Artifacts that depend on these coordinates, directly or transitively."""
    if await coordinates.find_by_id(uuid) is None:
        raise HTTPException(status_code=404, detail="Coordinates not found")
    dependents = await artifacts.find_all_dependent_entries(uuid, max_depth=max_depth)
    return {
        "coordinates_uuid": uuid,
        "count": len(dependents),
        "artifacts": [a.model_dump(by_alias=True, mode="json") for a in dependents],
    }
