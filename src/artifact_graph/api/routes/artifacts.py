"""Artifact endpoints.

POST /v1/artifacts         — upsert an artifact (and its coordinates)
GET  /v1/artifacts/{uuid}  — retrieve an artifact
GET  /v1/artifacts?path=   — retrieve the artifact stored at a path
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query

from artifact_graph.api.dependencies import get_artifact_repository
from artifact_graph.domain.models import Artifact  # noqa: TCH001 — runtime: request body
from artifact_graph.repositories.artifacts import (  # noqa: TCH001 — runtime: Depends()
    ArtifactRepository,
)

router = APIRouter(tags=["artifacts"])

ArtifactRepositoryDep = Annotated[ArtifactRepository, Depends(get_artifact_repository)]


@router.post("/artifacts", status_code=201)
async def save_artifact(
    artifact: Artifact,
    repository: ArtifactRepositoryDep,
) -> dict[str, Any]:
    """Create or update an artifact; returns the stored state."""
    saved = await repository.save(artifact)
    return saved.model_dump(by_alias=True, mode="json")


@router.get("/artifacts/{uuid}")
async def get_artifact(
    uuid: str,
    repository: ArtifactRepositoryDep,
) -> dict[str, Any]:
    found = await repository.find_by_id(uuid)
    if found is None:
        raise HTTPException(status_code=404, detail="Artifact not found")
    return found.model_dump(by_alias=True, mode="json")


@router.get("/artifacts")
async def find_artifact_by_path(
    repository: ArtifactRepositoryDep,
    path: Annotated[str, Query(min_length=1)],
) -> dict[str, Any]:
    found = await repository.find_by_path(path)
    if found is None:
        raise HTTPException(status_code=404, detail="Artifact not found")
    return found.model_dump(by_alias=True, mode="json")
