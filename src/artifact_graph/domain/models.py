"""Domain entities persisted in the artifact graph.

Every entity carries a ``uuid`` identity and a ``LABEL`` that maps 1:1 to a
vertex or edge label of the schema. Graph property names are camelCase and
exposed through pydantic field aliases, so ``model_dump(by_alias=True)``
yields exactly the persisted property map.

All models are pure Python + Pydantic v2. Zero framework imports.
"""

from __future__ import annotations

from datetime import datetime
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field

UUID_PROPERTY = "uuid"

# Edge labels
ARTIFACT_ARTIFACTCOORDINATES = "Artifact#ArtifactCoordinates"


class DomainEntity(BaseModel):
    """Base for all persisted entities.

    ``uuid`` may be absent on a freshly built entity; the repository
    assigns one on first save and it never changes afterwards.
    """

    model_config = ConfigDict(populate_by_name=True)

    LABEL: ClassVar[str]

    uuid: str | None = None


class ArtifactCoordinates(DomainEntity):
    """Location of an artifact inside a repository layout."""

    LABEL: ClassVar[str] = "ArtifactCoordinates"

    path: str | None = None
    version: str | None = None


class Artifact(DomainEntity):
    """A stored artifact and the coordinates it lives at (many-to-one)."""

    LABEL: ClassVar[str] = "Artifact"

    storage_id: str | None = Field(default=None, alias="storageId")
    repository_id: str | None = Field(default=None, alias="repositoryId")
    size_in_bytes: int | None = Field(default=None, alias="sizeInBytes")
    created: datetime | None = None
    tags: set[str] = Field(default_factory=set)
    artifact_coordinates: ArtifactCoordinates | None = Field(
        default=None, alias="artifactCoordinates"
    )


class ArtifactDependency(DomainEntity):
    """Edge entity: ``subject`` artifact depends on ``dependency`` coordinates."""

    LABEL: ClassVar[str] = "ArtifactDependency"

    subject: Artifact | None = None
    dependency: ArtifactCoordinates | None = None
