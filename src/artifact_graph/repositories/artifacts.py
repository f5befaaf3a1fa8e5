"""Artifact metadata repositories.

Adapters describe how each entity is laid out in the graph:

- ``ArtifactCoordinates`` vertex with ``path`` and ``version``
- ``Artifact`` vertex with its storage properties, a ``tags`` set and one
  outgoing ``Artifact#ArtifactCoordinates`` edge (MANY2ONE)
- ``ArtifactDependency`` edge from an ``Artifact`` (subject) to the
  ``ArtifactCoordinates`` it depends on
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from artifact_graph.domain.models import (
    ARTIFACT_ARTIFACTCOORDINATES,
    UUID_PROPERTY,
    Artifact,
    ArtifactCoordinates,
    ArtifactDependency,
)
from artifact_graph.repositories.base import (
    EdgeRepository,
    VertexRepository,
    present,
    save_related,
)
from artifact_graph.traversal import EntityTraversal, __

if TYPE_CHECKING:
    from artifact_graph.domain.schema import GraphSchema
    from artifact_graph.ports.graph_engine import GraphEngine
    from artifact_graph.settings import QuerySettings
    from artifact_graph.traversal import Traversal

# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------


class ArtifactCoordinatesAdapter:
    label = ArtifactCoordinates.LABEL

    def fold(self) -> Traversal:
        return __.project(
            uuid=__.enrich_property_value(UUID_PROPERTY),
            path=__.enrich_property_value("path"),
            version=__.enrich_property_value("version"),
        )

    def unfold(self, entity: ArtifactCoordinates) -> Traversal:
        return __.property("path", entity.path).property("version", entity.version)

    def from_projection(self, projection: dict[str, Any]) -> ArtifactCoordinates:
        return ArtifactCoordinates.model_validate(
            {key: present(value) for key, value in projection.items()}
        )


class ArtifactAdapter:
    label = Artifact.LABEL

    def __init__(self, coordinates: ArtifactCoordinatesAdapter | None = None) -> None:
        self.coordinates = coordinates or ArtifactCoordinatesAdapter()

    def fold(self) -> Traversal:
        return __.project(
            uuid=__.enrich_property_value(UUID_PROPERTY),
            storageId=__.enrich_property_value("storageId"),
            repositoryId=__.enrich_property_value("repositoryId"),
            sizeInBytes=__.enrich_property_value("sizeInBytes"),
            created=__.enrich_property_value("created"),
            tags=__.enrich_property_values("tags"),
            artifactCoordinates=__.out(ARTIFACT_ARTIFACTCOORDINATES).map_to_object(
                self.coordinates.fold()
            ),
        )

    def unfold(self, entity: Artifact) -> Traversal:
        traversal = (
            __.property("storageId", entity.storage_id)
            .property("repositoryId", entity.repository_id)
            .property("sizeInBytes", entity.size_in_bytes)
            .property("created", entity.created)
            .property("tags", set(entity.tags))
        )
        coordinates = entity.artifact_coordinates
        if coordinates is None:
            return traversal
        # MANY2ONE: the new edge replaces whatever the artifact pointed at
        return traversal.side_effect(__.out_e(ARTIFACT_ARTIFACTCOORDINATES).drop()).side_effect(
            __.add_e(
                ARTIFACT_ARTIFACTCOORDINATES,
                to=save_related(self.coordinates, coordinates),
            )
        )

    def from_projection(self, projection: dict[str, Any]) -> Artifact:
        values = {key: present(value) for key, value in projection.items()}
        values["tags"] = set(values["tags"] or ())
        coordinates = values.pop("artifactCoordinates")
        if coordinates is not None:
            values["artifactCoordinates"] = self.coordinates.from_projection(coordinates)
        return Artifact.model_validate(values)


class ArtifactDependencyAdapter:
    label = ArtifactDependency.LABEL

    def __init__(self, artifacts: ArtifactAdapter | None = None) -> None:
        self.artifacts = artifacts or ArtifactAdapter()
        self.coordinates = self.artifacts.coordinates

    def fold(self) -> Traversal:
        return __.project(
            uuid=__.enrich_property_value(UUID_PROPERTY),
            subject=__.out_v().map(self.artifacts.fold()),
            dependency=__.in_v().map(self.coordinates.fold()),
        )

    def unfold(self, entity: ArtifactDependency) -> Traversal:
        # The edge carries no properties besides its uuid.
        return EntityTraversal()

    def from_projection(self, projection: dict[str, Any]) -> ArtifactDependency:
        return ArtifactDependency(
            uuid=present(projection["uuid"]),
            subject=self.artifacts.from_projection(projection["subject"]),
            dependency=self.coordinates.from_projection(projection["dependency"]),
        )


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class ArtifactCoordinatesRepository(VertexRepository[ArtifactCoordinates]):
    def __init__(
        self,
        engine: GraphEngine,
        schema: GraphSchema,
        logger: Any | None = None,
    ) -> None:
        super().__init__(engine, schema, ArtifactCoordinatesAdapter(), logger)

    async def find_by_path(self, path: str) -> ArtifactCoordinates | None:
        """Coordinates stored at ``path`` (served by the ``ArtifactCoordinates.path`` index)."""
        found = await self._find(lambda g: g.V().has_label(self.label).has("path", path))
        return found[0] if found else None


class ArtifactRepository(VertexRepository[Artifact]):
    def __init__(
        self,
        engine: GraphEngine,
        schema: GraphSchema,
        settings: QuerySettings,
        logger: Any | None = None,
    ) -> None:
        super().__init__(engine, schema, ArtifactAdapter(), logger)
        self._settings = settings

    async def find_by_path(self, path: str) -> Artifact | None:
        """The artifact whose coordinates are stored at ``path``."""
        found = await self._find(
            lambda g: g.V()
            .has_label(ArtifactCoordinates.LABEL)
            .has("path", path)
            .in_(ARTIFACT_ARTIFACTCOORDINATES)
            .has_label(self.label)
        )
        return found[0] if found else None

    async def find_all_dependent_entries(
        self,
        coordinates_uuid: str,
        max_depth: int | None = None,
    ) -> list[Artifact]:
        """Artifacts depending on the coordinates, directly or transitively.

        Level one holds the artifacts with an ``ArtifactDependency`` edge into
        the coordinates; each further level holds the artifacts depending on
        the coordinates of the previous level's artifacts. Results are unique
        by uuid and ordered breadth first; already visited coordinates are not
        expanded again, so cycles terminate. Without ``max_depth`` (and no
        configured default) every reachable level is returned; an explicit
        bound is clamped to ``max_dependency_depth``.
        """
        depth = max_depth if max_depth is not None else self._settings.default_dependency_depth
        if depth is not None:
            depth = max(0, min(depth, self._settings.max_dependency_depth))

        found: list[Artifact] = []
        seen: set[str | None] = set()
        visited = {coordinates_uuid}
        frontier = [coordinates_uuid]
        level = 0
        while frontier and (depth is None or level < depth):
            level += 1
            next_frontier: list[str] = []
            for uuid in frontier:
                dependents = await self._find(
                    lambda g, uuid=uuid: g.V()
                    .find_by_id(ArtifactCoordinates.LABEL, uuid)
                    .in_(ArtifactDependency.LABEL)
                    .has_label(self.label)
                )
                for artifact in dependents:
                    if artifact.uuid in seen:
                        continue
                    seen.add(artifact.uuid)
                    found.append(artifact)
                    coordinates = artifact.artifact_coordinates
                    if coordinates is None or coordinates.uuid is None:
                        continue
                    if coordinates.uuid not in visited:
                        visited.add(coordinates.uuid)
                        next_frontier.append(coordinates.uuid)
            frontier = next_frontier

        self._log.debug(
            "dependents_resolved",
            coordinates_uuid=coordinates_uuid,
            count=len(found),
            levels=level,
        )
        return found


class ArtifactDependencyRepository(EdgeRepository[ArtifactDependency]):
    def __init__(
        self,
        engine: GraphEngine,
        schema: GraphSchema,
        logger: Any | None = None,
    ) -> None:
        self._dependency_adapter = ArtifactDependencyAdapter()
        super().__init__(engine, schema, self._dependency_adapter, logger)

    def _endpoints(self, entity: ArtifactDependency) -> tuple[Traversal, Traversal]:
        if entity.subject is None or entity.dependency is None:
            msg = "ArtifactDependency requires both subject and dependency"
            raise ValueError(msg)
        adapter = self._dependency_adapter
        return (
            save_related(adapter.artifacts, entity.subject),
            save_related(adapter.coordinates, entity.dependency),
        )
