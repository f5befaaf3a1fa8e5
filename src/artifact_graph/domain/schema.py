"""Declarative schema definition model.

Describes the property keys, vertex labels, edge labels and composite
indexes the graph must carry. The model is pure data: the
``SchemaManager`` applies it against a live engine.

Naming conventions are persisted and must match exactly:
- index name ``"<Label>.<property>"``
- edge label ``"<SourceLabel>#<TargetLabel>"`` or a relation name

Pure Python — ZERO framework imports.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime

from artifact_graph.domain.models import (
    ARTIFACT_ARTIFACTCOORDINATES,
    UUID_PROPERTY,
    Artifact,
    ArtifactCoordinates,
    ArtifactDependency,
)
from artifact_graph.errors import SchemaDefinitionError, UnknownLabelError

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Cardinality(enum.StrEnum):
    """How many values a property key may hold per element."""

    SINGLE = "SINGLE"
    SET = "SET"
    LIST = "LIST"


class Multiplicity(enum.StrEnum):
    """Edge cardinality constraint between source and target vertices."""

    ONE2ONE = "ONE2ONE"
    ONE2MANY = "ONE2MANY"
    MANY2ONE = "MANY2ONE"
    MANY2MANY = "MANY2MANY"

    @property
    def unique_out(self) -> bool:
        """At most one outgoing edge of this label per source vertex."""
        return self in (Multiplicity.ONE2ONE, Multiplicity.MANY2ONE)

    @property
    def unique_in(self) -> bool:
        """At most one incoming edge of this label per target vertex."""
        return self in (Multiplicity.ONE2ONE, Multiplicity.ONE2MANY)


class ElementKind(enum.StrEnum):
    """Graph element kind an index or traversal start applies to."""

    VERTEX = "VERTEX"
    EDGE = "EDGE"


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PropertyKeyDef:
    name: str
    data_type: type
    cardinality: Cardinality = Cardinality.SINGLE


@dataclass(frozen=True)
class VertexLabelDef:
    name: str


@dataclass(frozen=True)
class EdgeLabelDef:
    name: str
    multiplicity: Multiplicity = Multiplicity.MANY2MANY


@dataclass(frozen=True)
class IndexDef:
    """Composite index over ``keys``, optionally restricted to one label.

    A ``unique`` index doubles as the engine-level uniqueness constraint
    for the indexed key combination within the scope label.
    """

    name: str
    element_kind: ElementKind
    keys: tuple[PropertyKeyDef, ...]
    scope_label: VertexLabelDef | EdgeLabelDef | None = None
    unique: bool = False


@dataclass(frozen=True)
class GraphSchema:
    """A complete, validated schema declaration.

    Declaration order is significant: the manager creates objects in the
    order given here.
    """

    property_keys: tuple[PropertyKeyDef, ...] = ()
    vertex_labels: tuple[VertexLabelDef, ...] = ()
    edge_labels: tuple[EdgeLabelDef, ...] = ()
    indexes: tuple[IndexDef, ...] = ()
    _labels: dict[str, VertexLabelDef | EdgeLabelDef] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for definition in (
            *self.property_keys,
            *self.vertex_labels,
            *self.edge_labels,
            *self.indexes,
        ):
            if definition.name in seen:
                msg = f"Duplicate schema name: {definition.name!r}"
                raise SchemaDefinitionError(msg)
            seen.add(definition.name)

        for label in (*self.vertex_labels, *self.edge_labels):
            self._labels[label.name] = label

        for index in self.indexes:
            if not index.keys:
                msg = f"Index {index.name!r} declares no keys"
                raise SchemaDefinitionError(msg)
            for key in index.keys:
                if key not in self.property_keys:
                    msg = f"Index {index.name!r} references undeclared key {key.name!r}"
                    raise SchemaDefinitionError(msg)
            scope = index.scope_label
            if scope is None:
                continue
            expected = VertexLabelDef if index.element_kind is ElementKind.VERTEX else EdgeLabelDef
            if not isinstance(scope, expected) or self._labels.get(scope.name) != scope:
                msg = f"Index {index.name!r} has invalid scope label {scope.name!r}"
                raise SchemaDefinitionError(msg)

    def label(self, name: str) -> VertexLabelDef | EdgeLabelDef:
        """Return the vertex or edge label definition for ``name``."""
        try:
            return self._labels[name]
        except KeyError:
            raise UnknownLabelError(name) from None

    def vertex_label(self, name: str) -> VertexLabelDef:
        label = self.label(name)
        if not isinstance(label, VertexLabelDef):
            raise UnknownLabelError(name)
        return label

    def edge_label(self, name: str) -> EdgeLabelDef:
        label = self.label(name)
        if not isinstance(label, EdgeLabelDef):
            raise UnknownLabelError(name)
        return label

    def property_key(self, name: str) -> PropertyKeyDef | None:
        for key in self.property_keys:
            if key.name == name:
                return key
        return None


def index_name(label: str, property_name: str) -> str:
    """Build an index name following the ``<Label>.<property>`` convention."""
    return f"{label}.{property_name}"


# ---------------------------------------------------------------------------
# Artifact metadata schema
# ---------------------------------------------------------------------------

UUID_KEY = PropertyKeyDef(UUID_PROPERTY, str)
STORAGE_ID_KEY = PropertyKeyDef("storageId", str)
REPOSITORY_ID_KEY = PropertyKeyDef("repositoryId", str)
SIZE_IN_BYTES_KEY = PropertyKeyDef("sizeInBytes", int)
CREATED_KEY = PropertyKeyDef("created", datetime)
TAGS_KEY = PropertyKeyDef("tags", str, Cardinality.SET)
PATH_KEY = PropertyKeyDef("path", str)
VERSION_KEY = PropertyKeyDef("version", str)

ARTIFACT_VERTEX = VertexLabelDef(Artifact.LABEL)
ARTIFACT_COORDINATES_VERTEX = VertexLabelDef(ArtifactCoordinates.LABEL)

ARTIFACT_ARTIFACTCOORDINATES_EDGE = EdgeLabelDef(
    ARTIFACT_ARTIFACTCOORDINATES, Multiplicity.MANY2ONE
)
ARTIFACT_DEPENDENCY_EDGE = EdgeLabelDef(ArtifactDependency.LABEL, Multiplicity.MANY2MANY)

ARTIFACT_SCHEMA = GraphSchema(
    property_keys=(
        UUID_KEY,
        STORAGE_ID_KEY,
        REPOSITORY_ID_KEY,
        SIZE_IN_BYTES_KEY,
        CREATED_KEY,
        TAGS_KEY,
        PATH_KEY,
        VERSION_KEY,
    ),
    vertex_labels=(ARTIFACT_VERTEX, ARTIFACT_COORDINATES_VERTEX),
    edge_labels=(ARTIFACT_ARTIFACTCOORDINATES_EDGE, ARTIFACT_DEPENDENCY_EDGE),
    indexes=(
        IndexDef(
            index_name(ArtifactCoordinates.LABEL, PATH_KEY.name),
            ElementKind.VERTEX,
            (PATH_KEY,),
            ARTIFACT_COORDINATES_VERTEX,
        ),
        IndexDef(
            index_name(ArtifactCoordinates.LABEL, UUID_PROPERTY),
            ElementKind.VERTEX,
            (UUID_KEY,),
            ARTIFACT_COORDINATES_VERTEX,
            unique=True,
        ),
        IndexDef(
            index_name(Artifact.LABEL, UUID_PROPERTY),
            ElementKind.VERTEX,
            (UUID_KEY,),
            ARTIFACT_VERTEX,
            unique=True,
        ),
        IndexDef(
            index_name(ArtifactDependency.LABEL, UUID_PROPERTY),
            ElementKind.EDGE,
            (UUID_KEY,),
            ARTIFACT_DEPENDENCY_EDGE,
            unique=True,
        ),
    ),
)
