"""Cypher query templates for the Neo4j graph engine.

Elements are addressed by ``elementId``. Labels, relationship types and
property names come from the declared schema and are interpolated as
backtick-quoted identifiers; every value is passed as a parameter.

The schema catalogue (property keys, vertex labels, edge labels) lives in
``__PropertyKey``, ``__VertexLabel`` and ``__EdgeLabel`` nodes, since Neo4j
itself has no declared-schema concept beyond indexes and constraints.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from artifact_graph.domain.schema import ElementKind
from artifact_graph.ports.graph_engine import Direction

if TYPE_CHECKING:
    from artifact_graph.domain.schema import IndexDef


def quote(name: str) -> str:
    """Backtick-quote an identifier, doubling embedded backticks."""
    escaped = name.replace("`", "``")
    return f"`{escaped}`"


# ---------------------------------------------------------------------------
# Schema catalogue
# ---------------------------------------------------------------------------

PROPERTY_KEY_CATALOG = "__PropertyKey"
VERTEX_LABEL_CATALOG = "__VertexLabel"
EDGE_LABEL_CATALOG = "__EdgeLabel"

CATALOG_CONTAINS = """
MATCH (s:{catalog} {{name: $name}})
RETURN count(s) > 0 AS present
""".strip()

ANY_CATALOG_CONTAINS = """
MATCH (s)
WHERE (s:__PropertyKey OR s:__VertexLabel OR s:__EdgeLabel) AND s.name = $name
RETURN count(s) > 0 AS present
""".strip()

MERGE_PROPERTY_KEY = """
MERGE (k:__PropertyKey {name: $name})
SET k.dataType = $data_type,
    k.cardinality = $cardinality
""".strip()

MERGE_VERTEX_LABEL = """
MERGE (v:__VertexLabel {name: $name})
""".strip()

MERGE_EDGE_LABEL = """
MERGE (e:__EdgeLabel {name: $name})
SET e.multiplicity = $multiplicity
""".strip()

GET_EDGE_MULTIPLICITY = """
MATCH (e:__EdgeLabel {name: $name})
RETURN e.multiplicity AS multiplicity
""".strip()

GET_CATALOG = """
MATCH (s)
WHERE s:__PropertyKey OR s:__VertexLabel OR s:__EdgeLabel
RETURN labels(s)[0] AS catalog,
       s.name AS name,
       s.dataType AS data_type,
       s.cardinality AS cardinality,
       s.multiplicity AS multiplicity
ORDER BY catalog, name
""".strip()

# ---------------------------------------------------------------------------
# Indexes
# ---------------------------------------------------------------------------

INDEX_EXISTS = """
SHOW INDEXES YIELD name
WHERE name = $name
RETURN count(*) > 0 AS present
""".strip()

INDEX_STATE = """
SHOW INDEXES YIELD name, state
WHERE name = $name
RETURN state
""".strip()

LIST_INDEXES = """
SHOW INDEXES YIELD name, type, entityType, labelsOrTypes, properties, state
RETURN name, type, entityType, labelsOrTypes, properties, state
ORDER BY name
""".strip()


def create_index(definition: IndexDef) -> str:
    """DDL for a composite index; unique indexes become uniqueness constraints."""
    if definition.scope_label is None:
        msg = f"Index {definition.name!r} needs a scope label on Neo4j"
        raise ValueError(msg)
    label = quote(definition.scope_label.name)
    if definition.element_kind is ElementKind.VERTEX:
        pattern = f"(x:{label})"
    else:
        pattern = f"()-[x:{label}]-()"
    keys = ", ".join(f"x.{quote(key.name)}" for key in definition.keys)
    name = quote(definition.name)
    if definition.unique:
        return f"CREATE CONSTRAINT {name} IF NOT EXISTS FOR {pattern} REQUIRE ({keys}) IS UNIQUE"
    return f"CREATE INDEX {name} IF NOT EXISTS FOR {pattern} ON ({keys})"


# ---------------------------------------------------------------------------
# Elements
# ---------------------------------------------------------------------------


def find_elements(kind: ElementKind, label: str | None, keys: list[str]) -> str:
    """Match elements by label and property equality (``$p0``, ``$p1``, ...)."""
    label_part = "" if label is None else f":{quote(label)}"
    if kind is ElementKind.VERTEX:
        match = f"MATCH (x{label_part})"
        returns = "RETURN elementId(x) AS id, labels(x)[0] AS label"
    else:
        match = f"MATCH ()-[x{label_part}]->()"
        returns = "RETURN elementId(x) AS id, type(x) AS label"
    conditions = [f"x.{quote(key)} = $p{i}" for i, key in enumerate(keys)]
    where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
    return f"{match}{where} {returns}"


def _element_match(kind: ElementKind) -> str:
    if kind is ElementKind.VERTEX:
        return "MATCH (x) WHERE elementId(x) = $id"
    return "MATCH ()-[x]->() WHERE elementId(x) = $id"


def create_vertex(label: str) -> str:
    return f"CREATE (x:{quote(label)}) RETURN elementId(x) AS id"


def create_edge(label: str) -> str:
    return (
        "MATCH (a), (b) WHERE elementId(a) = $out_id AND elementId(b) = $in_id "
        f"CREATE (a)-[x:{quote(label)}]->(b) RETURN elementId(x) AS id"
    )


def count_edges(label: str, direction: Direction) -> str:
    """Count ``label`` edges leaving (OUT) or entering (IN) vertex ``$id``."""
    arrow = f"-[r:{quote(label)}]->()" if direction is Direction.OUT else f"<-[r:{quote(label)}]-()"
    return f"MATCH (v){arrow} WHERE elementId(v) = $id RETURN count(r) AS n"


def get_property(kind: ElementKind) -> str:
    return f"{_element_match(kind)} RETURN x[$key] AS value"


def set_properties(kind: ElementKind) -> str:
    return f"{_element_match(kind)} SET x += $props"


def incident_edges(direction: Direction, label: str | None) -> str:
    rel = f"[r:{quote(label)}]" if label is not None else "[r]"
    if direction is Direction.OUT:
        pattern = f"(v)-{rel}->()"
    elif direction is Direction.IN:
        pattern = f"(v)<-{rel}-()"
    else:
        pattern = f"(v)-{rel}-()"
    return (
        f"MATCH {pattern} WHERE elementId(v) = $id "
        "RETURN DISTINCT elementId(r) AS id, type(r) AS label"
    )


EDGE_SOURCE = """
MATCH (v)-[r]->() WHERE elementId(r) = $id
RETURN elementId(v) AS id, labels(v)[0] AS label
""".strip()

EDGE_TARGET = """
MATCH ()-[r]->(v) WHERE elementId(r) = $id
RETURN elementId(v) AS id, labels(v)[0] AS label
""".strip()


def delete_element(kind: ElementKind) -> str:
    if kind is ElementKind.VERTEX:
        return f"{_element_match(kind)} DETACH DELETE x"
    return f"{_element_match(kind)} DELETE x"


PING = "RETURN 1"
