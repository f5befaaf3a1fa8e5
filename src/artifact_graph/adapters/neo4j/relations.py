"""Load a vertex together with its relations from Neo4j.

Object mappers express "entity by uuid plus its relations" as one query
with pattern comprehensions in RETURN. ``fetch_with_relations`` builds that
query, rewrites it into chained ``MATCH ... WITH`` clauses and runs the
chained form.

This is a public entry point for object-mapper style callers that want a
vertex and its neighbours in one round trip; the repositories read through
the traversal protocol instead and do not call it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from artifact_graph.adapters.neo4j.queries import quote
from artifact_graph.domain.models import UUID_PROPERTY
from artifact_graph.domain.normalizer import (
    ID_PLACEHOLDER,
    normalize_match_by_id_with_relation_result,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from artifact_graph.adapters.neo4j.engine import Neo4jGraphEngine

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RelationSpec:
    """An outgoing relation: edge label and the label of the target vertex."""

    edge_label: str
    target_label: str


def build_match_by_id_with_relations(label: str, relations: Sequence[RelationSpec]) -> str:
    """Match-by-id query returning ``n`` plus one comprehension per relation.

    Relation ``i`` (1-based) binds the edge as ``r_r<i>`` and the target as
    ``a<i>``.
    """
    query = (
        f"MATCH (n:{quote(label)}) "
        f"WHERE n.{quote(UUID_PROPERTY)} = {ID_PLACEHOLDER} "
        "WITH n "
        "RETURN n"
    )
    if not relations:
        return query
    elements = [
        f"[ (n)-[r_r{i}:{quote(rel.edge_label)}]->(a{i}:{quote(rel.target_label)}) "
        f"| [ r_r{i}, a{i} ] ]"
        for i, rel in enumerate(relations, start=1)
    ]
    return f"{query}, [ {', '.join(elements)} ]"


async def fetch_with_relations(
    engine: Neo4jGraphEngine,
    label: str,
    uuid: str,
    relations: Sequence[RelationSpec],
) -> list[dict[str, Any]]:
    """Rows of ``{"n": ..., "r_r1": ..., "a1": ...}`` property maps.

    Every relation must match for a row to be produced; an empty list means
    the vertex or one of its relations is missing.
    """
    query = build_match_by_id_with_relations(label, relations)
    if relations:
        chained = normalize_match_by_id_with_relation_result(query, uuid)
        logger.debug("relations_query_normalized", label=label, query=chained)
        rows = await engine.read(chained)
    else:
        rows = await engine.read(query.replace(ID_PLACEHOLDER, "$id"), {"id": uuid})
    logger.debug("relations_fetched", label=label, uuid=uuid, rows=len(rows))
    return rows
