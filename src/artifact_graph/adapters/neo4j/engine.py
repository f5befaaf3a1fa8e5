"""Neo4j GraphEngine adapter.

Implements the GraphEngine protocol using the neo4j async driver.

- Schema transactions buffer their changes. On commit the catalogue nodes
  are written in one write transaction, then each index DDL statement runs
  on its own (Neo4j does not mix schema and data writes in a transaction).
  Index statements are therefore not atomic as a group: if one fails, the
  indexes created before it stay in place and ``rollback()`` only discards
  what has not run yet. Re-running the schema manager resumes safely since
  every index is checked for existence first.
- Data transactions wrap one explicit driver transaction.
- Datetimes are stored as ISO 8601 strings and sets as sorted lists, for
  Python driver compatibility.
- Property filters compare with equality; members of list-valued
  properties are not matched.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog
from neo4j import AsyncGraphDatabase
from neo4j.exceptions import ConstraintError

from artifact_graph.adapters.neo4j import queries
from artifact_graph.domain.schema import ElementKind, Multiplicity, index_name
from artifact_graph.ports.graph_engine import (
    Direction,
    Element,
    GraphEngineError,
    IndexStatus,
    MultiplicityViolationError,
    SchemaViolationError,
    UniquenessViolationError,
    scoped,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from neo4j import AsyncDriver, AsyncSession, AsyncTransaction

    from artifact_graph.domain.schema import (
        EdgeLabelDef,
        IndexDef,
        PropertyKeyDef,
        VertexLabelDef,
    )
    from artifact_graph.settings import Neo4jSettings

logger = structlog.get_logger(__name__)

_INDEX_STATES: dict[str, IndexStatus] = {
    "ONLINE": IndexStatus.ENABLED,
    "POPULATING": IndexStatus.INSTALLED,
    "FAILED": IndexStatus.FAILED,
}


def to_graph_value(value: Any) -> Any:
    """Python value -> Neo4j property value."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, set | frozenset):
        return sorted(to_graph_value(v) for v in value)
    if isinstance(value, list | tuple):
        return [to_graph_value(v) for v in value]
    return value


# ---------------------------------------------------------------------------
# Schema transaction
# ---------------------------------------------------------------------------


class Neo4jSchemaTransaction:
    """Buffers catalogue writes and index DDL until commit."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._catalog_writes: list[tuple[str, dict[str, Any]]] = []
        self._pending: dict[str, str] = {}
        self._ddl: list[str] = []
        self._closed = False

    async def _present(self, query: str, name: str) -> bool:
        result = await self._session.run(query, {"name": name})
        record = await result.single()
        return bool(record and record["present"])

    async def _in_catalog(self, catalog: str, name: str) -> bool:
        if self._pending.get(name) == catalog:
            return True
        return await self._present(queries.CATALOG_CONTAINS.format(catalog=catalog), name)

    async def _require_new(self, name: str, catalog: str) -> None:
        if name in self._pending or await self._present(queries.ANY_CATALOG_CONTAINS, name):
            msg = f"Schema name already defined: {name!r}"
            raise SchemaViolationError(msg)
        self._pending[name] = catalog

    async def contains_property_key(self, name: str) -> bool:
        return await self._in_catalog(queries.PROPERTY_KEY_CATALOG, name)

    async def contains_vertex_label(self, name: str) -> bool:
        return await self._in_catalog(queries.VERTEX_LABEL_CATALOG, name)

    async def contains_edge_label(self, name: str) -> bool:
        return await self._in_catalog(queries.EDGE_LABEL_CATALOG, name)

    async def contains_graph_index(self, name: str) -> bool:
        if name in self._pending:
            return self._pending[name] == "index"
        return await self._present(queries.INDEX_EXISTS, name)

    async def make_property_key(self, definition: PropertyKeyDef) -> None:
        await self._require_new(definition.name, queries.PROPERTY_KEY_CATALOG)
        self._catalog_writes.append(
            (
                queries.MERGE_PROPERTY_KEY,
                {
                    "name": definition.name,
                    "data_type": definition.data_type.__name__,
                    "cardinality": str(definition.cardinality),
                },
            )
        )

    async def make_vertex_label(self, definition: VertexLabelDef) -> None:
        await self._require_new(definition.name, queries.VERTEX_LABEL_CATALOG)
        self._catalog_writes.append((queries.MERGE_VERTEX_LABEL, {"name": definition.name}))

    async def make_edge_label(self, definition: EdgeLabelDef) -> None:
        await self._require_new(definition.name, queries.EDGE_LABEL_CATALOG)
        self._catalog_writes.append(
            (
                queries.MERGE_EDGE_LABEL,
                {"name": definition.name, "multiplicity": str(definition.multiplicity)},
            )
        )

    async def build_composite_index(self, definition: IndexDef) -> str:
        if definition.name in self._pending or await self._present(
            queries.INDEX_EXISTS, definition.name
        ):
            msg = f"Index already defined: {definition.name!r}"
            raise SchemaViolationError(msg)
        try:
            ddl = queries.create_index(definition)
        except ValueError as exc:
            raise SchemaViolationError(str(exc)) from exc
        self._pending[definition.name] = "index"
        self._ddl.append(ddl)
        return definition.name

    async def print_schema(self) -> str:
        result = await self._session.run(queries.GET_CATALOG)
        records = [record async for record in result]
        lines = [
            " ".join(
                str(record[field])
                for field in ("catalog", "name", "data_type", "cardinality", "multiplicity")
                if record[field] is not None
            )
            for record in records
        ]
        result = await self._session.run(queries.LIST_INDEXES)
        indexes = [record async for record in result]
        lines += [
            f"index {record['name']} {record['entityType']} {record['state']}"
            for record in indexes
        ]
        if self._pending:
            lines.append(f"pending: {', '.join(self._pending)}")
        return "\n".join(lines)

    async def commit(self) -> None:
        if self._closed:
            return
        self._closed = True
        writes = list(self._catalog_writes)

        async def _write_catalog(tx: Any) -> None:
            for query, params in writes:
                await tx.run(query, params)

        if writes:
            await self._session.execute_write(_write_catalog)
        for ddl in self._ddl:
            result = await self._session.run(ddl)
            await result.consume()
        logger.debug("neo4j_schema_committed", catalog=len(writes), indexes=len(self._ddl))

    async def rollback(self) -> None:
        self._closed = True
        self._catalog_writes.clear()
        self._ddl.clear()
        self._pending.clear()


# ---------------------------------------------------------------------------
# Data transaction
# ---------------------------------------------------------------------------


class Neo4jGraphTransaction:
    """Element-level primitives over one explicit driver transaction."""

    def __init__(self, tx: AsyncTransaction) -> None:
        self._tx = tx
        self._closed = False

    async def _records(self, query: str, params: dict[str, Any]) -> list[Any]:
        result = await self._tx.run(query, params)
        return [record async for record in result]

    async def _single(self, query: str, params: dict[str, Any]) -> Any:
        result = await self._tx.run(query, params)
        return await result.single()

    async def find_elements(
        self,
        kind: ElementKind,
        label: str | None = None,
        filters: dict[str, Any] | None = None,
    ) -> list[Element]:
        filters = filters or {}
        keys = list(filters)
        params = {f"p{i}": to_graph_value(filters[key]) for i, key in enumerate(keys)}
        records = await self._records(queries.find_elements(kind, label, keys), params)
        return [Element(record["id"], record["label"], kind) for record in records]

    async def add_vertex(self, label: str) -> Element:
        record = await self._single(queries.create_vertex(label), {})
        return Element(record["id"], label, ElementKind.VERTEX)

    async def add_edge(self, label: str, out_vertex: Element, in_vertex: Element) -> Element:
        record = await self._single(queries.GET_EDGE_MULTIPLICITY, {"name": label})
        if record is None:
            msg = f"Undeclared edge label: {label!r}"
            raise SchemaViolationError(msg)
        multiplicity = Multiplicity(record["multiplicity"])
        checks = (
            (multiplicity.unique_out, Direction.OUT, out_vertex),
            (multiplicity.unique_in, Direction.IN, in_vertex),
        )
        for unique, direction, vertex in checks:
            if not unique:
                continue
            counted = await self._single(queries.count_edges(label, direction), {"id": vertex.id})
            if counted["n"] > 0:
                msg = f"{label!r} allows one {direction} edge per vertex ({multiplicity})"
                raise MultiplicityViolationError(msg)

        record = await self._single(
            queries.create_edge(label),
            {"out_id": out_vertex.id, "in_id": in_vertex.id},
        )
        if record is None:
            msg = f"Cannot connect {out_vertex.id} -> {in_vertex.id}: vertex missing"
            raise GraphEngineError(msg)
        return Element(record["id"], label, ElementKind.EDGE)

    async def property_values(self, element: Element, key: str) -> list[Any]:
        record = await self._single(
            queries.get_property(element.kind), {"id": element.id, "key": key}
        )
        value = None if record is None else record["value"]
        if value is None:
            return []
        if isinstance(value, list):
            return value
        return [value]

    async def set_property(self, element: Element, key: str, value: Any) -> None:
        try:
            await self._records(
                queries.set_properties(element.kind),
                {"id": element.id, "props": {key: to_graph_value(value)}},
            )
        except ConstraintError as exc:
            raise UniquenessViolationError(index_name(element.label, key), (value,)) from exc

    async def remove_property(self, element: Element, key: str) -> None:
        # a null value in a map merge drops the key
        await self._records(
            queries.set_properties(element.kind), {"id": element.id, "props": {key: None}}
        )

    async def incident_edges(
        self,
        vertex: Element,
        direction: Direction,
        label: str | None = None,
    ) -> list[Element]:
        records = await self._records(queries.incident_edges(direction, label), {"id": vertex.id})
        return [Element(record["id"], record["label"], ElementKind.EDGE) for record in records]

    async def edge_vertex(self, edge: Element, direction: Direction) -> Element:
        query = queries.EDGE_SOURCE if direction is Direction.OUT else queries.EDGE_TARGET
        record = await self._single(query, {"id": edge.id})
        if record is None:
            msg = f"Edge {edge.id} does not exist"
            raise GraphEngineError(msg)
        return Element(record["id"], record["label"], ElementKind.VERTEX)

    async def remove(self, element: Element) -> None:
        await self._records(queries.delete_element(element.kind), {"id": element.id})

    async def commit(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._tx.commit()
        except ConstraintError as exc:
            raise UniquenessViolationError("<commit>", ()) from exc

    async def rollback(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._tx.rollback()


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class Neo4jGraphEngine:
    """Neo4j implementation of the GraphEngine protocol."""

    def __init__(self, settings: Neo4jSettings, driver: AsyncDriver | None = None) -> None:
        self._settings = settings
        self._driver: AsyncDriver = driver or AsyncGraphDatabase.driver(
            settings.uri,
            auth=(settings.username, settings.password),
            max_connection_pool_size=settings.max_connection_pool_size,
        )
        self._database = settings.database

    @asynccontextmanager
    async def schema_transaction(self) -> AsyncIterator[Neo4jSchemaTransaction]:
        async with self._driver.session(database=self._database) as session:
            async with scoped(Neo4jSchemaTransaction(session)) as tx:
                yield tx

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Neo4jGraphTransaction]:
        async with self._driver.session(database=self._database) as session:
            driver_tx = await session.begin_transaction()
            async with scoped(Neo4jGraphTransaction(driver_tx)) as tx:
                yield tx

    async def index_status(self, name: str) -> IndexStatus:
        async with self._driver.session(database=self._database) as session:
            result = await session.run(queries.INDEX_STATE, {"name": name})
            record = await result.single()
        if record is None:
            msg = f"Unknown graph index: {name!r}"
            raise GraphEngineError(msg)
        return _INDEX_STATES.get(record["state"], IndexStatus.INSTALLED)

    async def read(self, query: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Run a read query and return each record as a dict (nodes as property maps)."""

        async def _read(tx: Any) -> list[dict[str, Any]]:
            result = await tx.run(query, params or {})
            return [record.data() async for record in result]

        async with self._driver.session(database=self._database) as session:
            return await session.execute_read(_read)

    async def ping(self) -> bool:
        async with self._driver.session(database=self._database) as session:
            result = await session.run(queries.PING)
            await result.consume()
        return True

    async def close(self) -> None:
        await self._driver.close()
        logger.info("neo4j_engine_closed", uri=self._settings.uri)
