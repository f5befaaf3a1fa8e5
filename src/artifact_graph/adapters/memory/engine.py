"""In-process GraphEngine adapter.

Implements the ``GraphEngine`` protocol entirely in memory, for unit tests
and local development without a Neo4j server:

- Strict schema: labels and property keys must be declared before use,
  values must match the key's data type and cardinality.
- Each data transaction works on a private copy of the graph; commit
  publishes only the records it touched, under a lock, after checking
  unique composite indexes against what other transactions committed.
- Edge multiplicity is enforced on ``add_edge``.
- Index builds are asynchronous: a new index reports REGISTERED for
  ``index_build_polls`` status polls before turning ENABLED.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from artifact_graph.domain.schema import (
    Cardinality,
    EdgeLabelDef,
    ElementKind,
    IndexDef,
    PropertyKeyDef,
    VertexLabelDef,
)
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

logger = structlog.get_logger(__name__)


@dataclass
class _Record:
    label: str
    properties: dict[str, Any] = field(default_factory=dict)
    out_id: int | None = None
    in_id: int | None = None


@dataclass
class _IndexRecord:
    definition: IndexDef
    status: IndexStatus = IndexStatus.INSTALLED
    polls: int = 0


@dataclass
class _Catalog:
    property_keys: dict[str, PropertyKeyDef] = field(default_factory=dict)
    vertex_labels: dict[str, VertexLabelDef] = field(default_factory=dict)
    edge_labels: dict[str, EdgeLabelDef] = field(default_factory=dict)
    indexes: dict[str, _IndexRecord] = field(default_factory=dict)

    def names(self) -> set[str]:
        return {
            *self.property_keys,
            *self.vertex_labels,
            *self.edge_labels,
            *self.indexes,
        }


def _values_of(record: _Record, key: str) -> list[Any]:
    value = record.properties.get(key)
    if value is None:
        return []
    if isinstance(value, set | list):
        return list(value)
    return [value]


def _index_values(definition: IndexDef, record: _Record) -> tuple[Any, ...] | None:
    """Key tuple of ``record`` under a unique index, ``None`` if not covered."""
    if definition.scope_label is not None and definition.scope_label.name != record.label:
        return None
    values: list[Any] = []
    for key in definition.keys:
        present = _values_of(record, key.name)
        if len(present) != 1:
            return None
        values.append(present[0])
    return tuple(values)


# ---------------------------------------------------------------------------
# Schema transaction
# ---------------------------------------------------------------------------


class MemorySchemaTransaction:
    """Buffers schema changes until commit."""

    def __init__(self, engine: MemoryGraphEngine) -> None:
        self._engine = engine
        self._pending = _Catalog()
        self._closed = False

    def _taken(self, name: str) -> bool:
        return name in self._engine._catalog.names() or name in self._pending.names()

    def _require_new(self, name: str) -> None:
        if self._taken(name):
            msg = f"Schema name already defined: {name!r}"
            raise SchemaViolationError(msg)

    async def contains_property_key(self, name: str) -> bool:
        return name in self._engine._catalog.property_keys or name in self._pending.property_keys

    async def contains_vertex_label(self, name: str) -> bool:
        return name in self._engine._catalog.vertex_labels or name in self._pending.vertex_labels

    async def contains_edge_label(self, name: str) -> bool:
        return name in self._engine._catalog.edge_labels or name in self._pending.edge_labels

    async def contains_graph_index(self, name: str) -> bool:
        return name in self._engine._catalog.indexes or name in self._pending.indexes

    async def make_property_key(self, definition: PropertyKeyDef) -> None:
        self._require_new(definition.name)
        self._pending.property_keys[definition.name] = definition

    async def make_vertex_label(self, definition: VertexLabelDef) -> None:
        self._require_new(definition.name)
        self._pending.vertex_labels[definition.name] = definition

    async def make_edge_label(self, definition: EdgeLabelDef) -> None:
        self._require_new(definition.name)
        self._pending.edge_labels[definition.name] = definition

    async def build_composite_index(self, definition: IndexDef) -> str:
        self._require_new(definition.name)
        for key in definition.keys:
            if not await self.contains_property_key(key.name):
                msg = f"Index {definition.name!r} references unknown key {key.name!r}"
                raise SchemaViolationError(msg)
        scope = definition.scope_label
        if scope is not None:
            if isinstance(scope, EdgeLabelDef):
                known = await self.contains_edge_label(scope.name)
            else:
                known = await self.contains_vertex_label(scope.name)
            if not known:
                msg = f"Index {definition.name!r} scoped to unknown label {scope.name!r}"
                raise SchemaViolationError(msg)
        self._pending.indexes[definition.name] = _IndexRecord(definition)
        return definition.name

    async def print_schema(self) -> str:
        catalog = self._engine._catalog
        keys = {**catalog.property_keys, **self._pending.property_keys}
        vertex_labels = {**catalog.vertex_labels, **self._pending.vertex_labels}
        edge_labels = {**catalog.edge_labels, **self._pending.edge_labels}
        indexes = {**catalog.indexes, **self._pending.indexes}
        lines = ["Property keys:"]
        lines += [
            f"  {k.name} {k.data_type.__name__} {k.cardinality}" for k in keys.values()
        ]
        lines.append("Vertex labels:")
        lines += [f"  {v.name}" for v in vertex_labels.values()]
        lines.append("Edge labels:")
        lines += [f"  {e.name} {e.multiplicity}" for e in edge_labels.values()]
        lines.append("Graph indexes:")
        lines += [
            f"  {r.definition.name} {r.definition.element_kind} {r.status}"
            for r in indexes.values()
        ]
        return "\n".join(lines)

    async def commit(self) -> None:
        if self._closed:
            return
        self._closed = True
        catalog = self._engine._catalog
        catalog.property_keys.update(self._pending.property_keys)
        catalog.vertex_labels.update(self._pending.vertex_labels)
        catalog.edge_labels.update(self._pending.edge_labels)
        catalog.indexes.update(self._pending.indexes)

    async def rollback(self) -> None:
        self._closed = True
        self._pending = _Catalog()


# ---------------------------------------------------------------------------
# Data transaction
# ---------------------------------------------------------------------------


class MemoryGraphTransaction:
    """Works on a private copy; commit publishes touched records only."""

    def __init__(self, engine: MemoryGraphEngine) -> None:
        self._engine = engine
        self._records: dict[ElementKind, dict[int, _Record]] = {
            ElementKind.VERTEX: copy.deepcopy(engine._vertices),
            ElementKind.EDGE: copy.deepcopy(engine._edges),
        }
        self._touched: set[tuple[ElementKind, int]] = set()
        self._removed: set[tuple[ElementKind, int]] = set()
        self._closed = False

    def _record(self, element: Element) -> _Record:
        try:
            return self._records[element.kind][element.id]
        except KeyError:
            msg = f"Element {element.kind}:{element.id} does not exist"
            raise GraphEngineError(msg) from None

    async def find_elements(
        self,
        kind: ElementKind,
        label: str | None = None,
        filters: dict[str, Any] | None = None,
    ) -> list[Element]:
        filters = filters or {}
        return [
            Element(element_id, record.label, kind)
            for element_id, record in self._records[kind].items()
            if (label is None or record.label == label)
            and all(value in _values_of(record, key) for key, value in filters.items())
        ]

    async def add_vertex(self, label: str) -> Element:
        if label not in self._engine._catalog.vertex_labels:
            msg = f"Undeclared vertex label: {label!r}"
            raise SchemaViolationError(msg)
        element_id = next(self._engine._ids)
        self._records[ElementKind.VERTEX][element_id] = _Record(label)
        self._touched.add((ElementKind.VERTEX, element_id))
        return Element(element_id, label, ElementKind.VERTEX)

    async def add_edge(self, label: str, out_vertex: Element, in_vertex: Element) -> Element:
        edge_label = self._engine._catalog.edge_labels.get(label)
        if edge_label is None:
            msg = f"Undeclared edge label: {label!r}"
            raise SchemaViolationError(msg)
        self._record(out_vertex)
        self._record(in_vertex)
        for record in self._records[ElementKind.EDGE].values():
            if record.label != label:
                continue
            if edge_label.multiplicity.unique_out and record.out_id == out_vertex.id:
                msg = f"{label!r} allows one outgoing edge per vertex ({edge_label.multiplicity})"
                raise MultiplicityViolationError(msg)
            if edge_label.multiplicity.unique_in and record.in_id == in_vertex.id:
                msg = f"{label!r} allows one incoming edge per vertex ({edge_label.multiplicity})"
                raise MultiplicityViolationError(msg)
        element_id = next(self._engine._ids)
        self._records[ElementKind.EDGE][element_id] = _Record(
            label, out_id=out_vertex.id, in_id=in_vertex.id
        )
        self._touched.add((ElementKind.EDGE, element_id))
        return Element(element_id, label, ElementKind.EDGE)

    async def property_values(self, element: Element, key: str) -> list[Any]:
        return _values_of(self._record(element), key)

    async def set_property(self, element: Element, key: str, value: Any) -> None:
        record = self._record(element)
        key_def = self._engine._catalog.property_keys.get(key)
        if key_def is None:
            msg = f"Undeclared property key: {key!r}"
            raise SchemaViolationError(msg)
        record.properties[key] = _coerce(key_def, value)
        self._check_unique(element.kind, element.id, record, self._records[element.kind])
        self._touched.add((element.kind, element.id))

    async def remove_property(self, element: Element, key: str) -> None:
        record = self._record(element)
        if record.properties.pop(key, None) is not None:
            self._touched.add((element.kind, element.id))

    async def incident_edges(
        self,
        vertex: Element,
        direction: Direction,
        label: str | None = None,
    ) -> list[Element]:
        self._record(vertex)
        result: list[Element] = []
        for element_id, record in self._records[ElementKind.EDGE].items():
            if label is not None and record.label != label:
                continue
            outgoing = direction in (Direction.OUT, Direction.BOTH) and record.out_id == vertex.id
            incoming = direction in (Direction.IN, Direction.BOTH) and record.in_id == vertex.id
            if outgoing or incoming:
                result.append(Element(element_id, record.label, ElementKind.EDGE))
        return result

    async def edge_vertex(self, edge: Element, direction: Direction) -> Element:
        record = self._record(edge)
        vertex_id = record.out_id if direction is Direction.OUT else record.in_id
        vertex = self._records[ElementKind.VERTEX][vertex_id]
        return Element(vertex_id, vertex.label, ElementKind.VERTEX)

    async def remove(self, element: Element) -> None:
        self._record(element)
        if element.kind is ElementKind.VERTEX:
            for edge in await self.incident_edges(element, Direction.BOTH):
                await self.remove(edge)
        del self._records[element.kind][element.id]
        self._touched.discard((element.kind, element.id))
        self._removed.add((element.kind, element.id))

    def _check_unique(
        self,
        kind: ElementKind,
        element_id: int,
        record: _Record,
        others: dict[int, _Record],
    ) -> None:
        for index in self._engine._catalog.indexes.values():
            definition = index.definition
            if not definition.unique or definition.element_kind is not kind:
                continue
            values = _index_values(definition, record)
            if values is None:
                continue
            for other_id, other in others.items():
                if other_id != element_id and _index_values(definition, other) == values:
                    raise UniquenessViolationError(definition.name, values)

    async def commit(self) -> None:
        if self._closed:
            return
        self._closed = True
        engine = self._engine
        async with engine._lock:
            committed = {ElementKind.VERTEX: engine._vertices, ElementKind.EDGE: engine._edges}
            for kind, element_id in self._touched:
                self._check_unique(kind, element_id, self._records[kind][element_id], committed[kind])
            for kind, element_id in self._removed:
                committed[kind].pop(element_id, None)
            for kind, element_id in self._touched:
                committed[kind][element_id] = copy.deepcopy(self._records[kind][element_id])
        logger.debug("memory_tx_committed", touched=len(self._touched), removed=len(self._removed))

    async def rollback(self) -> None:
        self._closed = True
        self._touched.clear()
        self._removed.clear()


def _coerce(key_def: PropertyKeyDef, value: Any) -> Any:
    """Validate ``value`` against the key's data type and cardinality."""
    if key_def.cardinality is Cardinality.SINGLE:
        items = [value]
    elif isinstance(value, set | frozenset | list | tuple):
        items = list(value)
    else:
        msg = f"Property {key_def.name!r} is {key_def.cardinality}; got {type(value).__name__}"
        raise SchemaViolationError(msg)
    for item in items:
        if not isinstance(item, key_def.data_type):
            msg = (
                f"Property {key_def.name!r} expects {key_def.data_type.__name__}, "
                f"got {type(item).__name__}"
            )
            raise SchemaViolationError(msg)
    if key_def.cardinality is Cardinality.SET:
        return set(items)
    if key_def.cardinality is Cardinality.LIST:
        return items
    return value


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class MemoryGraphEngine:
    """In-memory implementation of the GraphEngine protocol."""

    def __init__(self, index_build_polls: int = 1) -> None:
        self._vertices: dict[int, _Record] = {}
        self._edges: dict[int, _Record] = {}
        self._catalog = _Catalog()
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()
        self._index_build_polls = index_build_polls

    @asynccontextmanager
    async def schema_transaction(self) -> AsyncIterator[MemorySchemaTransaction]:
        async with scoped(MemorySchemaTransaction(self)) as tx:
            yield tx

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[MemoryGraphTransaction]:
        async with scoped(MemoryGraphTransaction(self)) as tx:
            yield tx

    async def index_status(self, name: str) -> IndexStatus:
        record = self._catalog.indexes.get(name)
        if record is None:
            msg = f"Unknown graph index: {name!r}"
            raise GraphEngineError(msg)
        if record.status in (IndexStatus.INSTALLED, IndexStatus.REGISTERED):
            record.polls += 1
            record.status = (
                IndexStatus.ENABLED
                if record.polls > self._index_build_polls
                else IndexStatus.REGISTERED
            )
        return record.status

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        logger.info("memory_engine_closed", vertices=len(self._vertices), edges=len(self._edges))
