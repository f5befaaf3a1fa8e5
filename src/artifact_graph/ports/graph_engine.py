"""Graph engine port interface.

Uses typing.Protocol for structural subtyping (not ABCs).
The Neo4j adapter and the in-memory adapter implement this protocol.

The port is deliberately small: schema mutation inside a schema
transaction, index status polling, and element-level primitives inside a
data transaction. Everything richer (upserts, projections, optional
relationships) is composed on top of it by ``artifact_graph.traversal``.
"""

from __future__ import annotations

import enum
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

from artifact_graph.domain.schema import ElementKind

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from contextlib import AbstractAsyncContextManager

    from artifact_graph.domain.schema import (
        EdgeLabelDef,
        IndexDef,
        PropertyKeyDef,
        VertexLabelDef,
    )

# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


class IndexStatus(enum.StrEnum):
    """Lifecycle of a composite index; only ENABLED indexes serve lookups."""

    INSTALLED = "INSTALLED"
    REGISTERED = "REGISTERED"
    ENABLED = "ENABLED"
    FAILED = "FAILED"


class Direction(enum.StrEnum):
    OUT = "OUT"
    IN = "IN"
    BOTH = "BOTH"


@dataclass(frozen=True)
class Element:
    """Handle to a vertex or edge; properties are read through the transaction."""

    id: Any
    label: str
    kind: ElementKind = ElementKind.VERTEX

    @property
    def is_vertex(self) -> bool:
        return self.kind is ElementKind.VERTEX


# ---------------------------------------------------------------------------
# Engine errors (propagated unmodified by the core)
# ---------------------------------------------------------------------------


class GraphEngineError(Exception):
    """Base class for errors raised by a graph engine adapter."""


class SchemaViolationError(GraphEngineError):
    """An operation referenced an undeclared label/key or a wrong data type."""


class UniquenessViolationError(GraphEngineError):
    """A write collided with a unique composite index."""

    def __init__(self, index_name: str, values: tuple[Any, ...]) -> None:
        self.index_name = index_name
        self.values = values
        super().__init__(f"Unique index {index_name!r} already holds {values!r}")


class MultiplicityViolationError(GraphEngineError):
    """An edge would break its label's multiplicity constraint."""


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


class SchemaTransaction(Protocol):
    """A schema-mutation transaction; changes are visible after commit."""

    async def contains_property_key(self, name: str) -> bool: ...

    async def contains_vertex_label(self, name: str) -> bool: ...

    async def contains_edge_label(self, name: str) -> bool: ...

    async def contains_graph_index(self, name: str) -> bool: ...

    async def make_property_key(self, definition: PropertyKeyDef) -> None: ...

    async def make_vertex_label(self, definition: VertexLabelDef) -> None: ...

    async def make_edge_label(self, definition: EdgeLabelDef) -> None: ...

    async def build_composite_index(self, definition: IndexDef) -> str:
        """Register a composite index and return its name.

        The build itself is asynchronous; poll ``GraphEngine.index_status``.
        """
        ...

    async def print_schema(self) -> str:
        """Human-readable summary of the schema as this transaction sees it."""
        ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


class GraphTransaction(Protocol):
    """A data transaction exposing element-level graph primitives."""

    async def find_elements(
        self,
        kind: ElementKind,
        label: str | None = None,
        filters: dict[str, Any] | None = None,
    ) -> list[Element]:
        """Return elements of ``kind`` with ``label`` and equal property values."""
        ...

    async def add_vertex(self, label: str) -> Element: ...

    async def add_edge(self, label: str, out_vertex: Element, in_vertex: Element) -> Element: ...

    async def property_values(self, element: Element, key: str) -> list[Any]:
        """All values of ``key`` on ``element``; empty when the property is absent."""
        ...

    async def set_property(self, element: Element, key: str, value: Any) -> None:
        """Set ``key``; a set/list value replaces a multi-cardinality property."""
        ...

    async def remove_property(self, element: Element, key: str) -> None:
        """Drop ``key`` from ``element``; a no-op when it is absent."""
        ...

    async def incident_edges(
        self,
        vertex: Element,
        direction: Direction,
        label: str | None = None,
    ) -> list[Element]: ...

    async def edge_vertex(self, edge: Element, direction: Direction) -> Element:
        """OUT gives the source vertex of ``edge``, IN the target."""
        ...

    async def remove(self, element: Element) -> None:
        """Remove an element (a vertex loses its incident edges too)."""
        ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


class _Closable(Protocol):
    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


_T = TypeVar("_T", bound=_Closable)


@asynccontextmanager
async def scoped(tx: _T) -> AsyncIterator[_T]:
    """Commit ``tx`` on clean exit, roll it back when the block raises.

    Adapters treat commit/rollback of an already closed transaction as a
    no-op, so the block may close the transaction itself.
    """
    try:
        yield tx
    except BaseException:
        await tx.rollback()
        raise
    else:
        await tx.commit()


class GraphEngine(Protocol):
    """Protocol for a transactional graph store."""

    def schema_transaction(self) -> AbstractAsyncContextManager[SchemaTransaction]:
        """Open a schema transaction.

        The context manager rolls back when the block raises and commits
        when it exits cleanly, unless the block already did either.
        """
        ...

    def transaction(self) -> AbstractAsyncContextManager[GraphTransaction]:
        """Open a data transaction with the same exit semantics."""
        ...

    async def index_status(self, name: str) -> IndexStatus: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None:
        """Release connections."""
        ...
