"""Generic entity repositories over the entity traversal protocol.

A repository is bound to an ``EntityAdapter`` that knows how to read an
entity out of the graph (``fold``) and write it back (``unfold``). Every
public operation runs in its own engine transaction.

``save`` closes the concurrent-upsert gap with the engine's unique ``uuid``
indexes: when a commit collides with a vertex another transaction created
for the same uuid, the save is re-run once in a fresh transaction, where
the lookup now finds the winner instead of creating a duplicate.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, Protocol, TypeVar

import structlog

from artifact_graph.domain.models import UUID_PROPERTY, DomainEntity
from artifact_graph.ports.graph_engine import UniquenessViolationError
from artifact_graph.traversal import EntityTraversalSource, __, is_null

if TYPE_CHECKING:
    from collections.abc import Callable

    from artifact_graph.domain.schema import GraphSchema
    from artifact_graph.ports.graph_engine import Element, GraphEngine, GraphTransaction
    from artifact_graph.traversal import EntityTraversal, Traversal

E = TypeVar("E", bound=DomainEntity)


class EntityAdapter(Protocol[E]):
    """Maps one entity type to and from its graph representation."""

    label: str

    def fold(self) -> Traversal:
        """Traversal from the entity's element to a projection dict."""
        ...

    def unfold(self, entity: E) -> Traversal:
        """Traversal writing ``entity``'s properties and relations onto its element."""
        ...

    def from_projection(self, projection: dict[str, Any]) -> E: ...


def present(value: Any) -> Any:
    """``NULL`` -> ``None``; anything else unchanged."""
    return None if is_null(value) else value


class _Repository(Generic[E]):
    def __init__(
        self,
        engine: GraphEngine,
        schema: GraphSchema,
        adapter: EntityAdapter[E],
        logger: Any | None = None,
    ) -> None:
        self._engine = engine
        self._schema = schema
        self._adapter = adapter
        self._log = logger or structlog.get_logger(__name__)

    @property
    def label(self) -> str:
        return self._adapter.label

    def _source(self, tx: GraphTransaction) -> EntityTraversalSource:
        return EntityTraversalSource(tx, self._log)

    def _check_label(self) -> None:
        raise NotImplementedError

    def _upsert(self, g: EntityTraversalSource, entity: E) -> EntityTraversal:
        raise NotImplementedError

    def _start(self, g: EntityTraversalSource) -> EntityTraversal:
        raise NotImplementedError

    async def save(self, entity: E) -> E:
        """Upsert ``entity`` by uuid and return it as re-read from the graph."""
        self._check_label()
        try:
            uuid = await self._save_once(entity)
        except UniquenessViolationError as exc:
            self._log.warning(
                "upsert_conflict_retry",
                label=self.label,
                index=exc.index_name,
                values=list(exc.values),
            )
            uuid = await self._save_once(entity)

        saved = await self.find_by_id(uuid)
        if saved is None:
            msg = f"{self.label} {uuid!r} not found after save"
            raise LookupError(msg)
        return saved

    async def _save_once(self, entity: E) -> str:
        async with self._engine.transaction() as tx:
            element: Element = await self._upsert(self._source(tx), entity).next()
            values = await tx.property_values(element, UUID_PROPERTY)
        return values[0]

    async def find_by_id(self, uuid: str) -> E | None:
        """Materialize the entity with ``uuid``; ``None`` when there is none."""
        async with self._engine.transaction() as tx:
            projection = await (
                self._start(self._source(tx))
                .find_by_id(self.label, uuid)
                .map(self._adapter.fold())
                .try_next()
            )
        if projection is None:
            return None
        return self._adapter.from_projection(projection)

    async def _find(
        self, lookup: Callable[[EntityTraversalSource], EntityTraversal]
    ) -> list[E]:
        """Materialize every distinct element reached by ``lookup``."""
        async with self._engine.transaction() as tx:
            projections = await (
                lookup(self._source(tx)).dedup().map(self._adapter.fold()).to_list()
            )
        return [self._adapter.from_projection(p) for p in projections]


class VertexRepository(_Repository[E]):
    """Repository for entities stored as vertices."""

    def _check_label(self) -> None:
        self._schema.vertex_label(self.label)

    def _start(self, g: EntityTraversalSource) -> EntityTraversal:
        return g.V()

    def _upsert(self, g: EntityTraversalSource, entity: E) -> EntityTraversal:
        return g.V().save_v(self.label, entity.uuid, self._adapter.unfold(entity))


class EdgeRepository(_Repository[E]):
    """Repository for entities stored as edges between two vertices."""

    def _check_label(self) -> None:
        self._schema.edge_label(self.label)

    def _start(self, g: EntityTraversalSource) -> EntityTraversal:
        return g.E()

    def _endpoints(self, entity: E) -> tuple[Traversal, Traversal]:
        """Traversals resolving (saving) the out and in vertex of ``entity``."""
        raise NotImplementedError

    def _upsert(self, g: EntityTraversalSource, entity: E) -> EntityTraversal:
        out_vertex, in_vertex = self._endpoints(entity)
        return g.E().save_e(
            self.label,
            entity.uuid,
            out_vertex,
            in_vertex,
            self._adapter.unfold(entity),
        )


def save_related(adapter: EntityAdapter[Any], entity: DomainEntity) -> Traversal:
    """Anonymous traversal upserting a related vertex entity."""
    return __.V().save_v(adapter.label, entity.uuid, adapter.unfold(entity))
