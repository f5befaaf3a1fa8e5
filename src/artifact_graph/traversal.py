"""Entity traversal protocol over the graph engine port.

A ``Traversal`` is an immutable chain of steps over a stream of
traversers (elements, property values, folded lists, projected dicts).
Chaining is synchronous; execution is async and happens inside one
engine transaction when a terminal method (``to_list``, ``next``,
``try_next``) is awaited on a traversal bound to an
``EntityTraversalSource``.

Start steps (``V()`` / ``E()``) absorb directly following ``has_label`` and
``has`` filters so the engine can answer them from an index instead of a
full scan.

``EntityTraversal`` adds the entity operations every repository relies on:
``find_by_id``, ``enrich_property_value(s)``, ``map_to_object``,
``save_v``/``save_e`` and ``trace``. Anonymous sub-traversals are built from
``__`` (``__.out_e("x").in_v()``) and are seeded with the current traverser.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Final, Self
from uuid import uuid4

import structlog

from artifact_graph.domain.models import UUID_PROPERTY
from artifact_graph.domain.schema import ElementKind
from artifact_graph.ports.graph_engine import Direction

if TYPE_CHECKING:
    from collections.abc import Callable

    from artifact_graph.ports.graph_engine import GraphTransaction


# ---------------------------------------------------------------------------
# NULL sentinel
# ---------------------------------------------------------------------------


class NullType(enum.Enum):
    """Marker for "property or relation absent".

    Distinct from ``None`` and from every falsy stored value, so mapping code
    can tell a missing property from one holding ``""``, ``0`` or ``[]``.
    """

    NULL = "__null"

    def __repr__(self) -> str:
        return "__null"

    def __str__(self) -> str:
        return "__null"


NULL: Final = NullType.NULL


def is_null(value: object) -> bool:
    return value is NULL


# ---------------------------------------------------------------------------
# Execution context and steps
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Context:
    tx: GraphTransaction
    logger: Any


@dataclass(frozen=True)
class _StartStep:
    """``V()`` / ``E()``: emits matching elements once per incoming traverser."""

    kind: ElementKind
    label: str | None = None
    filters: tuple[tuple[str, Any], ...] = ()

    async def __call__(self, ctx: _Context, items: list[Any]) -> list[Any]:
        if any(value is NULL for _, value in self.filters):
            return []
        found = await ctx.tx.find_elements(self.kind, self.label, dict(self.filters))
        return [element for _ in items for element in found]


class TraversalExhaustedError(LookupError):
    """Raised by ``Traversal.next`` when the traversal yields nothing."""


class Traversal:
    """Immutable, composable step chain."""

    def __init__(
        self,
        steps: tuple[Any, ...] = (),
        source: EntityTraversalSource | None = None,
    ) -> None:
        self._steps = steps
        self._source = source

    def _then(self, step: Any) -> Self:
        return type(self)((*self._steps, step), self._source)

    def _replace_last(self, step: Any) -> Self:
        return type(self)((*self._steps[:-1], step), self._source)

    def _last_start(self) -> _StartStep | None:
        if self._steps and isinstance(self._steps[-1], _StartStep):
            return self._steps[-1]
        return None

    async def _run(self, ctx: _Context, items: list[Any]) -> list[Any]:
        for step in self._steps:
            items = await step(ctx, items)
        return items

    # ----- Terminal steps -----

    async def to_list(self) -> list[Any]:
        if self._source is None:
            msg = "Anonymous traversals cannot be iterated directly"
            raise TypeError(msg)
        return await self._run(self._source.context, [None])

    async def try_next(self) -> Any | None:
        results = await self.to_list()
        return results[0] if results else None

    async def next(self) -> Any:
        results = await self.to_list()
        if not results:
            msg = "Traversal yielded no results"
            raise TraversalExhaustedError(msg)
        return results[0]

    # ----- Start steps -----

    def V(self) -> Self:  # noqa: N802 — traversal step naming
        return self._then(_StartStep(ElementKind.VERTEX))

    def E(self) -> Self:  # noqa: N802
        return self._then(_StartStep(ElementKind.EDGE))

    # ----- Filter steps -----

    def has_label(self, label: str) -> Self:
        start = self._last_start()
        if start is not None and start.label is None:
            return self._replace_last(replace(start, label=label))

        async def step(ctx: _Context, items: list[Any]) -> list[Any]:
            return [item for item in items if item.label == label]

        return self._then(step)

    def has(self, key: str, value: Any) -> Self:
        start = self._last_start()
        if start is not None:
            return self._replace_last(replace(start, filters=(*start.filters, (key, value))))

        async def step(ctx: _Context, items: list[Any]) -> list[Any]:
            if value is NULL:
                return []
            return [item for item in items if value in await ctx.tx.property_values(item, key)]

        return self._then(step)

    def dedup(self) -> Self:
        async def step(ctx: _Context, items: list[Any]) -> list[Any]:
            return list(dict.fromkeys(items))

        return self._then(step)

    def select(self, key: str) -> Self:
        """Pick ``key`` from projected/value-map dicts; dicts without it are dropped."""

        async def step(ctx: _Context, items: list[Any]) -> list[Any]:
            return [item[key] for item in items if key in item]

        return self._then(step)

    # ----- Reshaping steps -----

    def fold(self) -> Self:
        async def step(ctx: _Context, items: list[Any]) -> list[Any]:
            return [list(items)]

        return self._then(step)

    def unfold(self) -> Self:
        async def step(ctx: _Context, items: list[Any]) -> list[Any]:
            result: list[Any] = []
            for item in items:
                if isinstance(item, list | tuple | set | frozenset):
                    result.extend(item)
                else:
                    result.append(item)
            return result

        return self._then(step)

    def constant(self, value: Any) -> Self:
        async def step(ctx: _Context, items: list[Any]) -> list[Any]:
            return [value for _ in items]

        return self._then(step)

    def map(self, mapper: Traversal | Callable[[Any], Any]) -> Self:
        """Replace each traverser by the first result of ``mapper``.

        A sub-traversal with no result filters the traverser out.
        """

        async def step(ctx: _Context, items: list[Any]) -> list[Any]:
            result: list[Any] = []
            for item in items:
                if isinstance(mapper, Traversal):
                    mapped = await mapper._run(ctx, [item])
                    if mapped:
                        result.append(mapped[0])
                else:
                    result.append(mapper(item))
            return result

        return self._then(step)

    def side_effect(self, effect: Traversal | Callable[[Any], None]) -> Self:
        async def step(ctx: _Context, items: list[Any]) -> list[Any]:
            for item in items:
                if isinstance(effect, Traversal):
                    await effect._run(ctx, [item])
                else:
                    effect(item)
            return items

        return self._then(step)

    def choose(
        self,
        predicate: Callable[[Any], bool],
        true_branch: Traversal,
        false_branch: Traversal,
    ) -> Self:
        async def step(ctx: _Context, items: list[Any]) -> list[Any]:
            result: list[Any] = []
            for item in items:
                branch = true_branch if predicate(item) else false_branch
                result.extend(await branch._run(ctx, [item]))
            return result

        return self._then(step)

    def coalesce(self, *branches: Traversal) -> Self:
        """Emit the results of the first branch that yields anything."""

        async def step(ctx: _Context, items: list[Any]) -> list[Any]:
            result: list[Any] = []
            for item in items:
                for branch in branches:
                    produced = await branch._run(ctx, [item])
                    if produced:
                        result.extend(produced)
                        break
            return result

        return self._then(step)

    def project(self, **by: Traversal) -> Self:
        """Build a dict per traverser from the first result of each ``by``.

        A traverser is dropped when any ``by`` traversal yields nothing.
        """

        async def step(ctx: _Context, items: list[Any]) -> list[Any]:
            result: list[Any] = []
            for item in items:
                projected: dict[str, Any] = {}
                for key, traversal in by.items():
                    produced = await traversal._run(ctx, [item])
                    if not produced:
                        break
                    projected[key] = produced[0]
                else:
                    result.append(projected)
            return result

        return self._then(step)

    # ----- Element access steps -----

    def id(self) -> Self:
        async def step(ctx: _Context, items: list[Any]) -> list[Any]:
            return [item.id for item in items]

        return self._then(step)

    def values(self, key: str) -> Self:
        async def step(ctx: _Context, items: list[Any]) -> list[Any]:
            result: list[Any] = []
            for item in items:
                result.extend(await ctx.tx.property_values(item, key))
            return result

        return self._then(step)

    def value_map(self, *keys: str) -> Self:
        """Map of key -> value list, holding only keys present on the element."""

        async def step(ctx: _Context, items: list[Any]) -> list[Any]:
            result: list[Any] = []
            for item in items:
                value_map: dict[str, list[Any]] = {}
                for key in keys:
                    values = await ctx.tx.property_values(item, key)
                    if values:
                        value_map[key] = values
                result.append(value_map)
            return result

        return self._then(step)

    def property(self, key: str, value: Any) -> Self:
        """Set ``key`` on each element; ``None`` or an empty collection removes it."""
        clears = value is None or (isinstance(value, set | frozenset | list | tuple) and not value)

        async def step(ctx: _Context, items: list[Any]) -> list[Any]:
            for item in items:
                if clears:
                    await ctx.tx.remove_property(item, key)
                else:
                    await ctx.tx.set_property(item, key, value)
            return items

        return self._then(step)

    # ----- Adjacency steps -----

    def out_e(self, label: str | None = None) -> Self:
        return self._then(_incident(Direction.OUT, label))

    def in_e(self, label: str | None = None) -> Self:
        return self._then(_incident(Direction.IN, label))

    def out_v(self) -> Self:
        return self._then(_endpoint(Direction.OUT))

    def in_v(self) -> Self:
        return self._then(_endpoint(Direction.IN))

    def out(self, label: str | None = None) -> Self:
        return self.out_e(label).in_v()

    def in_(self, label: str | None = None) -> Self:
        return self.in_e(label).out_v()

    # ----- Mutation steps -----

    def add_v(self, label: str) -> Self:
        async def step(ctx: _Context, items: list[Any]) -> list[Any]:
            return [await ctx.tx.add_vertex(label) for _ in items]

        return self._then(step)

    def add_e(
        self,
        label: str,
        *,
        to: Traversal | None = None,
        from_: Traversal | None = None,
    ) -> Self:
        """Add an edge per traverser; a missing endpoint is the traverser itself."""

        async def step(ctx: _Context, items: list[Any]) -> list[Any]:
            result: list[Any] = []
            for item in items:
                out_vertex = await _first(ctx, from_, item)
                in_vertex = await _first(ctx, to, item)
                if out_vertex is None or in_vertex is None:
                    continue
                result.append(await ctx.tx.add_edge(label, out_vertex, in_vertex))
            return result

        return self._then(step)

    def drop(self) -> Self:
        async def step(ctx: _Context, items: list[Any]) -> list[Any]:
            for item in items:
                await ctx.tx.remove(item)
            return []

        return self._then(step)


def _incident(direction: Direction, label: str | None) -> Any:
    async def step(ctx: _Context, items: list[Any]) -> list[Any]:
        result: list[Any] = []
        for item in items:
            result.extend(await ctx.tx.incident_edges(item, direction, label))
        return result

    return step


def _endpoint(direction: Direction) -> Any:
    async def step(ctx: _Context, items: list[Any]) -> list[Any]:
        return [await ctx.tx.edge_vertex(item, direction) for item in items]

    return step


async def _first(ctx: _Context, traversal: Traversal | None, item: Any) -> Any | None:
    if traversal is None:
        return item
    produced = await traversal._run(ctx, [item])
    return produced[0] if produced else None


# ---------------------------------------------------------------------------
# Entity operations
# ---------------------------------------------------------------------------


class EntityTraversal(Traversal):
    """Traversal with the identity-based entity operations."""

    def find_by_id(self, label: str, uuid: Any) -> Self:
        """Elements with ``label`` and ``uuid``; zero or one by convention."""
        return self.has_label(label).has(UUID_PROPERTY, uuid)

    def enrich_property_value(self, name: str) -> Self:
        """Single property value, or ``NULL`` when the property is absent."""
        return self.coalesce(__.values(name), __.constant(NULL))

    def enrich_property_values(self, name: str) -> Self:
        """All values of a multi-cardinality property, or ``NULL``."""
        return self.coalesce(__.value_map(name).select(name), __.constant(NULL))

    def map_to_object(self, enrich_object: Traversal) -> Self:
        """Map an optional relation: ``NULL`` when nothing matched."""
        return self.fold().choose(
            _is_empty,
            __.constant(NULL),
            __.unfold().map(enrich_object),
        )

    def save_v(self, label: str, uuid: str | None, unfold: Traversal) -> Self:
        """Upsert a vertex by ``(label, uuid)`` and apply ``unfold`` to it.

        A missing uuid can never match, so a new vertex with a fresh uuid is
        created. The result is the created or fetched vertex after ``unfold``.
        """
        lookup = NULL if uuid is None else uuid
        new_uuid = uuid if uuid is not None else str(uuid4())
        return (
            self.find_by_id(label, lookup)
            .fold()
            .choose(
                _is_empty,
                __.add_v(label).property(UUID_PROPERTY, new_uuid).trace("Created", new_uuid),
                __.unfold().trace("Fetched", uuid),
            )
            .map(unfold)
        )

    def save_e(
        self,
        label: str,
        uuid: str | None,
        out_vertex: Traversal,
        in_vertex: Traversal,
        unfold: Traversal,
    ) -> Self:
        """Upsert an edge entity by ``(label, uuid)`` between two vertices."""
        lookup = NULL if uuid is None else uuid
        new_uuid = uuid if uuid is not None else str(uuid4())
        return (
            self.find_by_id(label, lookup)
            .fold()
            .choose(
                _is_empty,
                __.add_e(label, from_=out_vertex, to=in_vertex)
                .property(UUID_PROPERTY, new_uuid)
                .trace("Created", new_uuid),
                __.unfold().trace("Fetched", uuid),
            )
            .map(unfold)
        )

    def trace(self, action: str, uuid: str | None = None) -> Self:
        """Log ``action`` for each element; diagnostics only."""

        async def step(ctx: _Context, items: list[Any]) -> list[Any]:
            for item in items:
                element_uuid = uuid
                if element_uuid is None:
                    values = await ctx.tx.property_values(item, UUID_PROPERTY)
                    element_uuid = values[0] if values else None
                ctx.logger.debug(
                    "element_traced",
                    action=action,
                    label=item.label,
                    element_id=item.id,
                    uuid=element_uuid,
                )
            return items

        return self._then(step)


def _is_empty(folded: list[Any]) -> bool:
    return not folded


class _AnonymousTraversal:
    """Factory for anonymous sub-traversals: ``__.out_e("x")``."""

    def __getattr__(self, name: str) -> Any:
        return getattr(EntityTraversal(), name)


__: Final = _AnonymousTraversal()


class EntityTraversalSource:
    """Spawns traversals bound to one open engine transaction."""

    def __init__(self, tx: GraphTransaction, logger: Any | None = None) -> None:
        self.context = _Context(tx, logger or structlog.get_logger(__name__))

    def V(self) -> EntityTraversal:  # noqa: N802
        return EntityTraversal(source=self).V()

    def E(self) -> EntityTraversal:  # noqa: N802
        return EntityTraversal(source=self).E()
