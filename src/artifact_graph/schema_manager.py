"""Idempotent schema and index lifecycle.

``SchemaManager.apply_schema`` runs three strictly sequential phases:

1. declare property keys, vertex labels and edge labels (one schema
   transaction, existing names skipped)
2. build the declared composite indexes (second schema transaction,
   existing names skipped)
3. wait until every index created in phase 2 reports ENABLED

Each schema transaction is rolled back before an error is raised, so a
failed run never leaves a partial schema behind. A second run against the
same graph creates nothing and returns an empty set.
"""

from __future__ import annotations

import asyncio
import enum
import time
from typing import TYPE_CHECKING, Any

import structlog

from artifact_graph.errors import (
    IndexDefinitionError,
    IndexNotReadyError,
    SchemaDefinitionError,
)
from artifact_graph.ports.graph_engine import IndexStatus

if TYPE_CHECKING:
    from artifact_graph.domain.schema import GraphSchema
    from artifact_graph.ports.graph_engine import GraphEngine
    from artifact_graph.settings import SchemaSettings


class SchemaState(enum.StrEnum):
    UNDEFINED = "UNDEFINED"
    DECLARED = "DECLARED"
    INDEXES_BUILDING = "INDEXES_BUILDING"
    READY = "READY"
    FAILED = "FAILED"


class SchemaManager:
    """Applies a ``GraphSchema`` to an engine; one manager per run."""

    def __init__(
        self,
        schema: GraphSchema,
        settings: SchemaSettings,
        logger: Any | None = None,
    ) -> None:
        self._schema = schema
        self._settings = settings
        self._log = logger or structlog.get_logger(__name__)
        self.state = SchemaState.UNDEFINED

    async def apply_schema(self, engine: GraphEngine) -> set[str]:
        """Declare the schema, build missing indexes and wait for them.

        Returns the names of the indexes this run created.
        """
        try:
            await self._declare(engine)
            self.state = SchemaState.DECLARED

            created = await self._build_indexes(engine)
            self.state = SchemaState.INDEXES_BUILDING

            for name in created:
                await self._await_index(engine, name)
        except BaseException:
            self.state = SchemaState.FAILED
            raise

        self.state = SchemaState.READY
        self._log.info("schema_ready", created_indexes=sorted(created))
        return created

    # ------------------------------------------------------------------
    # Phase 1: property keys and labels
    # ------------------------------------------------------------------

    async def _declare(self, engine: GraphEngine) -> None:
        created: list[str] = []
        try:
            async with engine.schema_transaction() as tx:
                for key in self._schema.property_keys:
                    if not await tx.contains_property_key(key.name):
                        await tx.make_property_key(key)
                        created.append(key.name)
                for vertex_label in self._schema.vertex_labels:
                    if not await tx.contains_vertex_label(vertex_label.name):
                        await tx.make_vertex_label(vertex_label)
                        created.append(vertex_label.name)
                for edge_label in self._schema.edge_labels:
                    if not await tx.contains_edge_label(edge_label.name):
                        await tx.make_edge_label(edge_label)
                        created.append(edge_label.name)
                self._log.debug("schema_summary", schema=await tx.print_schema())
        except Exception as exc:
            self._log.error("schema_declaration_failed", error=str(exc))
            msg = f"Failed to declare graph schema: {exc}"
            raise SchemaDefinitionError(msg) from exc
        self._log.info("schema_declared", created=created)

    # ------------------------------------------------------------------
    # Phase 2: composite indexes
    # ------------------------------------------------------------------

    async def _build_indexes(self, engine: GraphEngine) -> set[str]:
        created: set[str] = set()
        current: str | None = None
        try:
            async with engine.schema_transaction() as tx:
                for index in self._schema.indexes:
                    current = index.name
                    if await tx.contains_graph_index(index.name):
                        continue
                    created.add(await tx.build_composite_index(index))
                current = None
        except Exception as exc:
            self._log.error("index_definition_failed", index=current, error=str(exc))
            msg = f"Failed to define graph indexes: {exc}"
            raise IndexDefinitionError(msg, index_name=current) from exc
        self._log.info("indexes_defined", created=sorted(created))
        return created

    # ------------------------------------------------------------------
    # Phase 3: bounded readiness wait
    # ------------------------------------------------------------------

    async def _await_index(self, engine: GraphEngine, name: str) -> None:
        timeout_s = self._settings.index_await_timeout_s
        started = time.monotonic()
        try:
            async with asyncio.timeout(timeout_s):
                await self._poll_until_enabled(engine, name)
        except TimeoutError:
            waited_s = time.monotonic() - started
            self._log.error("index_not_ready", index=name, waited_s=round(waited_s, 3))
            raise IndexNotReadyError(name, waited_s) from None
        self._log.info(
            "index_enabled",
            index=name,
            waited_ms=round((time.monotonic() - started) * 1000, 2),
        )

    async def _poll_until_enabled(self, engine: GraphEngine, name: str) -> None:
        interval = self._settings.index_poll_interval_s
        while True:
            status = await engine.index_status(name)
            if status is IndexStatus.ENABLED:
                return
            if status is IndexStatus.FAILED:
                msg = f"Index {name!r} failed to build"
                raise IndexDefinitionError(msg, index_name=name)
            self._log.debug("index_pending", index=name, status=str(status))
            await asyncio.sleep(interval)
            interval = min(interval * 2, self._settings.index_poll_max_interval_s)
