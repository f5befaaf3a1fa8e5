"""Tests for the entity traversal protocol over the in-memory engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from artifact_graph.domain.models import ARTIFACT_ARTIFACTCOORDINATES
from artifact_graph.domain.schema import ElementKind
from artifact_graph.traversal import (
    NULL,
    EntityTraversalSource,
    TraversalExhaustedError,
    __,
    is_null,
)

if TYPE_CHECKING:
    from artifact_graph.adapters.memory.engine import MemoryGraphEngine
    from tests.unit.conftest import RecordingLogger


async def _coordinates(engine: MemoryGraphEngine, uuid: str, path: str | None = None) -> None:
    async with engine.transaction() as tx:
        vertex = await tx.add_vertex("ArtifactCoordinates")
        await tx.set_property(vertex, "uuid", uuid)
        if path is not None:
            await tx.set_property(vertex, "path", path)


class TestNull:
    def test_null_is_distinct_from_falsy_values(self) -> None:
        assert is_null(NULL)
        for value in (None, "", 0, [], False):
            assert not is_null(value)

    def test_null_repr(self) -> None:
        assert repr(NULL) == "__null"
        assert str(NULL) == "__null"


class TestReads:
    async def test_find_by_id(self, engine: MemoryGraphEngine) -> None:
        await _coordinates(engine, "c-1", "a/b.jar")
        async with engine.transaction() as tx:
            g = EntityTraversalSource(tx)
            found = await g.V().find_by_id("ArtifactCoordinates", "c-1").to_list()
            missing = await g.V().find_by_id("ArtifactCoordinates", "c-2").to_list()
        assert len(found) == 1
        assert found[0].label == "ArtifactCoordinates"
        assert missing == []

    async def test_has_null_matches_nothing(self, engine: MemoryGraphEngine) -> None:
        await _coordinates(engine, "c-1")
        async with engine.transaction() as tx:
            g = EntityTraversalSource(tx)
            assert await g.V().has_label("ArtifactCoordinates").has("uuid", NULL).to_list() == []

    async def test_enrich_property_value_absent_is_null(self, engine: MemoryGraphEngine) -> None:
        await _coordinates(engine, "c-1", "a/b.jar")
        async with engine.transaction() as tx:
            g = EntityTraversalSource(tx)
            start = g.V().find_by_id("ArtifactCoordinates", "c-1")
            path = await start.enrich_property_value("path").next()
            version = await start.enrich_property_value("version").next()
        assert path == "a/b.jar"
        assert version is NULL

    async def test_enrich_property_values(self, engine: MemoryGraphEngine) -> None:
        async with engine.transaction() as tx:
            vertex = await tx.add_vertex("Artifact")
            await tx.set_property(vertex, "uuid", "a-1")
            await tx.set_property(vertex, "tags", {"x", "y"})
            bare = await tx.add_vertex("Artifact")
            await tx.set_property(bare, "uuid", "a-2")
        async with engine.transaction() as tx:
            g = EntityTraversalSource(tx)
            tags = await g.V().find_by_id("Artifact", "a-1").enrich_property_values("tags").next()
            none = await g.V().find_by_id("Artifact", "a-2").enrich_property_values("tags").next()
        assert sorted(tags) == ["x", "y"]
        assert none is NULL

    async def test_project_drops_traverser_when_a_by_yields_nothing(
        self, engine: MemoryGraphEngine
    ) -> None:
        await _coordinates(engine, "c-1")
        async with engine.transaction() as tx:
            g = EntityTraversalSource(tx)
            start = g.V().find_by_id("ArtifactCoordinates", "c-1")
            dropped = await start.project(path=__.values("path")).to_list()
            kept = await start.project(path=__.enrich_property_value("path")).to_list()
        assert dropped == []
        assert kept == [{"path": NULL}]

    async def test_map_to_object_without_relation_is_null(
        self, engine: MemoryGraphEngine
    ) -> None:
        async with engine.transaction() as tx:
            vertex = await tx.add_vertex("Artifact")
            await tx.set_property(vertex, "uuid", "a-1")
        async with engine.transaction() as tx:
            g = EntityTraversalSource(tx)
            mapped = await (
                g.V()
                .find_by_id("Artifact", "a-1")
                .project(
                    coordinates=__.out(ARTIFACT_ARTIFACTCOORDINATES).map_to_object(
                        __.project(uuid=__.enrich_property_value("uuid"))
                    )
                )
                .next()
            )
        assert mapped == {"coordinates": NULL}

    async def test_map_to_object_follows_relation(self, engine: MemoryGraphEngine) -> None:
        async with engine.transaction() as tx:
            artifact = await tx.add_vertex("Artifact")
            coordinates = await tx.add_vertex("ArtifactCoordinates")
            await tx.set_property(artifact, "uuid", "a-1")
            await tx.set_property(coordinates, "uuid", "c-1")
            await tx.add_edge(ARTIFACT_ARTIFACTCOORDINATES, artifact, coordinates)
        async with engine.transaction() as tx:
            g = EntityTraversalSource(tx)
            mapped = await (
                g.V()
                .find_by_id("Artifact", "a-1")
                .out(ARTIFACT_ARTIFACTCOORDINATES)
                .map_to_object(__.project(uuid=__.enrich_property_value("uuid")))
                .next()
            )
        assert mapped == {"uuid": "c-1"}

    async def test_dedup_and_in_traversal(self, engine: MemoryGraphEngine) -> None:
        async with engine.transaction() as tx:
            coordinates = await tx.add_vertex("ArtifactCoordinates")
            await tx.set_property(coordinates, "uuid", "c-1")
            for uuid in ("a-1", "a-2"):
                artifact = await tx.add_vertex("Artifact")
                await tx.set_property(artifact, "uuid", uuid)
                await tx.add_edge("ArtifactDependency", artifact, coordinates)
                await tx.add_edge("ArtifactDependency", artifact, coordinates)
        async with engine.transaction() as tx:
            g = EntityTraversalSource(tx)
            start = g.V().find_by_id("ArtifactCoordinates", "c-1").in_("ArtifactDependency")
            assert len(await start.to_list()) == 4
            uuids = await start.dedup().values("uuid").to_list()
        assert uuids == ["a-1", "a-2"]


class TestTerminals:
    async def test_next_on_empty_raises(self, engine: MemoryGraphEngine) -> None:
        async with engine.transaction() as tx:
            g = EntityTraversalSource(tx)
            with pytest.raises(TraversalExhaustedError):
                await g.V().find_by_id("Artifact", "nope").next()
            assert await g.V().find_by_id("Artifact", "nope").try_next() is None

    async def test_anonymous_traversal_cannot_be_iterated(self) -> None:
        with pytest.raises(TypeError, match="Anonymous"):
            await __.V().to_list()

    def test_chaining_does_not_mutate(self) -> None:
        base = __.V()
        base.has_label("Artifact")
        assert base._steps == __.V()._steps


class TestSaveV:
    async def test_creates_vertex_with_given_uuid(self, engine: MemoryGraphEngine) -> None:
        async with engine.transaction() as tx:
            g = EntityTraversalSource(tx)
            vertex = await g.V().save_v(
                "ArtifactCoordinates", "c-1", __.property("path", "a/b.jar")
            ).next()
            assert await tx.property_values(vertex, "uuid") == ["c-1"]
            assert await tx.property_values(vertex, "path") == ["a/b.jar"]

    async def test_second_save_updates_same_vertex(self, engine: MemoryGraphEngine) -> None:
        async with engine.transaction() as tx:
            g = EntityTraversalSource(tx)
            first = await g.V().save_v(
                "ArtifactCoordinates", "c-1", __.property("path", "a/b.jar")
            ).next()
        async with engine.transaction() as tx:
            g = EntityTraversalSource(tx)
            second = await g.V().save_v(
                "ArtifactCoordinates", "c-1", __.property("path", "a/c.jar")
            ).next()
            everything = await g.V().has_label("ArtifactCoordinates").to_list()
            assert await tx.property_values(second, "path") == ["a/c.jar"]
        assert first == second
        assert everything == [second]

    async def test_missing_uuid_creates_fresh_vertex(self, engine: MemoryGraphEngine) -> None:
        async with engine.transaction() as tx:
            g = EntityTraversalSource(tx)
            first = await g.V().save_v(
                "ArtifactCoordinates", None, __.property("path", None)
            ).next()
            second = await g.V().save_v(
                "ArtifactCoordinates", None, __.property("path", None)
            ).next()
            first_uuid = await tx.property_values(first, "uuid")
            second_uuid = await tx.property_values(second, "uuid")
        assert first != second
        assert len(first_uuid) == 1
        assert first_uuid != second_uuid

    async def test_none_property_removes_value(self, engine: MemoryGraphEngine) -> None:
        await _coordinates(engine, "c-1", "a/b.jar")
        async with engine.transaction() as tx:
            g = EntityTraversalSource(tx)
            vertex = await g.V().save_v(
                "ArtifactCoordinates", "c-1", __.property("path", None)
            ).next()
            assert await tx.property_values(vertex, "path") == []
        async with engine.transaction() as tx:
            assert await tx.property_values(vertex, "path") == []

    async def test_empty_set_removes_values(self, engine: MemoryGraphEngine) -> None:
        async with engine.transaction() as tx:
            g = EntityTraversalSource(tx)
            vertex = await g.V().save_v("Artifact", "a-1", __.property("tags", {"x"})).next()
            await g.V().save_v("Artifact", "a-1", __.property("tags", set())).next()
            assert await tx.property_values(vertex, "tags") == []

    async def test_trace_logs_created_then_fetched(
        self, engine: MemoryGraphEngine, recording_logger: RecordingLogger
    ) -> None:
        for _ in range(2):
            async with engine.transaction() as tx:
                g = EntityTraversalSource(tx, recording_logger)
                await g.V().save_v("ArtifactCoordinates", "c-1", __.property("version", "1")).next()
        actions = [
            kwargs["action"]
            for level, event, kwargs in recording_logger.calls
            if event == "element_traced"
        ]
        assert actions == ["Created", "Fetched"]
        assert all(level == "debug" for level, _, _ in recording_logger.calls)


class TestSaveE:
    async def test_creates_edge_between_saved_vertices(self, engine: MemoryGraphEngine) -> None:
        async with engine.transaction() as tx:
            g = EntityTraversalSource(tx)
            edge = await g.E().save_e(
                "ArtifactDependency",
                "d-1",
                __.V().save_v("Artifact", "a-1", __.property("storageId", "s0")),
                __.V().save_v("ArtifactCoordinates", "c-1", __.property("path", "x.jar")),
                __.property("uuid", "d-1"),
            ).next()
            assert edge.kind is ElementKind.EDGE
            source = await g.E().find_by_id("ArtifactDependency", "d-1").out_v().values("uuid").next()
            target = await g.E().find_by_id("ArtifactDependency", "d-1").in_v().values("uuid").next()
        assert (source, target) == ("a-1", "c-1")

    async def test_second_save_reuses_edge(self, engine: MemoryGraphEngine) -> None:
        async def save() -> object:
            async with engine.transaction() as tx:
                g = EntityTraversalSource(tx)
                return await g.E().save_e(
                    "ArtifactDependency",
                    "d-1",
                    __.V().save_v("Artifact", "a-1", __.property("storageId", "s0")),
                    __.V().save_v("ArtifactCoordinates", "c-1", __.property("path", "x.jar")),
                    __.property("uuid", "d-1"),
                ).next()

        assert await save() == await save()
        async with engine.transaction() as tx:
            edges = await tx.find_elements(ElementKind.EDGE, "ArtifactDependency")
        assert len(edges) == 1

    async def test_drop_removes_outgoing_edge(self, engine: MemoryGraphEngine) -> None:
        async with engine.transaction() as tx:
            artifact = await tx.add_vertex("Artifact")
            coordinates = await tx.add_vertex("ArtifactCoordinates")
            await tx.set_property(artifact, "uuid", "a-1")
            await tx.add_edge(ARTIFACT_ARTIFACTCOORDINATES, artifact, coordinates)
        async with engine.transaction() as tx:
            g = EntityTraversalSource(tx)
            await g.V().find_by_id("Artifact", "a-1").side_effect(
                __.out_e(ARTIFACT_ARTIFACTCOORDINATES).drop()
            ).to_list()
        async with engine.transaction() as tx:
            assert await tx.find_elements(ElementKind.EDGE) == []
            assert len(await tx.find_elements(ElementKind.VERTEX)) == 2
