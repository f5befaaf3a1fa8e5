"""Unit tests for the Neo4j adapter using driver stubs (no server needed)."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest
from neo4j.exceptions import ConstraintError

from artifact_graph.adapters.neo4j import queries
from artifact_graph.adapters.neo4j.engine import Neo4jGraphEngine, to_graph_value
from artifact_graph.domain.schema import (
    ARTIFACT_SCHEMA,
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
)
from artifact_graph.settings import Neo4jSettings
from tests.unit.conftest import StubTransaction

if TYPE_CHECKING:
    from tests.unit.conftest import StubDriver


@pytest.fixture()
def neo4j_engine(stub_driver: StubDriver) -> Neo4jGraphEngine:
    return Neo4jGraphEngine(Neo4jSettings(), driver=stub_driver)


def _index(name: str) -> IndexDef:
    return next(index for index in ARTIFACT_SCHEMA.indexes if index.name == name)


# ---------------------------------------------------------------------------
# Query templates
# ---------------------------------------------------------------------------


class TestQueries:
    def test_quote_doubles_backticks(self) -> None:
        assert queries.quote("Artifact#ArtifactCoordinates") == "`Artifact#ArtifactCoordinates`"
        assert queries.quote("a`b") == "`a``b`"

    def test_unique_vertex_index_is_a_constraint(self) -> None:
        assert queries.create_index(_index("Artifact.uuid")) == (
            "CREATE CONSTRAINT `Artifact.uuid` IF NOT EXISTS "
            "FOR (x:`Artifact`) REQUIRE (x.`uuid`) IS UNIQUE"
        )

    def test_unique_edge_index_is_a_relationship_constraint(self) -> None:
        assert queries.create_index(_index("ArtifactDependency.uuid")) == (
            "CREATE CONSTRAINT `ArtifactDependency.uuid` IF NOT EXISTS "
            "FOR ()-[x:`ArtifactDependency`]-() REQUIRE (x.`uuid`) IS UNIQUE"
        )

    def test_plain_index(self) -> None:
        assert queries.create_index(_index("ArtifactCoordinates.path")) == (
            "CREATE INDEX `ArtifactCoordinates.path` IF NOT EXISTS "
            "FOR (x:`ArtifactCoordinates`) ON (x.`path`)"
        )

    def test_unscoped_index_rejected(self) -> None:
        index = IndexDef("any.uuid", ElementKind.VERTEX, (PropertyKeyDef("uuid", str),))
        with pytest.raises(ValueError, match="scope label"):
            queries.create_index(index)

    def test_find_elements(self) -> None:
        assert queries.find_elements(ElementKind.VERTEX, "Artifact", ["uuid"]) == (
            "MATCH (x:`Artifact`) WHERE x.`uuid` = $p0 "
            "RETURN elementId(x) AS id, labels(x)[0] AS label"
        )
        assert queries.find_elements(ElementKind.EDGE, None, []) == (
            "MATCH ()-[x]->() RETURN elementId(x) AS id, type(x) AS label"
        )

    def test_incident_edges_direction(self) -> None:
        assert "(v)-[r:`E`]->()" in queries.incident_edges(Direction.OUT, "E")
        assert "(v)<-[r]-()" in queries.incident_edges(Direction.IN, None)
        assert "(v)-[r]-()" in queries.incident_edges(Direction.BOTH, None)


class TestToGraphValue:
    def test_datetime_becomes_iso_string(self) -> None:
        created = datetime(2024, 2, 11, 12, 0, tzinfo=UTC)
        assert to_graph_value(created) == "2024-02-11T12:00:00+00:00"

    def test_set_becomes_sorted_list(self) -> None:
        assert to_graph_value({"b", "a"}) == ["a", "b"]

    def test_scalars_pass_through(self) -> None:
        assert to_graph_value(5) == 5
        assert to_graph_value("x") == "x"


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class TestIndexStatus:
    @pytest.mark.parametrize(
        ("state", "expected"),
        [
            ("ONLINE", IndexStatus.ENABLED),
            ("POPULATING", IndexStatus.INSTALLED),
            ("FAILED", IndexStatus.FAILED),
            ("SOMETHING_NEW", IndexStatus.INSTALLED),
        ],
    )
    async def test_state_mapping(
        self,
        stub_driver: StubDriver,
        neo4j_engine: Neo4jGraphEngine,
        state: str,
        expected: IndexStatus,
    ) -> None:
        stub_driver.session_stub.responses = {"SHOW INDEXES": [{"state": state}]}
        assert await neo4j_engine.index_status("Artifact.uuid") is expected
        query, params = stub_driver.session_stub.queries[-1]
        assert query == queries.INDEX_STATE
        assert params == {"name": "Artifact.uuid"}

    async def test_unknown_index_raises(self, neo4j_engine: Neo4jGraphEngine) -> None:
        with pytest.raises(GraphEngineError, match="Unknown graph index"):
            await neo4j_engine.index_status("missing")


class TestSchemaTransaction:
    async def test_commit_writes_catalog_then_ddl(
        self, stub_driver: StubDriver, neo4j_engine: Neo4jGraphEngine
    ) -> None:
        key = PropertyKeyDef("uuid", str)
        label = VertexLabelDef("Artifact")
        async with neo4j_engine.schema_transaction() as tx:
            await tx.make_property_key(key)
            await tx.make_vertex_label(label)
            assert await tx.contains_property_key("uuid")
            assert not await tx.contains_edge_label("uuid")
            await tx.build_composite_index(
                IndexDef("Artifact.uuid", ElementKind.VERTEX, (key,), label, unique=True)
            )
            assert await tx.contains_graph_index("Artifact.uuid")

        written = stub_driver.session_stub.write_transaction.queries
        assert written == [
            (
                queries.MERGE_PROPERTY_KEY,
                {"name": "uuid", "data_type": "str", "cardinality": "SINGLE"},
            ),
            (queries.MERGE_VERTEX_LABEL, {"name": "Artifact"}),
        ]
        last_query, _ = stub_driver.session_stub.queries[-1]
        assert last_query.startswith("CREATE CONSTRAINT `Artifact.uuid`")

    async def test_rollback_writes_nothing(
        self, stub_driver: StubDriver, neo4j_engine: Neo4jGraphEngine
    ) -> None:
        with pytest.raises(RuntimeError):
            async with neo4j_engine.schema_transaction() as tx:
                await tx.make_property_key(PropertyKeyDef("uuid", str))
                raise RuntimeError("boom")
        assert stub_driver.session_stub.write_transaction.queries == []
        assert not any(q.startswith("CREATE") for q, _ in stub_driver.session_stub.queries)

    async def test_failed_index_statement_keeps_earlier_ones(
        self,
        stub_driver: StubDriver,
        neo4j_engine: Neo4jGraphEngine,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        session = stub_driver.session_stub
        original_run = session.run

        async def run(query, params=None, **kwargs):
            if query.startswith("CREATE INDEX `Artifact.storageId`"):
                msg = "index build refused"
                raise RuntimeError(msg)
            return await original_run(query, params, **kwargs)

        monkeypatch.setattr(session, "run", run)
        uuid_key = PropertyKeyDef("uuid", str)
        storage_key = PropertyKeyDef("storageId", str)
        label = VertexLabelDef("Artifact")
        with pytest.raises(RuntimeError, match="index build refused"):
            async with neo4j_engine.schema_transaction() as tx:
                await tx.build_composite_index(
                    IndexDef("Artifact.uuid", ElementKind.VERTEX, (uuid_key,), label, unique=True)
                )
                await tx.build_composite_index(
                    IndexDef("Artifact.storageId", ElementKind.VERTEX, (storage_key,), label)
                )
        ddl = [query for query, _ in session.queries if query.startswith("CREATE CONSTRAINT")]
        assert len(ddl) == 1
        assert ddl[0].startswith("CREATE CONSTRAINT `Artifact.uuid`")

    async def test_existing_name_rejected(
        self, stub_driver: StubDriver, neo4j_engine: Neo4jGraphEngine
    ) -> None:
        stub_driver.session_stub.responses = {"AND s.name = $name": [{"present": True}]}
        with pytest.raises(SchemaViolationError, match="already defined"):
            async with neo4j_engine.schema_transaction() as tx:
                await tx.make_vertex_label(VertexLabelDef("uuid"))


class TestGraphTransaction:
    async def test_commit_on_clean_exit(
        self, stub_driver: StubDriver, neo4j_engine: Neo4jGraphEngine
    ) -> None:
        driver_tx = stub_driver.session_stub.transaction
        driver_tx.responses = {"CREATE (x:`Artifact`)": [{"id": "4:x:1"}]}
        async with neo4j_engine.transaction() as tx:
            vertex = await tx.add_vertex("Artifact")
        assert vertex == Element("4:x:1", "Artifact", ElementKind.VERTEX)
        assert driver_tx.committed
        assert not driver_tx.rolled_back

    async def test_filters_are_converted(
        self, stub_driver: StubDriver, neo4j_engine: Neo4jGraphEngine
    ) -> None:
        driver_tx = stub_driver.session_stub.transaction
        driver_tx.responses = {"MATCH (x:`Artifact`)": [{"id": "4:x:1", "label": "Artifact"}]}
        created = datetime(2024, 2, 11, tzinfo=UTC)
        async with neo4j_engine.transaction() as tx:
            found = await tx.find_elements(ElementKind.VERTEX, "Artifact", {"created": created})
        assert found == [Element("4:x:1", "Artifact", ElementKind.VERTEX)]
        assert driver_tx.queries[0][1] == {"p0": "2024-02-11T00:00:00+00:00"}

    async def test_property_values(
        self, stub_driver: StubDriver, neo4j_engine: Neo4jGraphEngine
    ) -> None:
        driver_tx = stub_driver.session_stub.transaction
        driver_tx.responses = {"RETURN x[$key]": [{"value": ["a", "b"]}]}
        async with neo4j_engine.transaction() as tx:
            values = await tx.property_values(Element("4:x:1", "Artifact"), "tags")
        assert values == ["a", "b"]

    async def test_absent_property_is_empty(self, neo4j_engine: Neo4jGraphEngine) -> None:
        async with neo4j_engine.transaction() as tx:
            assert await tx.property_values(Element("4:x:1", "Artifact"), "tags") == []

    async def test_remove_property_merges_null(
        self, stub_driver: StubDriver, neo4j_engine: Neo4jGraphEngine
    ) -> None:
        driver_tx = stub_driver.session_stub.transaction
        async with neo4j_engine.transaction() as tx:
            await tx.remove_property(Element("4:x:1", "Artifact"), "storageId")
        query, params = driver_tx.queries[-1]
        assert query.endswith("SET x += $props")
        assert params == {"id": "4:x:1", "props": {"storageId": None}}

    async def test_constraint_error_becomes_uniqueness_violation(
        self, stub_driver: StubDriver, neo4j_engine: Neo4jGraphEngine
    ) -> None:
        driver_tx = StubTransaction(error=ConstraintError("already exists"))
        stub_driver.session_stub.transaction = driver_tx
        with pytest.raises(UniquenessViolationError) as exc_info:
            async with neo4j_engine.transaction() as tx:
                await tx.set_property(Element("4:x:1", "Artifact"), "uuid", "a-1")
        assert exc_info.value.index_name == "Artifact.uuid"
        assert exc_info.value.values == ("a-1",)
        assert driver_tx.rolled_back
        assert not driver_tx.committed

    async def test_multiplicity_checked_before_create(
        self, stub_driver: StubDriver, neo4j_engine: Neo4jGraphEngine
    ) -> None:
        driver_tx = stub_driver.session_stub.transaction
        driver_tx.responses = {
            "__EdgeLabel": [{"multiplicity": "MANY2ONE"}],
            "count(r)": [{"n": 1}],
        }
        with pytest.raises(MultiplicityViolationError):
            async with neo4j_engine.transaction() as tx:
                await tx.add_edge(
                    "Artifact#ArtifactCoordinates",
                    Element("4:x:1", "Artifact"),
                    Element("4:x:2", "ArtifactCoordinates"),
                )
        assert not any("CREATE" in query for query, _ in driver_tx.queries)

    async def test_undeclared_edge_label(self, neo4j_engine: Neo4jGraphEngine) -> None:
        with pytest.raises(SchemaViolationError, match="Undeclared edge label"):
            async with neo4j_engine.transaction() as tx:
                await tx.add_edge("nope", Element("4:x:1", "A"), Element("4:x:2", "B"))


class TestEngineLifecycle:
    async def test_read_returns_record_data(
        self, stub_driver: StubDriver, neo4j_engine: Neo4jGraphEngine
    ) -> None:
        stub_driver.session_stub.responses = {"RETURN n": [{"n": {"uuid": "a-1"}}]}
        rows = await neo4j_engine.read("MATCH (n) RETURN n", {"x": 1})
        assert rows == [{"n": {"uuid": "a-1"}}]
        assert stub_driver.session_stub.queries == [("MATCH (n) RETURN n", {"x": 1})]

    async def test_ping_and_close(
        self, stub_driver: StubDriver, neo4j_engine: Neo4jGraphEngine
    ) -> None:
        assert await neo4j_engine.ping() is True
        await neo4j_engine.close()
        assert stub_driver.closed
