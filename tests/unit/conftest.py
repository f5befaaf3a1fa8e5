"""Unit test conftest with Neo4j driver stubs and an in-memory API client."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

if TYPE_CHECKING:
    from fastapi.testclient import TestClient


class RecordingLogger:
    """Collects structlog-style calls as ``(level, event, kwargs)`` tuples."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def _record(self, level: str, event: str, **kwargs: Any) -> None:
        self.calls.append((level, event, kwargs))

    def debug(self, event: str, **kwargs: Any) -> None:
        self._record("debug", event, **kwargs)

    def info(self, event: str, **kwargs: Any) -> None:
        self._record("info", event, **kwargs)

    def warning(self, event: str, **kwargs: Any) -> None:
        self._record("warning", event, **kwargs)

    def error(self, event: str, **kwargs: Any) -> None:
        self._record("error", event, **kwargs)

    def events(self, level: str | None = None) -> list[str]:
        return [event for lvl, event, _ in self.calls if level is None or lvl == level]


# ---------------------------------------------------------------------------
# Neo4j driver stubs
# ---------------------------------------------------------------------------


class StubRecord(dict):
    """Dict that also answers the driver record's ``data()``."""

    def data(self) -> dict[str, Any]:
        return dict(self)


class StubResult:
    """Stub driver result over a fixed list of record dicts."""

    def __init__(self, records: list[dict[str, Any]] | None = None) -> None:
        self._records = [StubRecord(record) for record in records or []]

    async def single(self) -> dict[str, Any] | None:
        return self._records[0] if self._records else None

    async def consume(self) -> None:
        pass

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for record in self._records:
            yield record


class StubRunner:
    """Records every ``run`` call and answers from canned results.

    ``responses`` maps a query substring to the records it returns; the
    first matching key wins. Unmatched queries return no records.
    """

    def __init__(
        self,
        responses: dict[str, list[dict[str, Any]]] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.responses = responses or {}
        self.error = error
        self.queries: list[tuple[str, dict[str, Any]]] = []

    async def run(self, query: str, params: dict[str, Any] | None = None, **kwargs: Any) -> StubResult:
        self.queries.append((query, {**(params or {}), **kwargs}))
        if self.error is not None:
            raise self.error
        for fragment, records in self.responses.items():
            if fragment in query:
                return StubResult(records)
        return StubResult()


class StubTransaction(StubRunner):
    """Stub explicit driver transaction."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.committed = False
        self.rolled_back = False

    async def commit(self) -> None:
        self.committed = True

    async def rollback(self) -> None:
        self.rolled_back = True


class StubSession(StubRunner):
    """Stub Neo4j session."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.transaction = StubTransaction()
        self.write_transaction = StubTransaction()

    async def __aenter__(self) -> StubSession:
        return self

    async def __aexit__(self, *args: object) -> None:
        pass

    async def begin_transaction(self) -> StubTransaction:
        return self.transaction

    async def execute_write(self, work: Any) -> Any:
        return await work(self.write_transaction)

    async def execute_read(self, work: Any) -> Any:
        return await work(self)


class StubDriver:
    """Stub Neo4j driver handing out one shared session."""

    def __init__(self, session: StubSession | None = None) -> None:
        self.session_stub = session or StubSession()
        self.closed = False

    def session(self, database: str | None = None) -> StubSession:
        return self.session_stub

    async def close(self) -> None:
        self.closed = True


@pytest.fixture()
def recording_logger() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture()
def stub_driver() -> StubDriver:
    return StubDriver()


@pytest.fixture()
def test_client() -> TestClient:
    """FastAPI TestClient over the in-memory engine (no Neo4j needed)."""
    from fastapi.testclient import TestClient as _TestClient

    from artifact_graph.api.app import create_app
    from artifact_graph.settings import GraphSettings, SchemaSettings, Settings

    settings = Settings(
        graph=GraphSettings(backend="memory", memory_index_build_polls=0),
        graph_schema=SchemaSettings(index_poll_interval_s=0.0, index_poll_max_interval_s=0.0),
    )
    with _TestClient(create_app(settings)) as client:
        yield client
