"""Error taxonomy for the artifact graph layer.

Schema and index errors are fatal at startup: the service cannot safely
serve with an incomplete schema. ``UnknownLabelError`` and
``MalformedRelationPatternError`` are fatal for the call that raised them.
Engine-level failures (``GraphEngineError`` and driver errors) are not
wrapped and propagate to the caller unmodified.
"""

from __future__ import annotations


class ArtifactGraphError(Exception):
    """Base class for errors raised by the graph data-access core."""


class SchemaDefinitionError(ArtifactGraphError):
    """Raised when property keys or labels cannot be declared."""


class IndexDefinitionError(ArtifactGraphError):
    """Raised when a composite index cannot be created or enabled."""

    def __init__(self, message: str, index_name: str | None = None) -> None:
        self.index_name = index_name
        super().__init__(message)


class IndexNotReadyError(IndexDefinitionError):
    """Raised when an index does not become usable within the wait bound."""

    def __init__(self, index_name: str, waited_s: float) -> None:
        self.waited_s = waited_s
        super().__init__(
            f"Index {index_name!r} not ready after {waited_s:.1f}s",
            index_name=index_name,
        )


class UnknownLabelError(ArtifactGraphError):
    """Raised when an entity label has no schema definition."""

    def __init__(self, label: str) -> None:
        self.label = label
        super().__init__(f"No schema definition for label {label!r}")


class MalformedRelationPatternError(ArtifactGraphError):
    """Raised when a relation sub-pattern does not match the supported shape."""

    def __init__(self, pattern: str, message: str) -> None:
        self.pattern = pattern
        self.message = message
        super().__init__(f"{message}: {pattern!r}")
