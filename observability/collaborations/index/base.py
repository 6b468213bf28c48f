"""
Base protocol and types for the document-search backend.

This module defines the SearchBackend protocol that all backends must
implement, along with the raw result types the store consumes and the
signals a backend raises for index lifecycle races.

Invariants:
    - Every call takes the fixed operation timeout and never retries
    - Timeouts surface as OperationTimeoutError
    - Transport failures surface as BackendUnavailableError
    - A create-only write against an existing id raises ConflictingCreateError

How to change safely:
    - Protocol changes require updating all implementations
    - Keep the in-memory backend's query evaluation in step with the query builder
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from ..errors import BackendUnavailableError, CollaborationError

if TYPE_CHECKING:
    from ..config import ServiceConfig


class IndexAlreadyExistsError(CollaborationError):
    """create_index found the index already present."""

    code = "INDEX_ALREADY_EXISTS"
    status = 400


class IndexMissingError(BackendUnavailableError):
    """The target index does not exist."""

    code = "INDEX_NOT_FOUND"
    status = 404


@dataclass(frozen=True)
class RawDocument:
    """A document as returned by the backend.

    Attributes:
        id: Document id
        found: Whether the document exists
        source: Decoded source mapping or raw JSON bytes (None when not found)
        version: Document version
        seq_no: Sequence number of the last write
        primary_term: Primary term of the last write
    """

    id: str
    found: bool
    source: Mapping[str, Any] | bytes | None = None
    version: int = -1
    seq_no: int = -2
    primary_term: int = 0


@dataclass(frozen=True)
class WriteResult:
    """Outcome of a single-document write.

    Attributes:
        id: Document id (assigned by the backend when none was given)
        result: Backend result string (created, deleted, not_found, ...)
    """

    id: str
    result: str


@dataclass(frozen=True)
class BulkItemResult:
    """Per-item outcome of a bulk request.

    Attributes:
        id: Document id
        status: HTTP status of the item
        error: Failure message for failed items
    """

    id: str
    status: int
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.status >= 300


@dataclass(frozen=True)
class SearchQuery:
    """A fully built search request.

    Attributes:
        query: Query DSL
        from_index: Number of hits to skip
        size: Maximum hits to return
        sort: Sort clauses (empty for backend default order)
        timeout_ms: Search timeout enforced by the cluster
    """

    query: dict[str, Any]
    from_index: int
    size: int
    sort: list[dict[str, Any]] = field(default_factory=list)
    timeout_ms: int | None = None


@dataclass(frozen=True)
class RawSearchResponse:
    """Search hits plus the total-hit count and its relation ("eq" or "gte")."""

    hits: list[RawDocument]
    total: int
    relation: str = "eq"


@runtime_checkable
class SearchBackend(Protocol):
    """Protocol for document-search backends.

    A backend is a capability object constructed once at startup and
    passed by reference into the store. Implementations translate their
    client's failures into the store's error taxonomy.

    Example:
        >>> backend = InMemorySearchBackend()
        >>> backend.create_index(".collaborations", mappings, settings, timeout_ms=1000)
        True
    """

    @abstractmethod
    def index_exists(self, index: str, timeout_ms: int) -> bool:
        """Whether the index currently exists in cluster state."""
        ...

    @abstractmethod
    def create_index(
        self,
        index: str,
        mappings: Mapping[str, Any],
        settings: Mapping[str, Any],
        timeout_ms: int,
    ) -> bool:
        """Create an index.

        Returns:
            Whether the cluster acknowledged the creation

        Raises:
            IndexAlreadyExistsError: If the index already exists
        """
        ...

    @abstractmethod
    def put_mapping(self, index: str, mappings: Mapping[str, Any], timeout_ms: int) -> bool:
        """Apply an additive mapping update.

        Returns:
            Whether the cluster acknowledged the update

        Raises:
            IndexMissingError: If the index does not exist
        """
        ...

    @abstractmethod
    def get(self, index: str, doc_id: str, timeout_ms: int) -> RawDocument:
        """Fetch one document (found=False when absent)."""
        ...

    @abstractmethod
    def multi_get(self, index: str, doc_ids: Iterable[str], timeout_ms: int) -> list[RawDocument]:
        """Fetch several documents, one result per requested id in request order."""
        ...

    @abstractmethod
    def index_document(
        self,
        index: str,
        source: bytes,
        doc_id: str | None,
        timeout_ms: int,
        refresh: str = "false",
    ) -> WriteResult:
        """Write a document with create-only semantics.

        Raises:
            ConflictingCreateError: If doc_id already exists
        """
        ...

    @abstractmethod
    def delete(self, index: str, doc_id: str, timeout_ms: int, refresh: str = "false") -> bool:
        """Delete one document. Returns True iff it existed and was removed."""
        ...

    @abstractmethod
    def bulk_delete(
        self,
        index: str,
        doc_ids: Iterable[str],
        timeout_ms: int,
        refresh: str = "false",
    ) -> list[BulkItemResult]:
        """Delete several documents independently, reporting each outcome."""
        ...

    @abstractmethod
    def search(self, index: str, query: SearchQuery, timeout_ms: int) -> RawSearchResponse:
        """Run a search."""
        ...


def create_search_backend(config: ServiceConfig) -> SearchBackend:
    """Factory function to create a search backend from configuration.

    Args:
        config: Service configuration

    Returns:
        Appropriate SearchBackend implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import SearchBackendKind

    if config.backend == SearchBackendKind.ELASTICSEARCH:
        from .elasticsearch import ElasticsearchBackend, create_elasticsearch_client

        security_headers = {}
        if config.elasticsearch.run_as:
            security_headers["es-security-runas-user"] = config.elasticsearch.run_as
        return ElasticsearchBackend(
            create_elasticsearch_client(config.elasticsearch),
            security_headers=security_headers,
        )
    elif config.backend == SearchBackendKind.MEMORY:
        from .memory import InMemorySearchBackend

        return InMemorySearchBackend()
    else:
        raise ValueError(f"Unsupported search backend: {config.backend}")
