"""
Index layer for the collaboration object store.

This module provides the backing-index side of the store:
- A pluggable SearchBackend interface (Elasticsearch, in-memory)
- Schema provisioning (create-if-absent, additive mapping updates)
- Query construction for filtered/sorted/paginated search
- The CollaborationStore facade over all of the above

The search cluster is the source of truth for index existence and for
document identity. Nothing here checks authorization; see security.

Invariants:
    - Every store operation provisions the index first
    - Every backend call carries the fixed operation timeout
    - Nothing is retried silently inside this layer

How to change safely:
    - New backends must implement SearchBackend protocol
    - Backends with third-party clients are imported by create_search_backend
      only, never from this package
    - Mapping changes must be additive
    - Test index bootstrap under concurrent first access
"""

from .base import (
    BulkItemResult,
    IndexAlreadyExistsError,
    IndexMissingError,
    RawDocument,
    RawSearchResponse,
    SearchBackend,
    SearchQuery,
    WriteResult,
    create_search_backend,
)
from .memory import InMemorySearchBackend
from .provisioner import ProvisioningState, SchemaProvisioner
from .query import FILTER_PARAMS, CollaborationQueryBuilder
from .store import CollaborationStore

__all__ = [
    # Protocol and types
    "SearchBackend",
    "SearchQuery",
    "RawDocument",
    "RawSearchResponse",
    "WriteResult",
    "BulkItemResult",
    "IndexAlreadyExistsError",
    "IndexMissingError",
    # Factory
    "create_search_backend",
    # Implementations
    "InMemorySearchBackend",
    # Store
    "ProvisioningState",
    "SchemaProvisioner",
    "CollaborationQueryBuilder",
    "FILTER_PARAMS",
    "CollaborationStore",
]
