"""
Collaboration object store for multi-tenant observability dashboards.

This package persists tenant-scoped, typed "collaboration objects"
(notes, comments, annotations) in a search-engine-backed index and
enforces tenant and ACL visibility on every read, search and delete:

    ┌────────────┐     ┌────────────┐     ┌────────────────────┐
    │   Caller   │────▶│ AccessGate │────▶│ CollaborationStore │
    │ (identity) │     │ (security) │     │      (index)       │
    └────────────┘     └────────────┘     └─────────┬──────────┘
                                                    │
                    ┌───────────────────────────────┼───────────────┐
                    │                               │               │
                    ▼                               ▼               ▼
             ┌─────────────┐                ┌──────────────┐  ┌───────────┐
             │ Provisioner │                │ QueryBuilder │  │   Codec   │
             └──────┬──────┘                └──────┬───────┘  └───────────┘
                    │                              │
                    ▼                              ▼
             ┌──────────────────────────────────────────────┐
             │     SearchBackend (Elasticsearch/memory)     │
             └──────────────────────────────────────────────┘

Invariants:
    - Every object belongs to exactly one tenant and never crosses it
    - tenant and access are stamped at creation and never change
    - The write path is create and delete only
    - The search cluster is the source of truth for index existence

How to change safely:
    - Mapping changes must be additive (bump _meta.schema_version)
    - Error codes and statuses are part of the external contract
"""

from ._version import __version__

__all__ = ["__version__"]
