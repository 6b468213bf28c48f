"""
Collaboration store over the search backend.

The store is the facade for every persistence operation on collaboration
objects. It owns the index lifecycle (through the SchemaProvisioner),
shapes searches with the CollaborationQueryBuilder and maps raw backend
documents through the DocumentCodec.

Operations:
    get(id)            -> CollaborationObjectDocInfo | None
    multi_get(ids)     -> list[CollaborationObjectDocInfo] (misses omitted)
    create(doc, id)    -> assigned id (create-only)
    search(...)        -> SearchResult
    delete(id)         -> bool
    bulk_delete(ids)   -> dict[id, DeleteStatus]

Invariants:
    - Every operation calls ensure_index() first
    - Absence is a normal outcome here; authorization is not checked here
    - Every backend call carries the fixed operation timeout, no retries
    - One bulk item's failure never hides the outcome of the others

How to change safely:
    - Keep authorization decisions out of this module (see security.gate)
    - New operations must go through ensure_index() first
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from ..errors import CreateFailedError
from ..model.codec import DocumentCodec
from ..model.types import (
    CollaborationObject,
    CollaborationObjectDocInfo,
    DeleteStatus,
    GetCollaborationObjectRequest,
    SearchResult,
    TotalHitRelation,
)
from .base import RawDocument, SearchBackend
from .provisioner import SchemaProvisioner
from .query import CollaborationQueryBuilder

logger = logging.getLogger(__name__)


class CollaborationStore:
    """Persistence operations for collaboration objects.

    Attributes:
        backend: Search backend capability
        provisioner: Schema provisioner for the backing index
        codec: Document codec
        query_builder: Search query builder
        operation_timeout_ms: Fixed timeout for every backend call
        refresh_policy: Refresh policy applied to writes

    Thread safety:
        The store holds no per-request state and may be shared by
        request threads.

    Example:
        >>> store = CollaborationStore(backend, provisioner)
        >>> object_id = store.create(doc)
        >>> store.get(object_id).doc.object_data
        Note(name='Incident review', description='', tags=())
    """

    def __init__(
        self,
        backend: SearchBackend,
        provisioner: SchemaProvisioner,
        codec: DocumentCodec | None = None,
        query_builder: CollaborationQueryBuilder | None = None,
        operation_timeout_ms: int | None = None,
        refresh_policy: str = "false",
    ) -> None:
        self.backend = backend
        self.provisioner = provisioner
        self.codec = codec or DocumentCodec()
        self.operation_timeout_ms = (
            operation_timeout_ms
            if operation_timeout_ms is not None
            else provisioner.operation_timeout_ms
        )
        self.query_builder = query_builder or CollaborationQueryBuilder(self.operation_timeout_ms)
        self.refresh_policy = refresh_policy

    @property
    def index_name(self) -> str:
        return self.provisioner.index_name

    def _doc_info(self, raw: RawDocument) -> CollaborationObjectDocInfo | None:
        if not raw.found or raw.source is None:
            logger.warning(f"Collaboration object {raw.id} not found")
            return None
        return CollaborationObjectDocInfo(
            id=raw.id,
            version=raw.version,
            seq_no=raw.seq_no,
            primary_term=raw.primary_term,
            doc=self.codec.parse(raw.source, raw.id),
        )

    def get(self, object_id: str) -> CollaborationObjectDocInfo | None:
        """Fetch one object.

        Returns:
            The object with its storage metadata, or None if absent

        Raises:
            DocumentParseError: If the stored source cannot be decoded
        """
        self.provisioner.ensure_index()
        raw = self.backend.get(self.index_name, object_id, self.operation_timeout_ms)
        return self._doc_info(raw)

    def multi_get(self, object_ids: Iterable[str]) -> list[CollaborationObjectDocInfo]:
        """Fetch several objects in one round trip.

        Objects that do not exist are omitted; callers diff the result
        against the requested ids to find misses.
        """
        self.provisioner.ensure_index()
        ids = sorted(set(object_ids))
        if not ids:
            return []
        raws = self.backend.multi_get(self.index_name, ids, self.operation_timeout_ms)
        found = []
        for raw in raws:
            info = self._doc_info(raw)
            if info is not None:
                found.append(info)
        return found

    def create(self, doc: CollaborationObject, object_id: str | None = None) -> str:
        """Store a new object with create-only semantics.

        Args:
            doc: Object to store (its object_id is ignored)
            object_id: Id to store under; the backend assigns one when None

        Returns:
            The id the object was stored under

        Raises:
            ConflictingCreateError: If object_id already exists
            CreateFailedError: If the backend did not report the object created
        """
        self.provisioner.ensure_index()
        result = self.backend.index_document(
            self.index_name,
            self.codec.serialize(doc),
            object_id or None,
            self.operation_timeout_ms,
            refresh=self.refresh_policy,
        )
        if result.result != "created":
            logger.warning(
                f"Create of collaboration object {result.id} returned {result.result}",
                extra={"object_id": result.id, "result": result.result},
            )
            raise CreateFailedError(
                "CollaborationObject creation failed", details={"result": result.result}
            )
        logger.info(
            f"Created collaboration object {result.id}",
            extra={"object_id": result.id, "type": doc.type.tag, "tenant": doc.tenant},
        )
        return result.id

    def search(
        self,
        tenant: str,
        access: Iterable[str],
        request: GetCollaborationObjectRequest,
    ) -> SearchResult:
        """Run a filtered, sorted, paginated search within a tenant.

        Args:
            tenant: Tenant to search in
            access: ACL tokens to match (empty applies no ACL filter)
            request: Types, filters, sort and pagination

        Returns:
            Page of objects in backend order with total-hit semantics
        """
        self.provisioner.ensure_index()
        query = self.query_builder.build(tenant, access, request)
        response = self.backend.search(self.index_name, query, self.operation_timeout_ms)
        objects = tuple(
            self.codec.parse(hit.source, hit.id) for hit in response.hits if hit.source is not None
        )
        result = SearchResult(
            start_index=request.from_index,
            total_hits=max(response.total, len(objects)),
            total_hit_relation=TotalHitRelation(response.relation),
            objects=objects,
        )
        logger.info(
            "Searched collaboration objects",
            extra={
                "types": sorted(t.tag for t in request.types),
                "from_index": request.from_index,
                "max_items": query.size,
                "sort_field": request.sort_field,
                "sort_order": request.sort_order.value if request.sort_order else None,
                "filters": dict(request.filter_params),
                "returned": len(result.objects),
                "total_hits": result.total_hits,
            },
        )
        return result

    def delete(self, object_id: str) -> bool:
        """Delete one object. Returns True iff it existed and was removed."""
        self.provisioner.ensure_index()
        deleted = self.backend.delete(
            self.index_name, object_id, self.operation_timeout_ms, refresh=self.refresh_policy
        )
        if not deleted:
            logger.warning(f"Delete of collaboration object {object_id} did not delete anything")
        return deleted

    def bulk_delete(self, object_ids: Iterable[str]) -> dict[str, DeleteStatus]:
        """Delete several objects independently.

        Returns:
            Outcome per requested id: OK, NOT_FOUND or FAILED
        """
        self.provisioner.ensure_index()
        ids = sorted(set(object_ids))
        if not ids:
            return {}
        items = self.backend.bulk_delete(
            self.index_name, ids, self.operation_timeout_ms, refresh=self.refresh_policy
        )

        statuses = {object_id: DeleteStatus.FAILED for object_id in ids}
        for item in items:
            if item.status == 200:
                statuses[item.id] = DeleteStatus.OK
            elif item.status == 404:
                statuses[item.id] = DeleteStatus.NOT_FOUND
            else:
                statuses[item.id] = DeleteStatus.FAILED
            if item.failed and item.status != 404:
                logger.warning(
                    f"Bulk delete failed for {item.id}: {item.error}",
                    extra={"object_id": item.id, "status": item.status},
                )
        return statuses
