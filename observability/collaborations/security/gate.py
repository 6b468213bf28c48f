"""
Access gate around the collaboration store.

Every request passes through here: the caller identity is validated
before the store is touched, and results are checked and redacted on the
way out. This is the only place authorization errors are raised.

Dispatch:
    get(ids=())     -> tenant/ACL-filtered search
    get(ids={a})    -> single lookup, NOT_FOUND or FORBIDDEN
    get(ids={a,b})  -> batch lookup, NOT_FOUND for the missing ids,
                       then FORBIDDEN for the first inaccessible id
    delete({a})     -> single delete
    delete({a,b})   -> bulk delete after the batch checks above

Invariants:
    - Missing ids are reported before any access check
    - One inaccessible id aborts the whole batch
    - NOT_FOUND and FORBIDDEN are never merged
    - tenant and access are stamped from the identity on create

How to change safely:
    - Keep single and batch paths applying the same checks
    - Never return an object before does_have_access() has passed
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable

from ..errors import DeleteFailedError, InvalidRequestError, NotFoundError, PermissionDeniedError
from ..index.store import CollaborationStore
from ..model.types import (
    CollaborationObject,
    CollaborationObjectDocInfo,
    DeleteStatus,
    GetCollaborationObjectRequest,
    GetCollaborationObjectResponse,
    ObjectData,
    SearchResult,
    TotalHitRelation,
)
from .access import Identity, UserAccessManager

logger = logging.getLogger(__name__)


def current_time_ms() -> int:
    return int(time.time() * 1000)


class AccessGate:
    """Authorizes and dispatches collaboration object operations.

    Attributes:
        store: Collaboration store
        access_manager: Access policy
        clock: Returns the current time in Unix ms

    Example:
        >>> gate = AccessGate(store, UserAccessManager(SecurityConfig()))
        >>> object_id = gate.create(alice, Note(name="Incident review"))
        >>> gate.get(alice, GetCollaborationObjectRequest(ids=frozenset({object_id})))
    """

    def __init__(
        self,
        store: CollaborationStore,
        access_manager: UserAccessManager,
        clock: Callable[[], int] = current_time_ms,
    ) -> None:
        self.store = store
        self.access_manager = access_manager
        self.clock = clock

    def create(
        self,
        identity: Identity | None,
        object_data: ObjectData,
        object_id: str | None = None,
    ) -> str:
        """Create an object owned by the caller's tenant.

        Returns:
            The id the object was stored under

        Raises:
            UnauthenticatedError: If an identity is required but absent
            ConflictingCreateError: If object_id already exists
        """
        logger.info(f"Collaboration object create {object_data.TYPE.tag}")
        self.access_manager.validate_identity(identity)
        now = self.clock()
        doc = CollaborationObject(
            object_id="",
            created_time_ms=now,
            updated_time_ms=now,
            tenant=self.access_manager.get_user_tenant(identity),
            access=tuple(self.access_manager.get_all_access_info(identity)),
            object_data=object_data,
        )
        return self.store.create(doc, object_id)

    def get(
        self,
        identity: Identity | None,
        request: GetCollaborationObjectRequest,
    ) -> GetCollaborationObjectResponse:
        """Look up objects by id, or search when no ids are given.

        Raises:
            UnauthenticatedError: If an identity is required but absent
            NotFoundError: If any requested id does not exist
            PermissionDeniedError: If any requested object is not visible
        """
        logger.info(f"Collaboration object get {sorted(request.ids)}")
        self.access_manager.validate_identity(identity)
        if not request.ids:
            result = self._search(identity, request)
        elif len(request.ids) == 1:
            (object_id,) = request.ids
            result = SearchResult.of([self._get_one(identity, object_id).doc])
        else:
            result = SearchResult.of([info.doc for info in self._get_many(identity, request.ids)])
        return GetCollaborationObjectResponse(
            search_result=result,
            filter_sensitive_info=not self.access_manager.has_all_info_access(identity),
        )

    def delete(self, identity: Identity | None, object_ids: Iterable[str]) -> dict[str, DeleteStatus]:
        """Delete objects after the same checks as get.

        Returns:
            Outcome per id (all OK for a single delete)

        Raises:
            UnauthenticatedError: If an identity is required but absent
            NotFoundError: If any requested id does not exist
            PermissionDeniedError: If any requested object is not visible
            DeleteFailedError: If a single delete passed the checks but
                the backend removed nothing
        """
        ids = frozenset(object_ids)
        logger.info(f"Collaboration object delete {sorted(ids)}")
        if not ids:
            raise InvalidRequestError("At least one collaboration object id is required")
        self.access_manager.validate_identity(identity)

        if len(ids) == 1:
            (object_id,) = ids
            self._get_one(identity, object_id)
            if not self.store.delete(object_id):
                raise DeleteFailedError(
                    f"CollaborationObject {object_id} delete failed", details={"id": object_id}
                )
            return {object_id: DeleteStatus.OK}

        self._get_many(identity, ids)
        return self.store.bulk_delete(ids)

    def _search(self, identity: Identity | None, request: GetCollaborationObjectRequest) -> SearchResult:
        access = self.access_manager.get_search_access_info(identity)
        if access is not None and not access:
            logger.info("Identity has no tokens to match, returning empty result")
            return SearchResult(request.from_index, 0, TotalHitRelation.EQUAL_TO, ())
        return self.store.search(
            self.access_manager.get_user_tenant(identity),
            access or [],
            request,
        )

    def _check_access(self, identity: Identity | None, info: CollaborationObjectDocInfo) -> None:
        doc = info.doc
        if not self.access_manager.does_have_access(identity, doc.tenant, doc.access):
            raise PermissionDeniedError(
                f"Permission denied for CollaborationObject {info.id}", object_id=info.id
            )

    def _get_one(self, identity: Identity | None, object_id: str) -> CollaborationObjectDocInfo:
        info = self.store.get(object_id)
        if info is None:
            raise NotFoundError([object_id], f"CollaborationObject {object_id} not found")
        self._check_access(identity, info)
        return info

    def _get_many(
        self,
        identity: Identity | None,
        object_ids: frozenset[str],
    ) -> list[CollaborationObjectDocInfo]:
        infos = self.store.multi_get(object_ids)
        missing = object_ids - {info.id for info in infos}
        if missing:
            raise NotFoundError(missing)
        for info in infos:
            self._check_access(identity, info)
        return infos
