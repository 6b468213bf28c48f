"""
Elasticsearch/OpenSearch-compatible search backend.

This module provides the production SearchBackend over the official
`elasticsearch` Python client.

Invariants:
    - The client is constructed once at startup and shared by reference
    - Every call carries the fixed operation timeout as request_timeout
    - Client-level retries are disabled; retry policy belongs to callers
    - The security context (extra headers such as a run-as user) is explicit

How to change safely:
    - Test against a real cluster before deploying
    - Keep error translation in _translate_errors so every call maps the
      same client failure to the same store error
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from elasticsearch import Elasticsearch
from elasticsearch.exceptions import (
    ApiError,
    BadRequestError,
    ConflictError,
    ConnectionTimeout,
    NotFoundError,
)
from elasticsearch.exceptions import ConnectionError as ESConnectionError

from ..config import ElasticsearchConfig
from ..errors import (
    BackendUnavailableError,
    ConflictingCreateError,
    InvalidRequestError,
    OperationTimeoutError,
)
from .base import (
    BulkItemResult,
    IndexAlreadyExistsError,
    IndexMissingError,
    RawDocument,
    RawSearchResponse,
    SearchQuery,
    WriteResult,
)

logger = logging.getLogger(__name__)

RESOURCE_ALREADY_EXISTS = "resource_already_exists_exception"
INDEX_NOT_FOUND = "index_not_found_exception"


def create_elasticsearch_client(config: ElasticsearchConfig) -> Elasticsearch:
    """Create the cluster client from configuration.

    Args:
        config: Cluster connection configuration

    Returns:
        Configured Elasticsearch client with retries disabled
    """
    kwargs: dict[str, Any] = {
        "hosts": config.host_list,
        "verify_certs": config.verify_certs,
        "max_retries": 0,
        "retry_on_timeout": False,
    }
    if config.ca_certs:
        kwargs["ca_certs"] = config.ca_certs
    if config.username and config.password:
        kwargs["basic_auth"] = (config.username, config.password)
    return Elasticsearch(**kwargs)


def _error_type(exc: ApiError) -> str | None:
    """Extract the cluster's error type (e.g. index_not_found_exception)."""
    body = exc.body
    if isinstance(body, Mapping):
        error = body.get("error")
        if isinstance(error, Mapping):
            return error.get("type")
    return None


def _raw_document(doc: Mapping[str, Any]) -> RawDocument:
    return RawDocument(
        id=doc["_id"],
        found=bool(doc.get("found", "_source" in doc)),
        source=doc.get("_source"),
        version=doc.get("_version", -1),
        seq_no=doc.get("_seq_no", -2),
        primary_term=doc.get("_primary_term", 0),
    )


class ElasticsearchBackend:
    """Elasticsearch implementation of the SearchBackend protocol.

    Attributes:
        client: Shared Elasticsearch client
        security_headers: Headers attached to every request (security context)

    Example:
        >>> client = create_elasticsearch_client(ElasticsearchConfig())
        >>> backend = ElasticsearchBackend(client, security_headers={})
        >>> backend.index_exists(".collaborations", timeout_ms=5000)
        False
    """

    def __init__(
        self,
        client: Elasticsearch,
        security_headers: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize the backend.

        Args:
            client: Elasticsearch client, constructed once at startup
            security_headers: Request headers establishing who the store acts as
        """
        self.client = client
        self.security_headers = dict(security_headers or {})

    def _client(self, timeout_ms: int) -> Elasticsearch:
        options: dict[str, Any] = {
            "request_timeout": timeout_ms / 1000.0,
            "max_retries": 0,
            "retry_on_timeout": False,
        }
        if self.security_headers:
            options["headers"] = self.security_headers
        return self.client.options(**options)

    @contextmanager
    def _translate_errors(self, operation: str, index: str) -> Iterator[None]:
        """Map client failures onto the store's error taxonomy."""
        try:
            yield
        except ConnectionTimeout as e:
            raise OperationTimeoutError(f"{operation} on {index} timed out: {e}") from e
        except ESConnectionError as e:
            raise BackendUnavailableError(f"{operation} on {index} failed: {e}") from e
        except ApiError as e:
            if _error_type(e) == INDEX_NOT_FOUND:
                raise IndexMissingError(f"Index {index} not found") from e
            if e.status_code == 400:
                raise InvalidRequestError(f"{operation} on {index} rejected: {e}") from e
            raise BackendUnavailableError(
                f"{operation} on {index} failed with status {e.status_code}: {e}",
                details={"status": e.status_code, "type": _error_type(e)},
            ) from e

    def index_exists(self, index: str, timeout_ms: int) -> bool:
        with self._translate_errors("index_exists", index):
            return bool(self._client(timeout_ms).indices.exists(index=index))

    def create_index(
        self,
        index: str,
        mappings: Mapping[str, Any],
        settings: Mapping[str, Any],
        timeout_ms: int,
    ) -> bool:
        with self._translate_errors("create_index", index):
            try:
                response = self._client(timeout_ms).indices.create(
                    index=index,
                    mappings=dict(mappings),
                    settings=dict(settings),
                )
            except BadRequestError as e:
                if _error_type(e) == RESOURCE_ALREADY_EXISTS:
                    raise IndexAlreadyExistsError(f"Index {index} already exists") from e
                raise
            return bool(response.get("acknowledged", False))

    def put_mapping(self, index: str, mappings: Mapping[str, Any], timeout_ms: int) -> bool:
        kwargs: dict[str, Any] = {"index": index, "properties": mappings.get("properties", {})}
        if "dynamic" in mappings:
            kwargs["dynamic"] = mappings["dynamic"]
        if "_meta" in mappings:
            kwargs["meta"] = mappings["_meta"]
        with self._translate_errors("put_mapping", index):
            response = self._client(timeout_ms).indices.put_mapping(**kwargs)
            return bool(response.get("acknowledged", False))

    def get(self, index: str, doc_id: str, timeout_ms: int) -> RawDocument:
        with self._translate_errors("get", index):
            try:
                response = self._client(timeout_ms).get(index=index, id=doc_id)
            except NotFoundError as e:
                if _error_type(e) == INDEX_NOT_FOUND:
                    raise
                return RawDocument(id=doc_id, found=False)
            return _raw_document(response)

    def multi_get(self, index: str, doc_ids: Iterable[str], timeout_ms: int) -> list[RawDocument]:
        ids = list(doc_ids)
        with self._translate_errors("multi_get", index):
            response = self._client(timeout_ms).mget(index=index, ids=ids)
        results = []
        for doc in response["docs"]:
            # A per-item error is a shard failure, not an absent document
            if "error" in doc:
                error = doc["error"]
                reason = error
                if isinstance(error, Mapping):
                    reason = error.get("reason") or error.get("type")
                logger.warning(f"multi_get failed for {doc.get('_id')}: {error}")
                raise BackendUnavailableError(
                    f"Failed to fetch {doc.get('_id')} from index {index}",
                    details={"id": doc.get("_id"), "reason": str(reason)},
                )
            results.append(_raw_document(doc))
        return results

    def index_document(
        self,
        index: str,
        source: bytes,
        doc_id: str | None,
        timeout_ms: int,
        refresh: str = "false",
    ) -> WriteResult:
        kwargs: dict[str, Any] = {
            "index": index,
            "document": source,
            "op_type": "create",
            "refresh": refresh,
        }
        if doc_id is not None:
            kwargs["id"] = doc_id
        with self._translate_errors("index_document", index):
            try:
                response = self._client(timeout_ms).index(**kwargs)
            except ConflictError as e:
                raise ConflictingCreateError(doc_id) from e
        return WriteResult(id=response["_id"], result=response["result"])

    def delete(self, index: str, doc_id: str, timeout_ms: int, refresh: str = "false") -> bool:
        with self._translate_errors("delete", index):
            try:
                response = self._client(timeout_ms).delete(index=index, id=doc_id, refresh=refresh)
            except NotFoundError as e:
                if _error_type(e) == INDEX_NOT_FOUND:
                    raise
                return False
        return response["result"] == "deleted"

    def bulk_delete(
        self,
        index: str,
        doc_ids: Iterable[str],
        timeout_ms: int,
        refresh: str = "false",
    ) -> list[BulkItemResult]:
        operations = [{"delete": {"_index": index, "_id": doc_id}} for doc_id in doc_ids]
        if not operations:
            return []
        with self._translate_errors("bulk_delete", index):
            response = self._client(timeout_ms).bulk(operations=operations, refresh=refresh)
        results = []
        for item in response["items"]:
            outcome = item["delete"]
            error = outcome.get("error")
            if isinstance(error, Mapping):
                error = error.get("reason") or error.get("type")
            results.append(
                BulkItemResult(
                    id=outcome["_id"],
                    status=outcome["status"],
                    error=None if error is None else str(error),
                )
            )
        return results

    def search(self, index: str, query: SearchQuery, timeout_ms: int) -> RawSearchResponse:
        kwargs: dict[str, Any] = {
            "index": index,
            "query": query.query,
            "from_": query.from_index,
            "size": query.size,
            "version": True,
            "seq_no_primary_term": True,
        }
        if query.sort:
            kwargs["sort"] = query.sort
        if query.timeout_ms is not None:
            kwargs["timeout"] = f"{query.timeout_ms}ms"
        with self._translate_errors("search", index):
            response = self._client(timeout_ms).search(**kwargs)

        hits = response["hits"]
        total = hits.get("total", {"value": len(hits["hits"]), "relation": "eq"})
        if isinstance(total, Mapping):
            total_value, relation = int(total["value"]), str(total.get("relation", "eq"))
        else:
            total_value, relation = int(total), "eq"
        return RawSearchResponse(
            hits=[
                RawDocument(
                    id=hit["_id"],
                    found=True,
                    source=hit.get("_source"),
                    version=hit.get("_version", -1),
                    seq_no=hit.get("_seq_no", -2),
                    primary_term=hit.get("_primary_term", 0),
                )
                for hit in hits["hits"]
            ],
            total=total_value,
            relation=relation,
        )
