"""
In-memory search backend implementation for testing.

This module provides a simple in-memory SearchBackend for:
- Unit tests
- Integration tests
- Local development without a search cluster

It evaluates the query DSL subset the query builder emits: bool
(filter/must/should/must_not), terms, term, range, match_phrase_prefix,
multi_match (phrase_prefix) and match_all.

Invariants:
    - All data is lost on process exit
    - Documents are stored as serialized JSON source, like a real cluster
    - Unsorted searches return documents in insertion order
    - Thread-safe for concurrent access

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with SearchBackend protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import json
import logging
import re
import threading
import uuid
from collections import OrderedDict, deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from ..errors import ConflictingCreateError
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

_TOKEN_RE = re.compile(r"\w+")


@dataclass
class _StoredDocument:
    source: bytes
    version: int
    seq_no: int


@dataclass
class InMemoryIndex:
    """In-memory index storage."""

    mappings: dict[str, Any]
    settings: dict[str, Any]
    documents: OrderedDict[str, _StoredDocument] = field(default_factory=OrderedDict)
    next_seq_no: int = 0


def _tokens(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _field_values(source: Mapping[str, Any], path: str) -> list[Any]:
    """Resolve a dotted field path to a flat list of values."""
    if path.endswith(".keyword"):
        path = path[: -len(".keyword")]
    values: list[Any] = [source]
    for part in path.split("."):
        next_values: list[Any] = []
        for value in values:
            if isinstance(value, Mapping) and part in value:
                child = value[part]
                if isinstance(child, list):
                    next_values.extend(child)
                else:
                    next_values.append(child)
        values = next_values
    return [v for v in values if v is not None]


def _phrase_prefix(text: Any, query: str) -> bool:
    """Whether query tokens appear consecutively in text, the last one as a prefix."""
    doc_tokens = _tokens(str(text))
    query_tokens = _tokens(query)
    if not query_tokens:
        return True
    *exact, last = query_tokens
    width = len(query_tokens)
    for start in range(len(doc_tokens) - width + 1):
        window = doc_tokens[start : start + width]
        if window[:-1] == exact and window[-1].startswith(last):
            return True
    return False


def _in_range(value: Any, bounds: Mapping[str, Any]) -> bool:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return False
    checks = {
        "gte": lambda b: number >= b,
        "gt": lambda b: number > b,
        "lte": lambda b: number <= b,
        "lt": lambda b: number < b,
    }
    return all(check(float(bounds[op])) for op, check in checks.items() if op in bounds)


def matches(source: Mapping[str, Any], clause: Mapping[str, Any]) -> bool:
    """Evaluate a query DSL clause against a document source.

    Raises:
        ValueError: If the clause uses an unsupported query type
    """
    (kind, body), = clause.items()

    if kind == "match_all":
        return True

    if kind == "bool":
        return (
            all(matches(source, c) for c in body.get("filter", []))
            and all(matches(source, c) for c in body.get("must", []))
            and not any(matches(source, c) for c in body.get("must_not", []))
            and (not body.get("should") or any(matches(source, c) for c in body["should"]))
        )

    if kind == "terms":
        (path, wanted), = body.items()
        wanted_set = {str(w) for w in wanted}
        return any(str(v) in wanted_set for v in _field_values(source, path))

    if kind == "term":
        (path, wanted), = body.items()
        if isinstance(wanted, Mapping):
            wanted = wanted["value"]
        return any(str(v) == str(wanted) for v in _field_values(source, path))

    if kind == "range":
        (path, bounds), = body.items()
        return any(_in_range(v, bounds) for v in _field_values(source, path))

    if kind == "match_phrase_prefix":
        (path, query), = body.items()
        if isinstance(query, Mapping):
            query = query["query"]
        return any(_phrase_prefix(v, query) for v in _field_values(source, path))

    if kind == "multi_match":
        query = body["query"]
        return any(
            _phrase_prefix(v, query)
            for path in body.get("fields", [])
            for v in _field_values(source, path)
        )

    raise ValueError(f"Unsupported query type: {kind}")


def _sort_key(value: Any) -> tuple[int, Any]:
    if isinstance(value, bool):
        return (0, int(value))
    if isinstance(value, (int, float)):
        return (0, value)
    return (1, str(value))


class InMemorySearchBackend:
    """In-memory implementation of SearchBackend for testing.

    Attributes:
        max_total_hits: Cap on counted hits; larger totals are reported
            as a lower bound with relation "gte" (None counts exactly)
        calls: Names of the most recent operations, oldest first
            (at most CALL_HISTORY entries)

    Thread safety:
        All operations hold an internal lock. Safe to use from
        multiple threads.

    Example:
        >>> backend = InMemorySearchBackend()
        >>> backend.create_index("idx", {"properties": {}}, {}, timeout_ms=1000)
        True
        >>> backend.index_document("idx", b'{"a": 1}', "doc1", timeout_ms=1000)
        WriteResult(id='doc1', result='created')
    """

    CALL_HISTORY = 1000

    def __init__(self, max_total_hits: int | None = None) -> None:
        """Initialize in-memory backend.

        Args:
            max_total_hits: Optional total-hit counting cap
        """
        self.max_total_hits = max_total_hits
        self._indices: dict[str, InMemoryIndex] = {}
        self._lock = threading.RLock()
        self._failures: dict[str, Exception] = {}
        self.calls: deque[str] = deque(maxlen=self.CALL_HISTORY)

    def _begin(self, operation: str) -> None:
        with self._lock:
            self.calls.append(operation)
            failure = self._failures.pop(operation, None)
        if failure is not None:
            raise failure

    def _index(self, index: str) -> InMemoryIndex:
        try:
            return self._indices[index]
        except KeyError:
            raise IndexMissingError(f"Index {index} not found") from None

    def _raw(self, doc_id: str, stored: _StoredDocument) -> RawDocument:
        return RawDocument(
            id=doc_id,
            found=True,
            source=stored.source,
            version=stored.version,
            seq_no=stored.seq_no,
            primary_term=1,
        )

    def index_exists(self, index: str, timeout_ms: int) -> bool:
        self._begin("index_exists")
        with self._lock:
            return index in self._indices

    def create_index(
        self,
        index: str,
        mappings: Mapping[str, Any],
        settings: Mapping[str, Any],
        timeout_ms: int,
    ) -> bool:
        self._begin("create_index")
        with self._lock:
            if index in self._indices:
                raise IndexAlreadyExistsError(f"Index {index} already exists")
            self._indices[index] = InMemoryIndex(
                mappings=json.loads(json.dumps(mappings)),
                settings=json.loads(json.dumps(settings)),
            )
        logger.debug(f"Created in-memory index {index}")
        return True

    def put_mapping(self, index: str, mappings: Mapping[str, Any], timeout_ms: int) -> bool:
        self._begin("put_mapping")
        with self._lock:
            target = self._index(index)
            merged = json.loads(json.dumps(mappings))
            properties = dict(target.mappings.get("properties", {}))
            properties.update(merged.get("properties", {}))
            target.mappings.update(merged)
            target.mappings["properties"] = properties
        return True

    def get(self, index: str, doc_id: str, timeout_ms: int) -> RawDocument:
        self._begin("get")
        with self._lock:
            stored = self._index(index).documents.get(doc_id)
            if stored is None:
                return RawDocument(id=doc_id, found=False)
            return self._raw(doc_id, stored)

    def multi_get(self, index: str, doc_ids: Iterable[str], timeout_ms: int) -> list[RawDocument]:
        self._begin("multi_get")
        with self._lock:
            documents = self._index(index).documents
            results = []
            for doc_id in doc_ids:
                stored = documents.get(doc_id)
                if stored is None:
                    results.append(RawDocument(id=doc_id, found=False))
                else:
                    results.append(self._raw(doc_id, stored))
            return results

    def index_document(
        self,
        index: str,
        source: bytes,
        doc_id: str | None,
        timeout_ms: int,
        refresh: str = "false",
    ) -> WriteResult:
        self._begin("index_document")
        with self._lock:
            target = self._index(index)
            if doc_id is None:
                doc_id = uuid.uuid4().hex
            elif doc_id in target.documents:
                raise ConflictingCreateError(doc_id)
            target.documents[doc_id] = _StoredDocument(
                source=bytes(source), version=1, seq_no=target.next_seq_no
            )
            target.next_seq_no += 1
        return WriteResult(id=doc_id, result="created")

    def delete(self, index: str, doc_id: str, timeout_ms: int, refresh: str = "false") -> bool:
        self._begin("delete")
        with self._lock:
            target = self._index(index)
            if target.documents.pop(doc_id, None) is None:
                return False
            target.next_seq_no += 1
            return True

    def bulk_delete(
        self,
        index: str,
        doc_ids: Iterable[str],
        timeout_ms: int,
        refresh: str = "false",
    ) -> list[BulkItemResult]:
        self._begin("bulk_delete")
        with self._lock:
            target = self._index(index)
            results = []
            for doc_id in doc_ids:
                item_failure = self._failures.pop(f"bulk_delete:{doc_id}", None)
                if item_failure is not None:
                    results.append(BulkItemResult(id=doc_id, status=500, error=str(item_failure)))
                elif target.documents.pop(doc_id, None) is None:
                    results.append(BulkItemResult(id=doc_id, status=404))
                else:
                    target.next_seq_no += 1
                    results.append(BulkItemResult(id=doc_id, status=200))
            return results

    def search(self, index: str, query: SearchQuery, timeout_ms: int) -> RawSearchResponse:
        self._begin("search")
        with self._lock:
            documents = list(self._index(index).documents.items())

        matched = []
        for doc_id, stored in documents:
            source = json.loads(stored.source)
            if matches(source, query.query):
                matched.append((doc_id, stored, source))

        # Apply the last sort clause first so earlier clauses take precedence
        for clause in reversed(query.sort):
            (path, options), = clause.items()
            order = options.get("order", "asc") if isinstance(options, Mapping) else str(options)
            reverse = order == "desc"
            present = [m for m in matched if _field_values(m[2], path)]
            missing = [m for m in matched if not _field_values(m[2], path)]
            present.sort(
                key=lambda m: min(map(_sort_key, _field_values(m[2], path))),
                reverse=reverse,
            )
            matched = present + missing

        total = len(matched)
        relation = "eq"
        if self.max_total_hits is not None and total > self.max_total_hits:
            total, relation = self.max_total_hits, "gte"

        page = matched[query.from_index : query.from_index + query.size]
        return RawSearchResponse(
            hits=[self._raw(doc_id, stored) for doc_id, stored, _ in page],
            total=total,
            relation=relation,
        )

    # Testing helpers

    def inject_failure(self, operation: str, exception: Exception) -> None:
        """Make the next call to an operation raise exception.

        Use "bulk_delete:<id>" to fail a single item of the next bulk delete.
        """
        with self._lock:
            self._failures[operation] = exception

    def delete_index(self, index: str) -> None:
        """Drop an index, as if deleted by an operator (testing helper)."""
        with self._lock:
            self._indices.pop(index, None)

    def get_mappings(self, index: str) -> dict[str, Any]:
        """Current mappings of an index (testing helper)."""
        with self._lock:
            return self._index(index).mappings

    def document_count(self, index: str) -> int:
        """Number of stored documents (testing helper)."""
        with self._lock:
            return len(self._index(index).documents)

    def index_count(self) -> int:
        """Number of indices (testing helper)."""
        with self._lock:
            return len(self._indices)
