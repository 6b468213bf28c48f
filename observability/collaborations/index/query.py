"""
Query construction for collaboration object search.

Translates a GetCollaborationObjectRequest plus the caller's tenant and
ACL tokens into a single bool query with sort and pagination.

Invariants:
    - Every query filters on the exact tenant
    - An empty access list applies no ACL restriction
    - An empty type set matches all types
    - Filter parameters outside FILTER_PARAMS are ignored
    - Pagination is offset based: from_index / max_items map to from / size

How to change safely:
    - New filter parameters must reference mapped fields
    - Keep the in-memory backend able to evaluate every clause emitted here
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from ..errors import InvalidRequestError
from ..model.types import (
    ACCESS_LIST_FIELD,
    CREATED_TIME_FIELD,
    DEFAULT_MAX_ITEMS,
    TENANT_FIELD,
    TYPE_FIELD,
    UPDATED_TIME_FIELD,
    GetCollaborationObjectRequest,
    SortOrder,
)
from .base import SearchQuery

logger = logging.getLogger(__name__)

QUERY_PARAM = "query"

KEYWORD_FILTER_PARAMS = frozenset(
    {
        "comment.threadId",
        "comment.replyTo",
        "annotation.targetId",
        "annotation.targetType",
        "note.tags",
    }
)
TEXT_FILTER_PARAMS = frozenset(
    {"note.name", "note.description", "comment.text", "annotation.text"}
)
RANGE_FILTER_PARAMS = frozenset({CREATED_TIME_FIELD, UPDATED_TIME_FIELD})

FILTER_PARAMS = KEYWORD_FILTER_PARAMS | TEXT_FILTER_PARAMS | RANGE_FILTER_PARAMS | {QUERY_PARAM}

# Text fields mapped with a keyword sub-field
KEYWORD_SORT_FIELDS = frozenset({"note.name", "annotation.text"})


def _split_values(value: str) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


def _range_bounds(name: str, value: str) -> dict[str, int]:
    """Parse "<from>..<to>" (either side optional) into range bounds.

    Raises:
        InvalidRequestError: If the value is not a valid range
    """
    start, sep, end = value.partition("..")
    if not sep:
        raise InvalidRequestError(f"Filter {name} must look like <from>..<to>, got {value!r}")
    bounds: dict[str, int] = {}
    try:
        if start.strip():
            bounds["gte"] = int(start)
        if end.strip():
            bounds["lte"] = int(end)
    except ValueError:
        raise InvalidRequestError(f"Filter {name} bounds must be integers, got {value!r}") from None
    return bounds


class CollaborationQueryBuilder:
    """Builds search queries for the collaboration store.

    Attributes:
        operation_timeout_ms: Timeout carried by every search
        default_items: Page size when a request gives none
    """

    def __init__(self, operation_timeout_ms: int, default_items: int = DEFAULT_MAX_ITEMS) -> None:
        self.operation_timeout_ms = operation_timeout_ms
        self.default_items = default_items

    def build(
        self,
        tenant: str,
        access: Iterable[str],
        request: GetCollaborationObjectRequest,
    ) -> SearchQuery:
        """Build the full search request: query, sort and pagination."""
        return SearchQuery(
            query=self.build_query(tenant, access, request),
            from_index=request.from_index,
            size=request.max_items if request.max_items is not None else self.default_items,
            sort=self.build_sort(request.sort_field, request.sort_order),
            timeout_ms=self.operation_timeout_ms,
        )

    def build_query(
        self,
        tenant: str,
        access: Iterable[str],
        request: GetCollaborationObjectRequest,
    ) -> dict[str, Any]:
        filters: list[dict[str, Any]] = [{"terms": {TENANT_FIELD: [tenant]}}]

        access_list = sorted(set(access))
        if access_list:
            filters.append({"terms": {ACCESS_LIST_FIELD: access_list}})

        if request.types:
            filters.append({"terms": {TYPE_FIELD: sorted(t.tag for t in request.types)}})

        filters.extend(self.build_filters(request.filter_params))
        return {"bool": {"filter": filters}}

    def build_filters(self, filter_params: Mapping[str, str]) -> list[dict[str, Any]]:
        """Clauses for allow-listed filter parameters, in key order."""
        clauses: list[dict[str, Any]] = []
        for name in sorted(filter_params):
            value = filter_params[name]
            if name not in FILTER_PARAMS:
                logger.debug(f"Ignoring unknown filter parameter {name}")
                continue
            if name in KEYWORD_FILTER_PARAMS:
                values = _split_values(value)
                if values:
                    clauses.append({"terms": {name: values}})
            elif name in TEXT_FILTER_PARAMS:
                clauses.append({"match_phrase_prefix": {name: value}})
            elif name in RANGE_FILTER_PARAMS:
                bounds = _range_bounds(name, value)
                if bounds:
                    clauses.append({"range": {name: bounds}})
            else:
                clauses.append(
                    {
                        "multi_match": {
                            "query": value,
                            "type": "phrase_prefix",
                            "fields": sorted(TEXT_FILTER_PARAMS),
                        }
                    }
                )
        return clauses

    def build_sort(
        self,
        sort_field: str | None,
        sort_order: SortOrder | None,
    ) -> list[dict[str, Any]]:
        if not sort_field:
            return []
        order = (sort_order or SortOrder.ASC).value
        field_name = f"{sort_field}.keyword" if sort_field in KEYWORD_SORT_FIELDS else sort_field
        return [{field_name: {"order": order}}]
