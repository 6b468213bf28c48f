"""
Collaboration object data model.

This module defines:
- CollaborationObjectType: the closed set of object kinds
- Note / Comment / Annotation: the per-type payload variants
- CollaborationObject: the stored, tenant-scoped document
- CollaborationObjectDocInfo: a document plus its storage metadata
- SearchResult: an ordered page of objects with total-hit semantics
- Request and response shapes exchanged with the transport layer

Invariants:
    - An object's type is derived from its payload variant
    - tenant and access are stamped at creation and never change
    - SearchResult.objects never exceeds total_hits and keeps backend order

How to change safely:
    - New object types need a new variant, a mapping entry and a tag
    - New payload fields must be optional (mapping changes are additive)
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, ClassVar, Union

from ..errors import InvalidRequestError

DEFAULT_MAX_ITEMS = 100

# Source/response field names
ID_FIELD = "id"
CREATED_TIME_FIELD = "createdTimeMs"
UPDATED_TIME_FIELD = "updatedTimeMs"
TENANT_FIELD = "tenant"
ACCESS_LIST_FIELD = "access"
TYPE_FIELD = "type"

# Dropped from responses for callers without full-info access
SENSITIVE_FIELDS = frozenset({TENANT_FIELD, ACCESS_LIST_FIELD, CREATED_TIME_FIELD})


class CollaborationObjectType(Enum):
    """Known collaboration object kinds. The value is the wire tag."""

    NOTE = "note"
    COMMENT = "comment"
    ANNOTATION = "annotation"

    @property
    def tag(self) -> str:
        return self.value

    @classmethod
    def from_tag(cls, tag: str) -> CollaborationObjectType:
        """Look up a type by tag.

        Raises:
            ValueError: If the tag is not a known type
        """
        return cls(tag)


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)


@dataclass(frozen=True)
class Note:
    """Free-form shared note.

    Attributes:
        name: Note title
        description: Note body
        tags: Keyword tags
    """

    TYPE: ClassVar[CollaborationObjectType] = CollaborationObjectType.NOTE

    name: str
    description: str = ""
    tags: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "tags": list(self.tags)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Note:
        return cls(
            name=str(data["name"]),
            description=str(data.get("description", "")),
            tags=tuple(str(t) for t in data.get("tags", ())),
        )


@dataclass(frozen=True)
class Comment:
    """Comment posted to a discussion thread.

    Attributes:
        thread_id: Thread the comment belongs to
        text: Comment body
        reply_to: Id of the comment this one replies to
    """

    TYPE: ClassVar[CollaborationObjectType] = CollaborationObjectType.COMMENT

    thread_id: str
    text: str
    reply_to: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"threadId": self.thread_id, "text": self.text}
        if self.reply_to is not None:
            data["replyTo"] = self.reply_to
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Comment:
        reply_to = data.get("replyTo")
        return cls(
            thread_id=str(data["threadId"]),
            text=str(data["text"]),
            reply_to=None if reply_to is None else str(reply_to),
        )


@dataclass(frozen=True)
class Annotation:
    """Annotation attached to another saved object (visualization, panel, ...).

    Attributes:
        target_id: Id of the annotated object
        text: Annotation body
        target_type: Kind of the annotated object
        start_time_ms: Start of the annotated time range
        end_time_ms: End of the annotated time range
    """

    TYPE: ClassVar[CollaborationObjectType] = CollaborationObjectType.ANNOTATION

    target_id: str
    text: str
    target_type: str = ""
    start_time_ms: int | None = None
    end_time_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "targetId": self.target_id,
            "targetType": self.target_type,
            "text": self.text,
        }
        if self.start_time_ms is not None:
            data["startTimeMs"] = self.start_time_ms
        if self.end_time_ms is not None:
            data["endTimeMs"] = self.end_time_ms
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Annotation:
        return cls(
            target_id=str(data["targetId"]),
            text=str(data["text"]),
            target_type=str(data.get("targetType", "")),
            start_time_ms=_optional_int(data.get("startTimeMs")),
            end_time_ms=_optional_int(data.get("endTimeMs")),
        )


ObjectData = Union[Note, Comment, Annotation]

OBJECT_DATA_CLASSES: dict[CollaborationObjectType, type] = {
    CollaborationObjectType.NOTE: Note,
    CollaborationObjectType.COMMENT: Comment,
    CollaborationObjectType.ANNOTATION: Annotation,
}


@dataclass(frozen=True)
class CollaborationObject:
    """A persisted collaboration object.

    Attributes:
        object_id: Document id (empty until the backend assigns one)
        created_time_ms: Creation timestamp (Unix ms)
        updated_time_ms: Last mutation timestamp (Unix ms)
        tenant: Owning tenant
        access: ACL tokens granted visibility
        object_data: Type-specific payload
    """

    object_id: str
    created_time_ms: int
    updated_time_ms: int
    tenant: str
    access: tuple[str, ...]
    object_data: ObjectData

    @property
    def type(self) -> CollaborationObjectType:
        return self.object_data.TYPE

    def with_id(self, object_id: str) -> CollaborationObject:
        return replace(self, object_id=object_id)

    def to_response_dict(self, filter_sensitive_info: bool = False) -> dict[str, Any]:
        """Render for a response, dropping tenant/access/createdTime when filtered."""
        data: dict[str, Any] = {
            ID_FIELD: self.object_id,
            UPDATED_TIME_FIELD: self.updated_time_ms,
            CREATED_TIME_FIELD: self.created_time_ms,
            TENANT_FIELD: self.tenant,
            ACCESS_LIST_FIELD: list(self.access),
            TYPE_FIELD: self.type.tag,
            self.type.tag: self.object_data.to_dict(),
        }
        if filter_sensitive_info:
            for name in SENSITIVE_FIELDS:
                data.pop(name, None)
        return data


@dataclass(frozen=True)
class CollaborationObjectDocInfo:
    """A collaboration object with its storage metadata. Built on read, never persisted."""

    id: str
    version: int
    seq_no: int
    primary_term: int
    doc: CollaborationObject


class TotalHitRelation(Enum):
    """Whether total_hits is exact or a lower bound."""

    EQUAL_TO = "eq"
    GREATER_THAN_OR_EQUAL_TO = "gte"


@dataclass(frozen=True)
class SearchResult:
    """An ordered page of collaboration objects."""

    start_index: int
    total_hits: int
    total_hit_relation: TotalHitRelation
    objects: tuple[CollaborationObject, ...]

    def __post_init__(self) -> None:
        if len(self.objects) > self.total_hits:
            raise ValueError(
                f"Result holds {len(self.objects)} objects but total_hits is {self.total_hits}"
            )

    @classmethod
    def of(cls, objects: list[CollaborationObject]) -> SearchResult:
        """Exact result holding every object given (id lookups)."""
        return cls(0, len(objects), TotalHitRelation.EQUAL_TO, tuple(objects))

    def to_dict(self, filter_sensitive_info: bool = False) -> dict[str, Any]:
        return {
            "startIndex": self.start_index,
            "totalHits": self.total_hits,
            "totalHitRelation": self.total_hit_relation.value,
            "objectList": [o.to_response_dict(filter_sensitive_info) for o in self.objects],
        }


class SortOrder(Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class GetCollaborationObjectRequest:
    """Lookup by ids, or a filtered/sorted/paginated search when ids is empty.

    Attributes:
        ids: Object ids to fetch
        types: Object types to match (empty matches all)
        from_index: Zero-based offset of the first hit
        max_items: Maximum hits to return (configured default when None)
        sort_field: Field to sort on (backend order when None)
        sort_order: Sort direction (ascending when None)
        filter_params: Filter parameter name to value
    """

    ids: frozenset[str] = frozenset()
    types: frozenset[CollaborationObjectType] = frozenset()
    from_index: int = 0
    max_items: int | None = None
    sort_field: str | None = None
    sort_order: SortOrder | None = None
    filter_params: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.from_index < 0:
            raise InvalidRequestError(f"fromIndex must be >= 0, got {self.from_index}")
        if self.max_items is not None and self.max_items <= 0:
            raise InvalidRequestError(f"maxItems must be > 0, got {self.max_items}")


@dataclass(frozen=True)
class GetCollaborationObjectResponse:
    """Get/search response plus whether sensitive fields must be dropped."""

    search_result: SearchResult
    filter_sensitive_info: bool

    def to_dict(self) -> dict[str, Any]:
        return self.search_result.to_dict(self.filter_sensitive_info)


class DeleteStatus(Enum):
    OK = "OK"
    NOT_FOUND = "NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"
    FAILED = "FAILED"
