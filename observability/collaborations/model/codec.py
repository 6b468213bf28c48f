"""
Document codec for collaboration objects.

Converts between CollaborationObject and the JSON source stored in the
search index. The payload is stored under a key equal to its type tag so
every variant gets its own mapping:

    {
        "updatedTimeMs": 1700000000000,
        "createdTimeMs": 1700000000000,
        "tenant": "team-a",
        "access": ["User:alice", "BERole:ops"],
        "type": "note",
        "note": {"name": "...", "description": "...", "tags": [...]}
    }

Invariants:
    - serialize() is deterministic (sorted keys, compact separators)
    - The document id is never part of the source
    - Unknown top-level keys are ignored, unknown types are a hard failure
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

from ..errors import DocumentParseError
from .types import (
    ACCESS_LIST_FIELD,
    CREATED_TIME_FIELD,
    OBJECT_DATA_CLASSES,
    TENANT_FIELD,
    TYPE_FIELD,
    UPDATED_TIME_FIELD,
    CollaborationObject,
    CollaborationObjectType,
)

logger = logging.getLogger(__name__)

_KNOWN_FIELDS = frozenset(
    {UPDATED_TIME_FIELD, CREATED_TIME_FIELD, TENANT_FIELD, ACCESS_LIST_FIELD, TYPE_FIELD}
    | {t.tag for t in CollaborationObjectType}
)


class DocumentCodec:
    """Serializes collaboration objects to index source and back.

    Thread safety:
        This class is stateless and thread-safe.

    Example:
        >>> codec = DocumentCodec()
        >>> source = codec.serialize(doc)
        >>> codec.parse(source, "abc").object_data == doc.object_data
        True
    """

    def to_source(self, doc: CollaborationObject) -> dict[str, Any]:
        """Build the source mapping for a document."""
        tag = doc.type.tag
        return {
            UPDATED_TIME_FIELD: doc.updated_time_ms,
            CREATED_TIME_FIELD: doc.created_time_ms,
            TENANT_FIELD: doc.tenant,
            ACCESS_LIST_FIELD: list(doc.access),
            TYPE_FIELD: tag,
            tag: doc.object_data.to_dict(),
        }

    def serialize(self, doc: CollaborationObject) -> bytes:
        """Encode a document as UTF-8 JSON source."""
        return json.dumps(
            self.to_source(doc), sort_keys=True, separators=(",", ":")
        ).encode("utf-8")

    def parse(
        self,
        source: bytes | str | Mapping[str, Any],
        object_id: str,
    ) -> CollaborationObject:
        """Decode index source into a document.

        Args:
            source: Raw JSON bytes/str, or an already-decoded mapping
            object_id: Document id the source was stored under

        Returns:
            Decoded CollaborationObject

        Raises:
            DocumentParseError: If the source is malformed or its type is unknown
        """
        if isinstance(source, (bytes, str)):
            try:
                source = json.loads(source)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise DocumentParseError(
                    f"Source of {object_id} is not valid JSON: {e}", object_id
                ) from e
        if not isinstance(source, Mapping):
            raise DocumentParseError(f"Source of {object_id} is not an object", object_id)

        tag = source.get(TYPE_FIELD)
        try:
            object_type = CollaborationObjectType.from_tag(tag)
        except ValueError:
            raise DocumentParseError(
                f"Source of {object_id} has unknown type {tag!r}", object_id
            ) from None

        payload = source.get(tag)
        if not isinstance(payload, Mapping):
            raise DocumentParseError(
                f"Source of {object_id} has no '{tag}' payload", object_id
            )

        unknown = set(source) - _KNOWN_FIELDS
        if unknown:
            logger.debug(f"Skipping unknown fields {sorted(unknown)} in {object_id}")

        try:
            object_data = OBJECT_DATA_CLASSES[object_type].from_dict(dict(payload))
            return CollaborationObject(
                object_id=object_id,
                created_time_ms=int(source[CREATED_TIME_FIELD]),
                updated_time_ms=int(source[UPDATED_TIME_FIELD]),
                tenant=str(source.get(TENANT_FIELD, "")),
                access=tuple(str(a) for a in source.get(ACCESS_LIST_FIELD, ())),
                object_data=object_data,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DocumentParseError(
                f"Source of {object_id} does not match type '{tag}': {e!r}", object_id
            ) from e
