"""
Model module for collaboration objects.

This module provides:
- The typed document model and its per-type payload variants
- Request/response shapes exchanged with the transport layer
- The codec between documents and index source

Invariants:
    - The set of object types is closed; unknown tags fail to decode
    - Payload variant and type tag can never disagree
"""

from .codec import DocumentCodec
from .types import (
    Annotation,
    CollaborationObject,
    CollaborationObjectDocInfo,
    CollaborationObjectType,
    Comment,
    DeleteStatus,
    GetCollaborationObjectRequest,
    GetCollaborationObjectResponse,
    Note,
    ObjectData,
    SearchResult,
    SortOrder,
    TotalHitRelation,
)

__all__ = [
    "DocumentCodec",
    "CollaborationObjectType",
    "Note",
    "Comment",
    "Annotation",
    "ObjectData",
    "CollaborationObject",
    "CollaborationObjectDocInfo",
    "SearchResult",
    "TotalHitRelation",
    "SortOrder",
    "GetCollaborationObjectRequest",
    "GetCollaborationObjectResponse",
    "DeleteStatus",
]
