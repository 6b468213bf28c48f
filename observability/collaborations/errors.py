"""
Error types for the collaboration object store.

This module defines every exception the store and the access gate raise:
- CollaborationError: Base exception
- NotFoundError / PermissionDeniedError / UnauthenticatedError: access outcomes
- ConflictingCreateError: create-only write hit an existing id
- BackendUnavailableError / OperationTimeoutError: search cluster failures
- ProvisioningError: the backing index could not be made ready
- DocumentParseError: stored source does not decode into a known type

Invariants:
    - All errors inherit from CollaborationError
    - Each error carries a stable code and a response status
    - NOT_FOUND and FORBIDDEN never share a status
    - Timeouts map to a retryable status

How to change safely:
    - Never change an existing code or status, clients branch on them
    - Add new error kinds as new subclasses
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any


class CollaborationError(Exception):
    """Base exception for all collaboration store errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        status: HTTP-equivalent response status
        details: Additional error context
    """

    code = "COLLABORATION_ERROR"
    status = 500

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status is not None:
            self.status = status
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Render the error the way the REST layer reports it."""
        return {
            "error": self.message,
            "error_code": self.code,
            "status": self.status,
        }


class NotFoundError(CollaborationError):
    """Requested collaboration object(s) do not exist.

    Attributes:
        ids: The ids that could not be found
    """

    code = "NOT_FOUND"
    status = 404

    def __init__(self, ids: Iterable[str], message: str | None = None) -> None:
        self.ids = frozenset(ids)
        shown = ", ".join(sorted(self.ids))
        super().__init__(
            message or f"CollaborationObject [{shown}] not found",
            details={"ids": sorted(self.ids)},
        )


class PermissionDeniedError(CollaborationError):
    """Caller identity lacks tenant or ACL access to an existing object."""

    code = "FORBIDDEN"
    status = 403

    def __init__(self, message: str, object_id: str | None = None) -> None:
        super().__init__(message, details={"id": object_id})
        self.object_id = object_id


class UnauthenticatedError(CollaborationError):
    """An identity is required but the caller is anonymous."""

    code = "UNAUTHENTICATED"
    status = 401


class ConflictingCreateError(CollaborationError):
    """Create was invoked with an id that already exists."""

    code = "ALREADY_EXISTS"
    status = 409

    def __init__(self, object_id: str | None) -> None:
        super().__init__(
            f"CollaborationObject {object_id} already exists",
            details={"id": object_id},
        )
        self.object_id = object_id


class InvalidRequestError(CollaborationError):
    """Request fields are out of range or inconsistent."""

    code = "BAD_REQUEST"
    status = 400


class BackendUnavailableError(CollaborationError):
    """The search cluster failed or did not acknowledge an operation."""

    code = "BACKEND_UNAVAILABLE"
    status = 503


class OperationTimeoutError(BackendUnavailableError):
    """A backend call exceeded the fixed operation timeout."""

    code = "TIMEOUT"
    status = 408


class ProvisioningError(CollaborationError):
    """Index creation or mapping update failed for a reason other than 'already exists'."""

    code = "PROVISIONING_FAILED"
    status = 500


class DocumentParseError(CollaborationError):
    """Stored source does not decode into a known collaboration object."""

    code = "PARSE_ERROR"
    status = 500

    def __init__(self, message: str, object_id: str | None = None) -> None:
        super().__init__(message, details={"id": object_id})
        self.object_id = object_id


class CreateFailedError(CollaborationError):
    """The backend answered a create with something other than 'created'."""

    code = "CREATE_FAILED"
    status = 500


class DeleteFailedError(CollaborationError):
    """An object passed the access check but the backend did not delete it."""

    code = "DELETE_FAILED"
    status = 408
