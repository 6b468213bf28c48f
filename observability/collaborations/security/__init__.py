"""
Security layer for the collaboration object store.

This module provides:
- Identity: the caller as resolved by the surrounding layer
- UserAccessManager: tenant/ACL access policy
- AccessGate: authorization around every store operation

Invariants:
    - Authorization errors are raised only by the gate
    - Objects are never visible across tenants
"""

from .access import (
    ALL_ACCESS_ROLE,
    BACKEND_ROLE_TAG,
    DEFAULT_TENANT,
    PRIVATE_TENANT,
    ROLE_TAG,
    USER_TAG,
    Identity,
    UserAccessManager,
)
from .gate import AccessGate

__all__ = [
    "Identity",
    "UserAccessManager",
    "AccessGate",
    "USER_TAG",
    "ROLE_TAG",
    "BACKEND_ROLE_TAG",
    "ALL_ACCESS_ROLE",
    "PRIVATE_TENANT",
    "DEFAULT_TENANT",
]
