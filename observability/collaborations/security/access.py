"""
Identity and access policy for collaboration objects.

This module handles the access decisions the gate applies:
- ACL token derivation (User:<name>, Role:<role>, BERole:<backend role>)
- Tenant resolution (requested tenant, default tenant "")
- Visibility checks against an object's tenant and access list
- Search ACL filters and full-info (unredacted output) privilege

Invariants:
    - Tenant isolation is absolute: a tenant mismatch is never visible
    - Superusers (all_access) skip ACL matching only inside their tenant,
      and only when admin_access is "all"
    - Anonymous callers are rejected when require_identity is set;
      otherwise they are trusted local callers
    - The dashboards server user never acts inside the private tenant

How to change safely:
    - New token kinds must be additive (existing access lists stay valid)
    - Test both single and batch paths when changing does_have_access
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from ..config import AdminAccess, FilterBy, SecurityConfig
from ..errors import PermissionDeniedError, UnauthenticatedError

logger = logging.getLogger(__name__)

USER_TAG = "User:"
ROLE_TAG = "Role:"
BACKEND_ROLE_TAG = "BERole:"
ALL_ACCESS_ROLE = "all_access"
DASHBOARDS_SERVER_USER = "kibanaserver"
PRIVATE_TENANT = "__user__"
DEFAULT_TENANT = ""


@dataclass(frozen=True)
class Identity:
    """An authenticated caller, resolved by the surrounding layer.

    Attributes:
        user_name: User name
        tenant: Requested tenant (None means the default tenant)
        roles: Security roles
        backend_roles: Backend roles
    """

    user_name: str
    tenant: str | None = None
    roles: frozenset[str] = frozenset()
    backend_roles: frozenset[str] = frozenset()

    @property
    def user_token(self) -> str:
        return f"{USER_TAG}{self.user_name}"

    @property
    def role_tokens(self) -> list[str]:
        return [f"{ROLE_TAG}{r}" for r in sorted(self.roles)]

    @property
    def backend_role_tokens(self) -> list[str]:
        return [f"{BACKEND_ROLE_TAG}{r}" for r in sorted(self.backend_roles)]

    @property
    def is_superuser(self) -> bool:
        return ALL_ACCESS_ROLE in self.roles


class UserAccessManager:
    """Applies the configured access policy to identities.

    Attributes:
        config: Security configuration

    Thread safety:
        Stateless apart from immutable configuration; thread-safe.

    Example:
        >>> manager = UserAccessManager(SecurityConfig())
        >>> alice = Identity("alice", tenant="team-a", backend_roles=frozenset({"ops"}))
        >>> manager.get_all_access_info(alice)
        ['User:alice', 'BERole:ops']
        >>> manager.does_have_access(alice, "team-a", ["BERole:ops"])
        True
    """

    def __init__(self, config: SecurityConfig | None = None) -> None:
        self.config = config or SecurityConfig()

    def validate_identity(self, identity: Identity | None) -> None:
        """Check the caller may use the store at all.

        Raises:
            UnauthenticatedError: If an identity is required but absent
            PermissionDeniedError: If the dashboards server user targets
                the private tenant
        """
        if identity is None:
            if self.config.require_identity:
                raise UnauthenticatedError("Authenticated user required")
            return
        if (
            self.get_user_tenant(identity) == PRIVATE_TENANT
            and identity.user_name == DASHBOARDS_SERVER_USER
        ):
            raise PermissionDeniedError("Permission denied for private tenant")

    def get_user_tenant(self, identity: Identity | None) -> str:
        if identity is None or identity.tenant is None:
            return DEFAULT_TENANT
        return identity.tenant

    def get_all_access_info(self, identity: Identity | None) -> list[str]:
        """Every ACL token of the identity, stamped onto objects it creates."""
        if identity is None:
            return []
        return [identity.user_token, *identity.backend_role_tokens, *identity.role_tokens]

    def get_search_access_info(self, identity: Identity | None) -> list[str] | None:
        """ACL tokens a search is restricted to.

        Returns:
            None when no ACL filter applies, otherwise the tokens to match.
            An empty list means the identity can match nothing.
        """
        if identity is None or self._can_admin_view_all_items(identity):
            return None
        if self.config.filter_by == FilterBy.NONE:
            return None
        return self._matching_tokens(identity)

    def does_have_access(
        self,
        identity: Identity | None,
        tenant: str,
        access: Iterable[str],
    ) -> bool:
        """Whether the identity may see an object with this tenant and access list."""
        if identity is None:
            return not self.config.require_identity and tenant == DEFAULT_TENANT
        if self.get_user_tenant(identity) != tenant:
            return False
        if self._can_admin_view_all_items(identity):
            return True
        if self.config.filter_by == FilterBy.NONE:
            return True
        return not set(self._matching_tokens(identity)).isdisjoint(access)

    def has_all_info_access(self, identity: Identity | None) -> bool:
        """Whether responses may include tenant, access and creation time."""
        if identity is None:
            return not self.config.require_identity
        return identity.is_superuser

    def _can_admin_view_all_items(self, identity: Identity) -> bool:
        return self.config.admin_access == AdminAccess.ALL and identity.is_superuser

    def _matching_tokens(self, identity: Identity) -> list[str]:
        filter_by = self.config.filter_by
        if filter_by == FilterBy.NONE:
            return []
        if filter_by == FilterBy.USER:
            return [identity.user_token]
        if filter_by == FilterBy.ROLES:
            return identity.role_tokens
        if filter_by == FilterBy.BACKEND_ROLES:
            return identity.backend_role_tokens
        return self.get_all_access_info(identity)
