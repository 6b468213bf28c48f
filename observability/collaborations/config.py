"""
Configuration management for the collaboration object store.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - The operation timeout is fixed for the process lifetime
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Renaming an environment variable is a breaking deployment change
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class SearchBackendKind(Enum):
    """Supported document-search backends."""

    ELASTICSEARCH = "elasticsearch"
    MEMORY = "memory"


class FilterBy(Enum):
    """Which identity tokens are matched against an object's access list."""

    ANY = "any"
    NONE = "none"
    USER = "user"
    ROLES = "roles"
    BACKEND_ROLES = "backend_roles"


class AdminAccess(Enum):
    """Whether superusers see every object in their tenant."""

    ALL = "all"
    OWN = "own"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class ElasticsearchConfig:
    """Search cluster connection configuration.

    Attributes:
        hosts: Comma-separated list of node URLs
        username: Basic auth username (optional)
        password: Basic auth password (optional)
        verify_certs: Whether to verify TLS certificates
        ca_certs: Path to CA bundle
        run_as: User the store acts as on the cluster (security context)
    """

    hosts: str = "http://localhost:9200"
    username: str | None = None
    password: str | None = None
    verify_certs: bool = True
    ca_certs: str | None = None
    run_as: str | None = None

    @property
    def host_list(self) -> list[str]:
        return [h.strip() for h in self.hosts.split(",") if h.strip()]

    @classmethod
    def from_env(cls) -> ElasticsearchConfig:
        """Load configuration from environment variables."""
        return cls(
            hosts=os.getenv("ELASTICSEARCH_HOSTS", "http://localhost:9200"),
            username=os.getenv("ELASTICSEARCH_USERNAME"),
            password=os.getenv("ELASTICSEARCH_PASSWORD"),
            verify_certs=_env_bool("ELASTICSEARCH_VERIFY_CERTS", "true"),
            ca_certs=os.getenv("ELASTICSEARCH_CA_CERTS"),
            run_as=os.getenv("ELASTICSEARCH_RUN_AS"),
        )


@dataclass(frozen=True)
class IndexConfig:
    """Backing index configuration.

    Attributes:
        name: Index holding the collaboration objects
        operation_timeout_ms: Fixed timeout applied to every backend call
        default_items_query_count: Page size when a search gives none
        refresh_policy: Refresh policy for writes (false, true, wait_for)
    """

    name: str = ".collaborations"
    operation_timeout_ms: int = 60000
    default_items_query_count: int = 100
    refresh_policy: str = "false"

    @classmethod
    def from_env(cls) -> IndexConfig:
        """Load configuration from environment variables."""
        return cls(
            name=os.getenv("COLLAB_INDEX_NAME", ".collaborations"),
            operation_timeout_ms=int(os.getenv("COLLAB_OPERATION_TIMEOUT_MS", "60000")),
            default_items_query_count=int(os.getenv("COLLAB_DEFAULT_ITEMS", "100")),
            refresh_policy=os.getenv("COLLAB_REFRESH_POLICY", "false"),
        )


@dataclass(frozen=True)
class SecurityConfig:
    """Access policy configuration.

    Attributes:
        require_identity: Reject anonymous callers
        filter_by: Identity tokens used for ACL matching and search filtering
        admin_access: Whether all_access users bypass ACL matching
    """

    require_identity: bool = True
    filter_by: FilterBy = FilterBy.ANY
    admin_access: AdminAccess = AdminAccess.ALL

    @classmethod
    def from_env(cls) -> SecurityConfig:
        """Load configuration from environment variables."""
        filter_by = os.getenv("COLLAB_FILTER_BY", "any").lower()
        admin_access = os.getenv("COLLAB_ADMIN_ACCESS", "all").lower()
        try:
            return cls(
                require_identity=_env_bool("COLLAB_REQUIRE_IDENTITY", "true"),
                filter_by=FilterBy(filter_by),
                admin_access=AdminAccess(admin_access),
            )
        except ValueError as e:
            raise ValueError(f"Invalid security configuration: {e}") from e


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServiceConfig:
    """Complete service configuration.

    Attributes:
        backend: Which search backend to use
        elasticsearch: Cluster connection (if backend is ELASTICSEARCH)
        index: Backing index configuration
        security: Access policy configuration
        observability: Logging configuration
    """

    backend: SearchBackendKind = SearchBackendKind.ELASTICSEARCH
    elasticsearch: ElasticsearchConfig = field(default_factory=ElasticsearchConfig)
    index: IndexConfig = field(default_factory=IndexConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServiceConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServiceConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        backend_str = os.getenv("SEARCH_BACKEND", "elasticsearch").lower()
        try:
            backend = SearchBackendKind(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid SEARCH_BACKEND '{backend_str}'. Must be one of: elasticsearch, memory"
            )

        config = cls(
            backend=backend,
            elasticsearch=ElasticsearchConfig.from_env(),
            index=IndexConfig.from_env(),
            security=SecurityConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.backend == SearchBackendKind.ELASTICSEARCH and not self.elasticsearch.host_list:
            raise ValueError("ELASTICSEARCH_HOSTS is required when SEARCH_BACKEND=elasticsearch")
        if not self.index.name:
            raise ValueError("COLLAB_INDEX_NAME must not be empty")
        if self.index.operation_timeout_ms <= 0:
            raise ValueError("COLLAB_OPERATION_TIMEOUT_MS must be positive")
        if self.index.default_items_query_count <= 0:
            raise ValueError("COLLAB_DEFAULT_ITEMS must be positive")
        if self.index.refresh_policy not in ("true", "false", "wait_for"):
            raise ValueError(
                f"Invalid COLLAB_REFRESH_POLICY '{self.index.refresh_policy}'. "
                "Must be one of: true, false, wait_for"
            )
        if bool(self.elasticsearch.username) != bool(self.elasticsearch.password):
            logger.warning("Only one of ELASTICSEARCH_USERNAME/ELASTICSEARCH_PASSWORD is set")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Collaboration store configuration loaded",
            extra={
                "backend": self.backend.value,
                "elasticsearch_hosts": self.elasticsearch.host_list
                if self.backend == SearchBackendKind.ELASTICSEARCH
                else None,
                "elasticsearch_auth": self.elasticsearch.username is not None,
                "index_name": self.index.name,
                "operation_timeout_ms": self.index.operation_timeout_ms,
                "require_identity": self.security.require_identity,
                "filter_by": self.security.filter_by.value,
                "admin_access": self.security.admin_access.value,
                "log_level": self.observability.log_level,
            },
        )
