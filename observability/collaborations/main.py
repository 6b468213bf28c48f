"""
Collaboration store - service bootstrap and admin CLI.

This module wires the store together from configuration:
- Search backend capability (constructed once, shared by reference)
- Schema provisioner with one shared ProvisioningState
- Collaboration store, access policy and access gate

and exposes the `collab-admin` command:

Usage:
    collab-admin ensure-index      # create the index / apply the mapping
    collab-admin show-mapping      # print the bundled mapping and settings
    collab-admin show-config       # print the effective configuration

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - One backend client per process
    - All components share the same ProvisioningState
    - Secrets are never printed

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep command output stable for scripts
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass
from typing import Any

import json_log_formatter

from .config import SearchBackendKind, ServiceConfig
from .errors import CollaborationError
from .index import (
    CollaborationQueryBuilder,
    CollaborationStore,
    ProvisioningState,
    SchemaProvisioner,
    SearchBackend,
    create_search_backend,
)
from .index.provisioner import schema_version
from .security import AccessGate, UserAccessManager

logger = logging.getLogger(__name__)


def setup_logging(config: ServiceConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Service configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("elasticsearch").setLevel(logging.WARNING)
    logging.getLogger("elastic_transport").setLevel(logging.WARNING)


@dataclass
class CollaborationService:
    """All store components, built once per process.

    Attributes:
        config: Service configuration
        backend: Search backend capability
        provisioner: Schema provisioner
        store: Collaboration store
        access_manager: Access policy
        gate: Access gate, the entry point for callers

    Example:
        >>> service = CollaborationService.from_config(ServiceConfig.from_env())
        >>> service.gate.create(identity, Note(name="Incident review"))
    """

    config: ServiceConfig
    backend: SearchBackend
    provisioner: SchemaProvisioner
    store: CollaborationStore
    access_manager: UserAccessManager
    gate: AccessGate

    @classmethod
    def from_config(
        cls,
        config: ServiceConfig,
        backend: SearchBackend | None = None,
    ) -> CollaborationService:
        """Build the service.

        Args:
            config: Service configuration
            backend: Backend to use instead of the configured one

        Returns:
            Wired service (the index is provisioned lazily on first use)
        """
        backend = backend if backend is not None else create_search_backend(config)
        timeout_ms = config.index.operation_timeout_ms
        provisioner = SchemaProvisioner(
            backend,
            config.index.name,
            timeout_ms,
            state=ProvisioningState(),
        )
        store = CollaborationStore(
            backend,
            provisioner,
            query_builder=CollaborationQueryBuilder(
                timeout_ms, default_items=config.index.default_items_query_count
            ),
            operation_timeout_ms=timeout_ms,
            refresh_policy=config.index.refresh_policy,
        )
        access_manager = UserAccessManager(config.security)
        gate = AccessGate(store, access_manager)
        logger.info(
            "Collaboration service initialized",
            extra={"backend": config.backend.value, "index_name": config.index.name},
        )
        return cls(
            config=config,
            backend=backend,
            provisioner=provisioner,
            store=store,
            access_manager=access_manager,
            gate=gate,
        )


def _config_summary(config: ServiceConfig) -> dict[str, Any]:
    summary: dict[str, Any] = {
        "backend": config.backend.value,
        "index": {
            "name": config.index.name,
            "operation_timeout_ms": config.index.operation_timeout_ms,
            "default_items_query_count": config.index.default_items_query_count,
            "refresh_policy": config.index.refresh_policy,
        },
        "security": {
            "require_identity": config.security.require_identity,
            "filter_by": config.security.filter_by.value,
            "admin_access": config.security.admin_access.value,
        },
        "observability": {
            "log_level": config.observability.log_level,
            "log_format": config.observability.log_format,
        },
    }
    if config.backend == SearchBackendKind.ELASTICSEARCH:
        summary["elasticsearch"] = {
            "hosts": config.elasticsearch.host_list,
            "username": config.elasticsearch.username,
            "password": "***" if config.elasticsearch.password else None,
            "verify_certs": config.elasticsearch.verify_certs,
            "run_as": config.elasticsearch.run_as,
        }
    return summary


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for collab-admin."""
    parser = argparse.ArgumentParser(description="Collaboration store administration tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("ensure-index", help="Create the index or apply its mapping")

    mapping_parser = subparsers.add_parser(
        "show-mapping", help="Print the bundled mapping and settings"
    )
    mapping_parser.add_argument(
        "--section",
        choices=["all", "mappings", "settings"],
        default="all",
        help="Part of the bundle to print",
    )

    subparsers.add_parser("show-config", help="Print the effective configuration")

    args = parser.parse_args(argv)

    try:
        config = ServiceConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    config.log_config()

    if args.command == "show-config":
        print(json.dumps(_config_summary(config), indent=2, sort_keys=True))
        sys.exit(0)

    service = CollaborationService.from_config(config)

    if args.command == "ensure-index":
        try:
            service.provisioner.ensure_index()
        except CollaborationError as e:
            print(f"Index {config.index.name} could not be made ready: {e}", file=sys.stderr)
            sys.exit(1)
        print(
            f"Index {config.index.name} is ready "
            f"(schema version {schema_version(service.provisioner.mappings)})"
        )
        sys.exit(0)

    elif args.command == "show-mapping":
        bundle = {
            "mappings": service.provisioner.mappings,
            "settings": service.provisioner.settings,
        }
        if args.section != "all":
            bundle = {args.section: bundle[args.section]}
        print(json.dumps(bundle, indent=2, sort_keys=True))
        sys.exit(0)


if __name__ == "__main__":
    main()
