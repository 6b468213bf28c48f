"""
Schema provisioning for the collaborations index.

This module ensures the backing index exists with the expected mapping
and settings before any store operation touches it.

Lifecycle per call to ensure_index():
    1. Index absent      -> create it with mapping + settings
    2. Index present but
       mapping not yet
       applied by this
       process           -> put the (additive) mapping once
    3. Otherwise         -> nothing to do

Invariants:
    - ensure_index() is idempotent and safe under concurrent callers
    - "Already exists" during creation is success, never failure
    - After any other creation failure the index existence is re-checked
      before the failure is reported
    - A mapping update against a vanished index is logged and swallowed;
      the next call re-creates the index
    - The mapping-applied flag is owned by a ProvisioningState passed in
      by reference and flipped with compare-and-set

How to change safely:
    - Mapping changes must be additive and bump _meta.schema_version
    - Never drop or recreate an existing index from this module
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from ..errors import BackendUnavailableError, CollaborationError, ProvisioningError
from .base import IndexAlreadyExistsError, IndexMissingError, SearchBackend

logger = logging.getLogger(__name__)

RESOURCES_DIR = Path(__file__).parent / "resources"
MAPPING_FILE = "collaborations-mapping.yml"
SETTINGS_FILE = "collaborations-settings.yml"


def load_resource(name: str) -> dict[str, Any]:
    """Load a YAML resource bundled with the package.

    Raises:
        FileNotFoundError: If the resource is missing
    """
    with open(RESOURCES_DIR / name, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def schema_version(mappings: Mapping[str, Any]) -> int:
    """Schema version declared in a mapping's _meta block (0 when absent)."""
    return int(mappings.get("_meta", {}).get("schema_version", 0))


class ProvisioningState:
    """Process-wide provisioning flag with an atomic compare-and-set.

    Constructed once at startup and shared by reference with every
    provisioner working on the same index.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._mapping_applied = False

    @property
    def mapping_applied(self) -> bool:
        with self._lock:
            return self._mapping_applied

    def compare_and_set(self, expected: bool, new: bool) -> bool:
        """Set the flag to new iff it currently equals expected."""
        with self._lock:
            if self._mapping_applied != expected:
                return False
            self._mapping_applied = new
            return True

    def reset(self) -> None:
        with self._lock:
            self._mapping_applied = False


class SchemaProvisioner:
    """Creates the collaborations index and applies its mapping.

    Attributes:
        backend: Search backend
        index_name: Backing index name
        operation_timeout_ms: Fixed timeout for every backend call
        mappings: Index mapping bundle
        settings: Index settings bundle
        state: Shared provisioning state

    Example:
        >>> provisioner = SchemaProvisioner(backend, ".collaborations", 60000)
        >>> provisioner.ensure_index()
    """

    def __init__(
        self,
        backend: SearchBackend,
        index_name: str,
        operation_timeout_ms: int,
        mappings: Mapping[str, Any] | None = None,
        settings: Mapping[str, Any] | None = None,
        state: ProvisioningState | None = None,
    ) -> None:
        self.backend = backend
        self.index_name = index_name
        self.operation_timeout_ms = operation_timeout_ms
        self.mappings = dict(mappings) if mappings is not None else load_resource(MAPPING_FILE)
        self.settings = dict(settings) if settings is not None else load_resource(SETTINGS_FILE)
        self.state = state or ProvisioningState()

    def ensure_index(self) -> None:
        """Make the index ready for use.

        Raises:
            ProvisioningError: If the index could not be created
            BackendUnavailableError: If the cluster did not acknowledge
                creation or the mapping update
        """
        if not self.backend.index_exists(self.index_name, self.operation_timeout_ms):
            self._create_index()
        elif not self.state.mapping_applied:
            self._update_mappings()

    def _create_index(self) -> None:
        try:
            acknowledged = self.backend.create_index(
                self.index_name, self.mappings, self.settings, self.operation_timeout_ms
            )
        except IndexAlreadyExistsError:
            logger.info(f"Index {self.index_name} already exists")
            self.state.compare_and_set(False, True)
            return
        except CollaborationError as e:
            if self._exists_after_failure():
                logger.info(
                    f"Index {self.index_name} appeared after create failure",
                    extra={"index": self.index_name, "error": str(e)},
                )
                self.state.compare_and_set(False, True)
                return
            raise ProvisioningError(
                f"Index {self.index_name} creation failed: {e}",
                details={"index": self.index_name},
            ) from e

        if not acknowledged:
            raise BackendUnavailableError(f"Index {self.index_name} creation not acknowledged")
        logger.info(
            f"Index {self.index_name} created",
            extra={"index": self.index_name, "schema_version": schema_version(self.mappings)},
        )
        self.state.compare_and_set(False, True)

    def _exists_after_failure(self) -> bool:
        try:
            return self.backend.index_exists(self.index_name, self.operation_timeout_ms)
        except CollaborationError:
            logger.warning(f"Existence re-check for {self.index_name} failed", exc_info=True)
            return False

    def _update_mappings(self) -> None:
        try:
            acknowledged = self.backend.put_mapping(
                self.index_name, self.mappings, self.operation_timeout_ms
            )
        except IndexMissingError:
            logger.error(f"Index {self.index_name} not found while updating mappings")
            return

        if not acknowledged:
            raise BackendUnavailableError(
                f"Index {self.index_name} mapping update not acknowledged"
            )
        if self.state.compare_and_set(False, True):
            logger.info(
                f"Index {self.index_name} mapping updated",
                extra={"index": self.index_name, "schema_version": schema_version(self.mappings)},
            )
