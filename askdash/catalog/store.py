"""
Catalog Store

Holds the current schema catalog snapshot. Snapshots are loaded from YAML,
validated, and swapped atomically; a turn reads the catalog once at its
start so a refresh never changes a turn in flight.

Usage:
    store = CatalogStore.from_file("catalog.yaml")
    catalog = store.current
    store.replace(new_catalog)
"""

import logging
import threading
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from askdash.models.catalog import SchemaCatalog

logger = logging.getLogger(__name__)


class CatalogLoadError(Exception):
    """Raised when a catalog snapshot cannot be read or validated."""

    pass


def parse_catalog(data: dict[str, Any]) -> SchemaCatalog:
    """Validate a raw mapping into a catalog."""
    try:
        return SchemaCatalog.model_validate(data)
    except ValidationError as e:
        raise CatalogLoadError(f"Invalid catalog snapshot: {e.error_count()} error(s)") from e


def load_catalog(path: str | Path) -> SchemaCatalog:
    """Load a catalog snapshot from a YAML file."""
    catalog_path = Path(path)
    if not catalog_path.exists():
        raise CatalogLoadError(f"Catalog file not found: {catalog_path}")

    try:
        data = yaml.safe_load(catalog_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise CatalogLoadError(f"Catalog file is not valid YAML: {catalog_path}") from e

    if not isinstance(data, dict):
        raise CatalogLoadError(f"Catalog file must contain a mapping: {catalog_path}")

    catalog = parse_catalog(data)
    logger.info(
        f"Loaded catalog from {catalog_path}",
        extra={"databases": catalog.database_names, "version": catalog.version},
    )
    return catalog


class CatalogStore:
    """Process-wide holder of the current catalog snapshot."""

    def __init__(self, catalog: SchemaCatalog | None = None):
        self._catalog = catalog or SchemaCatalog()
        self._lock = threading.Lock()

    @classmethod
    def from_file(cls, path: str | Path) -> "CatalogStore":
        return cls(load_catalog(path))

    @property
    def current(self) -> SchemaCatalog:
        """The snapshot to use for a new turn."""
        return self._catalog

    def replace(self, catalog: SchemaCatalog) -> SchemaCatalog:
        """Swap in a new snapshot and return the previous one."""
        with self._lock:
            previous = self._catalog
            self._catalog = catalog

        logger.info(
            "Catalog snapshot replaced",
            extra={
                "previous_version": previous.version,
                "version": catalog.version,
                "databases": catalog.database_names,
            },
        )
        return previous

    def reload(self, path: str | Path) -> SchemaCatalog:
        """Load a snapshot from disk and swap it in."""
        catalog = load_catalog(path)
        self.replace(catalog)
        return catalog
