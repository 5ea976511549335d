"""
askdash Catalog Module

Schema catalog storage, join-path resolution and glossary formulas.

Usage:
    from askdash.catalog import CatalogStore, JoinGraph

    store = CatalogStore.from_file("catalog.yaml")
    graph = JoinGraph(store.current.get("ads"))
"""

from askdash.catalog.glossary import parse_formula
from askdash.catalog.graph import JoinCondition, JoinGraph, JoinStep
from askdash.catalog.store import CatalogLoadError, CatalogStore, load_catalog, parse_catalog

__all__ = [
    "CatalogLoadError",
    "CatalogStore",
    "JoinCondition",
    "JoinGraph",
    "JoinStep",
    "load_catalog",
    "parse_catalog",
    "parse_formula",
]
