"""
Catalog Routes

Read the current schema catalog and swap in a new snapshot. A swap takes
effect for turns that start after it; turns in flight keep their snapshot.
"""

import logging

from fastapi import APIRouter, HTTPException, status

from askdash.catalog.store import CatalogStore
from askdash.models.api import (
    CatalogDatabaseSummary,
    CatalogSummaryResponse,
    CatalogTableSummary,
)
from askdash.models.catalog import SchemaCatalog

logger = logging.getLogger(__name__)

router = APIRouter()


def _catalog_store() -> CatalogStore:
    from askdash.api.main import app_state

    store = app_state.get("catalog_store")
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Catalog store not initialized.",
        )
    return store


def summarize_catalog(catalog: SchemaCatalog) -> CatalogSummaryResponse:
    """Database and table listing without types, values or security rules."""
    return CatalogSummaryResponse(
        version=catalog.version,
        databases=[
            CatalogDatabaseSummary(
                name=name,
                tables=[
                    CatalogTableSummary(name=table, columns=list(columns))
                    for table, columns in sorted(schema.tables.items())
                ],
                glossary_terms=sorted(schema.glossary),
            )
            for name, schema in sorted(catalog.databases.items())
        ],
    )


@router.get("/catalog", response_model=CatalogSummaryResponse)
async def get_catalog() -> CatalogSummaryResponse:
    """Summarize the catalog snapshot new turns will use."""
    return summarize_catalog(_catalog_store().current)


@router.put("/catalog", response_model=CatalogSummaryResponse)
async def replace_catalog(catalog: SchemaCatalog) -> CatalogSummaryResponse:
    """
    Replace the catalog snapshot atomically.

    The body is a full snapshot; it is validated before the swap, so an
    invalid snapshot leaves the current one in place (422).
    """
    store = _catalog_store()
    previous = store.replace(catalog)
    logger.info(
        "Catalog replaced via API",
        extra={"previous_version": previous.version, "version": catalog.version},
    )
    return summarize_catalog(catalog)
