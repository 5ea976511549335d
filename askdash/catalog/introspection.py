"""
Catalog Introspection

Builds a DatabaseSchema from connector introspection results so an external
refresh job can publish new catalog snapshots.

Usage:
    async with create_connector(url) as connector:
        tables = await connector.get_schema()
    schema = build_database_schema(tables, glossary={"roas": "revenue / cost"})
"""

import logging
from typing import Any

from askdash.connectors.base import TableInfo
from askdash.models.catalog import DatabaseSchema, Relationship, RowSecurityRule

logger = logging.getLogger(__name__)


def build_database_schema(
    tables: list[TableInfo],
    glossary: dict[str, str] | None = None,
    known_values: dict[str, list[Any]] | None = None,
    row_security: list[RowSecurityRule] | None = None,
) -> DatabaseSchema:
    """
    Convert introspected tables into a DatabaseSchema.

    Foreign keys become relationships; foreign keys pointing at tables that
    were not introspected are dropped.
    """
    table_columns: dict[str, dict[str, str]] = {}
    for table in sorted(tables, key=lambda t: t.table_name):
        table_columns[table.table_name] = {
            column.name: column.data_type for column in table.columns
        }

    relationships = []
    skipped = 0
    for table in tables:
        for column in table.columns:
            if not (column.is_foreign_key and column.foreign_table and column.foreign_column):
                continue
            if column.foreign_table not in table_columns:
                skipped += 1
                continue
            relationships.append(
                Relationship(
                    from_table=table.table_name,
                    from_column=column.name,
                    to_table=column.foreign_table,
                    to_column=column.foreign_column,
                )
            )

    relationships.sort(key=lambda r: (r.from_table, r.from_column, r.to_table, r.to_column))

    if skipped:
        logger.debug(f"Skipped {skipped} foreign key(s) to tables outside the introspected set")

    return DatabaseSchema(
        tables=table_columns,
        relationships=relationships,
        glossary=glossary or {},
        known_values=known_values or {},
        row_security=row_security or [],
    )
