"""
Schema Catalog Models

Per-database table/column metadata, relationships, business glossary and
row-level security rules. A catalog snapshot is immutable once loaded and
is shared read-only by every session.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Relationship(BaseModel):
    """Join relationship between two tables."""

    from_table: str = Field(..., description="Referencing table")
    from_column: str = Field(..., description="Referencing column")
    to_table: str = Field(..., description="Referenced table")
    to_column: str = Field(..., description="Referenced column")

    model_config = ConfigDict(frozen=True)


class RowSecurityRule(BaseModel):
    """
    Row-level security rule.

    A caller holding permission ``<scope>:<value>`` may only see rows of
    ``table`` whose ``column`` equals one of the granted values.
    ``<scope>:*`` lifts the restriction.
    """

    table: str = Field(..., description="Restricted table")
    column: str = Field(..., description="Column the predicate is applied to")
    scope: str = Field(..., description="Permission scope, e.g. 'advertiser'")

    model_config = ConfigDict(frozen=True)


class DatabaseSchema(BaseModel):
    """Metadata for one named database."""

    tables: dict[str, dict[str, str]] = Field(
        ..., description="table_name -> {column_name -> declared_type}"
    )
    relationships: list[Relationship] = Field(
        default_factory=list, description="Join relationships between tables"
    )
    glossary: dict[str, str] = Field(
        default_factory=dict, description="Business term -> definition or formula"
    )
    known_values: dict[str, list[Any]] = Field(
        default_factory=dict,
        description="'table.column' -> known values for categorical columns",
    )
    row_security: list[RowSecurityRule] = Field(
        default_factory=list, description="Row-level security rules"
    )

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "tables": {
                    "advertisers": {"advertiser_id": "integer", "advertiser_name": "text"},
                    "campaigns": {"campaign_id": "integer", "advertiser_id": "integer"},
                },
                "relationships": [
                    {
                        "from_table": "campaigns",
                        "from_column": "advertiser_id",
                        "to_table": "advertisers",
                        "to_column": "advertiser_id",
                    }
                ],
                "glossary": {"roas": "revenue / cost"},
            }
        },
    )

    @model_validator(mode="after")
    def validate_references(self) -> "DatabaseSchema":
        """Relationships, rules and known values must point at declared columns."""
        for rel in self.relationships:
            for table, column in (
                (rel.from_table, rel.from_column),
                (rel.to_table, rel.to_column),
            ):
                if not self.has_column(table, column):
                    raise ValueError(f"Relationship references unknown column {table}.{column}")
        for rule in self.row_security:
            if not self.has_column(rule.table, rule.column):
                raise ValueError(
                    f"Row security rule references unknown column {rule.table}.{rule.column}"
                )
        for key in self.known_values:
            table, _, column = key.partition(".")
            if not self.has_column(table, column):
                raise ValueError(f"Known values reference unknown column {key}")
        return self

    def resolve_table(self, name: str) -> str | None:
        """Return the canonical table name for a case-insensitive reference."""
        if name in self.tables:
            return name
        lowered = name.lower()
        for table in self.tables:
            if table.lower() == lowered:
                return table
        return None

    def has_table(self, name: str) -> bool:
        return self.resolve_table(name) is not None

    def resolve_column(self, table: str, column: str) -> str | None:
        """Return the canonical column name within a table."""
        canonical_table = self.resolve_table(table)
        if canonical_table is None:
            return None
        columns = self.tables[canonical_table]
        if column in columns:
            return column
        lowered = column.lower()
        for name in columns:
            if name.lower() == lowered:
                return name
        return None

    def has_column(self, table: str, column: str) -> bool:
        return self.resolve_column(table, column) is not None

    def column_type(self, table: str, column: str) -> str | None:
        canonical_table = self.resolve_table(table)
        canonical_column = self.resolve_column(table, column)
        if canonical_table is None or canonical_column is None:
            return None
        return self.tables[canonical_table][canonical_column]

    def tables_with_column(self, column: str, among: set[str] | None = None) -> list[str]:
        """Tables (sorted) that declare ``column``, optionally limited to ``among``."""
        candidates = sorted(among) if among is not None else sorted(self.tables)
        return [table for table in candidates if self.has_column(table, column)]

    def glossary_term(self, term: str) -> str | None:
        """Return the canonical glossary key for a case-insensitive term."""
        if term in self.glossary:
            return term
        lowered = term.lower()
        for key in self.glossary:
            if key.lower() == lowered:
                return key
        return None

    def known_values_for(self, table: str, column: str) -> list[Any] | None:
        canonical_table = self.resolve_table(table)
        canonical_column = self.resolve_column(table, column)
        if canonical_table is None or canonical_column is None:
            return None
        return self.known_values.get(f"{canonical_table}.{canonical_column}")

    def security_rules_for(self, table: str) -> list[RowSecurityRule]:
        canonical = self.resolve_table(table)
        return [rule for rule in self.row_security if self.resolve_table(rule.table) == canonical]


class SchemaCatalog(BaseModel):
    """Mapping of database name to its schema."""

    databases: dict[str, DatabaseSchema] = Field(
        default_factory=dict, description="database_name -> schema"
    )
    version: str | None = Field(None, description="Snapshot identifier from the refresh job")

    model_config = ConfigDict(frozen=True)

    def get(self, database: str) -> DatabaseSchema | None:
        return self.databases.get(database)

    @property
    def database_names(self) -> list[str]:
        return sorted(self.databases)
