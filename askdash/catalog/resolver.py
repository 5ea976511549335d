"""
Column Resolution

Resolves bare (``revenue``) or qualified (``performance_metrics.revenue``)
column references against a database schema.
"""

from dataclasses import dataclass

from askdash.models.catalog import DatabaseSchema


class ColumnNotFound(LookupError):
    """No table in scope declares the column."""

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Unknown column '{reference}'")


class AmbiguousColumn(LookupError):
    """More than one table in scope declares the column."""

    def __init__(self, reference: str, candidates: list[str]):
        self.reference = reference
        self.candidates = candidates
        super().__init__(f"Column '{reference}' exists in {', '.join(candidates)}")


@dataclass(frozen=True)
class ColumnRef:
    """A column resolved to its owning table."""

    table: str
    column: str

    @property
    def qualified(self) -> str:
        return f"{self.table}.{self.column}"


def resolve_column_ref(
    schema: DatabaseSchema,
    reference: str,
    tables: set[str] | frozenset[str],
    search_schema: bool = True,
) -> ColumnRef:
    """
    Resolve a column reference.

    Bare names are looked up among ``tables`` first; when none of them
    declares the column and ``search_schema`` is set, the whole schema is
    searched.

    Raises:
        ColumnNotFound: Nothing in scope declares the column
        AmbiguousColumn: Several tables in scope declare the column
    """
    reference = reference.strip()
    table_part, dot, column_part = reference.rpartition(".")

    if dot:
        table = schema.resolve_table(table_part)
        if table is None or (not search_schema and table not in tables):
            raise ColumnNotFound(reference)
        column = schema.resolve_column(table, column_part)
        if column is None:
            raise ColumnNotFound(reference)
        return ColumnRef(table, column)

    scopes = [set(tables)]
    if search_schema:
        scopes.append(None)

    for scope in scopes:
        owners = schema.tables_with_column(reference, among=scope)
        if len(owners) == 1:
            table = owners[0]
            return ColumnRef(table, schema.resolve_column(table, reference) or reference)
        if len(owners) > 1:
            raise AmbiguousColumn(reference, owners)

    raise ColumnNotFound(reference)
