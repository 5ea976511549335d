"""
SQLSynthesizerAgent

Renders a validated Intent into a single read-only SELECT bound to one
database. No LLM calls: every identifier comes from the schema catalog and
every filter value is bound as a positional parameter ($1..$n), so question
text never reaches the statement text.

Statement layout:
    SELECT <dimensions>, <metric expressions>
    FROM <root table>
    JOIN <table> ON <condition> ...
    WHERE <filters> AND <time range>
    GROUP BY <dimensions>
    ORDER BY <metric> DESC | <dimensions>
    LIMIT <max_rows>
"""

import logging
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from askdash.agents.base import BaseAgent
from askdash.agents.sql_inspection import is_read_only_sql
from askdash.catalog.glossary import (
    Aggregate,
    BinaryOp,
    Column,
    Expr,
    Negate,
    Number,
    has_aggregate,
    parse_formula,
)
from askdash.catalog.graph import JoinGraph, JoinStep
from askdash.catalog.resolver import ColumnRef, resolve_column_ref
from askdash.config import get_settings
from askdash.models.agent import SynthesizerAgentInput, SynthesizerAgentOutput
from askdash.models.catalog import DatabaseSchema, SchemaCatalog
from askdash.models.errors import SynthesisError, SynthesisReason
from askdash.models.query import ROW_COUNT_METRIC, Filter, Intent, SqlStatement, TimeRange
from askdash.models.result import normalize_type

logger = logging.getLogger(__name__)

_SIMPLE_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_RESERVED = frozenset(
    {
        "ALL", "AND", "AS", "ASC", "BY", "CASE", "DESC", "DISTINCT", "END", "FROM", "GROUP",
        "HAVING", "IN", "IS", "JOIN", "LIMIT", "NOT", "NULL", "ON", "OR", "ORDER", "SELECT",
        "TABLE", "THEN", "USER", "WHEN", "WHERE",
    }
)

_COMPARISONS = {
    "=": "=",
    "!=": "<>",
    "<": "<",
    "<=": "<=",
    ">": ">",
    ">=": ">=",
    "like": "LIKE",
}

_TRUE_STRINGS = {"true", "t", "yes", "y", "1"}
_FALSE_STRINGS = {"false", "f", "no", "n", "0"}


def quote_identifier(name: str) -> str:
    """Return ``name`` bare when it is a plain identifier, double-quoted otherwise."""
    if _SIMPLE_IDENTIFIER.match(name) and name.upper() not in _RESERVED:
        return name
    return '"' + name.replace('"', '""') + '"'


def coerce_parameter(value: Any, family: str) -> Any:
    """
    Best-effort conversion of a bound value to the column's type family.

    Values that cannot be converted are returned unchanged; the database
    reports the mismatch.
    """
    if value is None:
        return None
    try:
        if family == "timestamp":
            if isinstance(value, datetime):
                return value
            if isinstance(value, date):
                return datetime.combine(value, datetime.min.time())
            if isinstance(value, str):
                return datetime.fromisoformat(value.strip())
        elif family == "date":
            if isinstance(value, datetime):
                return value.date()
            if isinstance(value, str):
                return date.fromisoformat(value.strip()[:10])
        elif family == "integer":
            if isinstance(value, str) and re.fullmatch(r"\s*-?\d+\s*", value):
                return int(value)
            if isinstance(value, float) and value.is_integer():
                return int(value)
        elif family == "float":
            if isinstance(value, (str, Decimal)) and not isinstance(value, bool):
                return float(value)
        elif family == "decimal":
            if isinstance(value, (str, int, float)) and not isinstance(value, bool):
                return Decimal(str(value).strip())
        elif family == "boolean":
            if isinstance(value, str):
                lowered = value.strip().lower()
                if lowered in _TRUE_STRINGS:
                    return True
                if lowered in _FALSE_STRINGS:
                    return False
        elif family == "text":
            if not isinstance(value, str):
                return str(value)
    except (ValueError, InvalidOperation):
        return value
    return value


class _Parameters:
    """Ordered positional parameters."""

    def __init__(self):
        self.values: list[Any] = []

    def bind(self, value: Any) -> str:
        self.values.append(value)
        return f"${len(self.values)}"


class _Renderer:
    """Renders one intent against one schema; holds per-statement state."""

    def __init__(self, intent: Intent, schema: DatabaseSchema, tables: set[str], max_rows: int):
        self.intent = intent
        self.schema = schema
        self.tables = tables
        self.max_rows = max_rows
        self.params = _Parameters()
        self.aliases: set[str] = set()
        self.dimension_aliases: list[str] = []

    # -- identifiers ---------------------------------------------------

    def column(self, reference: str) -> ColumnRef:
        try:
            return resolve_column_ref(self.schema, reference, self.tables, search_schema=False)
        except LookupError as e:
            raise SynthesisError(
                SynthesisReason.UNRESOLVED_COLUMN,
                f"Column '{reference}' is not available in the joined tables",
                context={"column": reference, "tables": sorted(self.tables)},
            ) from e

    def column_sql(self, ref: ColumnRef) -> str:
        return f"{quote_identifier(ref.table)}.{quote_identifier(ref.column)}"

    def family(self, ref: ColumnRef) -> str:
        return normalize_type(self.schema.column_type(ref.table, ref.column))

    def alias(self, preferred: str, fallback: str) -> str:
        candidate = preferred
        if candidate.lower() in self.aliases:
            candidate = fallback
        suffix = 2
        base = candidate
        while candidate.lower() in self.aliases:
            candidate = f"{base}_{suffix}"
            suffix += 1
        self.aliases.add(candidate.lower())
        return candidate

    # -- expressions ---------------------------------------------------

    def formula(self, metric: str, formula: str) -> str:
        expr = parse_formula(formula)
        if expr is None:
            raise SynthesisError(
                SynthesisReason.UNRESOLVED_METRIC,
                f"Metric '{metric}' has no computable formula",
                context={"metric": metric},
            )
        return self.expression(expr, aggregate_columns=not has_aggregate(expr))

    def expression(self, expr: Expr, aggregate_columns: bool) -> str:
        if isinstance(expr, Number):
            return expr.value
        if isinstance(expr, Column):
            text = self.column_sql(self.column(expr.name))
            return f"SUM({text})" if aggregate_columns else text
        if isinstance(expr, Aggregate):
            if expr.argument is None:
                return "COUNT(*)"
            return f"{expr.function}({self.expression(expr.argument, False)})"
        if isinstance(expr, Negate):
            return f"-{self.operand(expr.operand, aggregate_columns)}"
        if isinstance(expr, BinaryOp):
            left = self.operand(expr.left, aggregate_columns)
            if expr.operator == "/":
                right = self.expression(expr.right, aggregate_columns)
                return f"CAST({left} AS DOUBLE PRECISION) / NULLIF({right}, 0)"
            right = self.operand(expr.right, aggregate_columns)
            return f"{left} {expr.operator} {right}"
        raise SynthesisError(
            SynthesisReason.UNRESOLVED_METRIC,
            "Unsupported formula element",
            context={"element": type(expr).__name__},
        )

    def operand(self, expr: Expr, aggregate_columns: bool) -> str:
        text = self.expression(expr, aggregate_columns)
        if isinstance(expr, (BinaryOp, Negate)):
            return f"({text})"
        return text

    # -- clauses -------------------------------------------------------

    def select_items(self) -> tuple[list[str], list[str], dict[str, str]]:
        """Return (select items, group-by expressions, metric name -> alias)."""
        items = []
        group_by = []
        for dimension in self.intent.dimensions:
            ref = self.column(dimension)
            text = self.column_sql(ref)
            alias = self.alias(ref.column, f"{ref.table}_{ref.column}")
            items.append(f"{text} AS {quote_identifier(alias)}")
            group_by.append(text)
            self.dimension_aliases.append(alias)

        metric_aliases = {}
        for metric in self.intent.metrics:
            if metric in self.intent.derived_metrics:
                text = self.formula(metric, self.intent.derived_metrics[metric])
                alias = self.alias(metric, f"{metric}_value")
            elif metric == ROW_COUNT_METRIC:
                text = "COUNT(*)"
                alias = self.alias(ROW_COUNT_METRIC, "row_count_value")
            else:
                ref = self.column(metric)
                if self.family(ref) not in ("integer", "float", "decimal", "unknown"):
                    raise SynthesisError(
                        SynthesisReason.UNRESOLVED_METRIC,
                        f"Metric column '{ref.qualified}' is not numeric",
                        context={"metric": metric},
                    )
                text = f"SUM({self.column_sql(ref)})"
                alias = self.alias(ref.column, f"{ref.table}_{ref.column}")
            items.append(f"{text} AS {quote_identifier(alias)}")
            metric_aliases[metric] = alias

        return items, group_by, metric_aliases

    def from_clause(self, plan: list[JoinStep]) -> list[str]:
        lines = [f"FROM {quote_identifier(plan[0].table)}"]
        for step in plan[1:]:
            conditions = " AND ".join(
                f"{quote_identifier(c.left_table)}.{quote_identifier(c.left_column)} = "
                f"{quote_identifier(c.right_table)}.{quote_identifier(c.right_column)}"
                for c in step.conditions
            )
            lines.append(f"JOIN {quote_identifier(step.table)} ON {conditions}")
        return lines

    def filter_predicate(self, item: Filter) -> str:
        ref = self.column(item.column)
        family = self.family(ref)
        column = self.column_sql(ref)

        if item.operator in ("in", "not_in"):
            placeholders = ", ".join(
                self.params.bind(coerce_parameter(value, family)) for value in item.value
            )
            keyword = "IN" if item.operator == "in" else "NOT IN"
            return f"{column} {keyword} ({placeholders})"

        if item.value is None and item.operator in ("=", "!="):
            return f"{column} IS NULL" if item.operator == "=" else f"{column} IS NOT NULL"

        placeholder = self.params.bind(coerce_parameter(item.value, family))
        return f"{column} {_COMPARISONS[item.operator]} {placeholder}"

    def time_predicate(self, time_range: TimeRange) -> str:
        if time_range.column:
            ref = self.column(time_range.column)
        else:
            ref = self.default_time_column()
        family = self.family(ref)
        column = self.column_sql(ref)
        start = self.params.bind(coerce_parameter(time_range.start, family))
        end = self.params.bind(coerce_parameter(time_range.end, family))
        return f"{column} >= {start} AND {column} < {end}"

    def default_time_column(self) -> ColumnRef:
        for table in sorted(self.intent.tables):
            canonical = self.schema.resolve_table(table)
            if canonical is None:
                continue
            for column, declared in self.schema.tables[canonical].items():
                if normalize_type(declared) in ("date", "timestamp"):
                    return ColumnRef(canonical, column)
        raise SynthesisError(
            SynthesisReason.UNRESOLVED_COLUMN,
            "No date or time column is available for the requested time range",
            context={"tables": sorted(self.intent.tables)},
        )

    def render(self, plan: list[JoinStep]) -> str:
        items, group_by, metric_aliases = self.select_items()
        lines = ["SELECT", ",\n".join(f"    {item}" for item in items)]
        lines.extend(self.from_clause(plan))

        predicates = [self.filter_predicate(item) for item in self.intent.filters]
        if self.intent.time_range is not None:
            predicates.append(self.time_predicate(self.intent.time_range))
        if predicates:
            lines.append("WHERE " + "\n  AND ".join(predicates))

        if group_by and self.intent.metrics:
            lines.append("GROUP BY " + ", ".join(group_by))
        elif group_by:
            # Listing dimensions only: distinct combinations
            lines[0] = "SELECT DISTINCT"

        if self.intent.order_by is not None:
            alias = quote_identifier(metric_aliases[self.intent.order_by])
            lines.append(f"ORDER BY {alias} DESC")
        elif self.dimension_aliases:
            lines.append(
                "ORDER BY " + ", ".join(quote_identifier(a) for a in self.dimension_aliases)
            )

        lines.append(f"LIMIT {self.max_rows}")
        return "\n".join(lines)


class SQLSynthesizerAgent(BaseAgent):
    """
    Deterministic intent-to-SQL renderer.

    Joins follow the catalog's relationship graph (shortest paths, lexical
    tie-break). The join plan must stay within ``intent.tables``; needing
    any other table is reported as MissingJoinPath rather than repaired.
    """

    def __init__(self, max_rows: int | None = None):
        super().__init__(name="SQLSynthesizerAgent")
        self.max_rows = max_rows if max_rows is not None else get_settings().database.max_rows

    async def synthesize(
        self, intent: Intent, catalog: SchemaCatalog, session_id: str | None = None
    ) -> SqlStatement:
        output = await self(
            SynthesizerAgentInput(
                query=intent.explanation or intent.database,
                intent=intent,
                catalog=catalog,
                context={"session_id": session_id} if session_id else {},
            )
        )
        return output.statement

    async def execute(self, input: SynthesizerAgentInput) -> SynthesizerAgentOutput:
        statement = self.render(input.intent, input.catalog)
        return SynthesizerAgentOutput(success=True, statement=statement, metadata=self._metadata)

    def render(self, intent: Intent, catalog: SchemaCatalog) -> SqlStatement:
        """
        Render an intent into a statement.

        Raises:
            SynthesisError: MissingJoinPath, UnresolvedMetric or UnresolvedColumn
        """
        schema = catalog.get(intent.database)
        if schema is None:
            raise SynthesisError(
                SynthesisReason.MISSING_JOIN_PATH,
                f"Database '{intent.database}' is not in the catalog",
                context={"database": intent.database},
            )

        plan = JoinGraph(schema).join_plan(intent.tables)
        plan_tables = {step.table for step in plan}
        requested = {schema.resolve_table(t) or t for t in intent.tables}
        drift = plan_tables - requested
        if drift:
            raise SynthesisError(
                SynthesisReason.MISSING_JOIN_PATH,
                "Joining the requested tables needs tables outside the intent",
                context={"extra_tables": sorted(drift)},
            )

        renderer = _Renderer(intent, schema, plan_tables, self.max_rows)
        text = renderer.render(plan)

        statement = SqlStatement(
            database=intent.database,
            text=text,
            referenced_tables=frozenset(plan_tables),
            is_read_only=is_read_only_sql(text),
            parameters=renderer.params.values,
        )

        logger.info(
            f"[{self.name}] Synthesized statement for '{intent.database}'",
            extra={
                "agent": self.name,
                "tables": sorted(plan_tables),
                "joins": len(plan) - 1,
                "parameters": len(statement.parameters),
            },
        )
        logger.debug(f"[{self.name}] SQL: {text}")
        return statement
