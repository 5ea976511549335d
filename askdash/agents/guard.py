"""
QueryGuard: the mandatory checkpoint between synthesis and execution.

Rule-based, no LLM calls, never executes SQL. Policies are applied in order
and the first failure wins:

1. Empty or unparsable text                       -> SyntaxError
2. Statement not flagged read-only                -> WriteOperation
3. Denylisted keyword outside literals/comments   -> WriteOperation
4. Several statements, or not a SELECT / CTE      -> SyntaxError
5. Table unknown to the catalog or not granted    -> UnauthorizedTable
6. No literal top-level LIMIT                     -> UnboundedScan
7. LIMIT above the row cap, or cost over ceiling  -> ResourceLimitExceeded
8. Row-level security predicates are injected and the statement accepted

Permission strings:
    read:*                  every table of every database
    read:<db>.*             every table of one database
    read:<db>.<table>       one table
    <scope>:<value>         row-security grant for rules with that scope
    <scope>:*               lifts the rules with that scope
"""

import logging
from collections.abc import Iterable

import sqlparse
from sqlparse.tokens import Error

from askdash.agents.sql_inspection import (
    count_joins,
    count_selects,
    extract_tables,
    find_denylisted,
    inject_predicate,
    main_statement_keyword,
    mask_literals,
    split_statements,
    strip_comments,
    table_qualifiers,
    top_level_limit,
)
from askdash.agents.synthesizer import coerce_parameter, quote_identifier
from askdash.config import get_settings
from askdash.models.catalog import DatabaseSchema, SchemaCatalog
from askdash.models.errors import GuardRejectionReason
from askdash.models.query import Accepted, GuardDecision, Rejected, SqlStatement
from askdash.models.result import normalize_type

logger = logging.getLogger(__name__)

READ_ALL = "read:*"


class _Reject(Exception):
    def __init__(self, reason: GuardRejectionReason, message: str):
        self.reason = reason
        self.message = message
        super().__init__(message)


def is_table_granted(database: str, table: str, permissions: Iterable[str]) -> bool:
    """Whether ``permissions`` grant read access to ``database.table``."""
    granted = {p.strip().lower() for p in permissions}
    return bool(
        granted
        & {READ_ALL, f"read:{database.lower()}.*", f"read:{database.lower()}.{table.lower()}"}
    )


def scope_grants(scope: str, permissions: Iterable[str]) -> list[str] | None:
    """
    Values granted for a row-security scope.

    Returns None when the scope is lifted (``<scope>:*``); an empty list
    means nothing is granted.
    """
    prefix = f"{scope.strip().lower()}:"
    values = set()
    for permission in permissions:
        if permission.strip().lower().startswith(prefix):
            value = permission.strip()[len(prefix):]
            if value == "*":
                return None
            if value:
                values.add(value)
    return sorted(values)


class QueryGuard:
    """
    Safety policy checker.

    ``check`` is total: it always returns a GuardDecision. Any unexpected
    fault while inspecting a statement becomes Rejected(SyntaxError).

    Usage:
        guard = QueryGuard(catalog)
        decision = guard.check(statement, {"read:ads.*", "advertiser:1"})
    """

    def __init__(
        self,
        catalog: SchemaCatalog | None = None,
        max_rows: int | None = None,
        max_cost: int | None = None,
        join_fanout: int | None = None,
        extra_denylist: Iterable[str] | None = None,
    ):
        if None in (max_rows, max_cost, join_fanout, extra_denylist):
            settings = get_settings()
            if max_rows is None:
                max_rows = settings.database.max_rows
            if max_cost is None:
                max_cost = settings.guard.max_cost
            if join_fanout is None:
                join_fanout = settings.guard.join_fanout
            if extra_denylist is None:
                extra_denylist = settings.guard.extra_denylist

        self.catalog = catalog
        self.max_rows = max_rows
        self.max_cost = max_cost
        self.join_fanout = join_fanout
        self.extra_denylist = tuple(extra_denylist)

    def check(
        self,
        statement: SqlStatement,
        user_permissions: Iterable[str],
        catalog: SchemaCatalog | None = None,
    ) -> GuardDecision:
        """Check a statement against the policy; ``catalog`` overrides the default snapshot."""
        try:
            permissions = sorted({str(p) for p in user_permissions})
            decision = self._check(statement, permissions, catalog or self.catalog)
        except _Reject as e:
            decision = Rejected(reason=e.reason, message=e.message)
        except Exception as e:
            logger.error(
                f"Guard could not inspect statement: {type(e).__name__}",
                extra={"database": statement.database, "error_type": type(e).__name__},
                exc_info=True,
            )
            decision = Rejected(
                reason=GuardRejectionReason.SYNTAX_ERROR,
                message="The statement could not be analyzed.",
            )

        if isinstance(decision, Rejected):
            logger.warning(
                f"Guard rejected statement: {decision.reason.value}",
                extra={"database": statement.database, "reason": decision.reason.value},
            )
        else:
            logger.info(
                "Guard accepted statement",
                extra={
                    "database": statement.database,
                    "row_filters": len(decision.applied_row_filters),
                },
            )
        return decision

    def _check(
        self,
        statement: SqlStatement,
        permissions: list[str],
        catalog: SchemaCatalog | None,
    ) -> GuardDecision:
        text = statement.text.strip()
        self._check_syntax(text)
        # Row filters are spliced into the text; none may land inside a comment
        text = strip_comments(text)
        if not split_statements(text):
            raise _Reject(GuardRejectionReason.SYNTAX_ERROR, "Statement is empty.")

        if not statement.is_read_only:
            raise _Reject(
                GuardRejectionReason.WRITE_OPERATION,
                "Only read-only statements can be executed.",
            )

        denied = find_denylisted(text, self.extra_denylist)
        if denied:
            raise _Reject(
                GuardRejectionReason.WRITE_OPERATION,
                f"Statement contains a forbidden keyword ({denied[0]}).",
            )

        statements = split_statements(text)
        if len(statements) != 1:
            raise _Reject(
                GuardRejectionReason.SYNTAX_ERROR,
                "Exactly one statement is allowed.",
            )
        if main_statement_keyword(statements[0]) != "SELECT":
            raise _Reject(
                GuardRejectionReason.SYNTAX_ERROR,
                "Only SELECT statements are allowed.",
            )
        text = statements[0].rstrip(";").rstrip()

        schema = catalog.get(statement.database) if catalog else None
        if schema is None:
            raise _Reject(
                GuardRejectionReason.UNAUTHORIZED_TABLE,
                f"Database '{statement.database}' is not in the catalog.",
            )
        tables = self._check_tables(statement, text, schema, permissions)

        has_limit, limit = top_level_limit(text)
        if not has_limit or limit is None:
            raise _Reject(
                GuardRejectionReason.UNBOUNDED_SCAN,
                "Statement must end with a literal LIMIT.",
            )
        self._check_cost(text, limit)

        rewritten, parameters, row_filters = self._apply_row_security(
            statement, text, schema, tables, permissions
        )
        return Accepted(
            statement=statement.model_copy(update={"text": rewritten, "parameters": parameters}),
            applied_row_filters=row_filters,
        )

    def _check_syntax(self, text: str) -> None:
        if not text or not split_statements(text):
            raise _Reject(GuardRejectionReason.SYNTAX_ERROR, "Statement is empty.")

        masked = mask_literals(text)
        if masked.count("(") != masked.count(")"):
            raise _Reject(GuardRejectionReason.SYNTAX_ERROR, "Unbalanced parentheses.")

        for parsed in sqlparse.parse(text):
            if any(token.ttype in Error for token in parsed.flatten()):
                raise _Reject(
                    GuardRejectionReason.SYNTAX_ERROR,
                    "Statement contains an unterminated or invalid token.",
                )

    def _check_tables(
        self,
        statement: SqlStatement,
        text: str,
        schema: DatabaseSchema,
        permissions: list[str],
    ) -> list[str]:
        referenced = extract_tables(text) | {t.lower() for t in statement.referenced_tables}
        tables = []
        for name in sorted(referenced):
            canonical = schema.resolve_table(name.rsplit(".", 1)[-1])
            if canonical is None:
                raise _Reject(
                    GuardRejectionReason.UNAUTHORIZED_TABLE,
                    f"Table '{name}' is not in database '{statement.database}'.",
                )
            if not is_table_granted(statement.database, canonical, permissions):
                raise _Reject(
                    GuardRejectionReason.UNAUTHORIZED_TABLE,
                    f"Access to table '{canonical}' is not granted.",
                )
            if canonical not in tables:
                tables.append(canonical)
        return tables

    def _check_cost(self, text: str, limit: int) -> None:
        if limit > self.max_rows:
            raise _Reject(
                GuardRejectionReason.RESOURCE_LIMIT_EXCEEDED,
                f"LIMIT {limit} exceeds the row cap of {self.max_rows}.",
            )
        joins = count_joins(text)
        estimate = limit * self.join_fanout**joins
        if estimate > self.max_cost:
            raise _Reject(
                GuardRejectionReason.RESOURCE_LIMIT_EXCEEDED,
                f"Estimated cost {estimate} exceeds the ceiling of {self.max_cost}.",
            )

    def _apply_row_security(
        self,
        statement: SqlStatement,
        text: str,
        schema: DatabaseSchema,
        tables: list[str],
        permissions: list[str],
    ) -> tuple[str, list, list[str]]:
        parameters = list(statement.parameters)
        predicates = []

        for table in tables:
            rules = schema.security_rules_for(table)
            if not rules:
                continue
            if count_selects(text) > 1:
                raise _Reject(
                    GuardRejectionReason.UNAUTHORIZED_TABLE,
                    f"Row-secured table '{table}' cannot be used in a nested query.",
                )
            qualifiers = table_qualifiers(text, table)
            if not qualifiers:
                raise _Reject(
                    GuardRejectionReason.UNAUTHORIZED_TABLE,
                    f"Row-secured table '{table}' must be referenced directly.",
                )

            for rule in rules:
                values = scope_grants(rule.scope, permissions)
                if values is None:
                    continue
                if not values:
                    predicates.append("1 = 0")
                    continue
                column = schema.resolve_column(table, rule.column) or rule.column
                family = normalize_type(schema.column_type(table, column))
                placeholders = []
                for value in values:
                    parameters.append(coerce_parameter(value, family))
                    placeholders.append(f"${len(parameters)}")
                predicates.extend(
                    f"{qualifier}.{quote_identifier(column)} IN ({', '.join(placeholders)})"
                    for qualifier in qualifiers
                )

        if not predicates:
            return text, parameters, []
        return inject_predicate(text, " AND ".join(predicates)), parameters, predicates
