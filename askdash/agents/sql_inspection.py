"""
Static SQL Inspection

sqlparse-based helpers shared by the synthesizer (read-only check) and the
query guard (policy checks and row-security rewrite). Nothing here executes
SQL.
"""

import logging
import re
from collections.abc import Iterable

import sqlparse
from sqlparse.sql import Identifier, IdentifierList, Parenthesis, TokenList
from sqlparse.tokens import Comment, Keyword, Whitespace

logger = logging.getLogger(__name__)

# Data-modification and side-effect keywords rejected anywhere outside literals
DENYLIST = (
    "INSERT",
    "UPDATE",
    "DELETE",
    "DROP",
    "ALTER",
    "CREATE",
    "TRUNCATE",
    "GRANT",
    "REVOKE",
    "MERGE",
    "CALL",
    "EXEC",
    "EXECUTE",
    "COPY",
    "VACUUM",
    "ATTACH",
    "DETACH",
    "PRAGMA",
    "LOCK",
    "INTO",
    "PG_SLEEP",
    "LOAD_FILE",
    "XP_CMDSHELL",
)

_LITERALS_AND_COMMENTS = re.compile(
    r"'(?:[^']|'')*'?"  # string literal (unterminated runs to the end)
    r"|--[^\n]*"
    r"|/\*.*?(?:\*/|$)"
    r"|\$(\w*)\$.*?(?:\$\1\$|$)",  # dollar-quoted string
    re.DOTALL,
)

_CTE_NAME = re.compile(r"(?:\bWITH\s+(?:RECURSIVE\s+)?|,\s*)([A-Za-z_][A-Za-z0-9_]*)\s+AS\s*\(", re.IGNORECASE)

_TOP_LEVEL_CLAUSES = re.compile(
    r"\b(WHERE|GROUP\s+BY|HAVING|WINDOW|ORDER\s+BY|LIMIT|OFFSET|FETCH|UNION|INTERSECT|EXCEPT)\b",
    re.IGNORECASE,
)

_LIMIT = re.compile(r"\bLIMIT\s+(\S+)", re.IGNORECASE)
_FETCH = re.compile(r"\bFETCH\s+(?:FIRST|NEXT)\s+(\S+)\s+ROWS?\s+ONLY\b", re.IGNORECASE)

_NOT_ALIASES = frozenset(
    {
        "WHERE", "JOIN", "ON", "USING", "LEFT", "RIGHT", "INNER", "OUTER", "FULL", "CROSS",
        "NATURAL", "GROUP", "ORDER", "LIMIT", "OFFSET", "FETCH", "HAVING", "WINDOW", "UNION",
        "INTERSECT", "EXCEPT", "LATERAL",
    }
)


def mask_literals(sql: str) -> str:
    """
    Blank out string literals and comments, preserving length.

    Character positions in the result map 1:1 onto the input.
    """
    return _LITERALS_AND_COMMENTS.sub(lambda m: " " * len(m.group(0)), sql)


def split_statements(sql: str) -> list[str]:
    """Split into non-empty statements (comments and bare semicolons dropped)."""
    statements = []
    for raw in sqlparse.split(sql):
        if mask_literals(raw).strip().strip(";").strip():
            statements.append(raw.strip())
    return statements


def strip_comments(sql: str) -> str:
    """Remove SQL comments, leaving whitespace where they stood."""
    return sqlparse.format(sql, strip_comments=True).strip()


def find_denylisted(sql: str, extra: Iterable[str] = ()) -> list[str]:
    """Denylisted keywords present outside literals and comments (word-boundary match)."""
    masked = mask_literals(sql).upper()
    found = []
    for keyword in (*DENYLIST, *(k.upper() for k in extra)):
        if keyword and re.search(rf"(?<![\w$]){re.escape(keyword)}(?![\w$])", masked):
            found.append(keyword)
    return found


def main_statement_keyword(statement: str) -> str:
    """
    Keyword of the main statement: the first keyword, or for a CTE chain the
    keyword following the WITH definitions ("UNKNOWN" when undetermined).
    """
    parsed = sqlparse.parse(statement)
    if not parsed:
        return "UNKNOWN"
    stmt = parsed[0]
    first = stmt.token_first(skip_ws=True, skip_cm=True)
    if first is None:
        return "UNKNOWN"
    if first.ttype in Keyword and first.normalized != "WITH":
        return first.normalized

    if first.normalized != "WITH":
        return "UNKNOWN"

    in_cte_definition = False
    for token in stmt.tokens:
        if token.ttype in (Whitespace, Comment.Single, Comment.Multiline) or token.is_whitespace:
            continue
        if token.ttype in Keyword.CTE or (token.ttype in Keyword and token.normalized == "WITH"):
            in_cte_definition = True
            continue
        if in_cte_definition and token.ttype in (Keyword, Keyword.DML):
            keyword = token.normalized
            if keyword in ("SELECT", "DELETE", "UPDATE", "INSERT", "REPLACE", "MERGE"):
                return keyword
    return "UNKNOWN"


def is_read_only_sql(sql: str) -> bool:
    """A single SELECT (or CTE chain ending in SELECT) with no modification keyword."""
    statements = split_statements(sql)
    if len(statements) != 1:
        return False
    if main_statement_keyword(statements[0]) != "SELECT":
        return False
    return not find_denylisted(statements[0])


def cte_names(sql: str) -> set[str]:
    return {name.lower() for name in _CTE_NAME.findall(mask_literals(sql))}


def extract_tables(sql: str) -> set[str]:
    """
    Table names referenced after FROM/JOIN, at any nesting depth.

    CTE names are excluded; schema qualifiers are dropped.
    """
    tables: set[str] = set()
    parsed = sqlparse.parse(sql)
    if not parsed:
        return tables
    excluded = cte_names(sql)
    for stmt in parsed:
        _collect_tables(stmt, tables, excluded)
    return tables


def _collect_tables(token_list: TokenList, tables: set[str], excluded: set[str]) -> None:
    expecting = False
    for token in token_list.tokens:
        if token.is_whitespace or token.ttype in Comment:
            continue
        if token.ttype in Keyword and (
            token.normalized == "FROM" or token.normalized.endswith("JOIN")
        ):
            expecting = True
            continue
        if expecting:
            if isinstance(token, IdentifierList):
                for identifier in token.get_identifiers():
                    _add_table(identifier, tables, excluded)
            elif isinstance(token, Identifier):
                _add_table(token, tables, excluded)
            elif isinstance(token, Parenthesis):
                _collect_tables(token, tables, excluded)
            elif token.ttype in Keyword:
                if token.normalized in ("LATERAL", "ONLY"):
                    continue
                # Table names that sqlparse lexes as keywords
                name = token.value.lower()
                if name not in excluded:
                    tables.add(name)
            expecting = False
            continue
        if token.is_group:
            _collect_tables(token, tables, excluded)


def _add_table(identifier, tables: set[str], excluded: set[str]) -> None:
    if not isinstance(identifier, TokenList):
        value = str(identifier).strip().lower()
        if value and value not in excluded:
            tables.add(value)
        return
    subqueries = [t for t in identifier.tokens if isinstance(t, Parenthesis)]
    if subqueries:
        for subquery in subqueries:
            _collect_tables(subquery, tables, excluded)
        return
    name = identifier.get_real_name()
    if name and name.lower() not in excluded:
        tables.add(name.lower())


def paren_depths(masked: str) -> list[int]:
    """Parenthesis depth at every character position."""
    depths = []
    depth = 0
    for char in masked:
        if char == "(":
            depth += 1
            depths.append(depth)
            continue
        if char == ")":
            depths.append(depth)
            depth = max(0, depth - 1)
            continue
        depths.append(depth)
    return depths


def top_level_limit(sql: str) -> tuple[bool, int | None]:
    """
    Return (has_limit, value) for the outermost LIMIT / FETCH FIRST clause.

    ``value`` is None when the limit is not a literal integer (LIMIT ALL,
    a bind parameter, an expression).
    """
    masked = mask_literals(sql)
    depths = paren_depths(masked)
    found: tuple[bool, int | None] = (False, None)
    for pattern in (_LIMIT, _FETCH):
        for match in pattern.finditer(masked):
            if depths[match.start()] != 0:
                continue
            token = match.group(1).rstrip(";")
            found = (True, int(token) if token.isdigit() else None)
    return found


def count_joins(sql: str) -> int:
    """Number of joins (explicit JOINs or comma-separated FROM items)."""
    masked = mask_literals(sql)
    explicit = len(re.findall(r"\bJOIN\b", masked, re.IGNORECASE))
    return max(explicit, len(extract_tables(sql)) - 1, 0)


def count_selects(sql: str) -> int:
    return len(re.findall(r"\bSELECT\b", mask_literals(sql), re.IGNORECASE))


def table_qualifiers(sql: str, table: str) -> list[str]:
    """
    Alias (or name) of every top-level reference to ``table``.

    Covers FROM, JOIN and comma-separated FROM items, so a table joined to
    itself yields one qualifier per occurrence.
    """
    masked = mask_literals(sql)
    depths = paren_depths(masked)
    pattern = re.compile(
        rf"(?:\b(?:FROM|JOIN)|,)\s+(?:[A-Za-z_][\w]*\.)?({re.escape(table)})\b(?!\s*\.)"
        r"(?:\s+(?:AS\s+)?([A-Za-z_][\w]*))?",
        re.IGNORECASE,
    )
    qualifiers: list[str] = []
    for match in pattern.finditer(masked):
        if depths[match.start()] != 0:
            continue
        alias = match.group(2)
        qualifier = alias if alias and alias.upper() not in _NOT_ALIASES else match.group(1)
        if qualifier not in qualifiers:
            qualifiers.append(qualifier)
    return qualifiers


def inject_predicate(sql: str, predicate: str) -> str:
    """
    AND a predicate into the top-level WHERE clause of a single SELECT.

    Inserts a new WHERE before GROUP BY / HAVING / ORDER BY / LIMIT when the
    statement has none.
    """
    text = sql.rstrip().rstrip(";").rstrip()
    masked = mask_literals(text)
    depths = paren_depths(masked)

    clauses = [
        (m.start(), m.end(), re.sub(r"\s+", " ", m.group(1).upper()))
        for m in _TOP_LEVEL_CLAUSES.finditer(masked)
        if depths[m.start()] == 0
    ]

    where = next((c for c in clauses if c[2] == "WHERE"), None)
    if where is not None:
        following = [c for c in clauses if c[0] > where[0] and c[2] != "WHERE"]
        end = following[0][0] if following else len(text)
        condition = text[where[1]:end].strip()
        rewritten = f"{text[:where[1]]} ({predicate}) AND ({condition})"
        if end < len(text):
            rewritten += f" {text[end:]}"
        return rewritten

    if clauses:
        start = clauses[0][0]
        return f"{text[:start].rstrip()} WHERE {predicate} {text[start:]}"
    return f"{text} WHERE {predicate}"
