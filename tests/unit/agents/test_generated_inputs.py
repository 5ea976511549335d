"""
Generated-input tests for the interpreter, synthesizer and guard.

Each case builds its inputs from a seeded ``random.Random`` so a failure
names the seed that reproduces it:
- random catalogs and model candidates must yield intents that satisfy the
  catalog invariants
- statements synthesized from those intents are single read-only SELECTs
  that bind every value as a parameter and pass the guard
- the guard returns a decision for arbitrary statement text
- a guarded statement executed twice returns the same rows
"""

import random
import string

import pytest
import pytest_asyncio

from askdash.agents.guard import QueryGuard
from askdash.agents.interpreter import QueryInterpreterAgent
from askdash.agents.sql_inspection import find_denylisted, is_read_only_sql, top_level_limit
from askdash.agents.synthesizer import SQLSynthesizerAgent
from askdash.catalog.glossary import parse_formula
from askdash.catalog.graph import JoinGraph
from askdash.database.router import ExecutionRouter, ExecutorAgent
from askdash.models.catalog import SchemaCatalog
from askdash.models.errors import InterpretationError
from askdash.models.query import Accepted, Intent, Rejected, SqlStatement, VisualizationKind
from askdash.models.result import NUMERIC_TYPES, TEMPORAL_TYPES, normalize_type

SEEDS = range(40)

MAX_ROWS = 100

TABLE_NAMES = ["accounts", "orders", "regions", "stores", "products", "visits", "invoices"]
MEASURES = ["amount", "quantity", "price", "score"]
NUMERIC_DECLARATIONS = ["integer", "bigint", "numeric(12,2)", "double precision"]

HOSTILE_VALUES = [
    "Toyota",
    "O'Brien",
    "'; DROP TABLE accounts; --",
    "1; DELETE FROM orders",
    "x' OR '1'='1",
    "INSERT INTO t VALUES (1)",
    "$$ pg_sleep $$",
    "/* UPDATE */",
]

TEXT_FRAGMENTS = [
    "SELECT", "*", "FROM", "advertisers", "campaigns", "performance_metrics", "WHERE",
    "LIMIT", "10", "5000", "ALL", "(", ")", ";", "'", "''", '"', "--", "/*", "*/", "$1",
    "$$", "JOIN", "ON", "UNION", "WITH", "AS", "a", ",", "=", "DROP TABLE advertisers",
    "insert", "pg_sleep(10)", "\n", "\t", "é", "FETCH FIRST 5 ROWS ONLY", "advertiser_id",
    "COUNT(*)", "GROUP BY", "ORDER BY", "IN", "SELECT 1",
]

PERMISSION_POOL = ["read:ads.*", "read:ads.advertisers", "read:*", "advertiser:1", "advertiser:*"]


# ============================================================================
# Generators
# ============================================================================


def random_catalog_data(rng: random.Random) -> dict:
    """A connected schema: every table after the first references an earlier one."""
    names = rng.sample(TABLE_NAMES, rng.randint(1, 5))
    tables: dict[str, dict[str, str]] = {}
    relationships = []
    numeric_columns = []

    for index, name in enumerate(names):
        columns = {f"{name}_id": "integer"}
        if index:
            parent = names[rng.randrange(index)]
            columns[f"{parent}_id"] = "integer"
            relationships.append(
                {
                    "from_table": name,
                    "from_column": f"{parent}_id",
                    "to_table": parent,
                    "to_column": f"{parent}_id",
                }
            )
        for measure in rng.sample(MEASURES, rng.randint(1, 3)):
            columns[f"{name}_{measure}"] = rng.choice(NUMERIC_DECLARATIONS)
            numeric_columns.append(f"{name}_{measure}")
        columns[f"{name}_label"] = rng.choice(["text", "varchar(64)"])
        if rng.random() < 0.5:
            columns[f"{name}_day"] = rng.choice(["date", "timestamp"])
        tables[name] = columns

    glossary = {"house style": "Reports use the fiscal calendar"}
    for number in range(rng.randint(0, 3)):
        left, right = rng.choice(numeric_columns), rng.choice(numeric_columns)
        operator = rng.choice(["/", "-", "+"])
        glossary[f"ratio {number}"] = f"{left} {operator} {right}"

    return {
        "version": f"seed-{rng.random():.6f}",
        "databases": {
            "warehouse": {
                "tables": tables,
                "relationships": relationships,
                "glossary": glossary,
            }
        },
    }


def random_candidate(rng: random.Random, catalog: SchemaCatalog, database: str) -> dict:
    """A model candidate that only names entities present in ``catalog``."""
    schema = catalog.get(database)
    tables = rng.sample(sorted(schema.tables), rng.randint(1, len(schema.tables)))
    columns = [(table, column) for table in tables for column in schema.tables[table]]

    def family(table: str, column: str) -> str:
        return normalize_type(schema.column_type(table, column))

    numeric = [f"{t}.{c}" for t, c in columns if family(t, c) in NUMERIC_TYPES]
    groupable = [
        f"{t}.{c}" for t, c in columns if family(t, c) == "text" or family(t, c) == "date"
    ]
    formulas = [term for term, text in schema.glossary.items() if parse_formula(text)]

    metrics = rng.sample(numeric, rng.randint(0, min(2, len(numeric))))
    if formulas and rng.random() < 0.5:
        metrics.append(rng.choice(formulas))
    if rng.random() < 0.3:
        metrics.append("row_count")
    dimensions = rng.sample(groupable, rng.randint(0, min(2, len(groupable))))
    if not metrics and not dimensions:
        metrics.append("row_count")

    filters = []
    for table, column in rng.sample(columns, rng.randint(0, min(3, len(columns)))):
        kind = family(table, column)
        reference = f"{table}.{column}"
        known = schema.known_values_for(table, column)
        if known:
            filters.append({"column": reference, "operator": "=", "value": rng.choice(known)})
        elif kind == "text":
            operator = rng.choice(["=", "!=", "like"])
            filters.append(
                {"column": reference, "operator": operator, "value": rng.choice(HOSTILE_VALUES)}
            )
        elif kind == "integer" and rng.random() < 0.5:
            values = rng.sample(range(1, 50), rng.randint(1, 3))
            filters.append({"column": reference, "operator": "in", "value": values})
        elif kind in NUMERIC_TYPES:
            operator = rng.choice(["=", "<", "<=", ">", ">="])
            filters.append({"column": reference, "operator": operator, "value": rng.randint(0, 500)})

    candidate = {
        "database": database,
        "tables": tables,
        "metrics": metrics,
        "dimensions": dimensions,
        "filters": filters,
        "suggested_visualization": rng.choice([kind.value for kind in VisualizationKind]),
    }

    temporal = [f"{t}.{c}" for t, c in columns if family(t, c) in TEMPORAL_TYPES]
    if temporal and rng.random() < 0.5:
        candidate["time_range"] = {
            "start": "2024-01-01",
            "end": rng.choice(["2024-01-02", "2024-02-01"]),
            "column": rng.choice(temporal),
        }
    if metrics and rng.random() < 0.5:
        candidate["order_by"] = rng.choice(metrics)
    return candidate


def random_text(rng: random.Random) -> str:
    pieces = []
    for _ in range(rng.randint(0, 25)):
        if rng.random() < 0.8:
            pieces.append(rng.choice(TEXT_FRAGMENTS))
        else:
            pieces.append("".join(rng.choices(string.printable, k=rng.randint(1, 6))))
    return " ".join(pieces) if rng.random() < 0.7 else "".join(pieces)


def assert_intent_invariants(intent: Intent, catalog: SchemaCatalog) -> None:
    schema = catalog.get(intent.database)
    assert intent.catalog_violations(catalog) == []
    assert intent.metrics or intent.dimensions
    assert len(set(intent.metrics)) == len(intent.metrics)
    assert len(set(intent.dimensions)) == len(intent.dimensions)
    assert set(intent.derived_metrics) <= set(intent.metrics)
    assert intent.order_by is None or intent.order_by in intent.metrics
    assert JoinGraph(schema).is_connected(intent.tables)
    for reference in [*intent.dimensions, *(f.column for f in intent.filters)]:
        table, _, column = reference.partition(".")
        assert table in intent.tables
        assert schema.has_column(table, column)


def assert_safe_statement(statement: SqlStatement, intent: Intent) -> None:
    assert statement.is_read_only is True
    assert is_read_only_sql(statement.text)
    assert find_denylisted(statement.text) == []
    assert top_level_limit(statement.text) == (True, MAX_ROWS)
    assert statement.referenced_tables == intent.tables
    for value in statement.parameters:
        if isinstance(value, str) and value in HOSTILE_VALUES:
            assert value not in statement.text


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def interpreter(mock_llm_provider):
    return QueryInterpreterAgent(llm_provider=mock_llm_provider, timeout_seconds=5)


@pytest.fixture
def synthesizer():
    return SQLSynthesizerAgent(max_rows=MAX_ROWS)


@pytest_asyncio.fixture
async def sqlite_executor(ads_sqlite_url):
    router = ExecutionRouter({"ads": ads_sqlite_url}, pool_size=2, statement_timeout=5)
    yield ExecutorAgent(router=router, max_rows=MAX_ROWS, timeout_seconds=5)
    await router.close()


# ============================================================================
# Tests
# ============================================================================


@pytest.mark.parametrize("seed", SEEDS)
def test_generated_catalogs_yield_valid_safe_statements(seed, interpreter, synthesizer):
    rng = random.Random(seed)
    catalog = SchemaCatalog.model_validate(random_catalog_data(rng))
    guard = QueryGuard(
        catalog, max_rows=MAX_ROWS, max_cost=5_000_000, join_fanout=10, extra_denylist=()
    )

    for _ in range(5):
        candidate = random_candidate(rng, catalog, "warehouse")

        intent = interpreter.build_intent(candidate, catalog)
        assert_intent_invariants(intent, catalog)

        statement = synthesizer.render(intent, catalog)
        assert_safe_statement(statement, intent)

        decision = guard.check(statement, {"read:warehouse.*"}, catalog)
        assert isinstance(decision, Accepted), decision
        assert decision.statement.text == statement.text


@pytest.mark.parametrize("seed", SEEDS)
def test_unknown_tables_never_reach_an_intent(seed, interpreter):
    rng = random.Random(seed)
    catalog = SchemaCatalog.model_validate(random_catalog_data(rng))
    candidate = random_candidate(rng, catalog, "warehouse")
    missing = [name for name in TABLE_NAMES if name not in catalog.get("warehouse").tables]
    candidate["tables"] = [*candidate["tables"], rng.choice(missing)]

    with pytest.raises(InterpretationError):
        interpreter.build_intent(candidate, catalog)


@pytest.mark.parametrize("seed", SEEDS)
def test_guard_decides_on_arbitrary_text(seed, ads_catalog):
    rng = random.Random(seed)
    guard = QueryGuard(
        ads_catalog, max_rows=MAX_ROWS, max_cost=5_000_000, join_fanout=10, extra_denylist=()
    )

    for _ in range(25):
        statement = SqlStatement(
            database=rng.choice(["ads", "ads", "billing"]),
            text=random_text(rng),
            is_read_only=rng.random() < 0.8,
            parameters=[rng.randint(0, 9) for _ in range(rng.randint(0, 2))],
        )
        permissions = set(rng.sample(PERMISSION_POOL, rng.randint(0, len(PERMISSION_POOL))))

        decision = guard.check(statement, permissions)

        assert isinstance(decision, (Accepted, Rejected))
        if isinstance(decision, Accepted):
            text = decision.statement.text
            assert is_read_only_sql(text)
            assert find_denylisted(text) == []
            has_limit, limit = top_level_limit(text)
            assert has_limit and limit is not None and limit <= MAX_ROWS


@pytest.mark.asyncio
@pytest.mark.parametrize("seed", range(15))
async def test_guarded_statement_returns_same_rows_twice(
    seed, ads_catalog, interpreter, synthesizer, sqlite_executor
):
    rng = random.Random(seed)
    guard = QueryGuard(
        ads_catalog, max_rows=MAX_ROWS, max_cost=5_000_000, join_fanout=10, extra_denylist=()
    )

    intent = interpreter.build_intent(random_candidate(rng, ads_catalog, "ads"), ads_catalog)
    statement = synthesizer.render(intent, ads_catalog)
    decision = guard.check(statement, {"read:ads.*", "advertiser:1"})
    assert isinstance(decision, Accepted), decision

    first = await sqlite_executor.run(decision.statement)
    second = await sqlite_executor.run(decision.statement)

    assert first.rows == second.rows
    assert first.column_names == second.column_names
    assert first.truncated == second.truncated
