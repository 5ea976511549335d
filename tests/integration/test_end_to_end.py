"""
End-to-end turns through the real pipeline.

The SQLite tests run the interpreter against a mocked language model and
every other stage for real. The PostgreSQL test needs a disposable
database in ASKDASH_TEST_POSTGRES_URL and runs with --run-integration.
"""

import os
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from askdash.agents.guard import QueryGuard
from askdash.agents.interpreter import QueryInterpreterAgent
from askdash.agents.synthesizer import SQLSynthesizerAgent
from askdash.catalog.store import CatalogStore
from askdash.database.router import ExecutionRouter, ExecutorAgent
from askdash.models.errors import GuardRejectionReason, InterpretationReason
from askdash.models.query import SqlStatement, VisualizationKind
from askdash.pipeline.orchestrator import SessionOrchestrator, TurnState
from askdash.pipeline.session_context import SessionManager
from askdash.visualization.selector import VisualizationSelector

ALL_ADVERTISERS = {"read:ads.*", "advertiser:*"}


def build_orchestrator(catalog, llm_provider, connection_url, synthesizer=None):
    router = ExecutionRouter({"ads": connection_url}, pool_size=2, statement_timeout=5)
    return SessionOrchestrator(
        CatalogStore(catalog),
        interpreter=QueryInterpreterAgent(llm_provider=llm_provider, timeout_seconds=5),
        synthesizer=synthesizer or SQLSynthesizerAgent(max_rows=1000),
        guard=QueryGuard(max_rows=1000, max_cost=5_000_000, join_fanout=10, extra_denylist=()),
        executor=ExecutorAgent(router, max_rows=1000, timeout_seconds=5),
        selector=VisualizationSelector(bar_max_rows=50, pie_max_rows=8, pie_tolerance=0.02),
        sessions=SessionManager(context_window=5),
        ambiguous_retry=True,
    )


@pytest_asyncio.fixture
async def orchestrator(ads_catalog, mock_llm_provider, ads_sqlite_url):
    orchestrator = build_orchestrator(ads_catalog, mock_llm_provider, ads_sqlite_url)
    yield orchestrator
    await orchestrator.close()


class TestAdvertiserRoas:
    @pytest.mark.asyncio
    async def test_single_aggregate_row_is_a_table(
        self, orchestrator, mock_llm_provider, roas_candidate
    ):
        mock_llm_provider.set_intent(roas_candidate)

        outcome = await orchestrator.handle(
            "Tell me the ROAS for advertiser named Toyota", "s1", ALL_ADVERTISERS
        )

        assert outcome.succeeded, outcome.error
        envelope = outcome.envelope
        assert "/ NULLIF(SUM(performance_metrics.cost), 0) AS roas" in envelope.sql_generated
        assert "Toyota" not in envelope.sql_generated
        assert envelope.data.column_names == ["roas"]
        assert envelope.data.rows == [[3.0]]
        assert envelope.visualization.kind is VisualizationKind.TABLE
        assert outcome.stage_history[-1] is TurnState.RESPONDED

    @pytest.mark.asyncio
    async def test_grouped_by_campaign_is_a_bar_chart(
        self, orchestrator, mock_llm_provider, roas_candidate
    ):
        mock_llm_provider.set_intent(
            {**roas_candidate, "dimensions": ["campaign_name"], "suggested_visualization": "bar"}
        )

        outcome = await orchestrator.handle(
            "ROAS for Toyota by campaign", "s1", ALL_ADVERTISERS
        )

        assert outcome.succeeded, outcome.error
        data = outcome.envelope.data
        assert data.column_names == ["campaign_name", "roas"]
        assert [row[0] for row in data.rows] == ["Spring Sale", "Summer Drive"]
        assert data.rows[0][1] == pytest.approx(400 / 150)
        assert data.rows[1][1] is None
        visualization = outcome.envelope.visualization
        assert visualization.kind is VisualizationKind.BAR
        assert visualization.axis_mapping.x == "campaign_name"
        assert visualization.axis_mapping.y == "roas"

    @pytest.mark.asyncio
    async def test_row_security_limits_rows(self, orchestrator, mock_llm_provider):
        mock_llm_provider.set_intent(
            {
                "database": "ads",
                "tables": ["advertisers", "performance_metrics"],
                "metrics": ["revenue"],
                "dimensions": ["advertiser_name"],
            }
        )

        outcome = await orchestrator.handle(
            "Revenue by advertiser", "s1", {"read:ads.*", "advertiser:1"}
        )

        assert outcome.succeeded, outcome.error
        assert outcome.envelope.data.rows == [["Toyota", 450]]

    @pytest.mark.asyncio
    async def test_daily_revenue_is_a_line_chart(self, orchestrator, mock_llm_provider):
        mock_llm_provider.set_intent(
            {
                "database": "ads",
                "tables": ["performance_metrics"],
                "metrics": ["revenue"],
                "dimensions": ["day"],
                "time_range": {"column": "day", "start": "2024-01-01", "end": "2024-01-31"},
            }
        )

        outcome = await orchestrator.handle("Daily revenue in January", "s1", ALL_ADVERTISERS)

        assert outcome.succeeded, outcome.error
        assert outcome.envelope.data.rows == [["2024-01-01", 550], ["2024-01-02", 100]]
        assert outcome.envelope.visualization.kind is VisualizationKind.LINE

    @pytest.mark.asyncio
    async def test_follow_up_sees_previous_turn(
        self, orchestrator, mock_llm_provider, roas_candidate
    ):
        mock_llm_provider.set_intent(roas_candidate)
        await orchestrator.handle("Tell me the ROAS for Toyota", "s1", ALL_ADVERTISERS)

        await orchestrator.handle("And for Honda?", "s1", ALL_ADVERTISERS)

        assert "Tell me the ROAS for Toyota" in mock_llm_provider.prompts[1]
        assert "Tell me the ROAS for Toyota" not in mock_llm_provider.prompts[0]


class TestInjectedWriteStatement:
    @pytest.mark.asyncio
    async def test_model_cannot_smuggle_sql(self, orchestrator, mock_llm_provider):
        mock_llm_provider.set_intent(
            {"database": "ads", "tables": ["performance_metrics"], "metrics": ["revenue"]}
        )

        outcome = await orchestrator.handle(
            "DROP TABLE users; show revenue", "s1", ALL_ADVERTISERS
        )

        assert outcome.succeeded, outcome.error
        assert "DROP" not in outcome.envelope.sql_generated.upper()

    @pytest.mark.asyncio
    async def test_echoed_text_is_rejected_before_execution(
        self, ads_catalog, mock_llm_provider, ads_sqlite_url
    ):
        mock_llm_provider.set_intent(
            {"database": "ads", "tables": ["performance_metrics"], "metrics": ["revenue"]}
        )
        naive_synthesizer = AsyncMock()
        naive_synthesizer.synthesize.return_value = SqlStatement(
            database="ads",
            text="DROP TABLE users; SELECT SUM(revenue) FROM performance_metrics LIMIT 10",
            referenced_tables=frozenset({"performance_metrics"}),
            is_read_only=True,
        )
        orchestrator = build_orchestrator(
            ads_catalog, mock_llm_provider, ads_sqlite_url, synthesizer=naive_synthesizer
        )

        outcome = await orchestrator.handle(
            "DROP TABLE users; show revenue", "s1", ALL_ADVERTISERS
        )

        assert outcome.state is TurnState.FAILED
        assert outcome.failed_stage == "guarding"
        assert outcome.error.reason is GuardRejectionReason.WRITE_OPERATION
        assert orchestrator.executor.router.open_databases == []
        await orchestrator.close()


class TestUnknownAdvertiser:
    @pytest.mark.asyncio
    async def test_fails_without_reaching_execution(
        self, orchestrator, mock_llm_provider, roas_candidate
    ):
        roas_candidate["filters"][0]["value"] = "Lexus"
        mock_llm_provider.set_intent(roas_candidate)

        outcome = await orchestrator.handle("Tell me the ROAS for Lexus", "s1", ALL_ADVERTISERS)

        assert outcome.state is TurnState.FAILED
        assert outcome.error.reason is InterpretationReason.UNKNOWN_ENTITY
        assert TurnState.EXECUTING not in outcome.stage_history
        assert orchestrator.executor.router.open_databases == []
        assert len(orchestrator.sessions.get("s1").context) == 0


POSTGRES_SETUP = """
DROP TABLE IF EXISTS performance_metrics, campaigns, advertisers;
CREATE TABLE advertisers (advertiser_id INTEGER PRIMARY KEY, advertiser_name TEXT NOT NULL);
CREATE TABLE campaigns (
    campaign_id INTEGER PRIMARY KEY,
    advertiser_id INTEGER NOT NULL REFERENCES advertisers(advertiser_id),
    campaign_name TEXT
);
CREATE TABLE performance_metrics (
    metric_id INTEGER PRIMARY KEY,
    campaign_id INTEGER NOT NULL REFERENCES campaigns(campaign_id),
    day DATE NOT NULL,
    impressions INTEGER,
    clicks INTEGER,
    revenue NUMERIC,
    cost NUMERIC
);
INSERT INTO advertisers VALUES (1, 'Toyota'), (2, 'Honda');
INSERT INTO campaigns VALUES (10, 1, 'Spring Sale'), (20, 2, 'Launch');
INSERT INTO performance_metrics VALUES
    (1, 10, '2024-01-01', 1000, 50, 300, 100),
    (2, 20, '2024-01-01', 2000, 80, 200, 100);
"""


@pytest.mark.integration
@pytest.mark.asyncio
async def test_roas_on_postgres(ads_catalog, mock_llm_provider, roas_candidate):
    asyncpg = pytest.importorskip("asyncpg")
    url = os.getenv("ASKDASH_TEST_POSTGRES_URL")
    if not url:
        pytest.skip("ASKDASH_TEST_POSTGRES_URL not set")

    admin = await asyncpg.connect(url)
    try:
        await admin.execute(POSTGRES_SETUP)
        mock_llm_provider.set_intent(roas_candidate)
        orchestrator = build_orchestrator(ads_catalog, mock_llm_provider, url)
        try:
            outcome = await orchestrator.handle(
                "Tell me the ROAS for advertiser named Toyota", "pg", {"read:ads.*", "advertiser:1"}
            )
        finally:
            await orchestrator.close()

        assert outcome.succeeded, outcome.error
        assert outcome.envelope.data.rows == [[3.0]]
        assert outcome.envelope.data.columns[0].type == "float"
    finally:
        await admin.execute("DROP TABLE IF EXISTS performance_metrics, campaigns, advertisers")
        await admin.close()
