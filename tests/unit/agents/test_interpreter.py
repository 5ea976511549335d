"""Unit tests for QueryInterpreterAgent."""

import asyncio

import pytest

from askdash.agents.interpreter import (
    QueryInterpreterAgent,
    describe_intent,
    parse_intent_candidate,
)
from askdash.models.errors import InterpretationError, InterpretationReason
from askdash.models.query import Intent, Turn, VisualizationKind


@pytest.fixture
def interpreter(mock_llm_provider):
    return QueryInterpreterAgent(llm_provider=mock_llm_provider, timeout_seconds=5)


class TestParseIntentCandidate:
    def test_plain_json(self):
        assert parse_intent_candidate('{"database": "ads"}') == {"database": "ads"}

    def test_code_fenced_json(self):
        content = '```json\n{"database": "ads", "tables": ["advertisers"]}\n```'
        assert parse_intent_candidate(content)["tables"] == ["advertisers"]

    def test_no_json_is_malformed(self):
        with pytest.raises(InterpretationError) as exc_info:
            parse_intent_candidate("I think you want the ROAS table.")
        assert exc_info.value.reason is InterpretationReason.MALFORMED_RESPONSE

    def test_broken_json_is_malformed(self):
        with pytest.raises(InterpretationError) as exc_info:
            parse_intent_candidate('{"database": "ads",,}')
        assert exc_info.value.reason is InterpretationReason.MALFORMED_RESPONSE


class TestInterpret:
    """Question -> Intent through the mocked language model."""

    @pytest.mark.asyncio
    async def test_roas_for_toyota(self, interpreter, mock_llm_provider, ads_catalog, roas_candidate):
        mock_llm_provider.set_intent(roas_candidate)

        intent = await interpreter.interpret(
            "Tell me the ROAS for advertiser named Toyota", [], ads_catalog
        )

        assert intent.database == "ads"
        assert intent.tables == frozenset({"advertisers", "campaigns", "performance_metrics"})
        assert intent.metrics == ["roas"]
        assert intent.derived_metrics == {"roas": "revenue / cost"}
        assert len(intent.filters) == 1
        assert intent.filters[0].column == "advertisers.advertiser_name"
        assert intent.filters[0].value == "Toyota"
        assert intent.explanation

    @pytest.mark.asyncio
    async def test_prompt_grounds_mentioned_glossary_terms(
        self, interpreter, mock_llm_provider, ads_catalog, roas_candidate
    ):
        mock_llm_provider.set_intent(roas_candidate)

        await interpreter.interpret("What is the roas for Toyota?", [], ads_catalog)

        prompt = mock_llm_provider.prompts[0]
        assert "roas: revenue / cost" in prompt
        assert "performance_metrics(" in prompt
        assert "What is the roas for Toyota?" in prompt

    @pytest.mark.asyncio
    async def test_history_included_in_prompt(
        self, interpreter, mock_llm_provider, ads_catalog, roas_candidate
    ):
        mock_llm_provider.set_intent(roas_candidate)
        previous = Intent(database="ads", tables=frozenset({"advertisers"}), dimensions=["advertisers.advertiser_name"])
        history = [Turn(question="List advertisers", resolved_intent=previous, result_summary="3 row(s)")]

        await interpreter.interpret("And their ROAS?", history, ads_catalog)

        prompt = mock_llm_provider.prompts[0]
        assert "List advertisers" in prompt
        assert "3 row(s)" in prompt

    @pytest.mark.asyncio
    async def test_retry_hint_included_in_prompt(
        self, interpreter, mock_llm_provider, ads_catalog, roas_candidate
    ):
        mock_llm_provider.set_intent(roas_candidate)

        await interpreter.interpret(
            "ROAS for Toyota", [], ads_catalog, retry_hint="Which advertiser did you mean?"
        )

        assert "Which advertiser did you mean?" in mock_llm_provider.prompts[0]

    @pytest.mark.asyncio
    async def test_unknown_advertiser_value(
        self, interpreter, mock_llm_provider, ads_catalog, roas_candidate
    ):
        roas_candidate["filters"][0]["value"] = "Lexus"
        mock_llm_provider.set_intent(roas_candidate)

        with pytest.raises(InterpretationError) as exc_info:
            await interpreter.interpret("ROAS for advertiser Lexus", [], ads_catalog)

        assert exc_info.value.reason is InterpretationReason.UNKNOWN_ENTITY

    @pytest.mark.asyncio
    async def test_prose_glossary_term_is_unsupported(
        self, interpreter, mock_llm_provider, ads_catalog
    ):
        mock_llm_provider.set_intent(
            {"database": "ads", "tables": ["campaigns"], "metrics": ["brand lift"]}
        )

        with pytest.raises(InterpretationError) as exc_info:
            await interpreter.interpret("What was the brand lift?", [], ads_catalog)

        assert exc_info.value.reason is InterpretationReason.UNSUPPORTED_METRIC

    @pytest.mark.asyncio
    async def test_malformed_model_output(self, interpreter, mock_llm_provider, ads_catalog):
        mock_llm_provider.set_response("Sorry, I cannot help with that.")

        with pytest.raises(InterpretationError) as exc_info:
            await interpreter.interpret("ROAS?", [], ads_catalog)

        assert exc_info.value.reason is InterpretationReason.MALFORMED_RESPONSE

    @pytest.mark.asyncio
    async def test_model_timeout_is_model_unavailable(
        self, interpreter, mock_llm_provider, ads_catalog
    ):
        mock_llm_provider.generate.side_effect = asyncio.TimeoutError()

        with pytest.raises(InterpretationError) as exc_info:
            await interpreter.interpret("ROAS?", [], ads_catalog)

        assert exc_info.value.reason is InterpretationReason.MODEL_UNAVAILABLE
        assert mock_llm_provider.generate.call_count == 1

    @pytest.mark.asyncio
    async def test_provider_failure_does_not_leak_text(
        self, interpreter, mock_llm_provider, ads_catalog
    ):
        mock_llm_provider.generate.side_effect = RuntimeError("api key sk-secret rejected")

        with pytest.raises(InterpretationError) as exc_info:
            await interpreter.interpret("ROAS?", [], ads_catalog)

        assert exc_info.value.reason is InterpretationReason.MODEL_UNAVAILABLE
        assert "sk-secret" not in exc_info.value.message

    @pytest.mark.asyncio
    async def test_model_reported_ambiguity(self, interpreter, mock_llm_provider, ads_catalog):
        mock_llm_provider.set_intent({"error": "ambiguous", "reason": "which metric?"})

        with pytest.raises(InterpretationError) as exc_info:
            await interpreter.interpret("How are we doing?", [], ads_catalog)

        assert exc_info.value.reason is InterpretationReason.AMBIGUOUS
        assert exc_info.value.recoverable is True

    @pytest.mark.asyncio
    async def test_empty_catalog(self, interpreter, mock_llm_provider):
        from askdash.models.catalog import SchemaCatalog

        with pytest.raises(InterpretationError) as exc_info:
            await interpreter.interpret("ROAS?", [], SchemaCatalog())

        assert exc_info.value.reason is InterpretationReason.UNKNOWN_ENTITY
        mock_llm_provider.generate.assert_not_called()


class TestBuildIntent:
    """Catalog validation of model candidates (no model call)."""

    def test_filter_value_canonicalized_to_known_spelling(
        self, interpreter, ads_catalog, roas_candidate
    ):
        roas_candidate["filters"][0]["value"] = "toyota"

        intent = interpreter.build_intent(roas_candidate, ads_catalog)

        assert intent.filters[0].value == "Toyota"

    def test_unknown_table(self, interpreter, ads_catalog):
        with pytest.raises(InterpretationError) as exc_info:
            interpreter.build_intent(
                {"database": "ads", "tables": ["invoices"], "metrics": ["row_count"]}, ads_catalog
            )
        assert exc_info.value.reason is InterpretationReason.UNKNOWN_ENTITY

    def test_unknown_database(self, interpreter, ads_catalog):
        with pytest.raises(InterpretationError) as exc_info:
            interpreter.build_intent(
                {"database": "billing", "tables": ["advertisers"]}, ads_catalog
            )
        assert exc_info.value.reason is InterpretationReason.UNKNOWN_ENTITY

    def test_ambiguous_bare_column(self, interpreter, ads_catalog):
        with pytest.raises(InterpretationError) as exc_info:
            interpreter.build_intent(
                {
                    "database": "ads",
                    "tables": ["advertisers", "campaigns"],
                    "dimensions": ["advertiser_id"],
                },
                ads_catalog,
            )
        assert exc_info.value.reason is InterpretationReason.AMBIGUOUS

    def test_non_numeric_metric_rejected(self, interpreter, ads_catalog):
        with pytest.raises(InterpretationError) as exc_info:
            interpreter.build_intent(
                {"database": "ads", "tables": ["campaigns"], "metrics": ["campaign_name"]},
                ads_catalog,
            )
        assert exc_info.value.reason is InterpretationReason.UNSUPPORTED_METRIC

    def test_column_metric_and_dimension(self, interpreter, ads_catalog):
        intent = interpreter.build_intent(
            {
                "database": "ads",
                "tables": ["performance_metrics"],
                "metrics": ["clicks"],
                "dimensions": ["day"],
                "order_by": "clicks",
                "suggested_visualization": "LINE",
            },
            ads_catalog,
        )

        assert intent.metrics == ["performance_metrics.clicks"]
        assert intent.dimensions == ["performance_metrics.day"]
        assert intent.order_by == "performance_metrics.clicks"
        assert intent.suggested_visualization is VisualizationKind.LINE

    def test_unrecognized_visualization_falls_back_to_table(self, interpreter, ads_catalog):
        intent = interpreter.build_intent(
            {
                "database": "ads",
                "tables": ["advertisers"],
                "dimensions": ["advertiser_name"],
                "suggested_visualization": "sankey",
            },
            ads_catalog,
        )
        assert intent.suggested_visualization is VisualizationKind.TABLE

    def test_nothing_to_measure_is_ambiguous(self, interpreter, ads_catalog):
        with pytest.raises(InterpretationError) as exc_info:
            interpreter.build_intent({"database": "ads", "tables": ["advertisers"]}, ads_catalog)
        assert exc_info.value.reason is InterpretationReason.AMBIGUOUS

    def test_time_range_on_non_temporal_column(self, interpreter, ads_catalog):
        with pytest.raises(InterpretationError) as exc_info:
            interpreter.build_intent(
                {
                    "database": "ads",
                    "tables": ["performance_metrics"],
                    "metrics": ["clicks"],
                    "time_range": {"column": "cost", "start": "2024-01-01", "end": "2024-02-01"},
                },
                ads_catalog,
            )
        assert exc_info.value.reason is InterpretationReason.UNKNOWN_ENTITY

    def test_inverted_time_range_is_malformed(self, interpreter, ads_catalog):
        with pytest.raises(InterpretationError) as exc_info:
            interpreter.build_intent(
                {
                    "database": "ads",
                    "tables": ["performance_metrics"],
                    "metrics": ["clicks"],
                    "time_range": {"start": "2024-02-01", "end": "2024-01-01"},
                },
                ads_catalog,
            )
        assert exc_info.value.reason is InterpretationReason.MALFORMED_RESPONSE


def test_describe_intent_is_deterministic(ads_catalog):
    intent = Intent(
        database="ads",
        tables=frozenset({"performance_metrics"}),
        metrics=["performance_metrics.clicks"],
        dimensions=["performance_metrics.day"],
    )
    assert describe_intent(intent) == describe_intent(intent)
    assert describe_intent(intent) == "Showing clicks by day in database 'ads'."
