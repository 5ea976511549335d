"""
Pytest configuration and shared fixtures.

This module provides fixtures and configuration used across all tests.
"""

import json
import logging
import os
import sqlite3

import pytest

# askdash.api.main loads settings at import time (during collection), before
# the autouse fixture below runs; provide the same test environment up front.
os.environ.setdefault("ASKDASH_ENV_SOURCE", "environment")
os.environ.setdefault("LLM_OPENAI_API_KEY", "sk-test-key-1234567890-abcdefghijklmnop")

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests (requires a PostgreSQL server)",
    )


def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (may require external services)"
    )
    config.addinivalue_line("markers", "slow: mark test as slow (takes more than 1 second)")
    config.addinivalue_line("markers", "unit: mark test as unit test (default)")


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless explicitly enabled."""
    if config.getoption("--run-integration"):
        return
    skip_integration = pytest.mark.skip(
        reason="Integration tests disabled (use --run-integration to enable)."
    )
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(autouse=True)
def configure_test_logging(caplog):
    """
    Configure logging for tests.

    Sets up log capture and configures log levels.
    This fixture runs automatically for all tests.
    """
    caplog.set_level(logging.DEBUG)
    yield


# ============================================================================
# Environment and Configuration
# ============================================================================


@pytest.fixture(autouse=True)
def mock_openai_api_key(monkeypatch):
    """
    Mock OpenAI API key for tests that require it.

    This prevents tests from attempting real API calls.
    Runs automatically for all tests.
    """
    from askdash.config import get_settings

    get_settings.cache_clear()

    test_key = "sk-test-key-1234567890-abcdefghijklmnop"  # 20+ chars
    monkeypatch.setenv("ASKDASH_ENV_SOURCE", "environment")
    monkeypatch.setenv("LLM_OPENAI_API_KEY", test_key)
    yield test_key

    get_settings.cache_clear()


# ============================================================================
# Mock LLM Provider
# ============================================================================


@pytest.fixture
def mock_llm_provider():
    """
    Mock LLM provider for testing the interpreter.

    Usage:
        def test_agent(mock_llm_provider):
            mock_llm_provider.set_intent({"database": "ads", ...})
            intent = await interpreter.interpret(question, [], catalog)
    """
    from unittest.mock import AsyncMock

    from askdash.llm.models import LLMResponse, LLMUsage

    def _response(content: str) -> LLMResponse:
        return LLMResponse(
            content=content,
            model="mock-model",
            usage=LLMUsage(prompt_tokens=1, completion_tokens=1, total_tokens=2),
            finish_reason="stop",
            provider="mock",
            metadata={},
        )

    class MockLLMProvider:
        def __init__(self):
            self.generate = AsyncMock()
            self.close = AsyncMock()

        def set_response(self, response: str):
            """Set the response that generate() will return."""
            self.generate.side_effect = None
            self.generate.return_value = _response(response)

        def set_intent(self, candidate: dict):
            """Respond with a JSON intent candidate."""
            self.set_response(json.dumps(candidate))

        def set_responses(self, *candidates: dict):
            """Respond with each candidate in turn."""
            self.generate.side_effect = [_response(json.dumps(c)) for c in candidates]

        @property
        def prompts(self) -> list[str]:
            """User prompts sent so far."""
            return [call.args[0].messages[-1].content for call in self.generate.call_args_list]

    return MockLLMProvider()


# ============================================================================
# Sample Catalog
# ============================================================================


@pytest.fixture
def ads_catalog_data() -> dict:
    """Raw catalog snapshot for the advertising database."""
    return {
        "version": "2024-06-01",
        "databases": {
            "ads": {
                "tables": {
                    "advertisers": {
                        "advertiser_id": "integer",
                        "advertiser_name": "text",
                    },
                    "campaigns": {
                        "campaign_id": "integer",
                        "advertiser_id": "integer",
                        "campaign_name": "text",
                    },
                    "performance_metrics": {
                        "metric_id": "integer",
                        "campaign_id": "integer",
                        "day": "date",
                        "impressions": "integer",
                        "clicks": "integer",
                        "revenue": "numeric",
                        "cost": "numeric",
                    },
                },
                "relationships": [
                    {
                        "from_table": "campaigns",
                        "from_column": "advertiser_id",
                        "to_table": "advertisers",
                        "to_column": "advertiser_id",
                    },
                    {
                        "from_table": "performance_metrics",
                        "from_column": "campaign_id",
                        "to_table": "campaigns",
                        "to_column": "campaign_id",
                    },
                ],
                "glossary": {
                    "roas": "revenue / cost",
                    "ctr": "clicks / impressions",
                    "brand lift": "Increase in brand awareness after a campaign",
                },
                "known_values": {
                    "advertisers.advertiser_name": ["Toyota", "Honda", "Ford"],
                },
                "row_security": [
                    {"table": "advertisers", "column": "advertiser_id", "scope": "advertiser"},
                ],
            }
        },
    }


@pytest.fixture
def ads_catalog(ads_catalog_data):
    """Validated SchemaCatalog for the advertising database."""
    from askdash.models.catalog import SchemaCatalog

    return SchemaCatalog.model_validate(ads_catalog_data)


@pytest.fixture
def ads_schema(ads_catalog):
    return ads_catalog.get("ads")


@pytest.fixture
def roas_candidate() -> dict:
    """Model candidate for "Tell me the ROAS for advertiser named Toyota"."""
    return {
        "database": "ads",
        "tables": ["advertisers", "performance_metrics"],
        "metrics": ["roas"],
        "filters": [{"column": "advertiser_name", "operator": "=", "value": "Toyota"}],
        "suggested_visualization": "table",
    }


# ============================================================================
# Sample SQLite Database
# ============================================================================


@pytest.fixture
def ads_sqlite_path(tmp_path):
    """
    File-backed SQLite database matching the sample catalog.

    Toyota (id 1) has revenue 450 and cost 150 across two campaigns, so its
    ROAS is 3.0. Campaign 12 has zero cost.
    """
    path = tmp_path / "ads.db"
    conn = sqlite3.connect(path)
    conn.executescript(
        """
        CREATE TABLE advertisers (
            advertiser_id INTEGER PRIMARY KEY,
            advertiser_name TEXT NOT NULL
        );
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
        INSERT INTO advertisers VALUES (1, 'Toyota'), (2, 'Honda'), (3, 'Ford');
        INSERT INTO campaigns VALUES
            (10, 1, 'Spring Sale'),
            (11, 1, 'Summer Drive'),
            (12, 3, 'Launch Teaser'),
            (20, 2, 'Launch');
        INSERT INTO performance_metrics VALUES
            (1, 10, '2024-01-01', 1000, 50, 300, 100),
            (2, 10, '2024-01-02', 800, 40, 100, 50),
            (3, 11, '2024-01-01', 500, 10, 50, 0),
            (4, 20, '2024-01-01', 2000, 80, 200, 100),
            (5, 12, '2024-01-02', 100, 1, 0, 0);
        """
    )
    conn.commit()
    conn.close()
    return path


@pytest.fixture
def ads_sqlite_url(ads_sqlite_path) -> str:
    return f"sqlite:///{ads_sqlite_path}"
