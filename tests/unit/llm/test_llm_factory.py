"""
Tests for LLM Provider Factory.

Tests provider creation, configuration, and the interpreter override.
"""

import pytest

from askdash.config import LLMSettings
from askdash.llm.anthropic import AnthropicProvider
from askdash.llm.factory import LLMProviderFactory
from askdash.llm.local import LocalProvider
from askdash.llm.openai import OpenAIProvider


@pytest.fixture
def mock_config():
    """LLM configuration with every provider configured."""
    return LLMSettings(
        default_provider="openai",
        interpreter_provider="anthropic",
        openai_api_key="sk-test-openai-key-1234567890",
        openai_model="gpt-4o",
        openai_model_mini="gpt-4o-mini",
        anthropic_api_key="sk-ant-REDACTED",
        anthropic_model="claude-3-5-sonnet-20241022",
        anthropic_model_mini="claude-3-5-haiku-20241022",
        local_base_url="http://localhost:11434",
        local_model="llama3.1:8b",
        temperature=0.0,
        max_tokens=2000,
        timeout=30,
    )


class TestProviderRegistry:
    def test_all_providers_registered(self):
        assert LLMProviderFactory.PROVIDERS == {
            "openai": OpenAIProvider,
            "anthropic": AnthropicProvider,
            "local": LocalProvider,
        }


class TestCreateProvider:
    def test_openai_main_model(self, mock_config):
        provider = LLMProviderFactory.create_provider("openai", mock_config)

        assert isinstance(provider, OpenAIProvider)
        assert provider.model == "gpt-4o"
        assert provider.max_tokens == 2000
        assert provider.timeout == 30

    def test_openai_mini_model(self, mock_config):
        provider = LLMProviderFactory.create_provider("openai", mock_config, model_type="mini")

        assert provider.model == "gpt-4o-mini"

    def test_anthropic(self, mock_config):
        provider = LLMProviderFactory.create_provider("anthropic", mock_config, model_type="mini")

        assert isinstance(provider, AnthropicProvider)
        assert provider.model == "claude-3-5-haiku-20241022"

    def test_local(self, mock_config):
        provider = LLMProviderFactory.create_provider("local", mock_config)

        assert isinstance(provider, LocalProvider)
        assert provider.base_url == "http://localhost:11434"
        assert provider.model == "llama3.1:8b"

    def test_unknown_provider(self, mock_config):
        with pytest.raises(ValueError, match="Unknown provider type"):
            LLMProviderFactory.create_provider("google", mock_config)

    def test_missing_anthropic_key(self):
        config = LLMSettings(default_provider="local", anthropic_api_key=None)

        with pytest.raises(ValueError, match="Anthropic API key is required"):
            LLMProviderFactory.create_provider("anthropic", config)

    def test_missing_openai_key(self, monkeypatch):
        monkeypatch.delenv("LLM_OPENAI_API_KEY", raising=False)
        config = LLMSettings(default_provider="local", openai_api_key=None)

        with pytest.raises(ValueError, match="OpenAI API key is required"):
            LLMProviderFactory.create_provider("openai", config)

    def test_local_ignores_model_type(self, mock_config):
        provider = LLMProviderFactory.create_provider("local", mock_config, model_type="mini")

        assert provider.model == "llama3.1:8b"


class TestAgentProvider:
    def test_default_provider(self, mock_config):
        provider = LLMProviderFactory.create_default_provider(mock_config)

        assert isinstance(provider, OpenAIProvider)

    def test_interpreter_override(self, mock_config):
        provider = LLMProviderFactory.create_agent_provider("interpreter", mock_config)

        assert isinstance(provider, AnthropicProvider)

    def test_no_override_falls_back_to_default(self, mock_config):
        provider = LLMProviderFactory.create_agent_provider("summarizer", mock_config)

        assert isinstance(provider, OpenAIProvider)


class TestSettingsValidation:
    def test_selected_provider_requires_key(self, monkeypatch):
        monkeypatch.delenv("LLM_OPENAI_API_KEY", raising=False)

        with pytest.raises(ValueError, match="API key required for openai"):
            LLMSettings(default_provider="openai", openai_api_key=None)

    def test_openai_key_prefix(self):
        with pytest.raises(ValueError, match="must start with 'sk-'"):
            LLMSettings(openai_api_key="pk-not-a-valid-openai-key-123")

    def test_local_needs_no_key(self, monkeypatch):
        monkeypatch.delenv("LLM_OPENAI_API_KEY", raising=False)

        config = LLMSettings(default_provider="local")

        assert config.default_provider == "local"
