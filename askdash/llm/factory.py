"""
LLM Provider Factory

Builds the configured provider for the interpreter. Hosted providers need
an API key and offer a main and a mini model; the local server has one model
and no key.
"""

import logging
from typing import Literal

from askdash.config import LLMSettings
from askdash.llm.anthropic import AnthropicProvider
from askdash.llm.base import BaseLLMProvider
from askdash.llm.local import LocalProvider
from askdash.llm.openai import OpenAIProvider

logger = logging.getLogger(__name__)

ModelType = Literal["main", "mini"]

# provider -> (display name, settings prefix)
_HOSTED = {
    "openai": ("OpenAI", "openai"),
    "anthropic": ("Anthropic", "anthropic"),
}


class LLMProviderFactory:
    PROVIDERS = {
        "openai": OpenAIProvider,
        "anthropic": AnthropicProvider,
        "local": LocalProvider,
    }

    @staticmethod
    def create_provider(
        provider_type: str,
        config: LLMSettings,
        model_type: ModelType = "main",
    ) -> BaseLLMProvider:
        """
        Create a provider from settings.

        Raises:
            ValueError: If the provider is unknown or its API key is missing
        """
        provider_class = LLMProviderFactory.PROVIDERS.get(provider_type)
        if provider_class is None:
            raise ValueError(
                f"Unknown provider type: {provider_type}. "
                f"Available providers: {list(LLMProviderFactory.PROVIDERS)}"
            )

        common = {
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
            "timeout": config.timeout,
        }
        if provider_type not in _HOSTED:
            provider = provider_class(
                base_url=config.local_base_url, model=config.local_model, **common
            )
        else:
            display, prefix = _HOSTED[provider_type]
            api_key = getattr(config, f"{prefix}_api_key")
            if not api_key:
                raise ValueError(f"{display} API key is required but not configured")
            suffix = "_model" if model_type == "main" else "_model_mini"
            provider = provider_class(
                api_key=api_key, model=getattr(config, prefix + suffix), **common
            )

        logger.info(
            f"Created {provider_type} provider",
            extra={"provider": provider_type, "model": provider.model},
        )
        return provider

    @staticmethod
    def create_default_provider(
        config: LLMSettings, model_type: ModelType = "main"
    ) -> BaseLLMProvider:
        return LLMProviderFactory.create_provider(config.default_provider, config, model_type)

    @staticmethod
    def create_agent_provider(
        agent_name: str, config: LLMSettings, model_type: ModelType = "main"
    ) -> BaseLLMProvider:
        """Use ``<agent_name>_provider`` from settings when set, else the default."""
        override = getattr(config, f"{agent_name}_provider", None)
        return LLMProviderFactory.create_provider(
            override or config.default_provider, config, model_type
        )
