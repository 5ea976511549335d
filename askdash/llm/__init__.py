"""
LLM Provider Module

Language-model capability used by the query interpreter, with OpenAI,
Anthropic and local-server bindings.

Usage:
    from askdash.llm import LLMProviderFactory, LLMRequest, LLMMessage
    from askdash.config import get_settings

    provider = LLMProviderFactory.create_default_provider(get_settings().llm)
    response = await provider.generate(
        LLMRequest(messages=[LLMMessage(role="user", content="Hello!")])
    )
"""

from askdash.llm.anthropic import AnthropicProvider
from askdash.llm.base import BaseLLMProvider, LLMProviderError
from askdash.llm.factory import LLMProviderFactory
from askdash.llm.local import LocalProvider
from askdash.llm.models import LLMMessage, LLMRequest, LLMResponse, LLMUsage
from askdash.llm.openai import OpenAIProvider

__all__ = [
    "AnthropicProvider",
    "BaseLLMProvider",
    "LLMMessage",
    "LLMProviderError",
    "LLMProviderFactory",
    "LLMRequest",
    "LLMResponse",
    "LLMUsage",
    "LocalProvider",
    "OpenAIProvider",
]
