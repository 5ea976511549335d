"""
Base LLM Provider

Abstract base class for language-model providers. The pipeline depends on
exactly one capability, ``generate``; concrete bindings (OpenAI, Anthropic,
local servers) are injected through LLMProviderFactory.
"""

import logging
from abc import ABC, abstractmethod

from askdash.llm.models import LLMRequest, LLMResponse

logger = logging.getLogger(__name__)


class LLMProviderError(Exception):
    """Raised when a provider call fails (network, API or response error)."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"[{provider}] {message}")


class BaseLLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    Attributes:
        provider_name: Unique identifier for this provider
        temperature: Default sampling temperature
        max_tokens: Default maximum tokens to generate
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        provider_name: str,
        temperature: float = 0.0,
        max_tokens: int = 1500,
        timeout: int = 30,
    ):
        """
        Initialize base provider.

        Args:
            provider_name: Provider identifier (e.g., "openai", "anthropic")
            temperature: Default temperature for responses
            max_tokens: Default max tokens for responses
            timeout: Request timeout in seconds
        """
        self.provider_name = provider_name
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

        logger.info(
            f"Initialized {provider_name} provider",
            extra={
                "provider": provider_name,
                "temperature": temperature,
                "max_tokens": max_tokens,
            },
        )

    @abstractmethod
    async def generate(self, request: LLMRequest) -> LLMResponse:
        """
        Generate a completion from the LLM.

        Args:
            request: LLM request with messages and parameters

        Returns:
            LLMResponse with generated content and metadata

        Raises:
            LLMProviderError: On API, network or response errors
        """
        pass  # pragma: no cover - abstract method

    async def close(self) -> None:
        """Release client resources. Providers without resources do nothing."""
        return None

    def _apply_defaults(self, request: LLMRequest) -> LLMRequest:
        """Return a copy of the request with provider defaults filled in."""
        updates = {}
        if request.temperature is None:
            updates["temperature"] = self.temperature
        if request.max_tokens is None:
            updates["max_tokens"] = self.max_tokens
        return request.model_copy(update=updates) if updates else request

    def _log_request(self, request: LLMRequest) -> None:
        """Log request details for debugging."""
        logger.debug(
            f"{self.provider_name} request",
            extra={
                "provider": self.provider_name,
                "message_count": len(request.messages),
                "temperature": request.temperature,
                "max_tokens": request.max_tokens,
                "json_mode": request.json_mode,
            },
        )

    def _log_response(self, response: LLMResponse) -> None:
        """Log response details for debugging."""
        logger.debug(
            f"{self.provider_name} response",
            extra={
                "provider": self.provider_name,
                "model": response.model,
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
                "finish_reason": response.finish_reason,
            },
        )
