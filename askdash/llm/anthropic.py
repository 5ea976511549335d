"""
Anthropic LLM Provider

Implementation of BaseLLMProvider for Anthropic's Claude models.
"""

import logging
from typing import Any

import anthropic
from anthropic import AsyncAnthropic

from askdash.llm.base import BaseLLMProvider, LLMProviderError
from askdash.llm.models import LLMRequest, LLMResponse, LLMUsage

logger = logging.getLogger(__name__)


class AnthropicProvider(BaseLLMProvider):
    """
    Anthropic (Claude) LLM provider implementation.

    The system message is passed separately, as the Messages API requires.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "claude-3-5-sonnet-20241022",
        temperature: float = 0.0,
        max_tokens: int = 1500,
        timeout: int = 30,
    ):
        super().__init__(
            provider_name="anthropic",
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )

        self.model = model
        self.client = AsyncAnthropic(api_key=api_key, timeout=float(timeout))

        logger.info(f"Anthropic provider initialized with model: {model}", extra={"model": model})

    async def generate(self, request: LLMRequest) -> LLMResponse:
        """Generate completion using Anthropic API."""
        request = self._apply_defaults(request)
        self._log_request(request)

        system_parts = []
        messages = []
        for msg in request.messages:
            if msg.role == "system":
                system_parts.append(msg.content)
            else:
                messages.append({"role": msg.role, "content": msg.content})

        kwargs: dict[str, Any] = {}
        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)

        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=request.max_tokens,
                temperature=request.temperature,
                messages=messages,
                **kwargs,
            )
        except anthropic.APITimeoutError as e:
            logger.error(f"Anthropic API timeout: {e}")
            raise LLMProviderError("anthropic", "request timed out") from e
        except anthropic.APIError as e:
            logger.error(f"Anthropic API error: {e}")
            raise LLMProviderError("anthropic", f"API error: {type(e).__name__}") from e

        text = "".join(block.text for block in response.content if block.type == "text")
        llm_response = LLMResponse(
            content=text,
            model=response.model,
            usage=LLMUsage(
                prompt_tokens=response.usage.input_tokens,
                completion_tokens=response.usage.output_tokens,
                total_tokens=response.usage.input_tokens + response.usage.output_tokens,
            ),
            finish_reason=self._map_finish_reason(response.stop_reason),
            provider="anthropic",
            metadata={"id": response.id},
        )

        self._log_response(llm_response)
        return llm_response

    async def close(self) -> None:
        await self.client.close()

    def _map_finish_reason(self, reason: str | None) -> str:
        """Map Anthropic stop reason to our standard format."""
        if reason == "max_tokens":
            return "length"
        return "stop"
