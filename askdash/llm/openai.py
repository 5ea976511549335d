"""
OpenAI LLM Provider

Implementation of BaseLLMProvider for OpenAI chat models.
"""

import logging
from typing import Any

import openai
from openai import AsyncOpenAI

from askdash.llm.base import BaseLLMProvider, LLMProviderError
from askdash.llm.models import LLMRequest, LLMResponse, LLMUsage

logger = logging.getLogger(__name__)


class OpenAIProvider(BaseLLMProvider):
    """
    OpenAI LLM provider implementation.

    Uses the official openai Python SDK with async support. JSON mode is
    mapped to ``response_format={"type": "json_object"}``.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        temperature: float = 0.0,
        max_tokens: int = 1500,
        timeout: int = 30,
    ):
        super().__init__(
            provider_name="openai",
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )

        self.model = model
        self.client = AsyncOpenAI(
            api_key=api_key,
            timeout=float(timeout),
        )

        logger.info(f"OpenAI provider initialized with model: {model}", extra={"model": model})

    async def generate(self, request: LLMRequest) -> LLMResponse:
        """
        Generate completion using OpenAI API.

        Raises:
            LLMProviderError: On API errors or timeouts
        """
        request = self._apply_defaults(request)
        self._log_request(request)

        messages = [{"role": msg.role, "content": msg.content} for msg in request.messages]
        extra: dict[str, Any] = {}
        if request.json_mode:
            extra["response_format"] = {"type": "json_object"}

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=request.temperature,
                max_tokens=request.max_tokens,
                **extra,
            )
        except openai.APITimeoutError as e:
            logger.error(f"OpenAI API timeout: {e}")
            raise LLMProviderError("openai", "request timed out") from e
        except openai.APIError as e:
            logger.error(f"OpenAI API error: {e}")
            raise LLMProviderError("openai", f"API error: {type(e).__name__}") from e

        usage = response.usage
        llm_response = LLMResponse(
            content=response.choices[0].message.content or "",
            model=response.model,
            usage=LLMUsage(
                prompt_tokens=usage.prompt_tokens if usage else 0,
                completion_tokens=usage.completion_tokens if usage else 0,
                total_tokens=usage.total_tokens if usage else 0,
            ),
            finish_reason=self._map_finish_reason(response.choices[0].finish_reason),
            provider="openai",
            metadata={"id": response.id, "created": response.created},
        )

        self._log_response(llm_response)
        return llm_response

    async def close(self) -> None:
        await self.client.close()

    def _map_finish_reason(self, reason: str | None) -> str:
        """Map OpenAI finish reason to our standard format."""
        if reason in ("stop", "length", "content_filter"):
            return reason
        return "stop"
