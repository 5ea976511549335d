"""
Local LLM Provider

Implementation of BaseLLMProvider for local model servers.
Supports Ollama and any OpenAI-compatible endpoint (vLLM, llama.cpp server).
"""

import logging
from typing import Any

import httpx

from askdash.llm.base import BaseLLMProvider, LLMProviderError
from askdash.llm.models import LLMRequest, LLMResponse, LLMUsage

logger = logging.getLogger(__name__)


class LocalProvider(BaseLLMProvider):
    """
    Local LLM provider implementation.

    Tries the Ollama ``/api/chat`` endpoint first and falls back to the
    OpenAI-compatible ``/v1/chat/completions`` endpoint.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama3.1:8b",
        temperature: float = 0.0,
        max_tokens: int = 1500,
        timeout: int = 30,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(
            provider_name="local",
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )

        self.base_url = base_url.rstrip("/")
        self.model = model
        self.client = client or httpx.AsyncClient(timeout=float(timeout))

        logger.info(
            f"Local provider initialized: {base_url} with model: {model}",
            extra={"base_url": base_url, "model": model},
        )

    async def generate(self, request: LLMRequest) -> LLMResponse:
        """Generate completion using the local model server."""
        request = self._apply_defaults(request)
        self._log_request(request)

        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": msg.role, "content": msg.content} for msg in request.messages],
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "stream": False,
        }
        if request.json_mode:
            payload["format"] = "json"

        try:
            data = await self._post("/api/chat", payload)
            content = data.get("message", {}).get("content", "")
            prompt_tokens = data.get("prompt_eval_count", 0)
            completion_tokens = data.get("eval_count", 0)
        except httpx.HTTPError as ollama_error:
            logger.debug(f"Ollama endpoint failed, trying OpenAI-compatible: {ollama_error}")
            payload.pop("format", None)
            if request.json_mode:
                payload["response_format"] = {"type": "json_object"}
            try:
                data = await self._post("/v1/chat/completions", payload)
            except httpx.HTTPError as e:
                logger.error(f"Local model server error: {e}")
                raise LLMProviderError("local", f"server error: {type(e).__name__}") from e
            choices = data.get("choices") or [{}]
            content = choices[0].get("message", {}).get("content", "")
            usage = data.get("usage", {})
            prompt_tokens = usage.get("prompt_tokens", 0)
            completion_tokens = usage.get("completion_tokens", 0)

        llm_response = LLMResponse(
            content=content or "",
            model=data.get("model", self.model),
            usage=LLMUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
            finish_reason="stop",
            provider="local",
            metadata={"base_url": self.base_url},
        )

        self._log_response(llm_response)
        return llm_response

    async def close(self) -> None:
        await self.client.aclose()

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self.client.post(f"{self.base_url}{path}", json=payload)
        response.raise_for_status()
        try:
            return response.json()
        except ValueError as e:
            raise httpx.DecodingError("Response is not JSON") from e
