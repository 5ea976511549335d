"""
Provider-agnostic request and response models for model calls.

The interpreter is the only caller: it sends a system and a user message and
asks for a JSON object back. Provider defaults fill ``temperature`` and
``max_tokens`` when a request leaves them unset.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field

FinishReason = Literal["stop", "length", "content_filter", "error"]


class LLMMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str = Field(..., min_length=1)


class LLMRequest(BaseModel):
    messages: list[LLMMessage] = Field(..., min_length=1)
    temperature: float | None = Field(None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(None, gt=0)
    json_mode: bool = Field(False, description="Request a single JSON object where supported")


class LLMUsage(BaseModel):
    prompt_tokens: int = Field(..., ge=0)
    completion_tokens: int = Field(..., ge=0)
    total_tokens: int = Field(..., ge=0)


class LLMResponse(BaseModel):
    """One completion, normalized across providers."""

    content: str
    model: str
    usage: LLMUsage
    finish_reason: FinishReason
    provider: str = Field(..., description="openai, anthropic or local")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Provider response ids")
