"""Prompt templates and loader."""

from askdash.prompts.loader import PromptLoader

__all__ = ["PromptLoader"]
