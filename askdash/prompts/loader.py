"""Prompt loading and rendering utilities."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateNotFound

DEFAULT_PROMPTS_DIR = Path(__file__).resolve().parent / "templates"


@dataclass(frozen=True)
class PromptEntry:
    """Loaded prompt content and metadata."""

    content: str
    metadata: dict[str, Any]


def split_front_matter(source: str) -> tuple[dict[str, Any], str]:
    """Split a template into its YAML front matter and body."""
    if source.startswith("---"):
        parts = source.split("---", 2)
        if len(parts) == 3:
            return yaml.safe_load(parts[1]) or {}, parts[2].lstrip()
    return {}, source


class FrontMatterLoader(FileSystemLoader):
    """Jinja2 loader that strips YAML front matter."""

    def get_source(self, environment: Environment, template: str):  # type: ignore[override]
        source, filename, uptodate = super().get_source(environment, template)
        _, body = split_front_matter(source)
        return body, filename, uptodate


class PromptLoader:
    """Load and render prompt templates shipped with the package."""

    def __init__(self, prompts_dir: str | Path | None = None) -> None:
        self.prompts_dir = Path(prompts_dir) if prompts_dir else DEFAULT_PROMPTS_DIR
        self.cache: dict[str, PromptEntry] = {}
        self._env = Environment(
            loader=FrontMatterLoader(str(self.prompts_dir)),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )

    def load(self, prompt_path: str, version: str = "latest") -> str:
        """
        Load prompt from file.

        Args:
            prompt_path: Relative path (e.g., "agents/query_interpreter.md")
            version: Specific version or "latest"

        Returns:
            Prompt content as string, without front matter
        """
        cache_key = f"{prompt_path}:{version}"
        if cache_key in self.cache:
            return self.cache[cache_key].content

        file_path = self._resolve_path(prompt_path, version)
        if not file_path.exists():
            raise FileNotFoundError(f"Prompt not found: {file_path}")

        metadata, content = split_front_matter(file_path.read_text(encoding="utf-8"))
        self.cache[cache_key] = PromptEntry(content=content, metadata=metadata)
        return content

    def render(self, prompt_path: str, version: str = "latest", **variables: Any) -> str:
        """
        Load prompt and substitute variables using Jinja2.

        Example:
            prompt = loader.render(
                "agents/query_interpreter.md",
                question="Tell me the ROAS for Toyota",
                history=[],
            )
        """
        template_path = self._template_path(prompt_path, version)
        try:
            template = self._env.get_template(template_path)
        except TemplateNotFound as exc:
            raise FileNotFoundError(f"Prompt not found: {template_path}") from exc
        return template.render(**variables)

    def get_metadata(self, prompt_path: str, version: str = "latest") -> dict[str, Any]:
        """Return metadata for a prompt (loads if needed)."""
        cache_key = f"{prompt_path}:{version}"
        if cache_key not in self.cache:
            self.load(prompt_path, version=version)
        return self.cache[cache_key].metadata

    def _resolve_path(self, prompt_path: str, version: str) -> Path:
        if version == "latest":
            return self.prompts_dir / prompt_path
        return self.prompts_dir / "versions" / version / prompt_path

    def _template_path(self, prompt_path: str, version: str) -> str:
        if version == "latest":
            return prompt_path
        return f"versions/{version}/{prompt_path}"
