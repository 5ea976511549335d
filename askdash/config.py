"""
Application Configuration

Pydantic-based settings management using environment variables.
Supports nested configuration, validation, and caching.

Usage:
    from askdash.config import get_settings

    settings = get_settings()
    print(settings.llm.default_provider)
    print(settings.database.max_rows)
"""

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_URL_SCHEMES = {"postgres", "postgresql", "sqlite"}


class LLMSettings(BaseSettings):
    """LLM provider configuration."""

    default_provider: Literal["openai", "anthropic", "local"] = Field(
        default="openai", description="Default LLM provider"
    )
    interpreter_provider: Literal["openai", "anthropic", "local"] | None = Field(
        None, description="Provider for the query interpreter (defaults to default_provider)"
    )

    # OpenAI configuration
    openai_api_key: str | None = Field(
        None,
        description="OpenAI API key",
        min_length=20,
    )
    openai_model: str = Field(default="gpt-4o", description="OpenAI model for complex tasks")
    openai_model_mini: str = Field(default="gpt-4o-mini", description="OpenAI lightweight model")

    # Anthropic configuration
    anthropic_api_key: str | None = Field(
        None,
        description="Anthropic API key",
        min_length=20,
    )
    anthropic_model: str = Field(
        default="claude-3-5-sonnet-20241022", description="Anthropic model for complex tasks"
    )
    anthropic_model_mini: str = Field(
        default="claude-3-5-haiku-20241022", description="Anthropic lightweight model"
    )

    # Local model configuration
    local_base_url: str = Field(
        default="http://localhost:11434",
        description="Base URL for local model server (Ollama, vLLM, etc.)",
    )
    local_model: str = Field(default="llama3.1:8b", description="Local model name")

    # Common settings
    temperature: float = Field(
        default=0.0,
        ge=0.0,
        le=2.0,
        description="Temperature for LLM responses (0.0 = deterministic)",
    )
    max_tokens: int = Field(
        default=1500,
        gt=0,
        le=16000,
        description="Maximum tokens per LLM response",
    )
    timeout: int = Field(
        default=30,
        gt=0,
        description="Request timeout in seconds (bounds every interpreter call)",
    )

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("openai_api_key")
    @classmethod
    def validate_openai_key(cls, v: str | None) -> str | None:
        """Validate OpenAI API key format."""
        if v and not v.startswith("sk-"):
            raise ValueError("OpenAI API key must start with 'sk-'")
        return v

    @field_validator("anthropic_api_key")
    @classmethod
    def validate_anthropic_key(cls, v: str | None) -> str | None:
        """Validate Anthropic API key format."""
        if v and not v.startswith("sk-ant-"):
            raise ValueError("Anthropic API key must start with 'sk-ant-'")
        return v

    @model_validator(mode="after")
    def validate_provider_keys(self) -> "LLMSettings":
        """Ensure API key is set for selected providers."""
        provider_key_map = {
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
        }

        selected_providers = {self.default_provider, self.interpreter_provider}

        for provider in selected_providers:
            if provider in provider_key_map and not provider_key_map[provider]:
                raise ValueError(
                    f"API key required for {provider} provider. Set LLM_{provider.upper()}_API_KEY"
                )

        return self


class DatabaseSettings(BaseSettings):
    """Target database configuration (one connection string per named database)."""

    connections: dict[str, SecretStr] = Field(
        default_factory=dict,
        description=(
            "Mapping of catalog database name to connection URL. "
            'Set as JSON, e.g. DATABASE_CONNECTIONS=\'{"ads": "postgresql://..."}\''
        ),
    )
    pool_size: int = Field(
        default=5,
        gt=0,
        le=50,
        description="Connection pool size per database",
    )
    statement_timeout: int = Field(
        default=30,
        gt=0,
        le=600,
        description="Statement timeout in seconds",
    )
    max_rows: int = Field(
        default=10_000,
        gt=0,
        le=1_000_000,
        description="Row cap appended to every synthesized statement",
    )

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("connections")
    @classmethod
    def validate_connections(cls, v: dict[str, SecretStr]) -> dict[str, SecretStr]:
        """Validate supported connection URL schemes."""
        for name, secret in v.items():
            parsed = urlparse(secret.get_secret_value())
            scheme = parsed.scheme.split("+")[0].lower() if parsed.scheme else ""
            if scheme not in SUPPORTED_URL_SCHEMES:
                raise ValueError(
                    f"Connection for database '{name}' must use postgresql or sqlite scheme."
                )
            if scheme != "sqlite" and not parsed.hostname:
                raise ValueError(f"Connection for database '{name}' must include a host.")
        return v

    def connection_url(self, database: str) -> str | None:
        """Return the raw connection URL for a database, if configured."""
        secret = self.connections.get(database)
        return secret.get_secret_value() if secret else None


class CatalogSettings(BaseSettings):
    """Schema catalog snapshot location."""

    path: Path | None = Field(
        default=None,
        description="Path to the YAML schema catalog snapshot loaded at startup",
    )

    model_config = SettingsConfigDict(
        env_prefix="CATALOG_",
        env_file=".env",
        extra="ignore",
    )


class GuardSettings(BaseSettings):
    """Query guard policy limits."""

    max_cost: int = Field(
        default=5_000_000,
        gt=0,
        description=(
            "Ceiling for the static cost estimate LIMIT x join_fanout^joins. With the "
            "defaults, a LIMIT of 10,000 passes with at most two joins; three joins need "
            "a LIMIT of 5,000 or less and four joins 500 or less"
        ),
    )
    join_fanout: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Estimated row multiplication per join; raise max_cost with it",
    )
    extra_denylist: list[str] = Field(
        default_factory=list,
        description="Additional keywords rejected as write operations",
    )

    model_config = SettingsConfigDict(
        env_prefix="GUARD_",
        env_file=".env",
        extra="ignore",
    )


class PipelineSettings(BaseSettings):
    """Session orchestration and visualization settings."""

    context_window: int = Field(
        default=5,
        ge=0,
        le=50,
        description="Number of prior turns kept as interpretation context",
    )
    ambiguous_retry_enabled: bool = Field(
        default=True,
        description="Re-prompt the interpreter once when it reports an ambiguous question",
    )
    max_sessions: int = Field(
        default=1000,
        ge=1,
        description="Live sessions kept in memory; least recently used idle ones are dropped",
    )
    session_idle_timeout: int = Field(
        default=3600,
        ge=1,
        description="Seconds without a turn after which a session is discarded",
    )
    bar_max_rows: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Maximum rows rendered as a bar chart",
    )
    pie_max_rows: int = Field(
        default=8,
        ge=1,
        le=50,
        description="Maximum rows rendered as a pie chart",
    )
    pie_tolerance: float = Field(
        default=0.02,
        ge=0.0,
        le=0.5,
        description="Allowed deviation from 1.0 for values treated as proportions",
    )

    model_config = SettingsConfigDict(
        env_prefix="PIPELINE_",
        env_file=".env",
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_chart_bounds(self) -> "PipelineSettings":
        """Pie charts must fit within the bar-chart bound."""
        if self.pie_max_rows > self.bar_max_rows:
            raise ValueError(
                f"pie_max_rows ({self.pie_max_rows}) must not exceed "
                f"bar_max_rows ({self.bar_max_rows})"
            )
        return self


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Application log level",
    )
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format",
    )
    date_format: str = Field(
        default="%Y-%m-%d %H:%M:%S",
        description="Log timestamp format",
    )
    file: Path | None = Field(
        default=None,
        description="Optional log file path (None = stdout only)",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        extra="ignore",
    )

    def configure(self) -> None:
        """Configure Python logging with these settings."""
        handlers: list[logging.Handler] = [logging.StreamHandler()]

        if self.file:
            self.file.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(self.file))

        logging.basicConfig(
            level=getattr(logging, self.level),
            format=self.format,
            datefmt=self.date_format,
            handlers=handlers,
            force=True,  # Override any existing configuration
        )


class Settings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    Settings are nested by domain (llm, database, catalog, guard, pipeline, logging).

    Environment Variables:
        ENVIRONMENT: Deployment environment (development, staging, production)
        APP_NAME: Application name for logging
        DEBUG: Enable debug mode
        API_HOST: API server host
        API_PORT: API server port
        CORS_ORIGINS: Comma separated list of allowed origins
        LLM_*: LLM provider configuration (see LLMSettings)
        DATABASE_*: Target database configuration (see DatabaseSettings)
        CATALOG_*: Schema catalog snapshot (see CatalogSettings)
        GUARD_*: Query guard limits (see GuardSettings)
        PIPELINE_*: Orchestration settings (see PipelineSettings)
        LOG_*: Logging configuration (see LoggingSettings)

    Example:
        >>> settings = get_settings()
        >>> settings.llm.default_provider
        'openai'
        >>> settings.database.max_rows
        10000
    """

    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    app_name: str = Field(
        default="askdash",
        description="Application name",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API server host",
    )
    api_port: int = Field(
        default=8000,
        gt=0,
        le=65535,
        description="API server port",
    )
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma separated list of allowed CORS origins",
    )

    # Nested settings
    llm: LLMSettings = Field(default_factory=LLMSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    catalog: CatalogSettings = Field(default_factory=CatalogSettings)
    guard: GuardSettings = Field(default_factory=GuardSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def cors_origin_list(self) -> list[str]:
        """Parsed CORS origins."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @model_validator(mode="after")
    def configure_logging(self) -> "Settings":
        """Configure logging when settings are loaded."""
        self.logging.configure()
        return self

    def model_post_init(self, __context) -> None:
        """Log configuration on initialization."""
        logger = logging.getLogger(__name__)
        logger.info(
            f"Settings loaded for {self.app_name} ({self.environment})",
            extra={
                "environment": self.environment,
                "debug": self.debug,
                "llm_provider": self.llm.default_provider,
                "databases": sorted(self.database.connections),
                "max_rows": self.database.max_rows,
            },
        )


_DOTENV_PATH = Path(__file__).resolve().parents[1] / ".env"


def _apply_dotenv_precedence() -> None:
    env_source = os.getenv("ASKDASH_ENV_SOURCE", "dotenv").lower()
    if env_source not in {"dotenv", "envfile", "file"}:
        return
    if _DOTENV_PATH.exists():
        load_dotenv(_DOTENV_PATH, override=True)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses functools.lru_cache to ensure settings are loaded only once.

    Returns:
        Settings: Singleton settings instance
    """
    _apply_dotenv_precedence()
    return Settings()


def clear_settings_cache() -> None:
    """
    Clear the settings cache.

    Useful for testing when you need to reload settings with different
    environment variables.
    """
    get_settings.cache_clear()
