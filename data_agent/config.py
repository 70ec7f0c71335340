"""
Application Configuration

Pydantic-based settings management using environment variables.
Supports nested configuration, validation, and caching.

Usage:
    from data_agent.config import get_settings

    settings = get_settings()
    print(settings.llm.default_provider)
    print(settings.pipeline.default_row_limit)
"""

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import AnyUrl, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ProviderName = Literal["openai", "anthropic"]


class LLMSettings(BaseSettings):
    """LLM provider configuration."""

    # Provider selection
    default_provider: ProviderName = Field(default="openai", description="Default LLM provider")
    planner_provider: ProviderName | None = Field(
        None, description="Provider for PlannerAgent (defaults to default_provider)"
    )
    decomposer_provider: ProviderName | None = Field(
        None, description="Provider for DecomposerAgent (defaults to default_provider)"
    )
    sql_provider: ProviderName | None = Field(
        None, description="Provider for SQL generation (defaults to default_provider)"
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

    # Common settings
    temperature: float = Field(
        default=0.0,
        ge=0.0,
        le=2.0,
        description="Temperature for LLM responses (0.0 = deterministic)",
    )
    max_tokens: int = Field(
        default=2000,
        gt=0,
        le=16000,
        description="Maximum tokens per LLM response",
    )
    timeout: int = Field(
        default=30,
        gt=0,
        description="Request timeout in seconds",
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

        selected_providers = {
            self.default_provider,
            self.planner_provider,
            self.decomposer_provider,
            self.sql_provider,
        }

        for provider in selected_providers:
            if provider in provider_key_map and not provider_key_map[provider]:
                raise ValueError(
                    f"API key required for {provider} provider. Set LLM_{provider.upper()}_API_KEY"
                )

        return self


class DatabaseSettings(BaseSettings):
    """Tenant database configuration (the database questions are answered from)."""

    url: AnyUrl | None = Field(
        None,
        description="PostgreSQL connection URL for the multi-tenant business database",
    )
    pool_size: int = Field(
        default=5,
        gt=0,
        le=20,
        description="Database connection pool size",
    )
    statement_timeout_ms: int = Field(
        default=5000,
        gt=0,
        le=60000,
        description="Per-statement timeout applied to generated SQL",
    )

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("url", mode="before")
    @classmethod
    def normalize_url(cls, v: str | AnyUrl | None) -> str | AnyUrl | None:
        """Treat empty strings as missing."""
        if v == "":
            return None
        return v

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: AnyUrl | None) -> AnyUrl | None:
        """Validate supported database URL schemes."""
        if v is None:
            return v
        parsed = urlparse(str(v))
        scheme = parsed.scheme.split("+")[0].lower() if parsed.scheme else ""
        if scheme not in {"postgres", "postgresql"}:
            raise ValueError("DATABASE_URL must use the postgresql scheme.")
        if not parsed.hostname:
            raise ValueError("DATABASE_URL must include a host.")
        return v


class ChromaSettings(BaseSettings):
    """Chroma vector store configuration (schema search)."""

    persist_dir: Path = Field(
        default=Path("./chroma_data"),
        description="Directory for Chroma vector store persistence",
    )
    collection_name: str = Field(
        default="data_agent_schema",
        description="Name of the Chroma collection",
    )
    embedding_model: str = Field(
        default="text-embedding-3-small",
        description="OpenAI embedding model",
    )
    top_k: int = Field(
        default=8,
        gt=0,
        le=20,
        description="Number of top results to retrieve",
    )

    model_config = SettingsConfigDict(
        env_prefix="CHROMA_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("persist_dir")
    @classmethod
    def validate_persist_dir(cls, v: Path) -> Path:
        """Resolve the persist directory (created lazily by the vector store)."""
        return v.resolve()


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
            force=True,
        )


class PipelineSettings(BaseSettings):
    """Pipeline tunables: cache lifetimes, caps and heuristic thresholds."""

    schema_cache_ttl_seconds: int = Field(
        default=300,
        gt=0,
        description="How long a tenant schema snapshot may be reused before re-introspection.",
    )
    session_ttl_seconds: int = Field(
        default=1800,
        gt=0,
        description="Inactivity window after which a conversation session expires.",
    )
    session_sweep_interval_seconds: int = Field(
        default=300,
        gt=0,
        description="Interval between background sweeps of expired sessions.",
    )
    max_query_history: int = Field(
        default=20,
        ge=1,
        le=200,
        description="Maximum query turns retained per session (oldest evicted).",
    )
    max_sub_queries: int = Field(
        default=4,
        ge=2,
        le=4,
        description="Upper bound on sub-queries in a decomposed plan.",
    )
    default_row_limit: int = Field(
        default=100,
        gt=0,
        le=10000,
        description="LIMIT appended to generated SQL that has none.",
    )
    ambiguity_score_margin: int = Field(
        default=1,
        ge=0,
        description=(
            "Two domains whose question scores differ by at most this many points "
            "make the question ambiguous."
        ),
    )
    decomposition_array_hints: list[str] = Field(
        default_factory=lambda: [
            "line_items",
            "items",
            "tags",
            "affinities",
            "elements",
            "entries",
        ],
        description="Column-name fragments that mark a JSONB column as array-shaped.",
    )
    max_correction_retries: int = Field(
        default=3,
        ge=0,
        le=5,
        description="Self-correction attempts after a failed execution.",
    )
    row_count_retry_enabled: bool = Field(
        default=True,
        description=(
            "Regenerate once when a LIMIT lower than the requested count truncated the result."
        ),
    )
    schema_search_limit: int = Field(
        default=8,
        gt=0,
        le=50,
        description="Chunks requested from schema search per question.",
    )
    similar_query_pool: int = Field(
        default=20,
        gt=0,
        le=200,
        description="Recent verified queries considered for few-shot examples.",
    )
    similar_query_limit: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Few-shot examples passed to SQL generation.",
    )
    similar_query_threshold: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Minimum keyword-overlap similarity for a past query to be used.",
    )
    jsonb_sample_limit: int = Field(
        default=50,
        gt=0,
        le=1000,
        description="Rows sampled per JSONB column when discovering keys.",
    )

    model_config = SettingsConfigDict(
        env_prefix="PIPELINE_",
        env_file=".env",
        extra="ignore",
    )


class Settings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    Settings are nested by domain (llm, database, chroma, logging, pipeline).

    Environment Variables:
        ENVIRONMENT: Deployment environment (development, staging, production)
        APP_NAME: Application name for logging
        DEBUG: Enable debug mode
        LLM_*: LLM provider configuration (see LLMSettings)
        DATABASE_*: Tenant database configuration (see DatabaseSettings)
        CHROMA_*: Vector store configuration (see ChromaSettings)
        LOG_*: Logging configuration (see LoggingSettings)
        PIPELINE_*: Pipeline tunables (see PipelineSettings)

    Example:
        >>> settings = get_settings()
        >>> settings.llm.default_provider
        'openai'
        >>> settings.pipeline.max_sub_queries
        4
    """

    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    app_name: str = Field(
        default="DataAgent",
        description="Application name",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )

    # Nested settings
    llm: LLMSettings = Field(default_factory=LLMSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    chroma: ChromaSettings = Field(default_factory=ChromaSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)

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
                "database_pool_size": self.database.pool_size,
                "chroma_collection": self.chroma.collection_name,
            },
        )


_DOTENV_PATH = Path(__file__).resolve().parents[1] / ".env"


def _apply_dotenv_precedence() -> None:
    env_source = os.getenv("DATA_AGENT_ENV_SOURCE", "dotenv").lower()
    if env_source not in {"dotenv", "envfile", "file"}:
        return
    if _DOTENV_PATH.exists():
        load_dotenv(_DOTENV_PATH, override=True)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

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
