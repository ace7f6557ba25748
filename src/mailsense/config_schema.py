"""Pydantic configuration schema for MailSense.

This module defines the configuration schema that mirrors config.yaml structure.
All configuration is validated against these models on startup.

Usage:
    from mailsense.config_schema import AppConfig

    # Validate a config dict
    config = AppConfig(**yaml_data)
"""

from typing import Literal

from pydantic import BaseModel, Field, field_validator

# Current schema version - increment when adding new required fields
CURRENT_SCHEMA_VERSION = 1

BudgetModeName = Literal["Premium", "Balanced", "Economy"]


class DatabaseConfig(BaseModel):
    """SQLite database location."""

    path: str = Field(
        default="data/mailsense.db",
        description="Path to the SQLite database file",
    )

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Ensure database path is not empty and doesn't contain traversal."""
        if not v or not v.strip():
            raise ValueError("Database path cannot be empty")
        if ".." in v:
            raise ValueError("Database path cannot contain '..' (path traversal)")
        return v


class AnalysisConfig(BaseModel):
    """Analysis pipeline tuning."""

    stale_analysis_minutes: int = Field(
        default=5,
        ge=1,
        le=1440,
        description="Analyses left in 'processing' longer than this are reaped as failed",
    )
    confidence_threshold: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Obligations below this confidence never become tasks",
    )
    default_budget_mode: BudgetModeName = Field(
        default="Balanced",
        description="Budget mode used when the AiBudgetMode setting is absent or invalid",
    )
    demo_mode: bool = Field(
        default=False,
        description="Serve canned analyses instead of calling a provider",
    )
    demo_delay_seconds: float = Field(
        default=0.0,
        ge=0.0,
        le=10.0,
        description="Artificial latency added to demo responses",
    )
    baseline_model: str = Field(
        default="gpt-4o",
        description="Model used as the cost baseline for savings reports",
    )


class LinkContextConfig(BaseModel):
    """External link scraping for prompt augmentation."""

    enabled: bool = Field(default=True, description="Fetch linked resources into the prompt")
    keywords: list[str] = Field(
        default=["policy", "download", "document", "statement", "terms"],
        description="A URL is fetched only if it contains one of these substrings",
    )
    max_links: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Maximum number of distinct links fetched per message",
    )
    timeout_seconds: float = Field(
        default=8.0,
        gt=0.0,
        le=60.0,
        description="Per-link fetch timeout",
    )
    max_chars: int = Field(
        default=2500,
        ge=100,
        le=20000,
        description="Cleaned content beyond this length is truncated",
    )
    user_agent: str = Field(
        default="Mozilla/5.0 (Windows NT 10.0; Win64; x64) MailSense/1.0",
        description="User-Agent header sent when fetching links",
    )


class ProvidersConfig(BaseModel):
    """LLM provider transport settings."""

    ollama_timeout_seconds: float = Field(
        default=60.0,
        gt=0.0,
        le=600.0,
        description="Request timeout for local Ollama calls",
    )
    ollama_default_endpoint: str = Field(
        default="http://localhost:11434",
        description="Ollama base URL when the provider row has no endpoint",
    )
    api_key_env: str = Field(
        default="OPENAI_API_KEY",
        description="Environment variable holding the fallback OpenAI key",
    )
    fallback_model: str = Field(
        default="gpt-4o",
        description="Model used for the environment-level fallback provider",
    )


class WorkerConfig(BaseModel):
    """Background analysis queue."""

    concurrency: int = Field(
        default=2,
        ge=1,
        le=32,
        description="Number of analyses processed in parallel",
    )
    queue_size: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Pending analyses accepted before submit() waits",
    )


class LoggingConfig(BaseModel):
    """Log output settings."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Minimum log level",
    )
    json_output: bool = Field(
        default=False,
        description="Emit JSON lines instead of colored console output",
    )


class AppConfig(BaseModel):
    """Root configuration schema for MailSense.

    This model validates the entire config.yaml structure. Every section is
    optional and falls back to defaults, so an empty file is a valid config.
    """

    schema_version: int = Field(
        default=CURRENT_SCHEMA_VERSION,
        ge=1,
        description="Config schema version for migration tracking",
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    link_context: LinkContextConfig = Field(default_factory=LinkContextConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
