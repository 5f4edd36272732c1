"""Pydantic configuration schema for ClientLens.

This module defines the configuration schema that mirrors config.yaml structure.
All configuration is validated against these models when loaded.

Usage:
    from clientlens.config_schema import AppConfig

    # Validate a config dict
    config = AppConfig(**yaml_data)
"""

from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

# Current schema version - increment when adding new required fields
CURRENT_SCHEMA_VERSION = 1


class DatabaseConfig(BaseModel):
    """SQLite storage configuration."""

    path: str = Field(
        default="data/clientlens.db",
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


class ModelsConfig(BaseModel):
    """Claude model selection per task type."""

    insights: str = Field(
        default="claude-sonnet-4-5-20250929",
        description="Model for insight extraction",
    )
    attribution: str = Field(
        default="claude-haiku-4-5-20251001",
        description="Model for semantic client attribution",
    )


class LLMConfig(BaseModel):
    """Request limits for the language model service."""

    insights_max_tokens: int = Field(
        default=2000,
        ge=256,
        le=8192,
        description="Maximum output tokens for insight extraction",
    )
    attribution_max_tokens: int = Field(
        default=500,
        ge=64,
        le=2048,
        description="Maximum output tokens for semantic attribution",
    )
    timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        le=600,
        description="Per-request timeout passed to the Anthropic client",
    )


class RetryConfig(BaseModel):
    """Retry policy for LLM calls (exponential backoff with jitter)."""

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Total attempts per LLM call, including the first",
    )
    initial_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        le=60,
        description="Delay before the second attempt",
    )
    max_delay_seconds: float = Field(
        default=10.0,
        ge=0,
        le=300,
        description="Upper bound on the backoff delay",
    )
    backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        le=10.0,
        description="Factor applied to the delay after each failed attempt",
    )

    @model_validator(mode="after")
    def validate_delay_bounds(self) -> "RetryConfig":
        """Ensure the delay cap is not below the initial delay."""
        if self.max_delay_seconds < self.initial_delay_seconds:
            raise ValueError("max_delay_seconds must be >= initial_delay_seconds")
        return self


class SanitizerConfig(BaseModel):
    """Length ceilings for sanitized text."""

    content_max_length: int = Field(
        default=50000,
        ge=1000,
        le=200000,
        description="Maximum characters of communication body kept in storage",
    )
    llm_max_length: int = Field(
        default=10000,
        ge=500,
        le=50000,
        description="Maximum characters of any single field sent to the model",
    )


class AttributionConfig(BaseModel):
    """Client attribution configuration."""

    semantic_enabled: bool = Field(
        default=True,
        description="Ask the model to match communications no rule could attribute",
    )
    body_max_length: int = Field(
        default=1000,
        ge=100,
        le=10000,
        description="Characters of body included in the attribution prompt",
    )


class PipelineConfig(BaseModel):
    """Insight pipeline batch configuration."""

    batch_size: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Max communications loaded per pipeline run",
    )
    max_thread_messages: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Max communications of one thread sent to the model",
    )
    lookback_days: int | None = Field(
        default=None,
        ge=1,
        le=365,
        description="Only analyze communications newer than this (None = no limit)",
    )


class AutomatedFilterConfig(BaseModel):
    """Automated-message filter configuration."""

    enabled: bool = Field(
        default=True,
        description="Exclude automated/system messages from attribution and extraction",
    )
    extra_senders: list[str] = Field(
        default_factory=list,
        description="Additional sender patterns (supports wildcards like *@mailer.example.com)",
    )


class LLMLoggingConfig(BaseModel):
    """LLM request logging configuration."""

    enabled: bool = Field(default=True, description="Enable LLM request logging")
    retention_days: int = Field(
        default=30,
        ge=1,
        le=365,
        description="Days to retain LLM request logs",
    )
    log_prompts: bool = Field(
        default=True,
        description="Store full prompts (disable to save disk space)",
    )
    log_responses: bool = Field(
        default=True,
        description="Store full responses",
    )


class LoggingConfig(BaseModel):
    """Application log output configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Minimum log level",
    )
    json_output: bool = Field(
        default=True,
        description="JSON logs (production) instead of colored console output",
    )


class AppConfig(BaseModel):
    """Root configuration schema for ClientLens.

    This model validates the entire config.yaml structure. Every section
    has defaults, so an empty file is a valid configuration.
    """

    schema_version: int = Field(
        default=CURRENT_SCHEMA_VERSION,
        ge=1,
        description="Config schema version for migration tracking",
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    models: ModelsConfig = Field(default_factory=ModelsConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    sanitizer: SanitizerConfig = Field(default_factory=SanitizerConfig)
    attribution: AttributionConfig = Field(default_factory=AttributionConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    automated_filter: AutomatedFilterConfig = Field(default_factory=AutomatedFilterConfig)
    llm_logging: LLMLoggingConfig = Field(default_factory=LLMLoggingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
