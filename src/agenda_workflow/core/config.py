"""Core configuration for the planning engine."""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from agenda_workflow.logging import configure_logging


class LLMConfig(BaseSettings):
    """Configuration for LLM providers."""

    provider: Literal["openai", "openrouter"] = Field(
        default="openai",
        description="LLM provider to use",
    )
    api_key: str | None = Field(
        default=None,
        description="API key for the selected provider",
    )
    model: str = Field(
        default="gpt-4o-mini",
        description="Model identifier passed to the completion API",
    )
    base_url: str | None = Field(
        default=None,
        description="Override for the API base URL (OpenRouter has its own default)",
    )
    temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Sampling temperature",
    )
    max_tokens: int = Field(
        default=4000,
        gt=0,
        description="Upper bound on completion tokens",
    )
    timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Deadline for a single completion call",
    )
    json_schema_mode: bool = Field(
        default=False,
        description=(
            "Send the agenda JSON schema as a strict response_format. "
            "When false, plain JSON-object mode is used."
        ),
    )

    model_config = SettingsConfigDict(
        env_prefix="AGENDA_LLM_",
        env_file=".env",
        extra="ignore",
    )


class StoreConfig(BaseSettings):
    """Configuration for the record store."""

    storage_path: Path = Field(
        default=Path(".agenda_state"),
        description="Directory holding workflows, rubrics and executions",
    )

    model_config = SettingsConfigDict(
        env_prefix="AGENDA_STORE_",
        env_file=".env",
        extra="ignore",
    )


class ExecutorConfig(BaseSettings):
    """Configuration for the workflow executor."""

    max_iterations: int = Field(
        default=3,
        ge=0,
        description="User-driven iterate calls allowed per execution",
    )
    auto_retry_limit: int = Field(
        default=1,
        ge=0,
        description="Internal re-syntheses when a fresh candidate fails its rubric",
    )
    min_score: float = Field(
        default=70.0,
        ge=0.0,
        le=100.0,
        description="Aggregate score below which a candidate is auto-retried",
    )
    context_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Join timeout for the concurrent context fetch",
    )

    model_config = SettingsConfigDict(
        env_prefix="AGENDA_EXECUTOR_",
        env_file=".env",
        extra="ignore",
    )


class ContextConfig(BaseSettings):
    """Configuration for the context providers."""

    fixture_path: Path | None = Field(
        default=None,
        description="JSON file with per-user context fixtures",
    )
    service_url: str | None = Field(
        default=None,
        description="Base URL of an HTTP context service",
    )
    service_token: str | None = Field(
        default=None,
        description="Bearer token for the context service",
    )
    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Per-request timeout for the context service",
    )
    memory_limit: int = Field(
        default=10,
        ge=0,
        description="Most important saved memories to include in the context",
    )

    model_config = SettingsConfigDict(
        env_prefix="AGENDA_CONTEXT_",
        env_file=".env",
        extra="ignore",
    )


class EngineConfig(BaseSettings):
    """Main configuration for the planning engine."""

    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )

    llm: LLMConfig = Field(
        default_factory=LLMConfig,
        description="LLM configuration",
    )
    store: StoreConfig = Field(
        default_factory=StoreConfig,
        description="Record store configuration",
    )
    executor: ExecutorConfig = Field(
        default_factory=ExecutorConfig,
        description="Executor configuration",
    )
    context: ContextConfig = Field(
        default_factory=ContextConfig,
        description="Context provider configuration",
    )

    model_config = SettingsConfigDict(
        env_prefix="AGENDA_",
        env_file=".env",
        extra="ignore",
    )

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        configure_logging(self.log_level, debug=self.debug)
