"""Unit tests for configuration."""

from pathlib import Path

import pytest

from agenda_workflow.core.config import (
    ContextConfig,
    EngineConfig,
    ExecutorConfig,
    LLMConfig,
    StoreConfig,
)


def test_llm_config_defaults() -> None:
    """Test LLM config default values."""
    config = LLMConfig(api_key="test-key")

    assert config.provider == "openai"
    assert config.model == "gpt-4o-mini"
    assert config.temperature == 0.7
    assert config.max_tokens == 4000
    assert config.json_schema_mode is False


def test_executor_config_defaults() -> None:
    config = ExecutorConfig()

    assert config.max_iterations == 3
    assert config.auto_retry_limit == 1
    assert config.min_score == 70.0


def test_store_config_defaults() -> None:
    assert StoreConfig().storage_path == Path(".agenda_state")


def test_engine_config_composition() -> None:
    """Test engine config with nested configs."""
    config = EngineConfig(log_level="DEBUG", debug=True)

    assert config.log_level == "DEBUG"
    assert config.debug is True
    assert isinstance(config.llm, LLMConfig)
    assert isinstance(config.store, StoreConfig)
    assert isinstance(config.executor, ExecutorConfig)
    assert isinstance(config.context, ContextConfig)


def test_configs_read_prefixed_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AGENDA_LLM_PROVIDER", "openrouter")
    monkeypatch.setenv("AGENDA_LLM_MODEL", "google/gemini-2.5-flash")
    monkeypatch.setenv("AGENDA_EXECUTOR_MAX_ITERATIONS", "5")
    monkeypatch.setenv("AGENDA_CONTEXT_SERVICE_URL", "http://context.local")

    assert LLMConfig().provider == "openrouter"
    assert LLMConfig().model == "google/gemini-2.5-flash"
    assert ExecutorConfig().max_iterations == 5
    assert ContextConfig().service_url == "http://context.local"


def test_invalid_values_are_rejected() -> None:
    with pytest.raises(ValueError):
        ExecutorConfig(min_score=150)
    with pytest.raises(ValueError):
        LLMConfig(provider="llama")  # type: ignore[arg-type]
