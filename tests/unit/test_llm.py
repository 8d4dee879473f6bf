"""Unit tests for the LLM provider layer."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import Mock

import httpx
import openai
import pytest

from agenda_workflow.core.config import LLMConfig
from agenda_workflow.llm.factory import LLMFactory
from agenda_workflow.llm.openai_provider import (
    OPENROUTER_BASE_URL,
    OpenAIProvider,
    parse_json_object,
)
from agenda_workflow.llm.provider import LLMError, LLMResponseError


def _completion(content: str) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _provider(**overrides: object) -> OpenAIProvider:
    provider = OpenAIProvider(LLMConfig(api_key="test-key", **overrides))  # type: ignore[arg-type]
    provider.client = Mock()
    return provider


def test_factory_creates_openai_provider() -> None:
    provider = LLMFactory.create(LLMConfig(provider="openai", api_key="test-key"))

    assert isinstance(provider, OpenAIProvider)
    assert provider.model == "gpt-4o-mini"


def test_factory_points_openrouter_at_its_base_url() -> None:
    provider = LLMFactory.create(LLMConfig(provider="openrouter", api_key="test-key"))

    assert isinstance(provider, OpenAIProvider)
    assert str(provider.client.base_url).rstrip("/") == OPENROUTER_BASE_URL


def test_missing_api_key_is_a_configuration_error() -> None:
    with pytest.raises(ValueError, match="API key"):
        LLMFactory.create(LLMConfig(provider="openai", api_key=None))


def test_complete_json_uses_json_object_mode() -> None:
    provider = _provider()
    provider.client.chat.completions.create.return_value = _completion('{"agenda": []}')

    data = provider.complete_json([{"role": "user", "content": "plan"}], schema={"type": "object"})

    assert data == {"agenda": []}
    kwargs = provider.client.chat.completions.create.call_args.kwargs
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["max_tokens"] == 4000


def test_complete_json_sends_schema_when_enabled() -> None:
    provider = _provider(json_schema_mode=True)
    provider.client.chat.completions.create.return_value = _completion('{"agenda": []}')

    provider.complete_json([{"role": "user", "content": "plan"}], schema={"type": "object"})

    response_format = provider.client.chat.completions.create.call_args.kwargs["response_format"]
    assert response_format["type"] == "json_schema"
    assert response_format["json_schema"]["schema"] == {"type": "object"}


def test_invalid_json_raises_response_error_with_raw_text() -> None:
    provider = _provider()
    provider.client.chat.completions.create.return_value = _completion("Sure! Here is your plan")

    with pytest.raises(LLMResponseError) as exc:
        provider.complete_json([{"role": "user", "content": "plan"}])

    assert exc.value.raw == "Sure! Here is your plan"


def test_api_errors_are_wrapped() -> None:
    provider = _provider()
    provider.client.chat.completions.create.side_effect = openai.APIError(
        "upstream down", request=httpx.Request("POST", "https://api.openai.com"), body=None
    )

    with pytest.raises(LLMError) as exc:
        provider.chat([{"role": "user", "content": "hi"}])

    assert not isinstance(exc.value, LLMResponseError)


def test_parse_json_object_strips_code_fence() -> None:
    assert parse_json_object('```json\n{"agenda": [1]}\n```') == {"agenda": [1]}


def test_parse_json_object_rejects_non_objects() -> None:
    with pytest.raises(LLMResponseError):
        parse_json_object("[1, 2]")


def test_empty_choices_raise_llm_error() -> None:
    provider = _provider()
    provider.client.chat.completions.create.return_value = SimpleNamespace(choices=[])

    with pytest.raises(LLMError, match="no choices"):
        provider.chat([{"role": "user", "content": "hi"}])


def test_client_errors_are_wrapped() -> None:
    provider = _provider()
    provider.client.chat.completions.create.side_effect = openai.OpenAIError("misconfigured")

    with pytest.raises(LLMError, match="misconfigured"):
        provider.chat([{"role": "user", "content": "hi"}])
