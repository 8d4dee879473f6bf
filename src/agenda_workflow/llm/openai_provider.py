"""OpenAI-compatible LLM provider (OpenAI and OpenRouter)."""

import json
import logging
from typing import Any

import openai
from openai import OpenAI

from agenda_workflow.core.config import LLMConfig
from agenda_workflow.llm.provider import LLMError, LLMProvider, LLMResponseError

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class OpenAIProvider(LLMProvider):
    """Chat completions over the OpenAI client.

    OpenRouter speaks the same protocol, so it is served by this class with a
    different base URL.
    """

    def __init__(self, config: LLMConfig) -> None:
        """Initialize the provider.

        Args:
            config: LLM configuration.

        Raises:
            ValueError: If API key is not provided.
        """
        if not config.api_key:
            raise ValueError(f"API key is required for provider '{config.provider}'")

        base_url = config.base_url
        if base_url is None and config.provider == "openrouter":
            base_url = OPENROUTER_BASE_URL

        self.config = config
        self.client = OpenAI(
            api_key=config.api_key,
            base_url=base_url,
            timeout=config.timeout_seconds,
        )
        self.model = config.model
        self.temperature = config.temperature
        self.max_tokens = config.max_tokens

        logger.info(
            "LLM provider initialized",
            extra={"provider": config.provider, "model": self.model},
        )

    def chat(
        self,
        messages: list[dict[str, str]],
        max_tokens: int | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> str:
        temp = temperature if temperature is not None else self.temperature

        logger.debug("Requesting chat completion", extra={"messages": len(messages)})

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,  # type: ignore[arg-type]
                max_tokens=max_tokens or self.max_tokens,
                temperature=temp,
                **kwargs,
            )
        except openai.OpenAIError as e:
            raise LLMError(f"{self.config.provider} completion failed: {e}") from e

        if not response.choices:
            raise LLMError(f"{self.config.provider} completion returned no choices")
        content = response.choices[0].message.content or ""
        logger.debug("Chat completion received", extra={"chars": len(content)})
        return content

    def complete_json(
        self,
        messages: list[dict[str, str]],
        schema: dict[str, Any] | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> dict[str, Any]:
        if schema is not None and self.config.json_schema_mode:
            response_format: dict[str, Any] = {
                "type": "json_schema",
                "json_schema": {"name": "agenda", "schema": schema, "strict": False},
            }
        else:
            response_format = {"type": "json_object"}

        raw = self.chat(
            messages,
            max_tokens=max_tokens,
            temperature=temperature,
            response_format=response_format,
        )
        return parse_json_object(raw)


def parse_json_object(raw: str) -> dict[str, Any]:
    """Decode ``raw`` as a JSON object, tolerating a Markdown code fence."""

    text = raw.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise LLMResponseError(f"Response is not valid JSON: {e}", raw) from e

    if not isinstance(data, dict):
        raise LLMResponseError("Response JSON is not an object", raw)
    return data
