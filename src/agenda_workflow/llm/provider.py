"""Abstract base class for LLM providers."""

from abc import ABC, abstractmethod
from typing import Any


class LLMError(Exception):
    """The completion call itself failed (network, auth, rate limit)."""


class LLMResponseError(LLMError):
    """The model answered, but not with parseable JSON."""

    def __init__(self, message: str, raw: str) -> None:
        super().__init__(message)
        self.raw = raw


class LLMProvider(ABC):
    """Abstract base class for LLM providers.

    The planner only needs two calls: a free-form chat completion and a
    completion constrained to a JSON object.
    """

    @abstractmethod
    def chat(
        self,
        messages: list[dict[str, str]],
        max_tokens: int | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> str:
        """Generate chat completion from messages.

        Args:
            messages: List of message dicts with 'role' and 'content'.
            max_tokens: Maximum tokens to generate.
            temperature: Sampling temperature.
            **kwargs: Additional provider-specific parameters.

        Returns:
            Generated chat response.
        """

    @abstractmethod
    def complete_json(
        self,
        messages: list[dict[str, str]],
        schema: dict[str, Any] | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> dict[str, Any]:
        """Generate a chat completion and parse it as a JSON object.

        Args:
            messages: List of message dicts with 'role' and 'content'.
            schema: Optional JSON schema the response should follow.
            max_tokens: Maximum tokens to generate.
            temperature: Sampling temperature.

        Returns:
            The decoded JSON object.

        Raises:
            LLMError: The call failed.
            LLMResponseError: The response was not a JSON object.
        """
