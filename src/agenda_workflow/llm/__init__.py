"""LLM provider abstraction layer."""

from agenda_workflow.llm.factory import LLMFactory
from agenda_workflow.llm.provider import LLMError, LLMProvider, LLMResponseError

__all__ = ["LLMError", "LLMFactory", "LLMProvider", "LLMResponseError"]
