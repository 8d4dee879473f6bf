"""Core package initialization."""

from agenda_workflow.core.config import (
    ContextConfig,
    EngineConfig,
    ExecutorConfig,
    LLMConfig,
    StoreConfig,
)

__all__ = [
    "ContextConfig",
    "EngineConfig",
    "ExecutorConfig",
    "LLMConfig",
    "StoreConfig",
]
