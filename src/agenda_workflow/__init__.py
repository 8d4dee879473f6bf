"""Agenda Workflow Engine.

Turns a "plan my day" goal into a rubric-scored agenda proposal:
- context gathered from optional calendar, wellness, financial and goal providers
- LLM synthesis behind an injectable provider
- an explicit execution state machine with compare-and-swap persistence
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
