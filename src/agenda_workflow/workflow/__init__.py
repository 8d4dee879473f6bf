"""Workflow domain: records, state machine, evaluation, synthesis and execution.

Concepts:
- Rubrics score a candidate agenda (deterministic, fail closed)
- The synthesizer is the only LLM-backed step
- The executor owns every status change and persists it with compare-and-swap
"""

__all__: list[str] = []
