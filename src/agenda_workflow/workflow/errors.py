"""Error taxonomy for the workflow engine.

``NotFound`` and ``StateConflict`` are caller errors and are raised.
``SynthesisFailure``, ``HardConstraintBlocked`` and ``IterationLimitExceeded``
are returned next to the execution so the caller can offer a next action.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from agenda_workflow.workflow.models import RubricResult


class WorkflowError(Exception):
    """Base class for every engine error."""

    code = "workflow_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_json(self) -> dict[str, object]:
        return {"code": self.code, "message": self.message}


class NotFound(WorkflowError):
    """Workflow, rubric or execution is missing or not owned by the caller."""

    code = "not_found"


class StateConflict(WorkflowError):
    """The operation is not valid for the execution's current status."""

    code = "state_conflict"


class SynthesisFailure(WorkflowError):
    """The LLM call or its parse failed after the single retry."""

    code = "synthesis_failure"


class HardConstraintBlocked(WorkflowError):
    """Approval was attempted on a plan with hard-rubric failures."""

    code = "hard_constraint_blocked"

    def __init__(self, blocking: list[RubricResult]) -> None:
        names = ", ".join(r.name for r in blocking) or "unknown rubric"
        super().__init__(f"Approval blocked by hard constraint(s): {names}")
        self.blocking = blocking

    def to_json(self) -> dict[str, object]:
        out = super().to_json()
        out["blocking"] = [r.model_dump(mode="json") for r in self.blocking]
        return out


class IterationLimitExceeded(WorkflowError):
    """The iteration ceiling was reached; the execution has been rejected."""

    code = "iteration_limit_exceeded"

    def __init__(self, limit: int) -> None:
        super().__init__(
            f"Iteration limit of {limit} reached; the execution was rejected. "
            "Start a new run to keep planning."
        )
        self.limit = limit
