from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from agenda_workflow.workflow.models import Workflow, WorkflowExecution, WorkflowRubric
from agenda_workflow.workflow.state_machine import ExecutionStatus


class ExecutionRepository(Protocol):
    """What the executor needs from persistence.

    ``update_execution`` is the concurrency guard: it applies ``patch`` only if
    the stored status still equals ``expected_status`` (and the revision equals
    ``expected_revision`` when given), bumps the revision, and raises
    :class:`~agenda_workflow.workflow.errors.StateConflict` otherwise.
    """

    def load_workflow(self, ref: str, user_id: str) -> Workflow: ...

    def list_workflows(self, user_id: str) -> list[Workflow]: ...

    def save_workflow(self, workflow: Workflow) -> Workflow: ...

    def load_rubrics(
        self, workflow_id: str, user_id: str, *, include_inactive: bool = False
    ) -> list[WorkflowRubric]: ...

    def save_rubrics(self, rubrics: Sequence[WorkflowRubric]) -> list[WorkflowRubric]: ...

    def create_execution(self, execution: WorkflowExecution) -> WorkflowExecution: ...

    def load_execution(self, execution_id: str, user_id: str) -> WorkflowExecution: ...

    def update_execution(
        self,
        execution_id: str,
        patch: Mapping[str, Any],
        expected_status: ExecutionStatus,
        expected_revision: int | None = None,
    ) -> WorkflowExecution: ...
