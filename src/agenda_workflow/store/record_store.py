"""JSON-file record store.

Workflows, rubrics and executions live in three JSON files under one
directory. A single lock serialises every read-modify-write, which is what
makes ``update_execution`` a real compare-and-swap on status and revision.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel

from agenda_workflow.workflow.errors import NotFound, StateConflict
from agenda_workflow.workflow.models import (
    Workflow,
    WorkflowExecution,
    WorkflowRubric,
    utc_now,
)
from agenda_workflow.workflow.state_machine import ExecutionStatus

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

WORKFLOWS_FILE = "workflows.json"
RUBRICS_FILE = "rubrics.json"
EXECUTIONS_FILE = "executions.json"


@dataclass
class RecordStore:
    root: Path

    def __post_init__(self) -> None:
        self.root = Path(self.root)
        self._lock = threading.Lock()

    # -- file helpers -----------------------------------------------------

    def _load_unlocked(self, filename: str, model: type[M]) -> list[M]:
        path = self.root / filename
        if not path.exists():
            return []
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Unreadable record file; treating as empty", extra={"path": str(path)})
            return []
        if not isinstance(raw, list):
            return []
        return [model.model_validate(item) for item in raw if isinstance(item, dict)]

    def _save_unlocked(self, filename: str, records: Sequence[BaseModel]) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        payload = [r.model_dump(mode="json") for r in records]
        (self.root / filename).write_text(
            json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
        )

    # -- workflows --------------------------------------------------------

    def load_workflow(self, ref: str, user_id: str) -> Workflow:
        """Find a workflow owned by ``user_id`` by id or slug."""

        with self._lock:
            for wf in self._load_unlocked(WORKFLOWS_FILE, Workflow):
                if wf.user_id == user_id and ref in (wf.id, wf.slug):
                    return wf
        raise NotFound(f"Workflow '{ref}' not found")

    def list_workflows(self, user_id: str) -> list[Workflow]:
        with self._lock:
            return [
                wf for wf in self._load_unlocked(WORKFLOWS_FILE, Workflow) if wf.user_id == user_id
            ]

    def save_workflow(self, workflow: Workflow) -> Workflow:
        """Insert or replace a workflow. Slugs are unique per user."""

        with self._lock:
            workflows = self._load_unlocked(WORKFLOWS_FILE, Workflow)
            for wf in workflows:
                if wf.user_id == workflow.user_id and wf.slug == workflow.slug and wf.id != workflow.id:
                    raise StateConflict(f"Workflow slug '{workflow.slug}' already exists")

            saved = workflow.model_copy(update={"updated_at": utc_now()})
            for idx, wf in enumerate(workflows):
                if wf.id == workflow.id:
                    workflows[idx] = saved
                    break
            else:
                workflows.append(saved)
            self._save_unlocked(WORKFLOWS_FILE, workflows)
            return saved

    # -- rubrics ----------------------------------------------------------

    def load_rubrics(
        self, workflow_id: str, user_id: str, *, include_inactive: bool = False
    ) -> list[WorkflowRubric]:
        with self._lock:
            return [
                r
                for r in self._load_unlocked(RUBRICS_FILE, WorkflowRubric)
                if r.workflow_id == workflow_id
                and r.user_id == user_id
                and (include_inactive or r.is_active)
            ]

    def save_rubrics(self, rubrics: Sequence[WorkflowRubric]) -> list[WorkflowRubric]:
        """Insert or replace rubrics by id."""

        with self._lock:
            stored = self._load_unlocked(RUBRICS_FILE, WorkflowRubric)
            index = {r.id: i for i, r in enumerate(stored)}
            now = utc_now()
            saved: list[WorkflowRubric] = []
            for rubric in rubrics:
                record = rubric.model_copy(update={"updated_at": now})
                if rubric.id in index:
                    stored[index[rubric.id]] = record
                else:
                    index[rubric.id] = len(stored)
                    stored.append(record)
                saved.append(record)
            self._save_unlocked(RUBRICS_FILE, stored)
            return saved

    # -- executions -------------------------------------------------------

    def create_execution(self, execution: WorkflowExecution) -> WorkflowExecution:
        with self._lock:
            executions = self._load_unlocked(EXECUTIONS_FILE, WorkflowExecution)
            if any(e.id == execution.id for e in executions):
                raise StateConflict(f"Execution '{execution.id}' already exists")
            executions.append(execution)
            self._save_unlocked(EXECUTIONS_FILE, executions)
            return execution

    def load_execution(self, execution_id: str, user_id: str) -> WorkflowExecution:
        with self._lock:
            for e in self._load_unlocked(EXECUTIONS_FILE, WorkflowExecution):
                if e.id == execution_id and e.user_id == user_id:
                    return e
        raise NotFound(f"Execution '{execution_id}' not found")

    def update_execution(
        self,
        execution_id: str,
        patch: Mapping[str, Any],
        expected_status: ExecutionStatus,
        expected_revision: int | None = None,
    ) -> WorkflowExecution:
        """Apply ``patch`` if the stored record is still the one the caller read.

        The status must equal ``expected_status`` and, when given, the
        revision must equal ``expected_revision``. Every successful write
        bumps the revision, so a round trip back to the same status still
        invalidates older snapshots.

        Raises:
            NotFound: No execution with this id.
            StateConflict: The record changed underneath the caller.
        """
        with self._lock:
            executions = self._load_unlocked(EXECUTIONS_FILE, WorkflowExecution)
            for idx, current in enumerate(executions):
                if current.id != execution_id:
                    continue
                if current.status != expected_status:
                    raise StateConflict(
                        f"Execution '{execution_id}' is '{current.status.value}', "
                        f"expected '{expected_status.value}'"
                    )
                if expected_revision is not None and current.revision != expected_revision:
                    raise StateConflict(
                        f"Execution '{execution_id}' was updated concurrently "
                        f"(revision {current.revision}, expected {expected_revision})"
                    )
                merged = WorkflowExecution.model_validate(
                    {
                        **current.model_dump(),
                        **patch,
                        "revision": current.revision + 1,
                        "updated_at": utc_now(),
                    }
                )
                executions[idx] = merged
                self._save_unlocked(EXECUTIONS_FILE, executions)
                return merged
        raise NotFound(f"Execution '{execution_id}' not found")
