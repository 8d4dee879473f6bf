"""Persistence for workflows, rubrics and executions."""

from agenda_workflow.store.record_store import RecordStore
from agenda_workflow.store.repository import ExecutionRepository

__all__ = ["ExecutionRepository", "RecordStore"]
