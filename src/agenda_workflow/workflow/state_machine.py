"""Explicit execution state machine.

All status changes go through :func:`transition`; the record store then
persists the new status with a compare-and-swap on the previous one.
"""

from __future__ import annotations

from enum import Enum

from agenda_workflow.workflow.errors import StateConflict


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    AWAITING_USER = "awaiting_user"
    ITERATING = "iterating"
    APPROVED = "approved"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    # Failure sub-state of GENERATING; the user may still iterate out of it.
    FAILED = "failed"


class ResumeAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    ITERATE = "iterate"


ALLOWED_TRANSITIONS: dict[ExecutionStatus, set[ExecutionStatus]] = {
    ExecutionStatus.PENDING: {ExecutionStatus.GENERATING},
    ExecutionStatus.GENERATING: {ExecutionStatus.AWAITING_USER, ExecutionStatus.FAILED},
    ExecutionStatus.AWAITING_USER: {
        ExecutionStatus.APPROVED,
        ExecutionStatus.ITERATING,
        ExecutionStatus.REJECTED,
        ExecutionStatus.CANCELLED,
    },
    ExecutionStatus.APPROVED: {ExecutionStatus.COMPLETED},
    ExecutionStatus.ITERATING: {ExecutionStatus.GENERATING, ExecutionStatus.REJECTED},
    ExecutionStatus.FAILED: {ExecutionStatus.ITERATING, ExecutionStatus.REJECTED},
    ExecutionStatus.COMPLETED: set(),
    ExecutionStatus.REJECTED: set(),
    ExecutionStatus.CANCELLED: set(),
}

TERMINAL_STATES: frozenset[ExecutionStatus] = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.REJECTED, ExecutionStatus.CANCELLED}
)

RESUMABLE_ACTIONS: dict[ExecutionStatus, set[ResumeAction]] = {
    ExecutionStatus.AWAITING_USER: {
        ResumeAction.APPROVE,
        ResumeAction.REJECT,
        ResumeAction.ITERATE,
    },
    ExecutionStatus.FAILED: {ResumeAction.REJECT, ResumeAction.ITERATE},
}


class IllegalTransitionError(StateConflict):
    pass


def transition(*, current: ExecutionStatus, to: ExecutionStatus) -> ExecutionStatus:
    allowed = ALLOWED_TRANSITIONS.get(current, set())
    if to not in allowed:
        raise IllegalTransitionError(f"Illegal transition: {current.value} -> {to.value}")
    return to


def is_terminal(status: ExecutionStatus) -> bool:
    return status in TERMINAL_STATES


def check_resumable(status: ExecutionStatus, action: ResumeAction) -> None:
    """Raise :class:`StateConflict` unless ``action`` may resume from ``status``."""

    if action not in RESUMABLE_ACTIONS.get(status, set()):
        raise StateConflict(
            f"Cannot {action.value} an execution in status '{status.value}'"
        )
