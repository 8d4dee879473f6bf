"""Workflow executor.

Drives an execution through its state machine:

    pending -> generating -> awaiting_user -> approved -> completed
                    |              |
                  failed       iterating -> generating ...
                                   |
                           rejected / cancelled

Every status change is computed by :func:`transition` and written with a
compare-and-swap on the previous status and revision, so two concurrent
``resume`` calls cannot both advance the same execution, and an approval
decided on a stale proposal cannot finalize a newer one.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from typing import Any

from agenda_workflow.core.config import ExecutorConfig
from agenda_workflow.store.repository import ExecutionRepository
from agenda_workflow.workflow.context import ContextGatherer
from agenda_workflow.workflow.defaults import ensure_workflow
from agenda_workflow.workflow.errors import (
    HardConstraintBlocked,
    IterationLimitExceeded,
    StateConflict,
    SynthesisFailure,
    WorkflowError,
)
from agenda_workflow.workflow.models import (
    AgendaProposal,
    FeedbackEntry,
    PlanContext,
    Workflow,
    WorkflowExecution,
    WorkflowRubric,
    utc_now,
)
from agenda_workflow.workflow.rubric import RubricEvaluator
from agenda_workflow.workflow.state_machine import (
    ExecutionStatus,
    ResumeAction,
    check_resumable,
    transition,
)
from agenda_workflow.workflow.synthesizer import PlanSynthesizer

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ExecutorResult:
    """Outcome of an executor call.

    ``error`` is set for the returned (not raised) errors: synthesis failure,
    hard-constraint block and iteration limit. ``execution`` is always the
    latest persisted snapshot.
    """

    execution: WorkflowExecution
    proposal: AgendaProposal | None = None
    error: WorkflowError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_json(self) -> dict[str, Any]:
        out: dict[str, Any] = {"execution": self.execution.model_dump(mode="json")}
        if self.error is not None:
            out["error"] = self.error.to_json()
        else:
            out["proposal"] = (
                self.proposal.model_dump(mode="json") if self.proposal is not None else None
            )
        return out


def _rank(proposal: AgendaProposal) -> tuple[int, float]:
    return (-len(proposal.hard_failures), proposal.aggregate_score)


class WorkflowExecutor:
    def __init__(
        self,
        store: ExecutionRepository,
        synthesizer: PlanSynthesizer,
        evaluator: RubricEvaluator | None = None,
        gatherer: ContextGatherer | None = None,
        config: ExecutorConfig | None = None,
    ) -> None:
        self.store = store
        self.synthesizer = synthesizer
        self.evaluator = evaluator or RubricEvaluator()
        self.gatherer = gatherer or ContextGatherer()
        self.config = config or ExecutorConfig()

    # -- public operations -------------------------------------------------

    def execute(
        self,
        user_id: str,
        workflow_ref: str,
        target_date: date,
        input_data: Mapping[str, Any] | None = None,
    ) -> ExecutorResult:
        """Start a run and generate the first candidate.

        Raises:
            NotFound: Unknown workflow for this user.
            StateConflict: The workflow is inactive.
        """
        workflow = ensure_workflow(self.store, workflow_ref, user_id)
        if not workflow.is_active:
            raise StateConflict(f"Workflow '{workflow.slug}' is not active")

        execution = self.store.create_execution(
            WorkflowExecution(
                workflow_id=workflow.id,
                user_id=user_id,
                target_date=target_date,
                input_data=dict(input_data or {}),
            )
        )
        logger.info(
            "Execution created",
            extra={
                "execution_id": execution.id,
                "workflow_id": workflow.id,
                "user_id": user_id,
                "target_date": target_date.isoformat(),
            },
        )

        execution = self._advance(execution, ExecutionStatus.GENERATING, started_at=utc_now())
        return self._generate(execution, workflow, prior=None, feedback=None)

    def resume(
        self,
        execution_id: str,
        user_id: str,
        feedback: str | None,
        action: ResumeAction | str,
    ) -> ExecutorResult:
        """Advance a run with the user's decision.

        Raises:
            NotFound: Unknown execution for this user.
            StateConflict: ``action`` is not allowed in the current status, or
                another request advanced the execution first.
        """
        action = ResumeAction(action)
        execution = self.store.load_execution(execution_id, user_id)
        check_resumable(execution.status, action)

        if action is ResumeAction.APPROVE:
            return self._approve(execution)
        if action is ResumeAction.REJECT:
            return self._reject(execution, feedback)
        return self._iterate(execution, feedback or "")

    def cancel(self, execution_id: str, user_id: str) -> ExecutorResult:
        execution = self.store.load_execution(execution_id, user_id)
        if execution.status is not ExecutionStatus.AWAITING_USER:
            raise StateConflict(
                f"Cannot cancel an execution in status '{execution.status.value}'"
            )
        cancelled = self._advance(execution, ExecutionStatus.CANCELLED, completed_at=utc_now())
        return ExecutorResult(cancelled, cancelled.proposal)

    def get(self, execution_id: str, user_id: str) -> ExecutorResult:
        execution = self.store.load_execution(execution_id, user_id)
        return ExecutorResult(execution, execution.proposal)

    # -- resume actions ----------------------------------------------------

    def _approve(self, execution: WorkflowExecution) -> ExecutorResult:
        proposal = execution.proposal
        if proposal is None:
            raise StateConflict("Execution has no proposal to approve")

        if proposal.hard_failures:
            error = HardConstraintBlocked(list(proposal.hard_failures))
            logger.info(
                "Approval blocked by hard constraints",
                extra={
                    "execution_id": execution.id,
                    "blocking": [r.name for r in proposal.hard_failures],
                },
            )
            return ExecutorResult(execution, proposal, error)

        approved = self._advance(execution, ExecutionStatus.APPROVED)
        completed = self._advance(approved, ExecutionStatus.COMPLETED, completed_at=utc_now())
        return ExecutorResult(completed, completed.proposal)

    def _reject(self, execution: WorkflowExecution, feedback: str | None) -> ExecutorResult:
        patch: dict[str, Any] = {"completed_at": utc_now()}
        if feedback and feedback.strip():
            patch["feedback"] = [*execution.feedback, FeedbackEntry(text=feedback)]
        rejected = self._advance(execution, ExecutionStatus.REJECTED, **patch)
        return ExecutorResult(rejected, rejected.proposal)

    def _iterate(self, execution: WorkflowExecution, feedback: str) -> ExecutorResult:
        history = [*execution.feedback, FeedbackEntry(text=feedback)]

        if execution.iteration_count >= self.config.max_iterations:
            error = IterationLimitExceeded(self.config.max_iterations)
            rejected = self._advance(
                execution,
                ExecutionStatus.REJECTED,
                feedback=history,
                error_message=error.message,
                completed_at=utc_now(),
            )
            logger.info(
                "Iteration limit reached",
                extra={"execution_id": execution.id, "limit": self.config.max_iterations},
            )
            return ExecutorResult(rejected, rejected.proposal, error)

        from_failed = execution.status is ExecutionStatus.FAILED
        claimed = self._advance(
            execution,
            ExecutionStatus.ITERATING,
            feedback=history,
            iteration_count=execution.iteration_count + 1,
            error_message=None,
        )
        generating = self._advance(claimed, ExecutionStatus.GENERATING)

        workflow = self.store.load_workflow(generating.workflow_id, generating.user_id)
        prior = None if from_failed else generating.proposal
        return self._generate(generating, workflow, prior=prior, feedback=feedback or None)

    # -- generation --------------------------------------------------------

    def _generate(
        self,
        execution: WorkflowExecution,
        workflow: Workflow,
        *,
        prior: AgendaProposal | None,
        feedback: str | None,
    ) -> ExecutorResult:
        context: PlanContext | None = None
        try:
            context = self.gatherer.gather(
                execution.user_id,
                execution.target_date,
                workflow.enabled_integrations,
                execution.input_data,
            )
            rubrics = self.store.load_rubrics(workflow.id, execution.user_id)
            proposal = self._synthesize_best(context, rubrics, prior, feedback)
        except SynthesisFailure as e:
            return self._fail(execution, context, e)
        except Exception as e:
            logger.exception(
                "Unexpected error during agenda generation",
                extra={"execution_id": execution.id},
            )
            return self._fail(
                execution, context, SynthesisFailure(f"Agenda generation failed: {e}")
            )

        presented = self._advance(
            execution,
            ExecutionStatus.AWAITING_USER,
            context=context,
            proposal=proposal,
            error_message=None,
        )
        return ExecutorResult(presented, presented.proposal)

    def _fail(
        self,
        execution: WorkflowExecution,
        context: PlanContext | None,
        error: SynthesisFailure,
    ) -> ExecutorResult:
        patch: dict[str, Any] = {"error_message": error.message}
        if context is not None:
            patch["context"] = context
        failed = self._advance(execution, ExecutionStatus.FAILED, **patch)
        logger.error(
            "Agenda generation failed",
            extra={"execution_id": execution.id, "error": error.message},
        )
        return ExecutorResult(failed, failed.proposal, error)

    def _score(
        self, candidate: AgendaProposal, rubrics: list[WorkflowRubric], context: PlanContext
    ) -> AgendaProposal:
        return candidate.with_verdict(self.evaluator.evaluate(candidate, rubrics, context))

    def _needs_retry(self, proposal: AgendaProposal) -> bool:
        if not proposal.results:
            return False
        return bool(proposal.hard_failures) or proposal.aggregate_score < self.config.min_score

    def _synthesize_best(
        self,
        context: PlanContext,
        rubrics: list[WorkflowRubric],
        prior: AgendaProposal | None,
        feedback: str | None,
    ) -> AgendaProposal:
        """Synthesize, score and auto-retry weak candidates.

        The first synthesis failure propagates. A failure during an
        auto-retry keeps the best candidate seen so far.
        """
        latest = self._score(self.synthesizer.synthesize(context, prior, feedback), rubrics, context)
        best = latest

        for attempt in range(1, self.config.auto_retry_limit + 1):
            if not self._needs_retry(best):
                break

            correction = "Fix these rubric issues:\n" + "\n".join(
                f"- {s}" for s in latest.suggestions
            )
            if feedback:
                correction = f"{feedback}\n\n{correction}"

            logger.info(
                "Auto-retrying weak candidate",
                extra={
                    "attempt": attempt,
                    "score": latest.aggregate_score,
                    "hard_failures": len(latest.hard_failures),
                },
            )
            try:
                candidate = self.synthesizer.synthesize(context, latest, correction)
            except SynthesisFailure as e:
                logger.warning(
                    "Auto-retry synthesis failed; keeping best candidate",
                    extra={"attempt": attempt, "error": e.message},
                )
                break
            except Exception:
                logger.warning(
                    "Auto-retry raised unexpectedly; keeping best candidate",
                    extra={"attempt": attempt},
                    exc_info=True,
                )
                break

            latest = self._score(candidate, rubrics, context)
            if _rank(latest) > _rank(best):
                best = latest

        return best

    # -- persistence -------------------------------------------------------

    def _advance(
        self, execution: WorkflowExecution, to: ExecutionStatus, **patch: Any
    ) -> WorkflowExecution:
        new_status = transition(current=execution.status, to=to)
        updated = self.store.update_execution(
            execution.id,
            {"status": new_status, **patch},
            expected_status=execution.status,
            expected_revision=execution.revision,
        )
        logger.info(
            "Execution transitioned",
            extra={
                "execution_id": execution.id,
                "from_status": execution.status.value,
                "to_status": new_status.value,
            },
        )
        return updated
