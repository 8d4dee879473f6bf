"""Planning engine: the composition root."""

import logging
from collections.abc import Mapping
from datetime import date
from typing import Any

from agenda_workflow.core.config import ContextConfig, EngineConfig
from agenda_workflow.integrations.http import HttpContextProvider
from agenda_workflow.integrations.static import StaticContextProvider
from agenda_workflow.llm.factory import LLMFactory
from agenda_workflow.llm.provider import LLMProvider
from agenda_workflow.store.record_store import RecordStore
from agenda_workflow.store.repository import ExecutionRepository
from agenda_workflow.workflow.context import ContextGatherer, ContextProviders
from agenda_workflow.workflow.defaults import ensure_workflow
from agenda_workflow.workflow.executor import ExecutorResult, WorkflowExecutor
from agenda_workflow.workflow.models import Workflow, WorkflowRubric
from agenda_workflow.workflow.rubric import RubricEvaluator
from agenda_workflow.workflow.state_machine import ResumeAction
from agenda_workflow.workflow.synthesizer import PlanSynthesizer

logger = logging.getLogger(__name__)


def providers_from_config(config: ContextConfig) -> ContextProviders:
    """Build context providers from settings.

    The HTTP service wins over the fixture file when both are configured.
    """
    if config.service_url:
        http = HttpContextProvider(
            base_url=config.service_url,
            token=config.service_token,
            timeout_seconds=config.timeout_seconds,
        )
        return ContextProviders(
            calendar=http, wellness=http, financial=http, goals=http, profile=http, memories=http
        )
    if config.fixture_path is not None:
        static = StaticContextProvider(config.fixture_path)
        return ContextProviders(
            calendar=static,
            wellness=static,
            financial=static,
            goals=static,
            profile=static,
            memories=static,
        )
    return ContextProviders()


class PlanningEngine:
    """Wires the LLM provider, record store, context providers and executor.

    Every collaborator can be injected; anything not given is built from
    :class:`EngineConfig`.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        llm: LLMProvider | None = None,
        store: ExecutionRepository | None = None,
        providers: ContextProviders | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Configuration object. If None, loads from environment.
            llm: LLM provider. If None, created with :class:`LLMFactory`.
            store: Record store. If None, a JSON store under ``storage_path``.
            providers: Context providers. If None, built from ``config.context``.

        Raises:
            ValueError: The LLM provider is misconfigured (e.g. no API key).
        """
        self.config = config or EngineConfig()

        self.llm: LLMProvider = llm or LLMFactory.create(self.config.llm)
        self.store: ExecutionRepository = store or RecordStore(self.config.store.storage_path)
        self.gatherer = ContextGatherer(
            providers if providers is not None else providers_from_config(self.config.context),
            timeout_seconds=self.config.executor.context_timeout_seconds,
            memory_limit=self.config.context.memory_limit,
        )
        self.executor = WorkflowExecutor(
            store=self.store,
            synthesizer=PlanSynthesizer(
                self.llm,
                max_tokens=self.config.llm.max_tokens,
                temperature=self.config.llm.temperature,
            ),
            evaluator=RubricEvaluator(),
            gatherer=self.gatherer,
            config=self.config.executor,
        )

        logger.info("Planning engine initialized")

    # -- executions --------------------------------------------------------

    def execute(
        self,
        user_id: str,
        workflow_ref: str,
        target_date: date,
        input_data: Mapping[str, Any] | None = None,
    ) -> ExecutorResult:
        return self.executor.execute(user_id, workflow_ref, target_date, input_data)

    def resume(
        self,
        execution_id: str,
        user_id: str,
        feedback: str | None,
        action: ResumeAction | str,
    ) -> ExecutorResult:
        return self.executor.resume(execution_id, user_id, feedback, action)

    def cancel(self, execution_id: str, user_id: str) -> ExecutorResult:
        return self.executor.cancel(execution_id, user_id)

    def get(self, execution_id: str, user_id: str) -> ExecutorResult:
        return self.executor.get(execution_id, user_id)

    # -- workflows and rubrics ---------------------------------------------

    def list_workflows(self, user_id: str) -> list[Workflow]:
        return self.store.list_workflows(user_id)

    def create_workflow(self, user_id: str, data: Mapping[str, Any]) -> Workflow:
        """Validate and store a user workflow. Raises StateConflict on a duplicate slug."""

        workflow = Workflow.model_validate({**data, "user_id": user_id, "is_system": False})
        saved = self.store.save_workflow(workflow)
        logger.info(
            "Workflow created",
            extra={"workflow_id": saved.id, "slug": saved.slug, "user_id": user_id},
        )
        return saved

    def list_rubrics(self, workflow_ref: str, user_id: str) -> list[WorkflowRubric]:
        """Rubrics of a workflow, seeding the system workflow on first use."""

        workflow = ensure_workflow(self.store, workflow_ref, user_id)
        return self.store.load_rubrics(workflow.id, user_id, include_inactive=True)

    def add_rubric(
        self, workflow_ref: str, user_id: str, data: Mapping[str, Any]
    ) -> WorkflowRubric:
        workflow = ensure_workflow(self.store, workflow_ref, user_id)
        rubric = WorkflowRubric.model_validate(
            {**data, "workflow_id": workflow.id, "user_id": user_id}
        )
        (saved,) = self.store.save_rubrics([rubric])
        logger.info(
            "Rubric added",
            extra={
                "rubric_id": saved.id,
                "workflow_id": workflow.id,
                "rule_type": saved.validation_rule.type,
            },
        )
        return saved
