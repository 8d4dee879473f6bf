"""Test configuration and fixtures."""

from __future__ import annotations

import copy
import threading
from collections.abc import Callable
from datetime import date, datetime
from pathlib import Path
from typing import Any

import pytest

from agenda_workflow.core.config import (
    EngineConfig,
    ExecutorConfig,
    LLMConfig,
    StoreConfig,
)
from agenda_workflow.core.engine import PlanningEngine
from agenda_workflow.llm.provider import LLMError, LLMProvider
from agenda_workflow.store.record_store import RecordStore
from agenda_workflow.workflow.context import ContextProviders
from agenda_workflow.workflow.models import (
    CalendarContext,
    CalendarEvent,
    DayProfile,
    FinancialContext,
    Memory,
    Pursuit,
    TimeWindow,
    WellnessContext,
)

TARGET_DATE = date(2025, 3, 12)

Script = dict[str, Any] | Exception | Callable[[list[dict[str, str]]], Any]


class FakeLLM(LLMProvider):
    """LLM provider that replays scripted responses.

    Each entry is a dict (returned as the decoded JSON), an exception (raised)
    or a callable receiving the messages. When the script runs out,
    ``default`` is used.
    """

    def __init__(self, responses: list[Script] | None = None, default: Script | None = None) -> None:
        self.responses = list(responses or [])
        self.default = default
        self.calls: list[list[dict[str, str]]] = []
        self._lock = threading.Lock()

    def chat(
        self,
        messages: list[dict[str, str]],
        max_tokens: int | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> str:
        raise NotImplementedError

    def complete_json(
        self,
        messages: list[dict[str, str]],
        schema: dict[str, Any] | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> dict[str, Any]:
        with self._lock:
            self.calls.append(list(messages))
            response = self.responses.pop(0) if self.responses else self.default
        if callable(response) and not isinstance(response, Exception):
            response = response(messages)
        if isinstance(response, Exception):
            raise response
        if response is None:
            raise LLMError("no scripted response")
        return copy.deepcopy(response)


def agenda_item(start: str, end: str, title: str, category: str = "work", **extra: Any) -> dict[str, Any]:
    item: dict[str, Any] = {
        "start_time": start,
        "end_time": end,
        "title": title,
        "category": category,
        "rationale": f"{title} fits here",
    }
    item.update(extra)
    return item


GOOD_AGENDA: dict[str, Any] = {
    "agenda": [
        agenda_item("07:00", "07:30", "Morning sunlight walk", "health", intensity="low", location="outdoor"),
        agenda_item("08:00", "10:00", "Deep work: roadmap", "work", intensity="high"),
        agenda_item("12:00", "12:30", "Lunch with Sam", "social"),
        agenda_item("17:00", "17:45", "Gym workout", "health", intensity="medium"),
    ]
}


class StubProviders:
    """In-memory provider for every context integration."""

    def __init__(
        self,
        events: list[CalendarEvent] | None = None,
        pursuits: list[Pursuit] | None = None,
        wellness: WellnessContext | None = None,
        financial: FinancialContext | None = None,
        profile: DayProfile | None = None,
        memories: list[Memory] | None = None,
    ) -> None:
        self.events = events or []
        self.pursuits = pursuits or []
        self.wellness = wellness
        self.financial = financial
        self.profile = profile
        self.memories = memories or []

    def get_calendar_context(self, user_id: str, window: TimeWindow) -> CalendarContext:
        return CalendarContext(events=self.events)

    def get_wellness_context(self, user_id: str) -> WellnessContext | None:
        return self.wellness

    def get_financial_context(self, user_id: str) -> FinancialContext | None:
        return self.financial

    def get_goal_context(self, user_id: str, week_start: date) -> list[Pursuit]:
        return self.pursuits

    def get_profile(self, user_id: str) -> DayProfile | None:
        return self.profile

    def get_memories(self, user_id: str, limit: int) -> list[Memory]:
        return self.memories

    def as_providers(self) -> ContextProviders:
        return ContextProviders(
            calendar=self, wellness=self, financial=self, goals=self, profile=self, memories=self
        )


def team_sync() -> CalendarEvent:
    return CalendarEvent(
        id="evt-1",
        title="Team Sync",
        start=datetime(2025, 3, 12, 9, 0),
        end=datetime(2025, 3, 12, 10, 0),
    )


@pytest.fixture
def temp_state_dir(tmp_path: Path) -> Path:
    """Provide a temporary state directory."""
    state_dir = tmp_path / ".agenda_state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def llm_config() -> LLMConfig:
    """Provide a test LLM configuration."""
    return LLMConfig(provider="openai", api_key="test-key", model="gpt-4o-mini")


@pytest.fixture
def engine_config(llm_config: LLMConfig, temp_state_dir: Path) -> EngineConfig:
    """Provide a test engine configuration."""
    return EngineConfig(
        log_level="DEBUG",
        debug=True,
        llm=llm_config,
        store=StoreConfig(storage_path=temp_state_dir),
        executor=ExecutorConfig(max_iterations=3, auto_retry_limit=0, min_score=70),
    )


@pytest.fixture
def store(temp_state_dir: Path) -> RecordStore:
    return RecordStore(temp_state_dir)


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM(default=GOOD_AGENDA)


@pytest.fixture
def stub_providers() -> StubProviders:
    return StubProviders()


@pytest.fixture
def make_engine(
    engine_config: EngineConfig, store: RecordStore
) -> Callable[..., PlanningEngine]:
    """Build an engine over the temp store with an injected LLM and providers."""

    def _make(llm: LLMProvider, providers: StubProviders | None = None, **executor: Any) -> PlanningEngine:
        config = engine_config
        if executor:
            config = engine_config.model_copy(
                update={"executor": engine_config.executor.model_copy(update=executor)}
            )
        return PlanningEngine(
            config,
            llm=llm,
            store=store,
            providers=(providers or StubProviders()).as_providers(),
        )

    return _make
