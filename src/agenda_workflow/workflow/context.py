"""Context gathering for plan synthesis.

Each collaborator is optional and independently failable. Enabled providers are
queried concurrently and joined before synthesis; a provider that raises or
times out simply leaves its section out of the :class:`PlanContext`.

The stored profile is the base for the day; a ``profile`` mapping in the
execution's input data overrides it field by field.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Protocol

from pydantic import ValidationError

from agenda_workflow.workflow.models import (
    CalendarContext,
    DayProfile,
    FinancialContext,
    Memory,
    PlanContext,
    Pursuit,
    TimeWindow,
    WellnessContext,
)

logger = logging.getLogger(__name__)


class ProfileProvider(Protocol):
    def get_profile(self, user_id: str) -> DayProfile | None: ...


class MemoryProvider(Protocol):
    def get_memories(self, user_id: str, limit: int) -> list[Memory]: ...


class CalendarProvider(Protocol):
    def get_calendar_context(self, user_id: str, window: TimeWindow) -> CalendarContext: ...


class WellnessProvider(Protocol):
    def get_wellness_context(self, user_id: str) -> WellnessContext | None: ...


class FinancialProvider(Protocol):
    def get_financial_context(self, user_id: str) -> FinancialContext | None: ...


class GoalsProvider(Protocol):
    def get_goal_context(self, user_id: str, week_start: date) -> list[Pursuit]: ...


@dataclass(frozen=True, slots=True)
class ContextProviders:
    """The collaborators wired into an engine. Any of them may be absent."""

    calendar: CalendarProvider | None = None
    wellness: WellnessProvider | None = None
    financial: FinancialProvider | None = None
    goals: GoalsProvider | None = None
    profile: ProfileProvider | None = None
    memories: MemoryProvider | None = None


def week_start_for(day: date) -> date:
    """Sunday on or before ``day``."""

    return day - timedelta(days=(day.weekday() + 1) % 7)


class ContextGatherer:
    """Fan out to the enabled providers and assemble a :class:`PlanContext`."""

    def __init__(
        self,
        providers: ContextProviders | None = None,
        *,
        timeout_seconds: float = 15.0,
        max_workers: int = 4,
        memory_limit: int = 10,
    ) -> None:
        self.providers = providers or ContextProviders()
        self.timeout_seconds = timeout_seconds
        self.max_workers = max_workers
        self.memory_limit = memory_limit

    def gather(
        self,
        user_id: str,
        target_date: date,
        integrations: Iterable[str],
        input_data: Mapping[str, Any] | None = None,
    ) -> PlanContext:
        input_data = input_data or {}
        fetchers = self._fetchers(user_id, target_date, set(integrations))

        updates: dict[str, Any] = {}
        sources: list[str] = []
        if fetchers:
            updates, sources = self._run(fetchers, user_id)

        stored_profile = updates.pop("profile", None)
        return PlanContext(
            date=target_date,
            profile=_merge_profile(stored_profile, input_data),
            notes=_notes_from_input(input_data),
            sources=sources,
            **updates,
        )

    def _fetchers(
        self, user_id: str, target_date: date, enabled: set[str]
    ) -> dict[str, Callable[[], dict[str, Any]]]:
        p = self.providers
        fetchers: dict[str, Callable[[], dict[str, Any]]] = {}

        if "profile" in enabled and p.profile is not None:
            profile = p.profile
            fetchers["profile"] = lambda: {"profile": profile.get_profile(user_id)}

        if "memories" in enabled and p.memories is not None:
            memories = p.memories
            limit = self.memory_limit

            def fetch_memories() -> dict[str, Any]:
                found = memories.get_memories(user_id, limit)
                ranked = sorted(found, key=lambda m: m.importance, reverse=True)
                return {"memories": ranked[:limit]}

            fetchers["memories"] = fetch_memories

        if "calendar" in enabled and p.calendar is not None:
            calendar = p.calendar

            def fetch_calendar() -> dict[str, Any]:
                ctx = calendar.get_calendar_context(user_id, TimeWindow.for_day(target_date))
                return {"calendar_events": ctx.events, "busy_slots": ctx.busy_slots}

            fetchers["calendar"] = fetch_calendar

        if "wellness" in enabled and p.wellness is not None:
            wellness = p.wellness
            fetchers["wellness"] = lambda: {"wellness": wellness.get_wellness_context(user_id)}

        if "financial" in enabled and p.financial is not None:
            financial = p.financial
            fetchers["financial"] = lambda: {
                "financial": financial.get_financial_context(user_id)
            }

        if "goals" in enabled and p.goals is not None:
            goals = p.goals
            week_start = week_start_for(target_date)
            fetchers["goals"] = lambda: {
                "pursuits": [
                    g for g in goals.get_goal_context(user_id, week_start) if g.status == "active"
                ]
            }

        return fetchers

    def _run(
        self, fetchers: dict[str, Callable[[], dict[str, Any]]], user_id: str
    ) -> tuple[dict[str, Any], list[str]]:
        pool = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(fetchers)),
            thread_name_prefix="context",
        )
        try:
            futures: dict[Future[dict[str, Any]], str] = {
                pool.submit(fn): name for name, fn in fetchers.items()
            }
            done, not_done = wait(futures, timeout=self.timeout_seconds)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        updates: dict[str, Any] = {}
        sources: list[str] = []
        for future in futures:
            name = futures[future]
            if future in not_done:
                logger.warning(
                    "Context provider timed out; continuing without it",
                    extra={"provider": name, "user_id": user_id},
                )
                continue
            try:
                result = future.result()
            except Exception as e:
                logger.warning(
                    "Context provider failed; continuing without it",
                    extra={"provider": name, "user_id": user_id, "error": str(e)},
                )
                continue
            if any(value for value in result.values()):
                sources.append(name)
            updates.update({k: v for k, v in result.items() if v is not None})

        logger.debug(
            "Context gathered",
            extra={"user_id": user_id, "sources": sources, "requested": sorted(fetchers)},
        )
        return updates, sorted(sources)


def _merge_profile(stored: DayProfile | None, input_data: Mapping[str, Any]) -> DayProfile:
    """Stored profile first, then any fields the caller passed in ``input_data``."""

    base = stored or DayProfile()
    raw = input_data.get("profile")
    if not isinstance(raw, Mapping):
        return base
    try:
        return DayProfile.model_validate({**base.model_dump(), **raw})
    except ValidationError as e:
        logger.warning(
            "Ignoring invalid profile in input data",
            extra={"errors": e.error_count()},
        )
        return base


def _notes_from_input(input_data: Mapping[str, Any]) -> list[str]:
    raw = input_data.get("notes")
    if isinstance(raw, str):
        return [raw] if raw.strip() else []
    if isinstance(raw, list):
        return [str(n) for n in raw if str(n).strip()]
    return []
