"""File-backed context provider.

Reads a JSON fixture shaped like::

    {
      "users": {
        "<user_id>": {
          "calendar": {"events": [...], "busy_slots": [...]},
          "wellness": {"sleep_hours": 7.5, "recovery_score": 80},
          "financial": {"summary": "...", "flags": ["..."]},
          "pursuits": [{"id": "p1", "name": "Novel", "weekly_hours_target": 5}],
          "profile": {"timezone": "Europe/Berlin", "wake_time": "06:30"},
          "memories": [{"content": "Prefers meetings after lunch", "importance": 0.8}]
        }
      }
    }

A ``"*"`` entry applies to users without their own section. Handy for local
runs and demos without any connected service.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any

from agenda_workflow.workflow.models import (
    CalendarContext,
    DayProfile,
    FinancialContext,
    Memory,
    Pursuit,
    TimeWindow,
    WellnessContext,
)

logger = logging.getLogger(__name__)


@dataclass
class StaticContextProvider:
    path: Path

    def _section(self, user_id: str, key: str) -> Any:
        if not self.path.exists():
            return None
        raw = json.loads(self.path.read_text(encoding="utf-8"))
        users = raw.get("users", {}) if isinstance(raw, dict) else {}
        entry = users.get(user_id) or users.get("*") or {}
        return entry.get(key) if isinstance(entry, dict) else None

    def get_calendar_context(self, user_id: str, window: TimeWindow) -> CalendarContext:
        data = self._section(user_id, "calendar")
        if not isinstance(data, dict):
            return CalendarContext()
        ctx = CalendarContext.model_validate(data)
        day = window.start.date()
        return CalendarContext(
            events=[e for e in ctx.events if e.is_all_day or e.span_on(day) is not None],
            busy_slots=[s for s in ctx.busy_slots if s.span_on(day) is not None],
        )

    def get_wellness_context(self, user_id: str) -> WellnessContext | None:
        data = self._section(user_id, "wellness")
        return WellnessContext.model_validate(data) if isinstance(data, dict) else None

    def get_financial_context(self, user_id: str) -> FinancialContext | None:
        data = self._section(user_id, "financial")
        return FinancialContext.model_validate(data) if isinstance(data, dict) else None

    def get_goal_context(self, user_id: str, week_start: date) -> list[Pursuit]:
        data = self._section(user_id, "pursuits")
        if not isinstance(data, list):
            return []
        return [Pursuit.model_validate(item) for item in data if isinstance(item, dict)]

    def get_profile(self, user_id: str) -> DayProfile | None:
        data = self._section(user_id, "profile")
        return DayProfile.model_validate(data) if isinstance(data, dict) else None

    def get_memories(self, user_id: str, limit: int) -> list[Memory]:
        data = self._section(user_id, "memories")
        if not isinstance(data, list):
            return []
        found = [Memory.model_validate(item) for item in data if isinstance(item, dict)]
        found.sort(key=lambda m: m.importance, reverse=True)
        return found[:limit]
