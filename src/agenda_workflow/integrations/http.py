"""HTTP context provider.

Talks to a small context service that fronts the user's calendar, wellness
tracker, finances, goals, profile and saved memories. Endpoints (all ``GET``,
relative to the base URL):

- ``/users/{user_id}/calendar?start=...&end=...`` -> ``{events, busy_slots}``
- ``/users/{user_id}/wellness`` -> wellness object
- ``/users/{user_id}/financial`` -> ``{summary, flags}``
- ``/users/{user_id}/pursuits?week_start=...`` -> ``[pursuit, ...]``
- ``/users/{user_id}/profile`` -> day profile object
- ``/users/{user_id}/memories?limit=...`` -> ``[memory, ...]`` by importance

``404`` and ``204`` mean the integration is not connected.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any
from urllib.parse import quote

import requests

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

_NOT_CONNECTED = {204, 404}


class HttpContextProvider:
    """Context provider for every integration over ``requests``."""

    def __init__(
        self,
        *,
        base_url: str,
        token: str | None = None,
        timeout_seconds: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("Context service base_url is required")

        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._session = session or requests.Session()
        self._session.headers.update(
            {"Accept": "application/json", "User-Agent": "agenda-workflow-engine"}
        )
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    def _user_url(self, user_id: str, suffix: str) -> str:
        if not user_id.strip():
            raise ValueError("user_id is required")
        return f"{self._base_url}/users/{quote(user_id, safe='')}/{suffix.lstrip('/')}"

    def _get(self, url: str, params: dict[str, str] | None = None) -> Any | None:
        resp = self._session.get(url, params=params, timeout=self._timeout)
        if resp.status_code in _NOT_CONNECTED:
            logger.debug("Integration not connected", extra={"url": url})
            return None
        resp.raise_for_status()
        return resp.json()

    def get_calendar_context(self, user_id: str, window: TimeWindow) -> CalendarContext:
        data = self._get(
            self._user_url(user_id, "calendar"),
            params={"start": window.start.isoformat(), "end": window.end.isoformat()},
        )
        if not isinstance(data, dict):
            return CalendarContext()
        return CalendarContext.model_validate(data)

    def get_wellness_context(self, user_id: str) -> WellnessContext | None:
        data = self._get(self._user_url(user_id, "wellness"))
        if not isinstance(data, dict):
            return None
        return WellnessContext.model_validate(data)

    def get_financial_context(self, user_id: str) -> FinancialContext | None:
        data = self._get(self._user_url(user_id, "financial"))
        if not isinstance(data, dict):
            return None
        return FinancialContext.model_validate(data)

    def get_goal_context(self, user_id: str, week_start: date) -> list[Pursuit]:
        data = self._get(
            self._user_url(user_id, "pursuits"),
            params={"week_start": week_start.isoformat()},
        )
        if not isinstance(data, list):
            return []
        return [Pursuit.model_validate(item) for item in data if isinstance(item, dict)]

    def get_profile(self, user_id: str) -> DayProfile | None:
        data = self._get(self._user_url(user_id, "profile"))
        if not isinstance(data, dict):
            return None
        return DayProfile.model_validate(data)

    def get_memories(self, user_id: str, limit: int) -> list[Memory]:
        data = self._get(self._user_url(user_id, "memories"), params={"limit": str(limit)})
        if not isinstance(data, list):
            return []
        return [Memory.model_validate(item) for item in data if isinstance(item, dict)]
