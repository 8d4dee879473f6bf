from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from unittest.mock import Mock

import pytest
import requests

from agenda_workflow.core.config import ContextConfig
from agenda_workflow.core.engine import providers_from_config
from agenda_workflow.integrations.http import HttpContextProvider
from agenda_workflow.integrations.static import StaticContextProvider
from agenda_workflow.workflow.models import TimeWindow

DAY = date(2025, 3, 12)


def _fixture(tmp_path: Path) -> Path:
    path = tmp_path / "context.json"
    path.write_text(
        json.dumps(
            {
                "users": {
                    "u1": {
                        "calendar": {
                            "events": [
                                {"title": "Team Sync", "start": "2025-03-12T09:00:00", "end": "2025-03-12T10:00:00"},
                                {"title": "Offsite", "start": "2025-03-14T09:00:00", "end": "2025-03-14T17:00:00"},
                                {
                                    "title": "Holiday",
                                    "start": "2025-03-01T00:00:00",
                                    "end": "2025-03-02T00:00:00",
                                    "is_all_day": True,
                                },
                            ]
                        },
                        "pursuits": [{"id": "p1", "name": "Novel", "weekly_hours_target": 5}],
                        "profile": {"timezone": "Europe/Berlin", "wake_time": "06:30"},
                        "memories": [
                            {"content": "Likes jazz", "importance": 0.2},
                            {"content": "Marathon in May", "memory_type": "goal", "importance": 0.9},
                            {"content": "Walks the dog at 18:00", "importance": 0.5},
                        ],
                    },
                    "*": {"wellness": {"sleep_hours": 7}},
                }
            }
        ),
        encoding="utf-8",
    )
    return path


def test_static_provider_reads_user_section(tmp_path: Path) -> None:
    provider = StaticContextProvider(_fixture(tmp_path))

    calendar = provider.get_calendar_context("u1", TimeWindow.for_day(DAY))

    assert [e.title for e in calendar.events] == ["Team Sync", "Holiday"]
    assert [p.id for p in provider.get_goal_context("u1", DAY)] == ["p1"]
    assert provider.get_wellness_context("u1") is None
    assert provider.get_wellness_context("u2") is not None
    assert provider.get_financial_context("u2") is None


def test_static_provider_missing_file(tmp_path: Path) -> None:
    provider = StaticContextProvider(tmp_path / "nope.json")

    assert provider.get_calendar_context("u1", TimeWindow.for_day(DAY)).events == []
    assert provider.get_goal_context("u1", DAY) == []


def _response(status: int, payload: object = None) -> Mock:
    resp = Mock(spec=requests.Response)
    resp.status_code = status
    resp.json.return_value = payload
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    return resp


def _http(*responses: Mock) -> tuple[HttpContextProvider, Mock]:
    session = Mock(spec=requests.Session)
    session.headers = {}
    session.get.side_effect = list(responses)
    return HttpContextProvider(base_url="http://ctx.local/", token="tok", session=session), session


def test_http_provider_requests_and_auth() -> None:
    provider, session = _http(
        _response(200, {"events": [{"title": "Standup", "start": "2025-03-12T09:00:00", "end": "2025-03-12T09:15:00"}]}),
        _response(200, [{"id": "p1", "name": "Novel"}, "junk"]),
    )

    calendar = provider.get_calendar_context("u 1", TimeWindow.for_day(DAY))
    pursuits = provider.get_goal_context("u 1", date(2025, 3, 9))

    assert [e.title for e in calendar.events] == ["Standup"]
    assert [p.id for p in pursuits] == ["p1"]
    assert session.headers["Authorization"] == "Bearer tok"
    first_url = session.get.call_args_list[0].args[0]
    assert first_url == "http://ctx.local/users/u%201/calendar"
    assert session.get.call_args_list[1].kwargs["params"] == {"week_start": "2025-03-09"}


def test_http_provider_not_connected_and_errors() -> None:
    provider, _ = _http(_response(404), _response(204), _response(500))

    assert provider.get_wellness_context("u1") is None
    assert provider.get_financial_context("u1") is None
    with pytest.raises(requests.HTTPError):
        provider.get_wellness_context("u1")


def test_providers_from_config(tmp_path: Path) -> None:
    assert providers_from_config(ContextConfig()).calendar is None

    static = providers_from_config(ContextConfig(fixture_path=_fixture(tmp_path)))
    assert isinstance(static.calendar, StaticContextProvider)

    http = providers_from_config(
        ContextConfig(fixture_path=tmp_path / "x.json", service_url="http://ctx.local")
    )
    assert isinstance(http.goals, HttpContextProvider)


def test_static_provider_reads_profile_and_memories(tmp_path: Path) -> None:
    provider = StaticContextProvider(_fixture(tmp_path))

    profile = provider.get_profile("u1")
    memories = provider.get_memories("u1", 2)

    assert profile is not None
    assert profile.timezone == "Europe/Berlin"
    assert profile.wake_time.hour == 6
    assert provider.get_profile("u2") is None
    assert [m.content for m in memories] == ["Marathon in May", "Walks the dog at 18:00"]
    assert memories[0].type == "goal"
    assert provider.get_memories("u2", 10) == []


def test_http_provider_profile_and_memories() -> None:
    provider, session = _http(
        _response(200, {"timezone": "Asia/Tokyo", "sleep_time": "22:30"}),
        _response(200, [{"id": "m1", "content": "Marathon in May", "memory_type": "goal"}, "junk"]),
        _response(404),
    )

    profile = provider.get_profile("u1")
    memories = provider.get_memories("u1", 5)

    assert profile is not None
    assert profile.timezone == "Asia/Tokyo"
    assert [(m.id, m.type) for m in memories] == [("m1", "goal")]
    assert session.get.call_args_list[0].args[0] == "http://ctx.local/users/u1/profile"
    assert session.get.call_args_list[1].args[0] == "http://ctx.local/users/u1/memories"
    assert session.get.call_args_list[1].kwargs["params"] == {"limit": "5"}
    assert provider.get_profile("u1") is None


def test_providers_from_config_wires_profile_and_memories(tmp_path: Path) -> None:
    static = providers_from_config(ContextConfig(fixture_path=_fixture(tmp_path)))
    http = providers_from_config(ContextConfig(service_url="http://ctx.local"))

    assert isinstance(static.profile, StaticContextProvider)
    assert isinstance(static.memories, StaticContextProvider)
    assert isinstance(http.profile, HttpContextProvider)
    assert isinstance(http.memories, HttpContextProvider)
