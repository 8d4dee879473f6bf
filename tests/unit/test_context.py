"""Unit tests for context gathering."""

from __future__ import annotations

import threading
from datetime import date
from unittest.mock import Mock

from agenda_workflow.workflow.context import ContextGatherer, ContextProviders, week_start_for
from agenda_workflow.workflow.models import DayProfile, Memory, Pursuit, WellnessContext
from conftest import TARGET_DATE, StubProviders, team_sync

ALL = ["calendar", "wellness", "financial", "goals"]


def test_week_start_is_the_previous_sunday() -> None:
    assert week_start_for(date(2025, 3, 12)) == date(2025, 3, 9)
    assert week_start_for(date(2025, 3, 9)) == date(2025, 3, 9)


def test_gather_collects_enabled_sources() -> None:
    stub = StubProviders(
        events=[team_sync()],
        pursuits=[
            Pursuit(id="p1", name="Novel", weekly_hours_target=5),
            Pursuit(id="p2", name="Old", weekly_hours_target=2, status="paused"),
        ],
        wellness=WellnessContext(sleep_hours=7),
    )

    ctx = ContextGatherer(stub.as_providers()).gather("u1", TARGET_DATE, ALL)

    assert ctx.date == TARGET_DATE
    assert [e.title for e in ctx.calendar_events] == ["Team Sync"]
    assert [p.id for p in ctx.pursuits] == ["p1"]
    assert ctx.wellness is not None
    assert ctx.financial is None
    assert ctx.sources == ["calendar", "goals", "wellness"]


def test_disabled_integrations_are_not_called() -> None:
    calendar = Mock()
    providers = ContextProviders(calendar=calendar, goals=StubProviders())

    ctx = ContextGatherer(providers).gather("u1", TARGET_DATE, ["goals"])

    calendar.get_calendar_context.assert_not_called()
    assert ctx.calendar_events == []


def test_failing_provider_is_skipped() -> None:
    calendar = Mock()
    calendar.get_calendar_context.side_effect = ConnectionError("calendar down")
    stub = StubProviders(wellness=WellnessContext(recovery_score=80))
    providers = ContextProviders(calendar=calendar, wellness=stub)

    ctx = ContextGatherer(providers).gather("u1", TARGET_DATE, ALL)

    assert ctx.calendar_events == []
    assert ctx.wellness is not None
    assert ctx.sources == ["wellness"]


def test_slow_provider_times_out() -> None:
    release = threading.Event()
    slow = Mock()
    slow.get_wellness_context.side_effect = lambda user_id: release.wait(5) and None
    providers = ContextProviders(wellness=slow, goals=StubProviders(pursuits=[Pursuit(id="p1", name="Novel")]))

    try:
        ctx = ContextGatherer(providers, timeout_seconds=0.1).gather("u1", TARGET_DATE, ALL)
    finally:
        release.set()

    assert ctx.wellness is None
    assert [p.id for p in ctx.pursuits] == ["p1"]


def test_profile_and_notes_from_input() -> None:
    ctx = ContextGatherer().gather(
        "u1",
        TARGET_DATE,
        ALL,
        {"profile": {"sleep_time": "22:30", "wake_time": "06:30"}, "notes": ["Travel day", " "]},
    )

    assert ctx.profile.sleep_time.hour == 22
    assert ctx.profile.sleep_time.minute == 30
    assert ctx.notes == ["Travel day"]
    assert ctx.sources == []


def test_invalid_profile_falls_back_to_defaults() -> None:
    ctx = ContextGatherer().gather("u1", TARGET_DATE, [], {"profile": {"sleep_time": "late"}, "notes": "One"})

    assert ctx.profile.sleep_time.hour == 23
    assert ctx.notes == ["One"]


def test_input_profile_overrides_stored_profile() -> None:
    stored = DayProfile.model_validate(
        {"timezone": "Europe/Berlin", "wake_time": "06:00", "sleep_time": "22:00"}
    )
    stub = StubProviders(profile=stored)

    ctx = ContextGatherer(stub.as_providers()).gather(
        "u1", TARGET_DATE, ["profile"], {"profile": {"sleep_time": "23:30"}}
    )

    assert ctx.profile.timezone == "Europe/Berlin"
    assert ctx.profile.wake_time.hour == 6
    assert (ctx.profile.sleep_time.hour, ctx.profile.sleep_time.minute) == (23, 30)
    assert ctx.sources == ["profile"]


def test_invalid_input_profile_keeps_stored_profile() -> None:
    stub = StubProviders(profile=DayProfile(timezone="Asia/Tokyo"))

    ctx = ContextGatherer(stub.as_providers()).gather(
        "u1", TARGET_DATE, ["profile"], {"profile": {"sleep_time": "late"}}
    )

    assert ctx.profile.timezone == "Asia/Tokyo"
    assert ctx.profile.sleep_time.hour == 23


def test_memories_ranked_by_importance_and_limited() -> None:
    stub = StubProviders(
        memories=[
            Memory(content="Hates early calls", importance=0.4),
            Memory(content="Training for a marathon", memory_type="goal", importance=0.9),
            Memory(content="Likes jazz", importance=0.1),
        ]
    )

    ctx = ContextGatherer(stub.as_providers(), memory_limit=2).gather(
        "u1", TARGET_DATE, ["memories"]
    )

    assert [m.content for m in ctx.memories] == ["Training for a marathon", "Hates early calls"]
    assert ctx.memories[0].type == "goal"
    assert ctx.sources == ["memories"]


def test_profile_and_memories_need_their_integration() -> None:
    stub = StubProviders(profile=DayProfile(timezone="Asia/Tokyo"), memories=[Memory(content="x")])

    ctx = ContextGatherer(stub.as_providers()).gather("u1", TARGET_DATE, ALL)

    assert ctx.profile.timezone == "America/Los_Angeles"
    assert ctx.memories == []
