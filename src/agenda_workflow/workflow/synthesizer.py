"""LLM-backed agenda synthesis.

The synthesizer is a passive step: it builds the prompt, calls the injected
:class:`~agenda_workflow.llm.provider.LLMProvider`, parses the answer into
:class:`AgendaItem` records and repairs obvious conflicts with fixed
commitments. It never scores the result and never changes execution state.
"""

from __future__ import annotations

import json
import logging
import re
from collections import defaultdict
from datetime import time
from typing import Any

from pydantic import ValidationError

from agenda_workflow.llm.provider import LLMError, LLMProvider, LLMResponseError
from agenda_workflow.workflow.errors import SynthesisFailure
from agenda_workflow.workflow.models import (
    AgendaCategory,
    AgendaItem,
    AgendaProposal,
    PlanContext,
    clock_minutes,
    format_clock,
)

logger = logging.getLogger(__name__)

_LAST_MINUTE = 23 * 60 + 59

_CLOCK_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})(?::(\d{2}))?\s*$")

_CATEGORY_ALIASES: dict[str, AgendaCategory] = {
    "work": AgendaCategory.WORK,
    "meta": AgendaCategory.WORK,
    "startup": AgendaCategory.WORK,
    "hedge": AgendaCategory.WORK,
    "meeting": AgendaCategory.WORK,
    "focus": AgendaCategory.WORK,
    "deep_work": AgendaCategory.WORK,
    "writing": AgendaCategory.WORK,
    "health": AgendaCategory.HEALTH,
    "exercise": AgendaCategory.HEALTH,
    "workout": AgendaCategory.HEALTH,
    "fitness": AgendaCategory.HEALTH,
    "recovery": AgendaCategory.HEALTH,
    "personal": AgendaCategory.PERSONAL,
    "rest": AgendaCategory.PERSONAL,
    "break": AgendaCategory.PERSONAL,
    "learning": AgendaCategory.PERSONAL,
    "study": AgendaCategory.PERSONAL,
    "social": AgendaCategory.SOCIAL,
    "family": AgendaCategory.SOCIAL,
    "admin": AgendaCategory.ADMIN,
    "errands": AgendaCategory.ADMIN,
    "commute": AgendaCategory.ADMIN,
    "travel": AgendaCategory.ADMIN,
    "other": AgendaCategory.OTHER,
}

AGENDA_RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "agenda": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "start_time": {"type": "string"},
                    "end_time": {"type": "string"},
                    "title": {"type": "string"},
                    "description": {"type": "string"},
                    "category": {"type": "string", "enum": [c.value for c in AgendaCategory]},
                    "intensity": {"type": "string", "enum": ["low", "medium", "high"]},
                    "location": {"type": "string"},
                    "pursuit_id": {"type": "string"},
                    "rationale": {"type": "string"},
                },
                "required": ["start_time", "end_time", "title", "category"],
            },
        },
    },
    "required": ["agenda"],
}

SYSTEM_PROMPT = """You are an expert day planner and productivity coach. Generate an optimal daily agenda from the user's context.

## Principles

1. Circadian alignment: schedule high-cognitive work in the morning peak, creative work in the afternoon and wind-down activities in the evening.
2. Energy management: balance intense blocks with recovery. Avoid back-to-back high-intensity activities.
3. Health first: include morning sunlight and physical activity. Never schedule intense activities close to bedtime.
4. Constraint respect: never overlap existing calendar events or busy slots. Honor the caffeine cutoff.
5. Goal progress: allocate time toward pursuits that are behind their weekly targets, and tag those items with the pursuit_id.
6. Buffer time: leave transitions between activities. Do not over-schedule.

## Output format

Return a JSON object with an "agenda" array. Each item has:
- start_time: "HH:MM" (24-hour)
- end_time: "HH:MM"
- title: brief activity name
- description: optional longer description
- category: one of work, health, personal, social, admin, other
- intensity: "low", "medium" or "high"
- location: optional hint (home, gym, outdoor, office)
- pursuit_id: optional id of the pursuit this item advances
- rationale: one sentence on why this item is placed here

Example:
{"agenda": [
  {"start_time": "07:00", "end_time": "07:30", "title": "Morning sunlight walk", "category": "health", "intensity": "low", "location": "outdoor", "rationale": "Sunlight early anchors the circadian rhythm"},
  {"start_time": "08:00", "end_time": "10:00", "title": "Deep work: Project X", "category": "work", "intensity": "high", "location": "home", "rationale": "Hardest work in the morning peak"}
]}

Be practical and realistic. Leave some flexibility."""

REFORMAT_INSTRUCTION = (
    "Your previous output was invalid JSON or did not match the required shape. "
    'Reformat it as a single JSON object with an "agenda" array and nothing else.'
)


def parse_clock(value: Any) -> time:
    """Parse ``H:MM``, ``HH:MM`` or ``HH:MM:SS`` into a clock time."""

    if isinstance(value, time):
        return value
    match = _CLOCK_RE.match(str(value)) if value is not None else None
    if match is None:
        raise ValueError(f"Unrecognised clock time: {value!r}")
    hour, minute, second = (int(g) if g else 0 for g in match.groups())
    return time(hour, minute, second)


def map_category(value: Any) -> AgendaCategory:
    if not value:
        return AgendaCategory.OTHER
    key = str(value).strip().lower().replace(" ", "_").replace("-", "_")
    return _CATEGORY_ALIASES.get(key, AgendaCategory.OTHER)


def _minutes_to_clock(minutes: int) -> time:
    return time(minutes // 60, minutes % 60)


def _overlaps(start: int, end: int, spans: list[tuple[int, int]]) -> bool:
    return any(start < s_end and end > s_start for s_start, s_end in spans)


def _earliest_free_slot(
    duration: int, taken: list[tuple[int, int]], window_start: int, window_end: int
) -> int | None:
    candidates = sorted({window_start, *(end for _, end in taken if end >= window_start)})
    for start in candidates:
        if start + duration > window_end:
            break
        if not _overlaps(start, start + duration, taken):
            return start
    return None


def repair_overlaps(items: list[AgendaItem], context: PlanContext) -> list[AgendaItem]:
    """Move items that collide with fixed commitments, or drop them.

    Conflicting items are moved to the earliest free slot of the same length
    inside the day window, avoiding commitments and the items already kept.
    Returns the items sorted by start time.
    """

    blocked = [(start, end) for start, end, _ in context.fixed_commitments()]
    ordered = sorted(items, key=lambda i: (i.start_minute, i.end_minute))

    kept = [i for i in ordered if not _overlaps(i.start_minute, i.end_minute, blocked)]
    conflicting = [i for i in ordered if _overlaps(i.start_minute, i.end_minute, blocked)]

    window_start = clock_minutes(context.profile.day_start_time)
    window_end = min(clock_minutes(context.profile.day_end_time), _LAST_MINUTE)

    for item in conflicting:
        taken = sorted(blocked + [(k.start_minute, k.end_minute) for k in kept])
        slot = _earliest_free_slot(item.duration_minutes, taken, window_start, window_end)
        if slot is None:
            logger.info(
                "Dropped agenda item overlapping a fixed commitment",
                extra={"title": item.title, "start": format_clock(item.start_time)},
            )
            continue
        moved = item.model_copy(
            update={
                "start_time": _minutes_to_clock(slot),
                "end_time": _minutes_to_clock(slot + item.duration_minutes),
            }
        )
        logger.info(
            "Moved agenda item off a fixed commitment",
            extra={
                "title": item.title,
                "from": format_clock(item.start_time),
                "to": format_clock(moved.start_time),
            },
        )
        kept.append(moved)

    return sorted(kept, key=lambda i: (i.start_minute, i.end_minute))


def summarize(items: list[AgendaItem]) -> str:
    if not items:
        return "No agenda items generated."

    per_category: dict[str, int] = defaultdict(int)
    total = 0
    for item in items:
        per_category[item.category.value] += item.duration_minutes
        total += item.duration_minutes

    breakdown = ", ".join(f"{cat}: {round(mins / 60, 1)}h" for cat, mins in per_category.items())
    return f"{len(items)} activities planned ({round(total / 60, 1)}h total). {breakdown}"


class PlanSynthesizer:
    """Turn a :class:`PlanContext` into an unscored :class:`AgendaProposal`."""

    def __init__(
        self,
        llm: LLMProvider,
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> None:
        self.llm = llm
        self.max_tokens = max_tokens
        self.temperature = temperature

    def synthesize(
        self,
        context: PlanContext,
        prior_candidate: AgendaProposal | None = None,
        feedback: str | None = None,
    ) -> AgendaProposal:
        """Generate a candidate agenda.

        Args:
            context: Gathered day context.
            prior_candidate: Previous proposal when iterating.
            feedback: User correction for the prior candidate.

        Returns:
            Proposal with items sorted by start time and a summary. Verdict
            fields are left empty.

        Raises:
            SynthesisFailure: The LLM call or its parse failed twice.
        """
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_user_prompt(context, prior_candidate, feedback)},
        ]

        items = self._complete_with_retry(messages, context)
        items = repair_overlaps(items, context)

        logger.info(
            "Synthesized agenda",
            extra={"date": context.date.isoformat(), "items": len(items)},
        )
        return AgendaProposal(date=context.date, items=items, summary=summarize(items))

    def _complete_with_retry(
        self, messages: list[dict[str, str]], context: PlanContext
    ) -> list[AgendaItem]:
        attempt_messages = messages
        last_error: LLMError | None = None

        for attempt in (1, 2):
            try:
                data = self.llm.complete_json(
                    attempt_messages,
                    schema=AGENDA_RESPONSE_SCHEMA,
                    max_tokens=self.max_tokens,
                    temperature=self.temperature,
                )
                return parse_agenda(data, context)
            except LLMResponseError as e:
                last_error = e
                attempt_messages = [
                    *messages,
                    {"role": "assistant", "content": e.raw},
                    {"role": "user", "content": REFORMAT_INSTRUCTION},
                ]
            except LLMError as e:
                last_error = e
                attempt_messages = messages

            logger.warning(
                "Agenda synthesis attempt failed",
                extra={"attempt": attempt, "error": str(last_error)},
            )

        raise SynthesisFailure(f"Agenda synthesis failed after retry: {last_error}") from last_error


def parse_agenda(data: dict[str, Any], context: PlanContext) -> list[AgendaItem]:
    """Convert the decoded LLM answer into agenda items.

    Raises:
        LLMResponseError: The object has no ``agenda`` (or ``items``) array.
    """

    raw_items = data.get("agenda", data.get("items"))
    if not isinstance(raw_items, list):
        raise LLMResponseError('Response has no "agenda" array', json.dumps(data))

    known_pursuits = {p.id for p in context.pursuits}
    items: list[AgendaItem] = []
    for index, raw in enumerate(raw_items):
        try:
            items.append(_parse_item(raw, known_pursuits))
        except (ValueError, TypeError, ValidationError) as e:
            logger.warning(
                "Dropped malformed agenda item",
                extra={"index": index, "error": str(e)},
            )
    return items


def _parse_item(raw: Any, known_pursuits: set[str]) -> AgendaItem:
    if not isinstance(raw, dict):
        raise TypeError("agenda item is not an object")

    intensity = str(raw.get("intensity") or "").strip().lower() or None
    if intensity not in {"low", "medium", "high"}:
        intensity = None

    pursuit_id = raw.get("pursuit_id") or None
    if pursuit_id is not None and str(pursuit_id) not in known_pursuits:
        logger.debug("Ignoring unknown pursuit id", extra={"pursuit_id": pursuit_id})
        pursuit_id = None

    return AgendaItem(
        title=str(raw.get("title") or "").strip(),
        category=map_category(raw.get("category")),
        start_time=parse_clock(raw.get("start_time")),
        end_time=parse_clock(raw.get("end_time")),
        location=raw.get("location") or None,
        notes=raw.get("description") or raw.get("notes") or None,
        rationale=raw.get("rationale") or None,
        pursuit_id=pursuit_id,
        intensity=intensity,
    )


def _shift_clock(value: time, hours: float) -> str:
    minutes = max(clock_minutes(value) - int(hours * 60), 0)
    return format_clock(_minutes_to_clock(minutes))


def build_user_prompt(
    context: PlanContext,
    prior_candidate: AgendaProposal | None = None,
    feedback: str | None = None,
) -> str:
    profile = context.profile
    sections = [
        f"## Date: {context.date.isoformat()}",
        "",
        "## Available window",
        f"- Day starts: {format_clock(profile.day_start_time)}",
        f"- Day ends: {format_clock(profile.day_end_time)}",
        "",
        "## User preferences",
        f"- Timezone: {profile.timezone}",
        f"- Wake time: {format_clock(profile.wake_time)}",
        f"- Sleep time: {format_clock(profile.sleep_time)}",
        f"- Caffeine cutoff: {profile.caffeine_cutoff_hours:g} hours before sleep",
        f"- Morning sunlight: {profile.morning_sunlight_minutes} minutes",
        f"- Preferred workout: {profile.preferred_workout_time}",
        "",
    ]

    events = [(e, e.span_on(context.date)) for e in context.calendar_events]
    events = [(e, span) for e, span in events if span is not None]
    if events:
        sections.append("## Fixed calendar commitments (DO NOT overlap with these)")
        for event, (start, end) in events:
            location = f" ({event.location})" if event.location else ""
            sections.append(
                f"- {format_clock(_minutes_to_clock(start))}-"
                f"{format_clock(_minutes_to_clock(min(end, _LAST_MINUTE)))}: {event.title}{location}"
            )
        sections.append("")

    slots = [s.span_on(context.date) for s in context.busy_slots]
    slots = [s for s in slots if s is not None]
    if slots:
        sections.append("## Busy time slots (DO NOT overlap with these)")
        for start, end in slots:
            sections.append(
                f"- {format_clock(_minutes_to_clock(start))}-"
                f"{format_clock(_minutes_to_clock(min(end, _LAST_MINUTE)))}"
            )
        sections.append("")

    if context.pursuits:
        sections.append("## Active pursuits (allocate time based on weekly targets)")
        for pursuit in context.pursuits:
            sections.append(
                f"- [{pursuit.id}] {pursuit.name}: {pursuit.hours_logged_this_week:.1f}/"
                f"{pursuit.weekly_hours_target:g}h this week ({pursuit.progress_pct}%), "
                f"{pursuit.remaining_hours:.1f}h remaining"
            )
        sections.append("")

    if context.wellness is not None:
        wellness = context.wellness
        signals = [
            f"{label}: {value:g}"
            for label, value in (
                ("sleep hours", wellness.sleep_hours),
                ("sleep score", wellness.sleep_score),
                ("recovery score", wellness.recovery_score),
                ("activity minutes", wellness.activity_minutes),
            )
            if value is not None
        ]
        sections.append("## Wellness signals")
        if signals:
            sections.append(f"- {', '.join(signals)}")
        sections.append(f"- Schedule a {wellness.load_bias()} load today")
        sections.append("")

    if context.financial is not None and (context.financial.summary or context.financial.flags):
        sections.append("## Financial notes")
        if context.financial.summary:
            sections.append(f"- {context.financial.summary}")
        for flag in context.financial.flags:
            sections.append(f"- {flag}")
        sections.append("")

    if context.memories:
        sections.append("## Things the user told you")
        for memory in context.memories[:5]:
            sections.append(f"- [{memory.type}] {memory.content}")
        sections.append("")

    if context.notes:
        sections.append("## Relevant context")
        for note in context.notes[:5]:
            sections.append(f"- {note}")
        sections.append("")

    if prior_candidate is not None:
        sections.append("## Previous proposal")
        for item in prior_candidate.items:
            sections.append(
                f"- {format_clock(item.start_time)}-{format_clock(item.end_time)} "
                f"{item.title} ({item.category.value})"
            )
        sections.append("")

    if feedback:
        sections.append("## Correction requested")
        sections.append("Revise the previous proposal to address this feedback:")
        sections.append(feedback.strip())
        sections.append("")

    sections.append(
        "## Task\n"
        f"Generate an optimized agenda for {context.date.isoformat()}.\n"
        "- Respect all fixed commitments and busy slots\n"
        "- Include morning sunlight exposure and physical activity\n"
        "- Allocate time toward pursuits that need more hours\n"
        f"- No caffeine after {_shift_clock(profile.sleep_time, profile.caffeine_cutoff_hours)}\n"
        f"- End high-intensity activities by {_shift_clock(profile.sleep_time, 2)}\n"
        '- Return valid JSON with the "agenda" array'
    )
    return "\n".join(sections)
