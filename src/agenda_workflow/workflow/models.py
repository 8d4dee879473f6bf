"""Records shared by the evaluator, synthesizer, executor and store.

Everything here is a pydantic model so it can be persisted with
``model_dump(mode="json")`` and reloaded with ``model_validate``.
"""

from __future__ import annotations

import datetime as dt
import logging
import uuid
from datetime import UTC, date, datetime, time, timedelta
from enum import Enum
from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)

from agenda_workflow.workflow.state_machine import ExecutionStatus, is_terminal

logger = logging.getLogger(__name__)

ConstraintType = Literal["hard", "soft"]
Intensity = Literal["low", "medium", "high"]
Integration = Literal["profile", "calendar", "wellness", "financial", "goals", "memories"]


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def new_id() -> str:
    return uuid.uuid4().hex


def clock_minutes(value: time) -> int:
    """Minutes since midnight for a clock time."""

    return value.hour * 60 + value.minute


def format_clock(value: time) -> str:
    return value.strftime("%H:%M")


def _span_on_day(start: datetime, end: datetime, day: date) -> tuple[int, int] | None:
    """Clamp a datetime range to ``day`` and return it as minutes since midnight."""

    if end <= start or start.date() > day or end.date() < day:
        return None
    start_min = 0 if start.date() < day else start.hour * 60 + start.minute
    end_min = 24 * 60 if end.date() > day else end.hour * 60 + end.minute
    if end_min <= start_min:
        return None
    return start_min, end_min


# ---------------------------------------------------------------------------
# Agenda
# ---------------------------------------------------------------------------


class AgendaCategory(str, Enum):
    WORK = "work"
    HEALTH = "health"
    PERSONAL = "personal"
    SOCIAL = "social"
    ADMIN = "admin"
    OTHER = "other"


class AgendaItem(BaseModel):
    """One scheduled block on the target date."""

    id: str = Field(default_factory=new_id)
    category: AgendaCategory = AgendaCategory.OTHER
    title: str = Field(min_length=1)
    start_time: time
    end_time: time
    location: str | None = None
    notes: str | None = None
    rationale: str | None = None
    pursuit_id: str | None = None
    intensity: Intensity | None = None

    @model_validator(mode="after")
    def _end_after_start(self) -> AgendaItem:
        if self.end_time <= self.start_time:
            raise ValueError(
                f"end_time {format_clock(self.end_time)} must be after "
                f"start_time {format_clock(self.start_time)}"
            )
        return self

    @property
    def start_minute(self) -> int:
        return clock_minutes(self.start_time)

    @property
    def end_minute(self) -> int:
        return clock_minutes(self.end_time)

    @property
    def duration_minutes(self) -> int:
        return self.end_minute - self.start_minute


class RubricResult(BaseModel):
    """Verdict of a single rubric for a single evaluation pass."""

    rubric_id: str
    name: str
    category: str
    constraint_type: ConstraintType
    passed: bool
    weight: float
    score: float = Field(description="Contribution to the aggregate: weight if passed, else 0")
    explanation: str
    details: dict[str, Any] = Field(default_factory=dict)


class RubricValidationResult(BaseModel):
    results: list[RubricResult] = Field(default_factory=list)
    aggregate_score: float = 0.0
    hard_failures: list[RubricResult] = Field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.hard_failures

    @property
    def suggestions(self) -> list[str]:
        return [f"{r.name}: {r.explanation}" for r in self.results if not r.passed]


class AgendaProposal(BaseModel):
    """A candidate plan plus the verdicts computed for it."""

    date: dt.date
    items: list[AgendaItem] = Field(default_factory=list)
    aggregate_score: float = 0.0
    results: list[RubricResult] = Field(default_factory=list)
    hard_failures: list[RubricResult] = Field(default_factory=list)
    summary: str = ""
    suggestions: list[str] = Field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.hard_failures

    def with_verdict(self, verdict: RubricValidationResult) -> AgendaProposal:
        return self.model_copy(
            update={
                "aggregate_score": verdict.aggregate_score,
                "results": list(verdict.results),
                "hard_failures": list(verdict.hard_failures),
                "suggestions": verdict.suggestions,
            }
        )


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


class DayProfile(BaseModel):
    timezone: str = "America/Los_Angeles"
    day_start_time: time = time(7, 0)
    day_end_time: time = time(22, 0)
    wake_time: time = time(7, 0)
    sleep_time: time = time(23, 0)
    caffeine_cutoff_hours: float = Field(default=8.0, ge=0)
    morning_sunlight_minutes: int = Field(default=15, ge=0)
    preferred_workout_time: str = "morning"


class CalendarEvent(BaseModel):
    id: str = ""
    title: str
    start: datetime
    end: datetime
    location: str | None = None
    is_all_day: bool = False

    def span_on(self, day: date) -> tuple[int, int] | None:
        # All-day entries (holidays, reminders) do not block time.
        if self.is_all_day:
            return None
        return _span_on_day(self.start, self.end, day)


class TimeSlot(BaseModel):
    start: datetime
    end: datetime

    def span_on(self, day: date) -> tuple[int, int] | None:
        return _span_on_day(self.start, self.end, day)


class TimeWindow(BaseModel):
    start: datetime
    end: datetime

    @classmethod
    def for_day(cls, day: date) -> TimeWindow:
        start = datetime.combine(day, time.min)
        return cls(start=start, end=start + timedelta(days=1))


class CalendarContext(BaseModel):
    events: list[CalendarEvent] = Field(default_factory=list)
    busy_slots: list[TimeSlot] = Field(default_factory=list)


class Pursuit(BaseModel):
    """An active goal with a weekly time target."""

    id: str
    name: str
    weekly_hours_target: float = Field(default=0.0, ge=0)
    hours_logged_this_week: float = Field(default=0.0, ge=0)
    status: str = "active"

    @property
    def remaining_hours(self) -> float:
        return max(0.0, self.weekly_hours_target - self.hours_logged_this_week)

    @property
    def progress_pct(self) -> int:
        if self.weekly_hours_target <= 0:
            return 100
        return round(self.hours_logged_this_week / self.weekly_hours_target * 100)


class WellnessContext(BaseModel):
    sleep_hours: float | None = None
    sleep_score: float | None = None
    recovery_score: float | None = None
    activity_minutes: float | None = None

    def load_bias(self) -> Literal["light", "normal", "heavy"]:
        """How demanding the day should be, judged from sleep and recovery."""

        if (self.recovery_score is not None and self.recovery_score < 40) or (
            self.sleep_hours is not None and self.sleep_hours < 6
        ):
            return "light"
        if self.recovery_score is not None and self.recovery_score >= 75 and (
            self.sleep_hours is None or self.sleep_hours >= 7
        ):
            return "heavy"
        return "normal"


class FinancialContext(BaseModel):
    summary: str = ""
    flags: list[str] = Field(default_factory=list)


class Memory(BaseModel):
    """Something the user told the assistant earlier that still matters."""

    id: str = ""
    content: str = Field(min_length=1)
    type: str = Field(default="note", validation_alias=AliasChoices("type", "memory_type"))
    importance: float = 0.0


class PlanContext(BaseModel):
    """Everything the synthesizer and evaluator know about the target day."""

    date: dt.date
    profile: DayProfile = Field(default_factory=DayProfile)
    calendar_events: list[CalendarEvent] = Field(default_factory=list)
    busy_slots: list[TimeSlot] = Field(default_factory=list)
    pursuits: list[Pursuit] = Field(default_factory=list)
    wellness: WellnessContext | None = None
    financial: FinancialContext | None = None
    memories: list[Memory] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)
    sources: list[str] = Field(default_factory=list)

    def fixed_commitments(self) -> list[tuple[int, int, str]]:
        """Blocked ranges on the target date as ``(start_min, end_min, label)``."""

        out: list[tuple[int, int, str]] = []
        for event in self.calendar_events:
            span = event.span_on(self.date)
            if span is not None:
                out.append((span[0], span[1], event.title))
        for slot in self.busy_slots:
            span = slot.span_on(self.date)
            if span is not None:
                out.append((span[0], span[1], "Busy"))
        out.sort()
        return out


# ---------------------------------------------------------------------------
# Validation rules
# ---------------------------------------------------------------------------


class _Rule(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    family: ClassVar[str] = "structural"


class ExistsRule(_Rule):
    family: ClassVar[str] = "existence"

    type: Literal["exists"] = "exists"
    field: str = Field(min_length=1, description="Dotted path, relative to an item or the plan")
    scope: Literal["items", "plan"] = "items"


class ThresholdRule(_Rule):
    family: ClassVar[str] = "threshold"

    type: Literal["threshold"] = "threshold"
    metric: Literal[
        "total_minutes",
        "item_count",
        "activity_minutes",
        "longest_block_minutes",
        "shortest_block_minutes",
    ]
    comparator: Literal["lt", "lte", "gt", "gte", "eq", "ne"]
    value: float
    activity: str | None = None


class PatternRule(_Rule):
    family: ClassVar[str] = "pattern"

    type: Literal["pattern"] = "pattern"
    field: Literal["title", "notes", "location", "rationale", "category"] = "title"
    pattern: str = Field(min_length=1)
    mode: Literal["all", "any", "none"] = "any"
    ignore_case: bool = True


class NoOverlapRule(_Rule):
    type: Literal["no_overlap"] = "no_overlap"


class NoCalendarOverlapRule(_Rule):
    type: Literal["no_calendar_overlap"] = "no_calendar_overlap"


class OrderedRule(_Rule):
    type: Literal["ordered"] = "ordered"


class CountBoundsRule(_Rule):
    type: Literal["count_bounds"] = "count_bounds"
    min_items: int = Field(default=0, ge=0)
    max_items: int | None = Field(default=None, ge=0)


class WithinWindowRule(_Rule):
    type: Literal["within_window"] = "within_window"
    start: time | None = None
    end: time | None = None


class TimeWindowRule(_Rule):
    type: Literal["time_window"] = "time_window"
    start: time
    end: time
    activity: str | None = None


class MinimumGapRule(_Rule):
    type: Literal["minimum_gap"] = "minimum_gap"
    between: str
    reference: str = Field(default="sleep", validation_alias=AliasChoices("reference", "and"))
    hours: float = Field(ge=0)


class WeeklyTargetRule(_Rule):
    type: Literal["weekly_target"] = "weekly_target"
    min_minutes: int = Field(default=15, ge=1)


class InvalidRule(_Rule):
    """Stand-in for a stored rule that could not be parsed. Always fails."""

    family: ClassVar[str] = "invalid"

    type: Literal["invalid"] = "invalid"
    raw: dict[str, Any] = Field(default_factory=dict)
    error: str = ""


ValidationRule = Annotated[
    Union[
        ExistsRule,
        ThresholdRule,
        PatternRule,
        NoOverlapRule,
        NoCalendarOverlapRule,
        OrderedRule,
        CountBoundsRule,
        WithinWindowRule,
        TimeWindowRule,
        MinimumGapRule,
        WeeklyTargetRule,
        InvalidRule,
    ],
    Field(discriminator="type"),
]

_RULE_ADAPTER: TypeAdapter[Any] = TypeAdapter(ValidationRule)


def _upgrade_legacy_rule(raw: dict[str, Any]) -> dict[str, Any]:
    """Translate rule shapes written by earlier versions of the rubric store."""

    kind = raw.get("type")
    if kind == "required_activity":
        return {
            "type": "threshold",
            "metric": "activity_minutes",
            "comparator": "gte",
            "value": raw.get("min_duration_minutes") or 1,
            "activity": raw.get("activity"),
        }
    if kind in {"min_duration", "max_duration"}:
        return {
            "type": "threshold",
            "metric": "longest_block_minutes",
            "comparator": "gte" if kind == "min_duration" else "lte",
            "value": raw.get("minutes"),
            "activity": raw.get("activity"),
        }
    if kind == "no_overlap" and "with" in raw:
        target = raw.get("with")
        if target == "calendar_events":
            return {"type": "no_calendar_overlap"}
        if target == "sleep_time":
            return {"type": "within_window"}
        return {"type": "no_overlap"}
    return raw


def parse_validation_rule(raw: Any) -> Any:
    """Parse a stored rule body into the closed rule union.

    Never raises: anything that does not parse becomes an :class:`InvalidRule`
    so the evaluator can fail it closed.
    """

    if isinstance(raw, _Rule):
        return raw
    if not isinstance(raw, dict):
        return InvalidRule(raw={"value": raw}, error="Validation rule must be an object")
    try:
        return _RULE_ADAPTER.validate_python(_upgrade_legacy_rule(raw))
    except ValidationError as e:
        logger.warning(
            "Unparseable validation rule; it will fail closed",
            extra={"rule_type": raw.get("type"), "errors": e.error_count()},
        )
        return InvalidRule(raw=raw, error=_first_error(e))


def _first_error(e: ValidationError) -> str:
    errors = e.errors()
    if not errors:
        return str(e)
    first = errors[0]
    loc = ".".join(str(p) for p in first.get("loc", ()))
    return f"{loc}: {first.get('msg', 'invalid')}" if loc else str(first.get("msg", "invalid"))


# ---------------------------------------------------------------------------
# Workflows, rubrics, executions
# ---------------------------------------------------------------------------


class WorkflowStep(BaseModel):
    type: str
    name: str | None = None
    config: dict[str, Any] = Field(default_factory=dict)


class AutonomousSchedule(BaseModel):
    enabled: bool = False
    cron: str
    timezone: str = "UTC"
    last_run: datetime | None = None
    next_run: datetime | None = None


class Workflow(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    name: str
    slug: str = Field(min_length=1, pattern=r"^[a-z0-9][a-z0-9_-]*$")
    description: str | None = None
    is_system: bool = False
    is_active: bool = True
    steps: list[WorkflowStep] = Field(default_factory=list)
    enabled_integrations: list[Integration] = Field(default_factory=list)
    autonomous_schedule: AutonomousSchedule | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class WorkflowRubric(BaseModel):
    id: str = Field(default_factory=new_id)
    workflow_id: str
    user_id: str
    category: str
    name: str
    description: str | None = None
    constraint_type: ConstraintType = "soft"
    validation_rule: ValidationRule
    weight: float = Field(default=5.0, ge=0)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("validation_rule", mode="before")
    @classmethod
    def _fail_closed_rule(cls, value: Any) -> Any:
        return parse_validation_rule(value).model_dump()


class FeedbackEntry(BaseModel):
    role: Literal["user", "system"] = "user"
    text: str
    timestamp: datetime = Field(default_factory=utc_now)


class WorkflowExecution(BaseModel):
    """One run of a workflow; the only durable memory of the state machine."""

    id: str = Field(default_factory=new_id)
    workflow_id: str
    user_id: str
    target_date: date
    status: ExecutionStatus = ExecutionStatus.PENDING
    revision: int = Field(default=0, ge=0, description="Bumped on every stored update")
    input_data: dict[str, Any] = Field(default_factory=dict)
    context: PlanContext | None = None
    proposal: AgendaProposal | None = None
    iteration_count: int = Field(default=0, ge=0)
    feedback: list[FeedbackEntry] = Field(default_factory=list)
    error_message: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)
