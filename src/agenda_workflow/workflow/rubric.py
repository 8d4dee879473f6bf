"""Rubric evaluation engine.

Scores a candidate agenda against a workflow's weighted rubrics. Evaluation is
pure: the same plan, rubrics and context always produce the same verdicts,
which is what makes re-evaluating after a re-synthesis meaningful.

A rule that cannot be evaluated (unparseable body, bad regex, missing field)
fails closed with an explanation instead of raising.
"""

from __future__ import annotations

import logging
import operator
import re
from collections.abc import Callable, Sequence
from typing import Any

from pydantic import BaseModel

from agenda_workflow.workflow.models import (
    AgendaCategory,
    AgendaItem,
    AgendaProposal,
    CountBoundsRule,
    ExistsRule,
    InvalidRule,
    MinimumGapRule,
    NoCalendarOverlapRule,
    NoOverlapRule,
    OrderedRule,
    PatternRule,
    PlanContext,
    RubricResult,
    RubricValidationResult,
    ThresholdRule,
    TimeWindowRule,
    WeeklyTargetRule,
    WithinWindowRule,
    WorkflowRubric,
    clock_minutes,
    format_clock,
)

logger = logging.getLogger(__name__)

Verdict = tuple[bool, str, dict[str, Any]]

_COMPARATORS: dict[str, Callable[[float, float], bool]] = {
    "lt": operator.lt,
    "lte": operator.le,
    "gt": operator.gt,
    "gte": operator.ge,
    "eq": operator.eq,
    "ne": operator.ne,
}

_COMPARATOR_SYMBOLS = {"lt": "<", "lte": "<=", "gt": ">", "gte": ">=", "eq": "==", "ne": "!="}

_ACTIVITY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "caffeine": ("coffee", "caffeine", "espresso", "latte", "tea"),
    "outdoor": ("outdoor", "outdoors", "outside", "walk", "hike", "run", "sunlight"),
    "deep_work": ("deep work", "focus", "focused"),
    "high_intensity": ("hiit", "sprint", "intervals"),
}

_MISSING = object()


def item_matches_activity(item: AgendaItem, activity: str | None) -> bool:
    """Whether an agenda item counts as ``activity``.

    Matches on category, title or location words, plus a few aliases
    (``caffeine``, ``outdoor``, ``deep_work``, ``high_intensity``).
    """

    if not activity or not activity.strip():
        return True

    label = activity.strip().lower()
    if label == "high_intensity" and item.intensity == "high":
        return True
    if label == "deep_work" and item.category is AgendaCategory.WORK:
        return True
    if item.category.value == label:
        return True

    needles = {label, label.replace("_", " ")} | set(_ACTIVITY_KEYWORDS.get(label, ()))
    haystack = " ".join(filter(None, [item.title, item.location or ""])).lower()
    return any(re.search(rf"\b{re.escape(n)}\b", haystack) for n in needles)


def _resolve_path(obj: Any, path: str) -> Any:
    current = obj
    for part in path.split("."):
        if isinstance(current, BaseModel):
            if part not in type(current).model_fields:
                return _MISSING
            current = getattr(current, part)
        elif isinstance(current, dict):
            if part not in current:
                return _MISSING
            current = current[part]
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return _MISSING
            current = current[index]
        else:
            return _MISSING
    return current


def _is_present(value: Any) -> bool:
    if value is _MISSING or value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, list | dict):
        return bool(value)
    return True


def _text_field(item: AgendaItem, field: str) -> str:
    value = getattr(item, field)
    if isinstance(value, AgendaCategory):
        return value.value
    return value or ""


def _check_exists(rule: ExistsRule, plan: AgendaProposal, _context: PlanContext) -> Verdict:
    if rule.scope == "plan":
        present = _is_present(_resolve_path(plan, rule.field))
        return (
            present,
            f"Plan field '{rule.field}' is {'set' if present else 'missing or empty'}",
            {},
        )

    if not plan.items:
        return True, f"No items to check for '{rule.field}'", {}

    missing = [item.title for item in plan.items if not _is_present(_resolve_path(item, rule.field))]
    if missing:
        return (
            False,
            f"{len(missing)} item(s) missing '{rule.field}'",
            {"items": missing},
        )
    return True, f"Every item has '{rule.field}'", {}


def _metric(rule: ThresholdRule, items: Sequence[AgendaItem]) -> float:
    matching = [i for i in items if item_matches_activity(i, rule.activity)]
    durations = [i.duration_minutes for i in matching]
    if rule.metric == "item_count":
        return float(len(matching))
    if rule.metric in {"total_minutes", "activity_minutes"}:
        return float(sum(durations))
    if rule.metric == "longest_block_minutes":
        return float(max(durations, default=0))
    return float(min(durations, default=0))


def _check_threshold(rule: ThresholdRule, plan: AgendaProposal, _context: PlanContext) -> Verdict:
    actual = _metric(rule, plan.items)
    passed = _COMPARATORS[rule.comparator](actual, rule.value)
    subject = f"{rule.metric}" + (f" for {rule.activity}" if rule.activity else "")
    symbol = _COMPARATOR_SYMBOLS[rule.comparator]
    return (
        passed,
        f"{subject} is {actual:g} (required {symbol} {rule.value:g})",
        {"actual": actual, "threshold": rule.value},
    )


def _check_pattern(rule: PatternRule, plan: AgendaProposal, _context: PlanContext) -> Verdict:
    try:
        regex = re.compile(rule.pattern, re.IGNORECASE if rule.ignore_case else 0)
    except re.error as e:
        return False, f"Invalid pattern {rule.pattern!r}: {e}", {}

    hits = [i.title for i in plan.items if regex.search(_text_field(i, rule.field))]
    if rule.mode == "any":
        passed = bool(hits)
        message = (
            f"{len(hits)} item(s) match /{rule.pattern}/ on {rule.field}"
            if passed
            else f"No item matches /{rule.pattern}/ on {rule.field}"
        )
    elif rule.mode == "all":
        misses = [i.title for i in plan.items if not regex.search(_text_field(i, rule.field))]
        passed = not misses
        message = (
            f"Every item matches /{rule.pattern}/ on {rule.field}"
            if passed
            else f"{len(misses)} item(s) do not match /{rule.pattern}/ on {rule.field}"
        )
    else:
        passed = not hits
        message = (
            f"No item matches forbidden /{rule.pattern}/ on {rule.field}"
            if passed
            else f"{len(hits)} item(s) match forbidden /{rule.pattern}/ on {rule.field}"
        )
    return passed, message, {"matching_items": hits}


def _check_no_overlap(_rule: NoOverlapRule, plan: AgendaProposal, _context: PlanContext) -> Verdict:
    ordered = sorted(plan.items, key=lambda i: (i.start_minute, i.end_minute))
    overlaps: list[str] = []
    for idx, first in enumerate(ordered):
        for second in ordered[idx + 1 :]:
            if second.start_minute >= first.end_minute:
                break
            overlaps.append(f"{first.title} overlaps {second.title}")
    if overlaps:
        return False, f"{len(overlaps)} overlapping item pair(s)", {"overlaps": overlaps}
    return True, "No overlapping items", {}


def _check_no_calendar_overlap(
    _rule: NoCalendarOverlapRule, plan: AgendaProposal, context: PlanContext
) -> Verdict:
    overlaps: list[str] = []
    for item in plan.items:
        for start, end, label in context.fixed_commitments():
            if item.start_minute < end and item.end_minute > start:
                overlaps.append(f"{item.title} overlaps with {label}")
    if overlaps:
        return False, f"{len(overlaps)} conflict(s) with fixed commitments", {"overlaps": overlaps}
    return True, "No conflicts with calendar events", {}


def _check_ordered(_rule: OrderedRule, plan: AgendaProposal, _context: PlanContext) -> Verdict:
    starts = [i.start_minute for i in plan.items]
    if starts != sorted(starts):
        return False, "Items are not in chronological order", {}
    return True, "Items are in chronological order", {}


def _check_count_bounds(rule: CountBoundsRule, plan: AgendaProposal, _context: PlanContext) -> Verdict:
    count = len(plan.items)
    too_few = count < rule.min_items
    too_many = rule.max_items is not None and count > rule.max_items
    bounds = f"{rule.min_items}..{rule.max_items if rule.max_items is not None else 'inf'}"
    if too_few or too_many:
        return False, f"{count} item(s) scheduled, expected {bounds}", {"count": count}
    return True, f"{count} item(s) scheduled", {"count": count}


def _check_within_window(rule: WithinWindowRule, plan: AgendaProposal, context: PlanContext) -> Verdict:
    start = rule.start or context.profile.wake_time
    end = rule.end or context.profile.sleep_time
    lo, hi = clock_minutes(start), clock_minutes(end)
    outside = [i.title for i in plan.items if i.start_minute < lo or i.end_minute > hi]
    window = f"{format_clock(start)}-{format_clock(end)}"
    if outside:
        return False, f"{len(outside)} item(s) fall outside {window}", {"items": outside}
    return True, f"All items within {window}", {}


def _check_time_window(rule: TimeWindowRule, plan: AgendaProposal, _context: PlanContext) -> Verdict:
    lo, hi = clock_minutes(rule.start), clock_minutes(rule.end)
    matching = [
        i.title
        for i in plan.items
        if item_matches_activity(i, rule.activity) and lo <= i.start_minute <= hi
    ]
    label = rule.activity or "activity"
    window = f"{format_clock(rule.start)}-{format_clock(rule.end)}"
    if matching:
        return True, f"Found {len(matching)} {label} in {window} window", {"matching_items": matching}
    return False, f"No {label} scheduled between {window}", {}


def _check_minimum_gap(rule: MinimumGapRule, plan: AgendaProposal, context: PlanContext) -> Verdict:
    required = rule.hours * 60
    if rule.reference.strip().lower() == "sleep":
        reference = clock_minutes(context.profile.sleep_time)
    else:
        refs = [i.end_minute for i in plan.items if item_matches_activity(i, rule.reference)]
        if not refs:
            return True, f"No {rule.reference} activities found", {}
        reference = max(refs)

    violations = []
    for item in plan.items:
        if not item_matches_activity(item, rule.between):
            continue
        gap = reference - item.end_minute
        if gap < required:
            violations.append(f"{item.title} ends {gap / 60:.1f}h before {rule.reference}")

    if violations:
        return (
            False,
            f"{rule.between} activities too close to {rule.reference}",
            {"violations": violations},
        )
    return True, f"{rule.hours:g}h gap between {rule.between} and {rule.reference} maintained", {}


def _check_weekly_target(rule: WeeklyTargetRule, plan: AgendaProposal, context: PlanContext) -> Verdict:
    if not context.pursuits:
        return True, "No active pursuits", {}

    under: list[str] = []
    over: list[str] = []
    allocated_by_pursuit: dict[str, int] = {}
    for pursuit in context.pursuits:
        allocated = sum(i.duration_minutes for i in plan.items if i.pursuit_id == pursuit.id)
        allocated_by_pursuit[pursuit.id] = allocated
        remaining = pursuit.remaining_hours * 60
        if remaining > 0 and allocated < min(rule.min_minutes, remaining):
            under.append(pursuit.name)
        if allocated > remaining:
            over.append(pursuit.name)

    details: dict[str, Any] = {"allocated_minutes": allocated_by_pursuit}
    if under or over:
        parts = []
        if under:
            parts.append(f"no time toward {', '.join(under)}")
        if over:
            parts.append(f"over weekly target for {', '.join(over)}")
        return False, "; ".join(parts).capitalize(), details
    return True, "Pursuit allocations respect weekly targets", details


def _check_invalid(rule: InvalidRule, _plan: AgendaProposal, _context: PlanContext) -> Verdict:
    kind = rule.raw.get("type", "unknown")
    return False, f"Invalid validation rule ({kind}): {rule.error}", {"raw": rule.raw}


_CHECKS: dict[type[Any], Callable[[Any, AgendaProposal, PlanContext], Verdict]] = {
    ExistsRule: _check_exists,
    ThresholdRule: _check_threshold,
    PatternRule: _check_pattern,
    NoOverlapRule: _check_no_overlap,
    NoCalendarOverlapRule: _check_no_calendar_overlap,
    OrderedRule: _check_ordered,
    CountBoundsRule: _check_count_bounds,
    WithinWindowRule: _check_within_window,
    TimeWindowRule: _check_time_window,
    MinimumGapRule: _check_minimum_gap,
    WeeklyTargetRule: _check_weekly_target,
    InvalidRule: _check_invalid,
}


class RubricEvaluator:
    """Evaluate agenda proposals against weighted rubrics."""

    def evaluate(
        self,
        plan: AgendaProposal,
        rubrics: Sequence[WorkflowRubric],
        context: PlanContext | None = None,
    ) -> RubricValidationResult:
        """Score ``plan`` against every active rubric.

        Args:
            plan: Candidate agenda. Only its items and date are read.
            rubrics: Rubrics for the workflow; inactive ones are skipped.
            context: Day context (calendar, profile, pursuits). Defaults to an
                empty context for the plan's date.

        Returns:
            One result per active rubric, the weighted aggregate score (0-100)
            and the list of failed hard constraints.
        """
        ctx = context or PlanContext(date=plan.date)

        results: list[RubricResult] = []
        for rubric in rubrics:
            if not rubric.is_active:
                continue
            results.append(self._evaluate_one(rubric, plan, ctx))

        total_weight = sum(r.weight for r in results)
        earned = sum(r.score for r in results)
        aggregate = round(earned / total_weight * 100, 2) if total_weight > 0 else 0.0
        hard_failures = [r for r in results if r.constraint_type == "hard" and not r.passed]

        logger.debug(
            "Rubric evaluation finished",
            extra={
                "rubrics": len(results),
                "aggregate_score": aggregate,
                "hard_failures": len(hard_failures),
            },
        )
        return RubricValidationResult(
            results=results, aggregate_score=aggregate, hard_failures=hard_failures
        )

    def _evaluate_one(
        self, rubric: WorkflowRubric, plan: AgendaProposal, context: PlanContext
    ) -> RubricResult:
        rule = rubric.validation_rule
        check = _CHECKS.get(type(rule))
        if check is None:
            passed, explanation, details = False, f"Unsupported rule type {rule.type!r}", {}
        else:
            try:
                passed, explanation, details = check(rule, plan, context)
            except Exception as e:
                logger.warning(
                    "Rubric evaluation error; failing closed",
                    exc_info=True,
                    extra={"rubric_id": rubric.id, "rule_type": rule.type},
                )
                passed, explanation, details = False, f"Evaluation error: {e}", {}

        return RubricResult(
            rubric_id=rubric.id,
            name=rubric.name,
            category=rubric.category,
            constraint_type=rubric.constraint_type,
            passed=passed,
            weight=rubric.weight,
            score=rubric.weight if passed else 0.0,
            explanation=explanation,
            details=details,
        )


def evaluate(
    plan: AgendaProposal,
    rubrics: Sequence[WorkflowRubric],
    context: PlanContext | None = None,
) -> RubricValidationResult:
    """Module-level shortcut for :meth:`RubricEvaluator.evaluate`."""

    return RubricEvaluator().evaluate(plan, rubrics, context)
