"""The built-in ``planmyday`` workflow and its default rubrics."""

from __future__ import annotations

import logging
from typing import Any

from agenda_workflow.store.repository import ExecutionRepository
from agenda_workflow.workflow.errors import NotFound, StateConflict
from agenda_workflow.workflow.models import Workflow, WorkflowRubric, WorkflowStep

logger = logging.getLogger(__name__)

PLANMYDAY_SLUG = "planmyday"
SYSTEM_WORKFLOW_SLUGS = frozenset({PLANMYDAY_SLUG})

_PLANMYDAY_STEPS: list[dict[str, Any]] = [
    {"type": "fetch_data", "name": "Fetch Calendar", "config": {"source": "calendar"}},
    {"type": "fetch_data", "name": "Fetch Wellness", "config": {"source": "wellness"}},
    {"type": "fetch_data", "name": "Fetch Pursuits", "config": {"source": "goals"}},
    {
        "type": "analyze",
        "name": "Generate Agenda",
        "config": {"prompt_template": "planmyday", "temperature": 0.7, "max_tokens": 4000},
    },
    {
        "type": "validate_rubric",
        "name": "Validate Against Rubrics",
        "config": {"min_score": 70, "max_iterations": 3},
    },
    {
        "type": "user_interaction",
        "name": "Propose Agenda",
        "config": {"interaction_type": "proposal"},
    },
]

# (category, name, description, constraint_type, rule, weight)
_DEFAULT_RUBRICS: list[tuple[str, str, str, str, dict[str, Any], float]] = [
    (
        "health",
        "Morning sunlight exposure",
        "Include outdoor time between 6am and 10am for circadian rhythm",
        "soft",
        {"type": "time_window", "start": "06:00", "end": "10:00", "activity": "outdoor"},
        8,
    ),
    (
        "metabolic",
        "Caffeine cutoff",
        "No caffeine within 8 hours of sleep time",
        "hard",
        {"type": "minimum_gap", "between": "caffeine", "and": "sleep", "hours": 8},
        10,
    ),
    (
        "sleep",
        "Sleep protection",
        "No high-intensity activities within 2 hours of sleep time",
        "hard",
        {"type": "minimum_gap", "between": "high_intensity", "and": "sleep", "hours": 2},
        10,
    ),
    (
        "time",
        "No calendar conflicts",
        "Agenda items must not overlap existing calendar events",
        "hard",
        {"type": "no_calendar_overlap"},
        10,
    ),
    (
        "time",
        "No double booking",
        "Agenda items must not overlap each other",
        "hard",
        {"type": "no_overlap"},
        10,
    ),
    (
        "health",
        "Daily movement",
        "Include at least 30 minutes of physical activity",
        "soft",
        {
            "type": "threshold",
            "metric": "activity_minutes",
            "comparator": "gte",
            "value": 30,
            "activity": "health",
        },
        7,
    ),
    (
        "productivity",
        "Deep work block",
        "Include at least one focused work block of 90 minutes or more",
        "soft",
        {
            "type": "threshold",
            "metric": "longest_block_minutes",
            "comparator": "gte",
            "value": 90,
            "activity": "deep_work",
        },
        6,
    ),
    (
        "social",
        "Social time",
        "Include some social or relationship time",
        "soft",
        {
            "type": "threshold",
            "metric": "activity_minutes",
            "comparator": "gte",
            "value": 15,
            "activity": "social",
        },
        4,
    ),
    (
        "goals",
        "Respects weekly target",
        "Give time to pursuits behind their weekly target without overshooting it",
        "soft",
        {"type": "weekly_target", "min_minutes": 15},
        8,
    ),
    (
        "quality",
        "Explained placement",
        "Every item carries a short rationale",
        "soft",
        {"type": "exists", "field": "rationale", "scope": "items"},
        3,
    ),
    (
        "quality",
        "No placeholders",
        "Item titles are concrete, not TBD",
        "soft",
        {"type": "pattern", "field": "title", "pattern": r"\bTBD\b", "mode": "none"},
        2,
    ),
]


def planmyday_workflow(user_id: str) -> Workflow:
    return Workflow(
        user_id=user_id,
        name="Plan My Day",
        slug=PLANMYDAY_SLUG,
        description=(
            "Generate an optimized daily agenda based on your calendar, goals and constraints"
        ),
        is_system=True,
        steps=[WorkflowStep.model_validate(step) for step in _PLANMYDAY_STEPS],
        enabled_integrations=["profile", "calendar", "wellness", "financial", "goals", "memories"],
    )


def default_rubrics(workflow_id: str, user_id: str) -> list[WorkflowRubric]:
    return [
        WorkflowRubric(
            workflow_id=workflow_id,
            user_id=user_id,
            category=category,
            name=name,
            description=description,
            constraint_type=constraint_type,  # type: ignore[arg-type]
            validation_rule=rule,
            weight=weight,
        )
        for category, name, description, constraint_type, rule, weight in _DEFAULT_RUBRICS
    ]


def ensure_workflow(store: ExecutionRepository, ref: str, user_id: str) -> Workflow:
    """Load ``ref`` for ``user_id``, creating a system workflow on first use.

    Raises:
        NotFound: ``ref`` is neither stored nor a system workflow slug.
    """
    try:
        return store.load_workflow(ref, user_id)
    except NotFound:
        if ref not in SYSTEM_WORKFLOW_SLUGS:
            raise

    try:
        workflow = store.save_workflow(planmyday_workflow(user_id))
    except StateConflict:
        # Another request seeded it first.
        return store.load_workflow(ref, user_id)

    store.save_rubrics(default_rubrics(workflow.id, user_id))
    logger.info(
        "Seeded system workflow",
        extra={"workflow_id": workflow.id, "slug": workflow.slug, "user_id": user_id},
    )
    return workflow
