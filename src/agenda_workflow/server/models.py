"""Pydantic models for the REST server."""

from __future__ import annotations

from datetime import date
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from agenda_workflow.workflow.models import (
    AutonomousSchedule,
    ConstraintType,
    Integration,
    InvalidRule,
    WorkflowStep,
    parse_validation_rule,
)
from agenda_workflow.workflow.state_machine import ResumeAction


class ExecuteRequest(BaseModel):
    workflow_id: str | None = None
    slug: str | None = None
    target_date: date = Field(default_factory=date.today)
    input_data: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _needs_reference(self) -> ExecuteRequest:
        if not (self.workflow_id or self.slug):
            raise ValueError("workflow_id or slug is required")
        return self

    @property
    def workflow_ref(self) -> str:
        return self.workflow_id or self.slug or ""


class ResumeRequest(BaseModel):
    feedback: str = ""
    action: ResumeAction


class CreateWorkflowRequest(BaseModel):
    name: str = Field(min_length=1)
    slug: str
    description: str | None = None
    is_active: bool = True
    steps: list[WorkflowStep] = Field(default_factory=list)
    enabled_integrations: list[Integration] = Field(default_factory=list)
    autonomous_schedule: AutonomousSchedule | None = None


class CreateRubricRequest(BaseModel):
    category: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str | None = None
    constraint_type: ConstraintType = "soft"
    validation_rule: dict[str, Any]
    weight: float = Field(default=5.0, ge=0)
    is_active: bool = True

    @field_validator("validation_rule")
    @classmethod
    def _known_rule(cls, value: dict[str, Any]) -> dict[str, Any]:
        rule = parse_validation_rule(value)
        if isinstance(rule, InvalidRule):
            raise ValueError(f"Unsupported validation rule: {rule.error}")
        return value


class HealthResponse(BaseModel):
    status: str
    version: str
