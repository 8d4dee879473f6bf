"""Workflow REST API.

All routes are mounted under `/api`. The caller is identified by the user
header configured in :class:`ServerSettings` (``X-User-Id`` by default).
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from agenda_workflow import __version__
from agenda_workflow.core.engine import PlanningEngine
from agenda_workflow.server.config import ServerSettings
from agenda_workflow.server.models import (
    CreateRubricRequest,
    CreateWorkflowRequest,
    ExecuteRequest,
    HealthResponse,
    ResumeRequest,
)
from agenda_workflow.workflow.errors import WorkflowError
from agenda_workflow.workflow.executor import ExecutorResult
from agenda_workflow.workflow.models import Workflow, WorkflowRubric

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_STATUS: dict[str, int] = {
    "not_found": 404,
    "state_conflict": 409,
    "hard_constraint_blocked": 422,
    "iteration_limit_exceeded": 409,
    "synthesis_failure": 502,
}


def error_status(error: WorkflowError) -> int:
    return ERROR_STATUS.get(error.code, 500)


def _settings(request: Request) -> ServerSettings:
    settings = getattr(request.app.state, "settings", None)
    if not isinstance(settings, ServerSettings):
        raise HTTPException(status_code=500, detail="Server settings not configured")
    return settings


def _engine(request: Request) -> PlanningEngine:
    state = request.app.state
    engine = getattr(state, "engine", None)
    if engine is not None:
        return engine

    with state.engine_lock:
        engine = getattr(state, "engine", None)
        if engine is None:
            try:
                engine = PlanningEngine()
            except ValueError as e:
                logger.error("Planning engine misconfigured", extra={"error": str(e)})
                raise HTTPException(status_code=503, detail=f"Engine not configured: {e}") from e
            state.engine = engine
    return engine


def _user_id(request: Request) -> str:
    header = _settings(request).user_header
    user_id = (request.headers.get(header) or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail=f"Missing {header} header")
    return user_id


def _result_response(result: ExecutorResult) -> JSONResponse:
    status = error_status(result.error) if result.error is not None else 200
    return JSONResponse(status_code=status, content=result.to_json())


@router.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(status="ok", version=__version__)


@router.get("/workflows", response_model=list[Workflow])
def list_workflows(request: Request) -> list[Workflow]:
    return _engine(request).list_workflows(_user_id(request))


@router.post("/workflows", response_model=Workflow, status_code=201)
def create_workflow(req: CreateWorkflowRequest, request: Request) -> Workflow:
    return _engine(request).create_workflow(_user_id(request), req.model_dump())


@router.post("/workflows/execute")
def execute_workflow(req: ExecuteRequest, request: Request) -> JSONResponse:
    user_id = _user_id(request)
    result = _engine(request).execute(user_id, req.workflow_ref, req.target_date, req.input_data)
    return _result_response(result)


@router.get("/workflows/executions/{execution_id}")
def get_execution(execution_id: str, request: Request) -> JSONResponse:
    return _result_response(_engine(request).get(execution_id, _user_id(request)))


@router.post("/workflows/executions/{execution_id}")
def resume_execution(execution_id: str, req: ResumeRequest, request: Request) -> JSONResponse:
    user_id = _user_id(request)
    result = _engine(request).resume(execution_id, user_id, req.feedback, req.action)
    return _result_response(result)


@router.delete("/workflows/executions/{execution_id}")
def cancel_execution(execution_id: str, request: Request) -> JSONResponse:
    return _result_response(_engine(request).cancel(execution_id, _user_id(request)))


@router.get("/workflows/{workflow_id}/rubrics", response_model=list[WorkflowRubric])
def list_rubrics(workflow_id: str, request: Request) -> list[WorkflowRubric]:
    return _engine(request).list_rubrics(workflow_id, _user_id(request))


@router.post("/workflows/{workflow_id}/rubrics", response_model=WorkflowRubric, status_code=201)
def add_rubric(workflow_id: str, req: CreateRubricRequest, request: Request) -> WorkflowRubric:
    return _engine(request).add_rubric(workflow_id, _user_id(request), req.model_dump())
