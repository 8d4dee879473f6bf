"""FastAPI app factory.

Endpoints are thin wrappers over :class:`PlanningEngine`.
"""

from __future__ import annotations

import logging
import threading

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agenda_workflow import __version__
from agenda_workflow.core.engine import PlanningEngine
from agenda_workflow.server.config import ServerSettings
from agenda_workflow.server.router import error_status
from agenda_workflow.server.router import router as workflow_router
from agenda_workflow.workflow.errors import WorkflowError

logger = logging.getLogger(__name__)


def create_app(
    engine: PlanningEngine | None = None, settings: ServerSettings | None = None
) -> FastAPI:
    """Build the API app.

    Args:
        engine: Engine to serve. If None, one is built from the environment on
            the first request, so the app starts without LLM credentials.
        settings: Server settings. If None, loaded from the environment.
    """
    settings = settings or ServerSettings()

    app = FastAPI(
        title="Agenda Workflow Engine",
        version=__version__,
        description="REST API over the agenda planning workflow engine.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.engine_lock = threading.Lock()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(WorkflowError)
    def handle_workflow_error(request: Request, exc: WorkflowError) -> JSONResponse:
        logger.info(
            "Request failed",
            extra={"path": request.url.path, "code": exc.code, "error": exc.message},
        )
        return JSONResponse(status_code=error_status(exc), content={"error": exc.to_json()})

    app.include_router(workflow_router, prefix="/api")
    return app
