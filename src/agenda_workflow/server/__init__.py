"""FastAPI server adapter for the planning engine.

Design intent:
- Keep business logic in `agenda_workflow.workflow.*`
- Keep server-specific concerns (routing, CORS, caller identity) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from agenda_workflow.server.app import create_app
