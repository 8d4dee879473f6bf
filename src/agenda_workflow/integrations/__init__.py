"""Concrete context providers (file fixtures and an HTTP context service)."""

from agenda_workflow.integrations.http import HttpContextProvider
from agenda_workflow.integrations.static import StaticContextProvider

__all__ = ["HttpContextProvider", "StaticContextProvider"]
