"""Configuration for the REST server."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """Settings for the REST API.

    The engine itself is configured by :class:`agenda_workflow.core.config.EngineConfig`;
    these only cover the HTTP adapter.
    """

    cors_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000",
        description="Comma-separated list of allowed CORS origins.",
    )
    user_header: str = Field(
        default="X-User-Id",
        description="Request header carrying the authenticated caller's user id.",
    )

    model_config = SettingsConfigDict(env_prefix="AGENDA_SERVER_", env_file=".env", extra="ignore")

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
