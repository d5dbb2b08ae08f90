# hmohunter/entrypoints/api/deps.py
from __future__ import annotations

from fastapi import Header, HTTPException

from ...config import settings
from ...service_layer.sources import build_orchestrator
from ...service_layer.use_cases.ingest import IngestionOrchestrator


def require_api_key(x_api_key: str | None = Header(default=None, alias="X-API-Key")) -> None:
    if settings.API_KEY:
        if not x_api_key or x_api_key != settings.API_KEY:
            raise HTTPException(status_code=401, detail="Invalid API key")


def get_orchestrator() -> IngestionOrchestrator:
    # overridden in tests via app.dependency_overrides
    return build_orchestrator(settings)
