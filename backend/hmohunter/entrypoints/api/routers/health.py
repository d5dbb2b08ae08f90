# hmohunter/entrypoints/api/routers/health.py
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from ..deps import require_api_key
from ....config import settings

router = APIRouter(tags=["health"])


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/debug/config", dependencies=[Depends(require_api_key)])
def debug_config() -> dict[str, Any]:
    return {
        "ENV": settings.ENV,
        "HMO_DB_URL": settings.HMO_DB_URL,
        "INGESTION_SOURCES": settings.INGESTION_SOURCES,
        "PROPERTYDATA_API_KEY_SET": bool(settings.PROPERTYDATA_API_KEY),
        "STREETDATA_API_KEY_SET": bool(settings.STREETDATA_API_KEY),
        "MATCH_STRATEGY": settings.MATCH_STRATEGY,
        "MATCH_THRESHOLD": settings.MATCH_THRESHOLD,
        "NOMINATIM_MIN_INTERVAL_S": settings.NOMINATIM_MIN_INTERVAL_S,
        "INGEST_CONCURRENT_SOURCES": settings.INGEST_CONCURRENT_SOURCES,
    }
