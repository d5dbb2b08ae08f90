from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Literal


class IngestionTotals(BaseModel):
    total: int = Field(0, ge=0)
    created: int = Field(0, ge=0)
    updated: int = Field(0, ge=0)
    skipped: int = Field(0, ge=0)
    errors: int = Field(0, ge=0)


class IngestionRunResultOut(BaseModel):
    source: str
    status: Literal["completed", "failed", "skipped"]
    total: int
    created: int
    updated: int
    skipped: int
    errors: list[str]
    errors_dropped: int = 0
    skip_reasons: dict[str, int]
    matched_by: dict[str, int] = {}
    geocoded: int = 0
    geocode_failed: int = 0
    conflicts: int = 0
    duration_ms: int
    started_at: datetime


class IngestionReportOut(BaseModel):
    success: bool
    error: str | None = None
    totals: IngestionTotals
    results: list[IngestionRunResultOut]
    enriched: int = 0
    marked_stale: int = 0
    phase_errors: list[str] = []
    geocode: dict[str, Any] = {}


class SourceOut(BaseModel):
    name: str
    kind: Literal["source", "enrichment"]
    enabled: bool
