from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_orchestrator, require_api_key
from ....db import get_session
from ....schemas import IngestionReportOut, SourceOut
from ....service_layer.jobruns import record_ingestion
from ....service_layer.use_cases.ingest import IngestionOrchestrator

router = APIRouter(tags=["ingestion"])


@router.post("/ingestion/run", response_model=IngestionReportOut, dependencies=[Depends(require_api_key)])
async def run_ingestion(
    source: str | None = Query(None, description="Run one source only; housekeeping is skipped"),
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
    session: AsyncSession = Depends(get_session),
) -> IngestionReportOut:
    report = await record_ingestion(session, orchestrator, job_name="ingestion_api", source=source)
    return IngestionReportOut(**report.to_dict())


@router.get("/ingestion/sources", response_model=list[SourceOut], dependencies=[Depends(require_api_key)])
async def list_sources(
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
) -> list[SourceOut]:
    out = [SourceOut(name=s.name, kind="source", enabled=s.enabled) for s in orchestrator.sources]
    out += [SourceOut(name=e.name, kind="enrichment", enabled=e.enabled) for e in orchestrator.enrichers]
    return out
