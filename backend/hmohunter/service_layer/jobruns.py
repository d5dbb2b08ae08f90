# hmohunter/service_layer/jobruns.py
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ..models import JobRun, JobRunStatus
from .use_cases.ingest import IngestionOrchestrator, IngestionReport

log = logging.getLogger(__name__)


def _dump(payload: dict[str, Any]) -> str:
    # reports carry datetimes and enums
    return json.dumps(payload, default=str)


async def start_job(session: AsyncSession, job_name: str, meta: dict[str, Any] | None = None) -> JobRun:
    jr = JobRun(
        job_name=job_name,
        started_at=datetime.utcnow(),
        status=JobRunStatus.running,
        meta_json=_dump(meta or {}),
    )
    session.add(jr)
    await session.flush()
    return jr


async def finish_job(
    session: AsyncSession,
    jr: JobRun,
    summary: dict[str, Any] | None = None,
    *,
    error: Exception | str | None = None,
) -> JobRun:
    """error None marks the run successful; the summary is kept either way."""
    jr.status = JobRunStatus.success if error is None else JobRunStatus.failed
    jr.finished_at = datetime.utcnow()
    jr.error = None if error is None else str(error)
    if summary is not None:
        jr.summary_json = _dump(summary)
    await session.flush()
    return jr


async def record_ingestion(
    session: AsyncSession,
    orchestrator: IngestionOrchestrator,
    *,
    job_name: str,
    source: str | None = None,
) -> IngestionReport:
    """
    Run one ingestion pass wrapped in a JobRun row.

    The running row is committed before the pass starts: the orchestrator
    opens its own sessions and SQLite allows a single writer.
    """
    jr = await start_job(session, job_name, meta={"source": source})
    await session.commit()

    report = await orchestrator.run_ingestion(source_name=source)
    summary = report.to_dict()

    error = None if report.success else (report.error or "ingestion failed")
    await finish_job(session, jr, summary, error=error)
    await session.commit()

    log.info("jobruns: %s #%s finished (%s)", job_name, jr.id, jr.status.value)
    return report
