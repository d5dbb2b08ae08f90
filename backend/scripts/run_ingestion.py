import argparse
import asyncio
import json

from hmohunter.config import settings
from hmohunter.db import async_session, engine
from hmohunter.logging_config import configure_logging
from hmohunter.models import Base
from hmohunter.service_layer.jobruns import record_ingestion
from hmohunter.service_layer.sources import build_orchestrator


async def main(source: str | None) -> int:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        report = await record_ingestion(session, build_orchestrator(settings), job_name="ingestion_cli", source=source)

    print(json.dumps(report.to_dict(), indent=2, default=str))
    return 0 if report.success else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run one ingestion pass over the configured sources.")
    parser.add_argument("--source", default=None, help="only this source (skips enrichment and stale marking)")
    args = parser.parse_args()

    configure_logging(settings.LOG_LEVEL)
    raise SystemExit(asyncio.run(main(args.source)))
