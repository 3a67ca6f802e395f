"""
Single-process entry point.

Runs the whole pipeline in one process on the in-memory event bus, with
the recovery sweep as a background asyncio task. Useful for local
development and small installations without a broker; production runs
the stages as Celery workers (paperflow.workers).

    python -m paperflow.main invoice.pdf scan.pdf --owner alice

Startup:
  1. check database connectivity, create tables if missing
  2. wire the pipeline from settings onto an InMemoryEventBus
  3. ingest the given files and wait until every queue drains
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import timedelta
from pathlib import Path

from paperflow.core.config import settings
from paperflow.core.errors import InvalidUploadError
from paperflow.db.session import check_db_health, create_all
from paperflow.pipeline.event_bus import InMemoryEventBus
from paperflow.pipeline.factory import build_default_pipeline

logger = logging.getLogger(__name__)


async def run(paths: list[Path], owner: str, workers_per_stage: int = 2) -> int:
    logger.info(
        "Starting paperflow | env=%s ocr_backend=%s model=%s",
        settings.app_env, settings.ocr_backend, settings.enrichment_model,
    )

    db_health = await check_db_health()
    if db_health["status"] != "ok":
        logger.critical("Database health check failed at startup: %s", db_health)
        raise RuntimeError(f"DB unavailable: {db_health}")
    await create_all()

    bus = InMemoryEventBus(workers_per_stage=workers_per_stage)
    pipeline = build_default_pipeline(settings, bus)

    rejected = 0
    try:
        async with bus:
            sweeper = asyncio.create_task(
                pipeline.recovery.run_forever(
                    timedelta(milliseconds=settings.recovery_retry_fixed_delay_ms)
                )
            )
            try:
                for path in paths:
                    try:
                        await pipeline.ingestion.ingest(
                            filename=path.name, pdf_bytes=path.read_bytes(), owner=owner,
                        )
                    except InvalidUploadError as exc:
                        rejected += 1
                        logger.error("Upload rejected | file=%s code=%s %s", path, exc.code, exc)
                await bus.join()
            finally:
                sweeper.cancel()
                await asyncio.gather(sweeper, return_exceptions=True)
    finally:
        await pipeline.aclose()

    logger.info("Done | files=%d rejected=%d", len(paths), rejected)
    return 1 if rejected else 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the document pipeline in-process.")
    parser.add_argument("files", nargs="+", type=Path, help="PDF files to ingest")
    parser.add_argument("--owner", required=True, help="Username recorded as document owner")
    parser.add_argument("--workers", type=int, default=2, help="Workers per stage queue")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    return asyncio.run(run(args.files, args.owner, args.workers))


if __name__ == "__main__":
    raise SystemExit(main())
