"""
Celery Tasks — Document Pipeline

Task: run_ocr_stage / run_enrichment_stage / run_indexing_stage
  Thin adapters: payload → stage event → StageProcessor.handle().
  The processor turns every pipeline condition into a status write and
  returns an outcome; only programming defects raise (and are recorded by
  Celery as task failures).

Task: recover_failed_documents
  Beat-driven sweep: reclaims stale in-progress documents, re-dispatches
  retryable ERROR documents and re-queues stalled hand-offs.

Each worker process keeps one event loop for its lifetime. The async
engine's connection pool is bound to the loop that created it, so a fresh
``asyncio.run()`` per task would strand pooled connections.
"""

from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Any

from paperflow.pipeline.events import from_payload
from paperflow.pipeline.status import Stage
from paperflow.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Async task helper
# ---------------------------------------------------------------------------

_loop: asyncio.AbstractEventLoop | None = None


def run_async(coro):
    """Execute an async coroutine from a synchronous Celery task."""
    global _loop
    if _loop is None or _loop.is_closed():
        _loop = asyncio.new_event_loop()
        asyncio.set_event_loop(_loop)
    return _loop.run_until_complete(coro)


@lru_cache(maxsize=1)
def get_pipeline():
    """One pipeline per worker process, built on first task."""
    from paperflow.core.config import settings
    from paperflow.pipeline.event_bus import CeleryEventBus
    from paperflow.pipeline.factory import build_default_pipeline

    return build_default_pipeline(settings, CeleryEventBus())


async def _run_stage(stage: Stage, payload: dict[str, Any]) -> dict[str, str]:
    event = from_payload(stage, payload)
    outcome = await get_pipeline().processor_for(stage).handle(event)
    return {"document_id": str(event.document_id), "stage": stage.value, "outcome": outcome.value}


# ---------------------------------------------------------------------------
# Stage tasks
# ---------------------------------------------------------------------------

_STAGE_TASK_OPTIONS = dict(acks_late=True, reject_on_worker_lost=True)


@celery_app.task(name="paperflow.workers.tasks.run_ocr_stage", **_STAGE_TASK_OPTIONS)
def run_ocr_stage(*, document_id: str) -> dict[str, str]:
    return run_async(_run_stage(Stage.OCR, {"document_id": document_id}))


@celery_app.task(name="paperflow.workers.tasks.run_enrichment_stage", **_STAGE_TASK_OPTIONS)
def run_enrichment_stage(*, document_id: str) -> dict[str, str]:
    return run_async(_run_stage(Stage.ENRICHMENT, {"document_id": document_id}))


@celery_app.task(name="paperflow.workers.tasks.run_indexing_stage", **_STAGE_TASK_OPTIONS)
def run_indexing_stage(*, document_id: str) -> dict[str, str]:
    return run_async(_run_stage(Stage.INDEXING, {"document_id": document_id}))


STAGE_TASKS = {
    Stage.OCR:        run_ocr_stage,
    Stage.ENRICHMENT: run_enrichment_stage,
    Stage.INDEXING:   run_indexing_stage,
}


# ---------------------------------------------------------------------------
# Recovery sweep — Celery Beat, every recovery_retry_fixed_delay_ms
# ---------------------------------------------------------------------------

@celery_app.task(
    name="paperflow.workers.tasks.recover_failed_documents",
    acks_late=True,
    soft_time_limit=240,
    time_limit=300,
)
def recover_failed_documents() -> dict[str, dict[str, int]]:
    report = run_async(get_pipeline().recovery.run_once())
    return report.as_dict()


# ---------------------------------------------------------------------------
# Health check task
# ---------------------------------------------------------------------------

@celery_app.task(name="paperflow.workers.tasks.health_check")
def health_check() -> dict[str, Any]:
    from paperflow.db.session import check_db_health

    return {"status": "ok", "worker": "healthy", "database": run_async(check_db_health())}
