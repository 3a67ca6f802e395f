"""
Celery Application Factory

Runs the pipeline stages as Celery tasks, one queue per stage so each can
be scaled on its own (OCR and enrichment are CPU/GPU heavy, indexing is
I/O bound).

Queue topology:
  documents.ocr         — OcrEvent        → run_ocr_stage
  documents.enrichment  — EnrichmentEvent → run_enrichment_stage
  documents.indexing    — IndexingEvent   → run_indexing_stage
  documents.recovery    — Beat-driven recovery sweep
  system.health         — internal health-check tasks

Task payloads carry only the document id; PDF bytes and page texts are
always re-read from the database inside the worker.
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import (
    after_setup_logger,
    task_failure,
    task_postrun,
    task_prerun,
    worker_process_init,
)
from kombu import Exchange, Queue

from paperflow.core.config import settings

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(processName)s] %(name)s: %(message)s"

# ---------------------------------------------------------------------------
# Queue and exchange definitions
# ---------------------------------------------------------------------------

DOCUMENTS_EXCHANGE = Exchange("documents", type="direct", durable=True)

STAGE_QUEUES = ("documents.ocr", "documents.enrichment", "documents.indexing")

TASK_QUEUES = tuple(
    Queue(name, exchange=DOCUMENTS_EXCHANGE, routing_key=name, durable=True)
    for name in (*STAGE_QUEUES, "documents.recovery")
) + (
    Queue(
        "system.health",
        Exchange("system", type="direct"),
        routing_key="system.health",
        durable=True,
    ),
)

TASK_ROUTES = {
    "paperflow.workers.tasks.run_ocr_stage":            {"queue": "documents.ocr"},
    "paperflow.workers.tasks.run_enrichment_stage":     {"queue": "documents.enrichment"},
    "paperflow.workers.tasks.run_indexing_stage":       {"queue": "documents.indexing"},
    "paperflow.workers.tasks.recover_failed_documents": {"queue": "documents.recovery"},
    "paperflow.workers.tasks.health_check":             {"queue": "system.health"},
}


def create_celery_app() -> Celery:
    app = Celery("paperflow")

    app.conf.update(
        broker_url=settings.celery_broker_url,
        result_backend=settings.celery_result_backend,

        # --- Serialization (reject non-JSON messages) ---
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        event_serializer="json",

        # --- Queues ---
        task_queues=TASK_QUEUES,
        task_routes=TASK_ROUTES,
        task_default_queue="documents.ocr",
        task_default_exchange="documents",
        task_default_routing_key="documents.ocr",

        # --- Reliability: at-least-once, duplicates are absorbed by the stage claim ---
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,

        # --- Timeouts (OCR of a large scan is the long pole) ---
        task_soft_time_limit=600,
        task_time_limit=660,

        # Pipeline state lives in the database, not in Celery results
        result_expires=3600,

        timezone="UTC",
        enable_utc=True,

        # --- Beat schedule (recovery sweep) ---
        beat_schedule={
            "recover-failed-documents": {
                "task":     "paperflow.workers.tasks.recover_failed_documents",
                "schedule": settings.recovery_retry_fixed_delay_ms / 1000.0,
                "options":  {"queue": "documents.recovery"},
            },
        },

        worker_max_tasks_per_child=200,
    )

    app.autodiscover_tasks(["paperflow.workers"])

    return app


celery_app = create_celery_app()


# ---------------------------------------------------------------------------
# Celery signals — logging and per-process initialisation
# ---------------------------------------------------------------------------

@after_setup_logger.connect
def on_setup_logger(logger, *_, **__):
    level = logging.DEBUG if settings.debug else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logger.setLevel(level)


@worker_process_init.connect
def on_worker_process_init(**_):
    from paperflow.observability.tracing import TracingConfig
    TracingConfig.init()


@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **_):
    logger.info(
        "Task start | task_id=%s task=%s doc=%s",
        task_id, task.name, (kwargs or {}).get("document_id", "-"),
    )


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **_):
    logger.info(
        "Task end | task_id=%s task=%s state=%s doc=%s",
        task_id, task.name, state, (kwargs or {}).get("document_id", "-"),
    )


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **_):
    logger.error(
        "Task failed | task_id=%s doc=%s error=%s",
        task_id, (kwargs or {}).get("document_id", "-"), exception,
        exc_info=True,
    )
