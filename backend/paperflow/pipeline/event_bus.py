"""
Event Bus — one typed channel per stage event

Two transports behind the same publish() contract:

  InMemoryEventBus
    asyncio.Queue + a small worker pool per event kind. Single-process
    deployments and tests. Events live only as long as the process does;
    the recovery sweep is the backstop after a crash.

  CeleryEventBus
    Each event kind is routed to its own Celery task and queue
    (documents.ocr / documents.enrichment / documents.indexing).
    task_acks_late + reject_on_worker_lost give at-least-once delivery
    across worker crashes.

Either way, publish() is only ever called by a UnitOfWork after its
transaction has committed, and handlers must tolerate duplicates (the
stage claim CAS turns them into no-ops).
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

from paperflow.pipeline.events import StageEvent, to_payload
from paperflow.pipeline.status import Stage

logger = logging.getLogger(__name__)

EventHandler = Callable[[StageEvent], Awaitable[Any]]


class EventBus(ABC):
    """Fire-and-forget publisher of stage events."""

    @abstractmethod
    async def publish(self, event: StageEvent) -> None:
        """Hand ``event`` to the transport. Must not block on the handler."""


# ---------------------------------------------------------------------------
# In-process transport
# ---------------------------------------------------------------------------

class InMemoryEventBus(EventBus):
    """
    Usage::

        bus = InMemoryEventBus(workers_per_stage=2)
        bus.subscribe(Stage.OCR, pipeline.ocr.handle)
        ...
        async with bus:
            await ingestion.ingest(...)
            await bus.join()      # wait until every queue drains
    """

    def __init__(self, workers_per_stage: int = 1) -> None:
        if workers_per_stage < 1:
            raise ValueError("workers_per_stage must be >= 1")
        self._workers_per_stage = workers_per_stage
        self._queues: dict[Stage, asyncio.Queue[StageEvent]] = {}
        self._handlers: dict[Stage, EventHandler] = {}
        self._workers: list[asyncio.Task] = []
        # events published but not yet handled, across all stages
        self._pending = 0
        self._idle = asyncio.Event()
        self._idle.set()

    def subscribe(self, stage: Stage, handler: EventHandler) -> None:
        if stage in self._handlers:
            raise ValueError(f"Stage {stage.value} already has a subscriber")
        self._handlers[stage] = handler

    @property
    def running(self) -> bool:
        return bool(self._workers)

    async def start(self) -> None:
        if self.running:
            return
        for stage in self._handlers:
            queue = self._queues.setdefault(stage, asyncio.Queue())
            for n in range(self._workers_per_stage):
                self._workers.append(
                    asyncio.create_task(
                        self._consume(stage, queue),
                        name=f"event-bus-{stage.value}-{n}",
                    )
                )
        logger.info(
            "EventBus started | stages=%s workers_per_stage=%d",
            [s.value for s in self._handlers], self._workers_per_stage,
        )

    async def stop(self) -> None:
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
        logger.info("EventBus stopped")

    async def join(self) -> None:
        """Block until every published event has been handled, including follow-ups."""
        await self._idle.wait()

    async def publish(self, event: StageEvent) -> None:
        stage = event.stage
        if stage not in self._handlers:
            raise LookupError(f"No subscriber for stage {stage.value}")
        self._pending += 1
        self._idle.clear()
        self._queues.setdefault(stage, asyncio.Queue()).put_nowait(event)
        logger.debug("Event queued | stage=%s doc=%s", stage.value, event.document_id)

    async def __aenter__(self) -> "InMemoryEventBus":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    async def _consume(self, stage: Stage, queue: asyncio.Queue[StageEvent]) -> None:
        handler = self._handlers[stage]
        while True:
            event = await queue.get()
            try:
                await handler(event)
            except Exception:
                # Handlers convert every pipeline condition into a status
                # write; reaching this line is a programming defect.
                logger.exception(
                    "Unhandled error in %s handler | doc=%s", stage.value, event.document_id,
                )
            finally:
                queue.task_done()
                self._pending -= 1
                if self._pending == 0:
                    self._idle.set()


# ---------------------------------------------------------------------------
# Celery transport
# ---------------------------------------------------------------------------

class CeleryEventBus(EventBus):
    """
    Sends each event to the Celery task registered for its stage.
    Import of the task module is deferred so the broker connection is not
    required at module load time.
    """

    def __init__(self, tasks: dict[Stage, Any] | None = None) -> None:
        self._tasks = tasks

    def _task_for(self, stage: Stage) -> Any:
        if self._tasks is None:
            from paperflow.workers.tasks import STAGE_TASKS
            self._tasks = STAGE_TASKS
        return self._tasks[stage]

    async def publish(self, event: StageEvent) -> None:
        task = self._task_for(event.stage)
        payload = to_payload(event)

        # apply_async talks to the broker synchronously; keep it off the loop
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, lambda: task.apply_async(kwargs=payload))
        logger.info(
            "Stage task published | stage=%s doc=%s", event.stage.value, event.document_id,
        )
