"""
Unit Tests — Event transports and stage event payloads
"""

from __future__ import annotations

import asyncio
import uuid
from unittest.mock import MagicMock

import pytest

from paperflow.pipeline.event_bus import CeleryEventBus, InMemoryEventBus
from paperflow.pipeline.events import (
    EnrichmentEvent,
    IndexingEvent,
    OcrEvent,
    event_for_stage,
    from_payload,
    to_payload,
)
from paperflow.pipeline.status import Stage


@pytest.mark.unit
class TestStageEvents:

    def test_payload_carries_only_the_document_id(self):
        doc_id = uuid.uuid4()
        payload = to_payload(IndexingEvent(doc_id))
        assert payload == {"document_id": str(doc_id)}
        assert from_payload(Stage.INDEXING, payload) == IndexingEvent(doc_id)

    def test_event_for_stage(self):
        doc_id = uuid.uuid4()
        assert event_for_stage(Stage.OCR, doc_id) == OcrEvent(doc_id)
        assert event_for_stage(Stage.ENRICHMENT, doc_id).stage is Stage.ENRICHMENT


@pytest.mark.unit
class TestInMemoryEventBus:

    async def test_delivers_to_stage_subscriber(self):
        received: list = []

        async def handler(event):
            received.append(event)

        bus = InMemoryEventBus()
        bus.subscribe(Stage.OCR, handler)
        doc_id = uuid.uuid4()

        async with bus:
            await bus.publish(OcrEvent(doc_id))
            await bus.join()

        assert received == [OcrEvent(doc_id)]
        assert not bus.running

    async def test_join_waits_for_follow_up_events(self):
        bus = InMemoryEventBus(workers_per_stage=2)
        seen: list[Stage] = []

        async def on_ocr(event):
            await asyncio.sleep(0)
            seen.append(Stage.OCR)
            await bus.publish(EnrichmentEvent(event.document_id))

        async def on_enrichment(event):
            seen.append(Stage.ENRICHMENT)

        bus.subscribe(Stage.OCR, on_ocr)
        bus.subscribe(Stage.ENRICHMENT, on_enrichment)

        async with bus:
            await bus.publish(OcrEvent(uuid.uuid4()))
            await bus.join()

        assert seen == [Stage.OCR, Stage.ENRICHMENT]

    async def test_join_on_idle_bus_returns_immediately(self):
        bus = InMemoryEventBus()
        bus.subscribe(Stage.OCR, MagicMock())

        async with bus:
            await asyncio.wait_for(bus.join(), timeout=1)

    async def test_join_blocks_until_handler_finishes(self):
        release = asyncio.Event()
        done: list = []

        async def handler(event):
            await release.wait()
            done.append(event)

        bus = InMemoryEventBus()
        bus.subscribe(Stage.OCR, handler)

        async with bus:
            await bus.publish(OcrEvent(uuid.uuid4()))
            joiner = asyncio.create_task(bus.join())
            await asyncio.sleep(0.01)
            assert not joiner.done()

            release.set()
            await asyncio.wait_for(joiner, timeout=1)

        assert len(done) == 1

    async def test_handler_error_does_not_stop_consumer(self):
        calls: list = []

        async def handler(event):
            calls.append(event)
            if len(calls) == 1:
                raise RuntimeError("defect")

        bus = InMemoryEventBus()
        bus.subscribe(Stage.INDEXING, handler)

        async with bus:
            await bus.publish(IndexingEvent(uuid.uuid4()))
            await bus.publish(IndexingEvent(uuid.uuid4()))
            await bus.join()

        assert len(calls) == 2

    async def test_publish_without_subscriber_raises(self):
        bus = InMemoryEventBus()
        with pytest.raises(LookupError):
            await bus.publish(OcrEvent(uuid.uuid4()))

    def test_single_subscriber_per_stage(self):
        bus = InMemoryEventBus()
        bus.subscribe(Stage.OCR, MagicMock())
        with pytest.raises(ValueError):
            bus.subscribe(Stage.OCR, MagicMock())

    def test_rejects_zero_workers(self):
        with pytest.raises(ValueError):
            InMemoryEventBus(workers_per_stage=0)


@pytest.mark.unit
class TestCeleryEventBus:

    async def test_routes_event_to_stage_task(self):
        tasks = {stage: MagicMock(name=f"task-{stage.value}") for stage in Stage}
        bus = CeleryEventBus(tasks=tasks)
        doc_id = uuid.uuid4()

        await bus.publish(EnrichmentEvent(doc_id))

        tasks[Stage.ENRICHMENT].apply_async.assert_called_once_with(
            kwargs={"document_id": str(doc_id)}
        )
        tasks[Stage.OCR].apply_async.assert_not_called()
        tasks[Stage.INDEXING].apply_async.assert_not_called()

    async def test_broker_error_propagates_to_caller(self):
        task = MagicMock()
        task.apply_async.side_effect = ConnectionError("broker down")
        bus = CeleryEventBus(tasks={Stage.OCR: task})

        with pytest.raises(ConnectionError):
            await bus.publish(OcrEvent(uuid.uuid4()))
