"""
Stage entry events.

Fire-and-forget messages carrying only the document id; every handler
re-reads the document from the database. Payloads stay JSON-serialisable
so Celery can carry them unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Union
from uuid import UUID

from paperflow.pipeline.status import Stage


@dataclass(frozen=True)
class OcrEvent:
    document_id: UUID
    stage: ClassVar[Stage] = Stage.OCR


@dataclass(frozen=True)
class EnrichmentEvent:
    document_id: UUID
    stage: ClassVar[Stage] = Stage.ENRICHMENT


@dataclass(frozen=True)
class IndexingEvent:
    document_id: UUID
    stage: ClassVar[Stage] = Stage.INDEXING


StageEvent = Union[OcrEvent, EnrichmentEvent, IndexingEvent]

EVENT_TYPES: dict[Stage, type] = {
    Stage.OCR:        OcrEvent,
    Stage.ENRICHMENT: EnrichmentEvent,
    Stage.INDEXING:   IndexingEvent,
}


def event_for_stage(stage: Stage, document_id: UUID) -> StageEvent:
    """Build the entry event of ``stage``."""
    return EVENT_TYPES[stage](document_id=document_id)


def to_payload(event: StageEvent) -> dict[str, str]:
    return {"document_id": str(event.document_id)}


def from_payload(stage: Stage, payload: dict) -> StageEvent:
    return event_for_stage(stage, UUID(str(payload["document_id"])))
