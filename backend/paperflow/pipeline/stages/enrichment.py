"""
Enrichment stage: first non-blank page text → title, document date, tags.

The provider is best-effort. An empty answer, a provider-reported
failure, a timeout or any exception still completes the stage, with the
fallback record and ``failed_enrichment`` set (outcome DEGRADED). Only a
document with no extracted text, or a failed write of the result, ends
in ENRICHMENT_ERROR.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any
from uuid import UUID

from paperflow.core.errors import PreconditionError
from paperflow.llm.enrichment import EnrichmentProvider
from paperflow.models.documents import Document
from paperflow.observability.tracing import traced
from paperflow.pipeline.stages.base import StageOutcome, StageProcessor
from paperflow.pipeline.status import Stage
from paperflow.pipeline.unit_of_work import UnitOfWork
from paperflow.processing.cleaning import TextCleaner
from paperflow.schemas.documents import DATE_FORMAT, EnrichmentResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnrichmentOutput:
    title:             str | None
    date_on_document:  date
    tags:              list[str] = field(default_factory=list)
    failed_enrichment: bool = False


class EnrichmentStage(StageProcessor[str, EnrichmentOutput]):

    stage = Stage.ENRICHMENT

    def __init__(
        self,
        uow_factory,
        provider: EnrichmentProvider,
        cleaner: TextCleaner | None = None,
        timeout_seconds: float = 60,
        **kwargs,
    ) -> None:
        super().__init__(uow_factory, **kwargs)
        self._provider = provider
        self._cleaner = cleaner or TextCleaner()
        self._timeout = timeout_seconds

    async def prepare(self, uow: UnitOfWork, document: Document) -> str:
        pages = await uow.documents.page_texts(document.id)
        first = next((text for text in pages if text and text.strip()), None)
        if first is None:
            raise PreconditionError("No extracted text to enrich", stage=self.stage)
        return self._cleaner.clean(first) or first.strip()

    @traced("stage.enrichment.enrich")
    async def invoke(self, work: str) -> EnrichmentOutput:
        try:
            result = await asyncio.wait_for(self._provider.enrich(work), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.error("Enrichment provider timed out after %ss, using fallback", self._timeout)
            result = None
        except Exception as exc:
            logger.error("Enrichment provider failed, using fallback: %s", exc, exc_info=True)
            result = None

        if result is None or result.is_empty:
            logger.warning("Enrichment result empty, using fallback")
            result = EnrichmentResult.fallback()
        elif result.failed:
            logger.warning("Enrichment provider reported a failed result, using fallback")
            result = EnrichmentResult.fallback()

        return EnrichmentOutput(
            title=result.title,
            date_on_document=self._parse_date(result.date_sent),
            tags=result.tag_names,
            failed_enrichment=result.failed,
        )

    async def persist(
        self, uow: UnitOfWork, document_id: UUID, output: EnrichmentOutput,
    ) -> dict[str, Any]:
        # complete_stage has already reset failed_enrichment; this sets the final value
        await uow.documents.apply_enrichment(
            document_id,
            title=output.title,
            date_on_document=output.date_on_document,
            tags=output.tags,
            failed_enrichment=output.failed_enrichment,
        )
        return {
            "title": output.title,
            "date_on_document": output.date_on_document.isoformat(),
            "tags": output.tags,
            "failed_enrichment": output.failed_enrichment,
        }

    def outcome_for(self, output: EnrichmentOutput) -> StageOutcome:
        return StageOutcome.DEGRADED if output.failed_enrichment else StageOutcome.COMPLETED

    def _parse_date(self, value: str | None) -> date:
        if value:
            try:
                return datetime.strptime(value.strip(), DATE_FORMAT).date()
            except ValueError:
                pass
        logger.warning("Failed to parse document date %r, using current date", value)
        return self._clock().date()
