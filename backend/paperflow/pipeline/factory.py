"""
Pipeline wiring.

    pipeline = build_pipeline(
        session_factory=get_session_factory(),
        bus=CeleryEventBus(),
        extractor=PdfTextExtractor.from_settings(settings),
        enrichment_provider=OllamaEnrichmentProvider.from_settings(settings),
        index_client=get_search_index(settings),
    )
    await pipeline.processor_for(Stage.OCR).handle(event)

Collaborators are injected so tests can pass AsyncMock doubles;
``build_default_pipeline()`` builds the production set from settings.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from paperflow.core.config import Settings
from paperflow.llm.enrichment import EnrichmentProvider
from paperflow.pipeline.event_bus import EventBus, InMemoryEventBus
from paperflow.pipeline.recovery import RecoveryScheduler
from paperflow.pipeline.retry_policy import RetryPolicy, utcnow
from paperflow.pipeline.stages import EnrichmentStage, IndexingStage, OcrStage, StageProcessor
from paperflow.pipeline.status import Stage
from paperflow.pipeline.unit_of_work import UnitOfWorkFactory, unit_of_work_factory
from paperflow.processing.cleaning import TextCleaner
from paperflow.processing.extractor import TextExtractor
from paperflow.searchindex.base import SearchIndexClient
from paperflow.services.ingestion import IngestionService

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    uow_factory:  UnitOfWorkFactory
    bus:          EventBus
    policy:       RetryPolicy
    ocr:          OcrStage
    enrichment:   EnrichmentStage
    indexing:     IndexingStage
    recovery:     RecoveryScheduler
    ingestion:    IngestionService
    index_client: SearchIndexClient
    engine:       AsyncEngine | None = None

    def processor_for(self, stage: Stage) -> StageProcessor:
        return {
            Stage.OCR:        self.ocr,
            Stage.ENRICHMENT: self.enrichment,
            Stage.INDEXING:   self.indexing,
        }[stage]

    def subscribe_all(self, bus: InMemoryEventBus) -> None:
        """Route every stage event of an in-process bus to its processor."""
        for stage in Stage:
            bus.subscribe(stage, self.processor_for(stage).handle)

    async def aclose(self) -> None:
        """Release the search index connections and, when owned, the database engine."""
        try:
            await self.index_client.close()
        finally:
            if self.engine is not None:
                await self.engine.dispose()
        logger.info("Pipeline closed")


def build_pipeline(
    *,
    session_factory: async_sessionmaker[AsyncSession],
    bus: EventBus,
    extractor: TextExtractor,
    enrichment_provider: EnrichmentProvider,
    index_client: SearchIndexClient,
    settings: Settings,
    cleaner: TextCleaner | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> Pipeline:
    policy = RetryPolicy.from_settings(settings)
    uow_factory = unit_of_work_factory(session_factory, bus, policy)
    cleaner = cleaner or TextCleaner()

    pipeline = Pipeline(
        uow_factory=uow_factory,
        bus=bus,
        policy=policy,
        ocr=OcrStage(uow_factory, extractor, clock=clock),
        enrichment=EnrichmentStage(
            uow_factory,
            enrichment_provider,
            cleaner=cleaner,
            timeout_seconds=settings.enrichment_timeout_seconds,
            clock=clock,
        ),
        indexing=IndexingStage(uow_factory, index_client, clock=clock),
        recovery=RecoveryScheduler.from_settings(uow_factory, settings, policy),
        ingestion=IngestionService(uow_factory, max_upload_bytes=settings.max_upload_bytes),
        index_client=index_client,
    )
    if isinstance(bus, InMemoryEventBus):
        pipeline.subscribe_all(bus)
    return pipeline


def build_default_pipeline(settings: Settings, bus: EventBus) -> Pipeline:
    """Production wiring: database, extractor, Ollama and search index from settings."""
    from paperflow.db.session import get_engine, get_session_factory
    from paperflow.llm.enrichment import OllamaEnrichmentProvider
    from paperflow.processing.extractor import PdfTextExtractor
    from paperflow.searchindex.factory import get_search_index

    logger.info(
        "Building pipeline | ocr_backend=%s model=%s search=%s",
        settings.ocr_backend, settings.enrichment_model, settings.search_backend,
    )
    pipeline = build_pipeline(
        session_factory=get_session_factory(),
        bus=bus,
        extractor=PdfTextExtractor.from_settings(settings),
        enrichment_provider=OllamaEnrichmentProvider.from_settings(settings),
        index_client=get_search_index(settings),
        settings=settings,
    )
    pipeline.engine = get_engine()
    return pipeline
