"""OCR stage: PDF bytes → ordered page texts."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from paperflow.core.errors import PreconditionError
from paperflow.models.documents import Document
from paperflow.observability.tracing import traced
from paperflow.pipeline.stages.base import StageProcessor
from paperflow.pipeline.status import Stage
from paperflow.pipeline.unit_of_work import UnitOfWork
from paperflow.processing.extractor import TextExtractor


class OcrStage(StageProcessor[bytes, list[str]]):

    stage = Stage.OCR

    def __init__(self, uow_factory, extractor: TextExtractor, **kwargs) -> None:
        super().__init__(uow_factory, **kwargs)
        self._extractor = extractor

    async def prepare(self, uow: UnitOfWork, document: Document) -> bytes:
        if not document.pdf_content:
            raise PreconditionError("Document has no PDF content", stage=self.stage)
        return document.pdf_content

    @traced("stage.ocr.extract")
    async def invoke(self, work: bytes) -> list[str]:
        return await self._extractor.extract(work)

    async def persist(self, uow: UnitOfWork, document_id: UUID, output: list[str]) -> dict[str, Any]:
        pages = await uow.documents.replace_pages(document_id, output)
        return {"pages": pages}
