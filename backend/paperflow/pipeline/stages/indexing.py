"""Indexing stage: enriched document + page texts → search index."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from paperflow.models.documents import Document
from paperflow.observability.tracing import traced
from paperflow.pipeline.stages.base import StageProcessor
from paperflow.pipeline.status import Stage
from paperflow.pipeline.unit_of_work import UnitOfWork
from paperflow.schemas.documents import IndexableDocument
from paperflow.searchindex.base import SearchIndexClient


class IndexingStage(StageProcessor[IndexableDocument, IndexableDocument]):

    stage = Stage.INDEXING

    def __init__(self, uow_factory, index_client: SearchIndexClient, **kwargs) -> None:
        super().__init__(uow_factory, **kwargs)
        self._index = index_client

    async def prepare(self, uow: UnitOfWork, document: Document) -> IndexableDocument:
        pages = await uow.documents.page_texts(document.id)
        year = (
            document.date_on_document.year
            if document.date_on_document is not None
            else self._clock().year
        )
        return IndexableDocument(
            id=document.id,
            file_name=document.title or document.filename,
            content_type=document.content_type,
            tags=list(document.tags or []),
            year=year,
            full_text="\n".join(text for text in pages if text and text.strip()),
            owner=document.owner,
        )

    @traced("stage.indexing.index")
    async def invoke(self, work: IndexableDocument) -> IndexableDocument:
        await self._index.index(work)
        return work

    async def persist(
        self, uow: UnitOfWork, document_id: UUID, output: IndexableDocument,
    ) -> dict[str, Any]:
        return {"file_name": output.file_name, "year": output.year, "chars": len(output.full_text)}
