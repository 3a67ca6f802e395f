"""
DocumentStore — CRUD for the Document aggregate, its pages and its audit
trail, plus the candidate queries used by the recovery sweep.

Never writes ``status`` or retry columns; those belong to StatusStore.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Sequence
from uuid import UUID

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from paperflow.core.errors import DocumentNotFoundError
from paperflow.models.documents import AuditLog, Document, Page, retry_columns
from paperflow.pipeline.status import Stage, Status

logger = logging.getLogger(__name__)


class DocumentStore:
    """Document persistence for one unit of work."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Document CRUD
    # ------------------------------------------------------------------

    async def add(self, document: Document) -> Document:
        self._session.add(document)
        await self._session.flush()
        return document

    async def get(self, document_id: UUID) -> Document | None:
        result = await self._session.execute(
            select(Document)
            .where(Document.id == document_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def require(self, document_id: UUID) -> Document:
        document = await self.get(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    # ------------------------------------------------------------------
    # Stage output
    # ------------------------------------------------------------------

    async def replace_pages(self, document_id: UUID, page_texts: Sequence[str]) -> int:
        """Store OCR output as pages 1..n, dropping pages of earlier attempts."""
        await self._session.execute(delete(Page).where(Page.document_id == document_id))
        self._session.add_all(
            Page(document_id=document_id, page_number=number, page_text=text or "")
            for number, text in enumerate(page_texts, start=1)
        )
        await self._session.flush()
        logger.info("Saved %d pages | doc=%s", len(page_texts), document_id)
        return len(page_texts)

    async def page_texts(self, document_id: UUID) -> list[str]:
        result = await self._session.execute(
            select(Page.page_text)
            .where(Page.document_id == document_id)
            .order_by(Page.page_number)
        )
        return list(result.scalars().all())

    async def apply_enrichment(
        self,
        document_id: UUID,
        *,
        title: str | None,
        date_on_document: date,
        tags: list[str],
        failed_enrichment: bool,
    ) -> None:
        result = await self._session.execute(
            update(Document)
            .where(Document.id == document_id)
            .values(
                title=title,
                date_on_document=date_on_document,
                tags=list(tags),
                failed_enrichment=failed_enrichment,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise DocumentNotFoundError(document_id)

    # ------------------------------------------------------------------
    # Recovery candidates
    # ------------------------------------------------------------------

    async def find_retryable(
        self,
        stage: Stage,
        now: datetime,
        max_attempts: int,
        limit: int,
    ) -> list[Document]:
        """
        Documents in ``<stage>_ERROR`` with budget left whose backoff has
        elapsed, oldest upload first.
        """
        cols = retry_columns(stage)
        result = await self._session.execute(
            select(Document)
            .where(
                Document.status == stage.error,
                cols.retry_count < max_attempts,
                or_(cols.next_retry_at.is_(None), cols.next_retry_at <= now),
            )
            .order_by(Document.uploaded_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def find_stale_in_progress(
        self,
        stage: Stage,
        older_than: datetime,
        limit: int,
    ) -> list[Document]:
        return await self.find_stalled(stage.in_progress, older_than, limit)

    async def find_stalled(
        self,
        status: Status,
        older_than: datetime,
        limit: int,
    ) -> list[Document]:
        """Documents whose status has not changed since ``older_than``."""
        result = await self._session.execute(
            select(Document)
            .where(Document.status == status, Document.status_changed_at < older_than)
            .order_by(Document.status_changed_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    async def write_audit(
        self,
        document_id: UUID,
        action: str,
        detail: dict | None = None,
        success: bool = True,
    ) -> None:
        # No flush; the enclosing unit of work flushes on commit
        self._session.add(AuditLog(
            document_id=document_id,
            action=action,
            detail=detail or {},
            success=success,
        ))

    async def audit_trail(self, document_id: UUID) -> list[AuditLog]:
        result = await self._session.execute(
            select(AuditLog)
            .where(AuditLog.document_id == document_id)
            .order_by(AuditLog.id)
        )
        return list(result.scalars().all())
