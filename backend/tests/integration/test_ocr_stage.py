"""
Pipeline Tests — OCR stage
"""

from __future__ import annotations

import uuid
from datetime import timedelta

from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from paperflow.core.errors import ExtractionError
from paperflow.pipeline.document_store import DocumentStore
from paperflow.pipeline.events import EnrichmentEvent, OcrEvent
from paperflow.pipeline.stages import StageOutcome
from paperflow.pipeline.status import Stage, Status
from paperflow.pipeline.status_store import StatusStore
from tests.conftest import T0


@pytest.mark.pipeline
class TestOcrStage:

    async def test_pages_stored_and_enrichment_published(
        self, make_document, load_document, load_pages, make_pipeline, bus, mock_extractor,
    ):
        doc_id = await make_document(Status.UPLOADED)
        pipeline = make_pipeline()

        outcome = await pipeline.ocr.handle(OcrEvent(doc_id))

        assert outcome is StageOutcome.COMPLETED
        assert await load_pages(doc_id) == ["Invoice 2023\nACME GmbH", "Page two text"]
        assert (await load_document(doc_id)).status == Status.OCR_COMPLETED
        assert bus.events == [EnrichmentEvent(doc_id)]
        mock_extractor.extract.assert_awaited_once()

    async def test_retry_success_resets_bookkeeping(self, make_document, load_document, make_pipeline):
        doc_id = await make_document(Status.OCR_ERROR, retry={Stage.OCR: (2, T0)})

        outcome = await make_pipeline().ocr.process(doc_id)

        assert outcome is StageOutcome.COMPLETED
        document = await load_document(doc_id)
        assert document.status == Status.OCR_COMPLETED
        assert (document.ocr_retry_count, document.ocr_next_retry_at, document.ocr_last_error) == (0, None, None)

    async def test_empty_pdf_is_a_failure(self, make_document, load_document, make_pipeline, bus, mock_extractor):
        doc_id = await make_document(Status.UPLOADED, pdf_content=b"")

        outcome = await make_pipeline().ocr.process(doc_id)

        assert outcome is StageOutcome.FAILED
        document = await load_document(doc_id)
        assert document.status == Status.OCR_ERROR
        assert document.ocr_retry_count == 1
        assert document.ocr_next_retry_at == T0 + timedelta(minutes=15)
        assert "no PDF content" in document.ocr_last_error
        assert bus.events == []
        mock_extractor.extract.assert_not_awaited()

    async def test_extractor_error_is_a_failure(self, make_document, load_document, make_pipeline, mock_extractor):
        mock_extractor.extract.side_effect = ExtractionError("Could not read PDF: bad xref")
        doc_id = await make_document(Status.UPLOADED)

        outcome = await make_pipeline().ocr.process(doc_id)

        assert outcome is StageOutcome.FAILED
        document = await load_document(doc_id)
        assert document.status == Status.OCR_ERROR
        assert document.ocr_last_error == "Could not read PDF: bad xref"

    async def test_unexpected_extractor_exception_is_recorded(
        self, make_document, load_document, make_pipeline, mock_extractor,
    ):
        mock_extractor.extract.side_effect = RuntimeError("page too large")
        doc_id = await make_document(Status.UPLOADED)

        outcome = await make_pipeline().ocr.process(doc_id)

        assert outcome is StageOutcome.FAILED
        assert (await load_document(doc_id)).ocr_last_error == "RuntimeError: page too large"

    async def test_failure_is_audited(self, make_document, make_pipeline, uow_factory, mock_extractor):
        mock_extractor.extract.side_effect = ExtractionError("bad")
        doc_id = await make_document(Status.UPLOADED)

        await make_pipeline().ocr.process(doc_id)

        async with uow_factory() as uow:
            trail = await uow.documents.audit_trail(doc_id)
        assert [(a.action, a.success) for a in trail] == [("document.ocr_failed", False)]
        assert trail[0].detail["error_type"] == "ExtractionError"

    async def test_document_past_stage_is_skipped(self, make_document, load_document, make_pipeline, bus, mock_extractor):
        doc_id = await make_document(Status.ENRICHMENT_COMPLETED)

        outcome = await make_pipeline().ocr.process(doc_id)

        assert outcome is StageOutcome.SKIPPED
        assert (await load_document(doc_id)).status == Status.ENRICHMENT_COMPLETED
        assert bus.events == []
        mock_extractor.extract.assert_not_awaited()

    async def test_missing_document(self, make_pipeline):
        assert await make_pipeline().ocr.process(uuid.uuid4()) is StageOutcome.NOT_FOUND


def _db_error() -> OperationalError:
    return OperationalError("UPDATE documents", {}, Exception("database is locked"))


@pytest.mark.pipeline
class TestOcrStageDatabaseErrors:

    async def test_claim_error_aborts_without_writes(
        self, monkeypatch, make_document, load_document, make_pipeline, bus, mock_extractor,
    ):
        doc_id = await make_document(Status.UPLOADED)
        monkeypatch.setattr(StatusStore, "claim_stage", AsyncMock(side_effect=_db_error()))

        outcome = await make_pipeline().ocr.process(doc_id)

        assert outcome is StageOutcome.ABORTED
        assert (await load_document(doc_id)).status == Status.UPLOADED
        assert bus.events == []
        mock_extractor.extract.assert_not_awaited()

    async def test_input_load_error_is_a_failure(
        self, monkeypatch, make_document, load_document, make_pipeline, mock_extractor,
    ):
        doc_id = await make_document(Status.UPLOADED)
        monkeypatch.setattr(DocumentStore, "require", AsyncMock(side_effect=_db_error()))

        outcome = await make_pipeline().ocr.process(doc_id)

        assert outcome is StageOutcome.FAILED
        document = await load_document(doc_id)
        assert document.status == Status.OCR_ERROR
        assert document.ocr_retry_count == 1
        assert document.ocr_last_error.startswith("Loading input failed")
        mock_extractor.extract.assert_not_awaited()

    async def test_failure_write_error_leaves_claim_for_stale_reclaim(
        self, monkeypatch, make_document, load_document, make_pipeline, mock_extractor,
    ):
        mock_extractor.extract.side_effect = ExtractionError("bad xref")
        doc_id = await make_document(Status.UPLOADED)
        monkeypatch.setattr(StatusStore, "mark_stage_failure", AsyncMock(side_effect=_db_error()))

        outcome = await make_pipeline().ocr.process(doc_id)

        assert outcome is StageOutcome.ABORTED
        document = await load_document(doc_id)
        assert document.status == Status.OCR_IN_PROGRESS
        assert document.ocr_retry_count == 0
