"""
Unit Tests — IngestionService
══════════════════════════════
Tests for every branch of upload validation and persistence.

All tests:
  • Use the SQLite session_factory and RecordingBus from conftest.py
  • Never touch a broker, OCR, LLM or search index

Coverage targets:
  ✅ Valid PDF      → UPLOADED document, bytes stored, OcrEvent published
  ✅ Blank owner    → INVALID_OWNER
  ✅ Empty file     → MISSING_FILE
  ✅ No filename    → MISSING_FILE
  ✅ Oversized      → FILE_TOO_LARGE
  ✅ Not a PDF      → UNSUPPORTED_FILE_TYPE (magic bytes, not Content-Type)
  ✅ Audit log      → document.uploaded with MD5 checksum
  ✅ Filename sanitization → path traversal stripped
  ✅ Broker down    → document still stored at UPLOADED
"""

from __future__ import annotations

import hashlib

import pytest

from paperflow.core.errors import InvalidUploadError
from paperflow.pipeline.events import OcrEvent
from paperflow.pipeline.status import Status
from paperflow.services.ingestion import IngestionService, _sanitize_filename, compute_md5


@pytest.fixture
def service(uow_factory):
    return IngestionService(uow_factory, max_upload_bytes=1024)


async def _document_count(uow_factory) -> int:
    from sqlalchemy import func, select

    from paperflow.models.documents import Document

    async with uow_factory() as uow:
        return (await uow.session.execute(select(func.count(Document.id)))).scalar_one()


# ─────────────────────────────────────────────────────────────────────────────
# Happy path
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.ingestion
class TestIngestSuccess:

    async def test_valid_pdf_stored_and_published(self, service, load_document, bus, sample_pdf_bytes):
        document = await service.ingest(
            filename="invoice.pdf", pdf_bytes=sample_pdf_bytes, owner="alice",
        )

        stored = await load_document(document.id)
        assert stored.status == Status.UPLOADED
        assert stored.pdf_content == sample_pdf_bytes
        assert stored.size_bytes == len(sample_pdf_bytes)
        assert stored.content_type == "application/pdf"
        assert stored.owner == "alice"
        assert stored.ocr_retry_count == 0
        assert bus.events == [OcrEvent(document.id)]

    async def test_audit_entry_written(self, service, uow_factory, sample_pdf_bytes):
        document = await service.ingest(
            filename="invoice.pdf", pdf_bytes=sample_pdf_bytes, owner="alice",
        )

        async with uow_factory() as uow:
            (entry,) = await uow.documents.audit_trail(document.id)
        assert entry.action == "document.uploaded"
        assert entry.detail["md5_checksum"] == hashlib.md5(sample_pdf_bytes).hexdigest()
        assert entry.detail["size_bytes"] == len(sample_pdf_bytes)

    async def test_client_content_type_ignored(self, service, load_document, sample_pdf_bytes):
        document = await service.ingest(
            filename="invoice.pdf",
            pdf_bytes=sample_pdf_bytes,
            owner="alice",
            content_type="application/octet-stream",
        )

        assert (await load_document(document.id)).content_type == "application/pdf"

    async def test_owner_whitespace_stripped(self, service, sample_pdf_bytes):
        document = await service.ingest(
            filename="invoice.pdf", pdf_bytes=sample_pdf_bytes, owner="  alice  ",
        )
        assert document.owner == "alice"

    async def test_broker_down_keeps_document(self, service, load_document, bus, sample_pdf_bytes):
        bus.fail_with = ConnectionError("broker down")

        document = await service.ingest(
            filename="invoice.pdf", pdf_bytes=sample_pdf_bytes, owner="alice",
        )

        assert (await load_document(document.id)).status == Status.UPLOADED
        assert bus.events == []


# ─────────────────────────────────────────────────────────────────────────────
# Rejections
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.ingestion
class TestIngestRejections:

    @pytest.mark.parametrize(
        "kwargs, code",
        [
            ({"owner": "   "}, "INVALID_OWNER"),
            ({"owner": ""}, "INVALID_OWNER"),
            ({"pdf_bytes": b""}, "MISSING_FILE"),
            ({"pdf_bytes": None}, "MISSING_FILE"),
            ({"filename": ""}, "MISSING_FILE"),
            ({"pdf_bytes": b"%PDF" + b"0" * 1024}, "FILE_TOO_LARGE"),
            ({"pdf_bytes": b"PK\x03\x04 docx in disguise"}, "UNSUPPORTED_FILE_TYPE"),
            ({"pdf_bytes": b"hello world"}, "UNSUPPORTED_FILE_TYPE"),
        ],
    )
    async def test_rejected_before_storage(self, kwargs, code, service, uow_factory, bus, sample_pdf_bytes):
        upload = {"filename": "invoice.pdf", "pdf_bytes": sample_pdf_bytes, "owner": "alice"}
        upload.update(kwargs)

        with pytest.raises(InvalidUploadError) as exc_info:
            await service.ingest(**upload)

        assert exc_info.value.code == code
        assert await _document_count(uow_factory) == 0
        assert bus.events == []

    async def test_owner_checked_first(self, service):
        with pytest.raises(InvalidUploadError) as exc_info:
            await service.ingest(filename="", pdf_bytes=b"", owner="")
        assert exc_info.value.code == "INVALID_OWNER"


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.ingestion
class TestHelpers:

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("invoice.pdf", "invoice.pdf"),
            ("../../etc/passwd", "passwd"),
            ("C:\\Users\\bob\\scan 01.pdf", "scan_01.pdf"),
            ("Rechnung März.pdf", "Rechnung_M_rz.pdf"),
            ("dir/", "upload.pdf"),
        ],
    )
    def test_sanitize_filename(self, raw, expected):
        assert _sanitize_filename(raw) == expected

    def test_long_filename_capped(self):
        assert len(_sanitize_filename("a" * 500 + ".pdf")) == 200

    def test_md5(self):
        assert compute_md5(b"abc") == "900150983cd24fb0d6963f7d28e17f72"
