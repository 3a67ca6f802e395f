"""
Document Ingestion Service

Entry point of the pipeline:
  1. Validate owner, file presence and size
  2. Detect the type from magic bytes (never the client's Content-Type)
  3. Insert the document with its PDF bytes at status UPLOADED
  4. Write the ``document.uploaded`` audit entry
  5. Publish OcrEvent once the transaction has committed

If the publish is lost (broker down), the document still sits at
UPLOADED and the recovery sweep re-queues it after
``recovery_stale_handoff_minutes``.

Rejections raise InvalidUploadError with a machine-readable ``code``:
  MISSING_FILE, FILE_TOO_LARGE, UNSUPPORTED_FILE_TYPE, INVALID_OWNER
"""

from __future__ import annotations

import hashlib
import logging
import re
import uuid

from paperflow.core.errors import InvalidUploadError
from paperflow.models.documents import Document
from paperflow.pipeline.events import OcrEvent
from paperflow.pipeline.retry_policy import utcnow
from paperflow.pipeline.status import INITIAL_STATUS
from paperflow.pipeline.unit_of_work import UnitOfWorkFactory

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"
PDF_CONTENT_TYPE = "application/pdf"

_OWNER_RE = re.compile(r"^[^\x00-\x1f]{1,255}$")


def _sanitize_filename(filename: str) -> str:
    """Basename only, unsafe characters replaced, capped at 200 chars."""
    basename = filename.replace("\\", "/").rsplit("/", 1)[-1]
    safe = re.sub(r"[^a-zA-Z0-9._\-]", "_", basename)
    return safe[:200] or "upload.pdf"


def compute_md5(data: bytes) -> str:
    return hashlib.md5(data, usedforsecurity=False).hexdigest()


class IngestionService:
    """
    Usage::

        service = IngestionService(pipeline.uow_factory, max_upload_bytes=settings.max_upload_bytes)
        document = await service.ingest(filename="invoice.pdf", pdf_bytes=data, owner="alice")
    """

    def __init__(self, uow_factory: UnitOfWorkFactory, max_upload_bytes: int) -> None:
        self._uow = uow_factory
        self._max_upload_bytes = max_upload_bytes

    async def ingest(
        self,
        *,
        filename: str | None,
        pdf_bytes: bytes | None,
        owner: str,
        content_type: str = PDF_CONTENT_TYPE,
    ) -> Document:
        self._validate(filename, pdf_bytes, owner)
        if content_type != PDF_CONTENT_TYPE:
            # Magic bytes decide the type; the client header is advisory.
            logger.info("Client content type %r overridden to %s", content_type, PDF_CONTENT_TYPE)

        safe_filename = _sanitize_filename(filename)
        md5 = compute_md5(pdf_bytes)
        now = utcnow()

        async with self._uow() as uow:
            document = await uow.documents.add(Document(
                id=uuid.uuid4(),
                filename=safe_filename,
                content_type=PDF_CONTENT_TYPE,
                size_bytes=len(pdf_bytes),
                owner=owner.strip(),
                pdf_content=pdf_bytes,
                uploaded_at=now,
                status=INITIAL_STATUS,
                status_changed_at=now,
            ))
            await uow.documents.write_audit(
                document.id,
                "document.uploaded",
                {
                    "filename":     safe_filename,
                    "size_bytes":   len(pdf_bytes),
                    "md5_checksum": md5,
                    "owner":        document.owner,
                },
            )
            uow.publish(OcrEvent(document_id=document.id))

        logger.info(
            "Document uploaded | doc=%s owner=%s file=%s size=%d md5=%s",
            document.id, document.owner, safe_filename, len(pdf_bytes), md5,
        )
        return document

    def _validate(self, filename: str | None, pdf_bytes: bytes | None, owner: str) -> None:
        if not owner or not owner.strip() or not _OWNER_RE.match(owner.strip()):
            raise InvalidUploadError("INVALID_OWNER", "Owner must be a non-empty username")

        if not filename or not pdf_bytes:
            raise InvalidUploadError("MISSING_FILE", "No file was uploaded or the file is empty")

        if len(pdf_bytes) > self._max_upload_bytes:
            raise InvalidUploadError(
                "FILE_TOO_LARGE",
                f"File size {len(pdf_bytes)} bytes exceeds the "
                f"{self._max_upload_bytes} byte limit",
            )

        if not pdf_bytes.startswith(PDF_MAGIC):
            raise InvalidUploadError(
                "UNSUPPORTED_FILE_TYPE",
                f"'{filename}' is not a PDF document",
            )
