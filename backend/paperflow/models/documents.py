"""
SQLAlchemy ORM Models — Documents, Pages & Audit Logs

Using SQLAlchemy 2.x mapped classes for full async support.

Column types are kept portable (Uuid, JSON → JSONB on PostgreSQL, UTC
timestamps) so the same models run against PostgreSQL/asyncpg in
production and SQLite/aiosqlite in the test suite.

Retry bookkeeping is stored as three independent column groups, one per
stage (ocr_*, enrichment_*, indexing_*). Use ``retry_columns(stage)`` to
address a group generically.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from paperflow.pipeline.retry_policy import utcnow
from paperflow.pipeline.status import Stage, Status

_JSON = JSON().with_variant(JSONB(), "postgresql")
_BIGINT_PK = BigInteger().with_variant(Integer(), "sqlite")


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp normalised to UTC.

    SQLite has no timezone support: values are stored naive-UTC and
    re-attached to UTC on load, so callers always see aware datetimes.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"naive datetime not allowed: {value!r}")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            value = value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


# ---------------------------------------------------------------------------
# Declarative base — shared across all models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Document model — documents
# ---------------------------------------------------------------------------

class Document(Base):
    """
    One uploaded PDF travelling through OCR → enrichment → indexing.

    ``status`` is written only through StatusStore. Stage output columns
    (pages, title, date_on_document, tags) are written only by the stage
    that owns them.
    """

    __tablename__ = "documents"
    __table_args__ = (
        Index("idx_documents_status", "status"),
        Index("idx_documents_owner",  "owner"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Upload metadata
    filename:     Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[str] = mapped_column(Text, nullable=False, default="application/pdf")
    size_bytes:   Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    owner:        Mapped[str] = mapped_column(Text, nullable=False)
    pdf_content:  Mapped[Optional[bytes]] = mapped_column(LargeBinary, nullable=True)
    uploaded_at:  Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    # Lifecycle state machine
    status: Mapped[Status] = mapped_column(
        SAEnum(Status, native_enum=False, length=32, name="document_status"),
        nullable=False,
        default=Status.UPLOADED,
    )
    status_changed_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        comment="Last status write; drives stale in-progress detection",
    )

    # Enrichment output
    title:             Mapped[Optional[str]]  = mapped_column(Text, nullable=True)
    date_on_document:  Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    tags:              Mapped[list] = mapped_column(_JSON, nullable=False, default=list)
    failed_enrichment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Per-stage retry bookkeeping
    ocr_retry_count:   Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ocr_next_retry_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    ocr_last_error:    Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    enrichment_retry_count:   Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    enrichment_next_retry_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    enrichment_last_error:    Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    indexing_retry_count:   Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    indexing_next_retry_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    indexing_last_error:    Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Document id={self.id} status={self.status.value if self.status else None} "
            f"file={self.filename!r}>"
        )


@dataclass(frozen=True)
class RetryColumns:
    """The three retry columns of one stage."""
    retry_count:   Any
    next_retry_at: Any
    last_error:    Any

    @property
    def names(self) -> tuple[str, str, str]:
        return (self.retry_count.key, self.next_retry_at.key, self.last_error.key)


_RETRY_COLUMNS: dict[Stage, RetryColumns] = {
    Stage.OCR: RetryColumns(
        Document.ocr_retry_count, Document.ocr_next_retry_at, Document.ocr_last_error,
    ),
    Stage.ENRICHMENT: RetryColumns(
        Document.enrichment_retry_count, Document.enrichment_next_retry_at,
        Document.enrichment_last_error,
    ),
    Stage.INDEXING: RetryColumns(
        Document.indexing_retry_count, Document.indexing_next_retry_at,
        Document.indexing_last_error,
    ),
}


def retry_columns(stage: Stage) -> RetryColumns:
    return _RETRY_COLUMNS[stage]


# ---------------------------------------------------------------------------
# Page model — pages
# ---------------------------------------------------------------------------

class Page(Base):
    """Text of one PDF page, written by the OCR stage (1-based page_number)."""

    __tablename__ = "pages"
    __table_args__ = (
        UniqueConstraint("document_id", "page_number", name="uq_pages_position"),
        Index("idx_pages_document_id", "document_id"),
    )

    id: Mapped[int] = mapped_column(_BIGINT_PK, primary_key=True, autoincrement=True)
    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    page_number: Mapped[int] = mapped_column(Integer, nullable=False)
    page_text:   Mapped[str] = mapped_column(Text, nullable=False, default="")


# ---------------------------------------------------------------------------
# AuditLog model — audit_logs
# ---------------------------------------------------------------------------

class AuditLog(Base):
    """
    Append-only trail of pipeline outcomes.

    Written in the same transaction as the status change it describes, so a
    row exists exactly when the change was committed.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_logs_document_id", "document_id"),
        Index("idx_audit_logs_created_at",  "created_at"),
    )

    id: Mapped[int] = mapped_column(_BIGINT_PK, primary_key=True, autoincrement=True)
    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    action: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="e.g. document.uploaded, document.ocr_completed, document.enrichment_failed",
    )
    detail:     Mapped[dict] = mapped_column(_JSON, nullable=False, default=dict)
    success:    Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return (
            f"<AuditLog id={self.id} doc={self.document_id} "
            f"action={self.action!r} success={self.success}>"
        )
