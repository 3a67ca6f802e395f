"""
Root conftest.py — Shared fixtures for ALL tests

Fixture hierarchy (all function-scoped):
  db_engine        : SQLite file database (aiosqlite) in tmp_path, tables created
  session_factory  : async_sessionmaker bound to db_engine
  bus              : RecordingBus — captures published events
  clock            : FixedClock — deterministic "now" for status writes
  uow_factory      : UnitOfWork factory over the three above
  make_document    : inserts a Document in any lifecycle state
  load_document    : re-reads a Document in a fresh session
  make_pipeline    : build_pipeline() with AsyncMock collaborators

Environment strategy:
  - Each test gets its own database file; nothing is shared between tests.
  - No broker, no Ollama, no Elasticsearch: collaborators are AsyncMocks,
    the Celery bus is exercised with fake task objects.

How to run:
  pytest                      # all tests
  pytest -m unit              # fast unit tests
  pytest -m pipeline          # stage processor tests
  pytest tests/integration    # database-backed stage, recovery and runner tests
"""

from __future__ import annotations

import os
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

# ─────────────────────────────────────────────────────────────────────────────
# Patch settings BEFORE any paperflow imports so modules read test config
# ─────────────────────────────────────────────────────────────────────────────

os.environ.setdefault("DATABASE_URL",          "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CELERY_BROKER_URL",     "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("APP_ENV",               "development")
os.environ.setdefault("OTEL_ENABLED",          "false")

from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402

from paperflow.core.config import Settings  # noqa: E402
from paperflow.db.session import create_all, make_session_factory, session_scope  # noqa: E402
from paperflow.models.documents import Document, Page, retry_columns  # noqa: E402
from paperflow.pipeline.event_bus import EventBus  # noqa: E402
from paperflow.pipeline.retry_policy import RetryPolicy  # noqa: E402
from paperflow.pipeline.status import Stage, Status  # noqa: E402
from paperflow.pipeline.unit_of_work import unit_of_work_factory  # noqa: E402
from paperflow.schemas.documents import EnrichmentResult  # noqa: E402

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

SAMPLE_PDF = b"%PDF-1.4\n1 0 obj << /Type /Catalog >> endobj\ntrailer << /Root 1 0 R >>\n%%EOF\n"


# ─────────────────────────────────────────────────────────────────────────────
# Test doubles
# ─────────────────────────────────────────────────────────────────────────────

class RecordingBus(EventBus):
    """Captures events instead of delivering them."""

    def __init__(self) -> None:
        self.events: list = []
        self.fail_with: Exception | None = None

    async def publish(self, event) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.events.append(event)

    def of_type(self, event_type) -> list:
        return [e for e in self.events if isinstance(e, event_type)]

    def clear(self) -> None:
        self.events.clear()


class FixedClock:
    """Callable returning a settable aware-UTC "now"."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


# ─────────────────────────────────────────────────────────────────────────────
# Database
# ─────────────────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'paperflow.db'}")
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return make_session_factory(db_engine)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(database_url="sqlite+aiosqlite:///:memory:", _env_file=None)


@pytest.fixture
def policy() -> RetryPolicy:
    return RetryPolicy()


@pytest.fixture
def bus() -> RecordingBus:
    return RecordingBus()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def uow_factory(session_factory, bus, policy):
    return unit_of_work_factory(session_factory, bus, policy)


# ─────────────────────────────────────────────────────────────────────────────
# Document factories
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def make_document(session_factory):
    """
    Factory fixture: insert a Document directly (bypassing the pipeline).

        doc_id = await make_document(Status.OCR_ERROR, retry={Stage.OCR: (2, T0)})
    """
    async def _make(
        status: Status = Status.UPLOADED,
        *,
        status_changed_at: datetime = T0,
        uploaded_at: datetime = T0,
        pdf_content: bytes | None = SAMPLE_PDF,
        pages: list[str] | None = None,
        retry: dict[Stage, tuple[int, datetime | None]] | None = None,
        **fields,
    ) -> uuid.UUID:
        document = Document(
            id=uuid.uuid4(),
            filename=fields.pop("filename", "invoice.pdf"),
            content_type="application/pdf",
            size_bytes=len(pdf_content or b""),
            owner=fields.pop("owner", "alice"),
            pdf_content=pdf_content,
            uploaded_at=uploaded_at,
            status=status,
            status_changed_at=status_changed_at,
            **fields,
        )
        for stage, (count, next_at) in (retry or {}).items():
            count_key, next_key, error_key = retry_columns(stage).names
            setattr(document, count_key, count)
            setattr(document, next_key, next_at)
            setattr(document, error_key, "previous failure")

        async with session_scope(session_factory) as session:
            session.add(document)
            for number, text in enumerate(pages or [], start=1):
                session.add(Page(document_id=document.id, page_number=number, page_text=text))
        return document.id

    return _make


@pytest.fixture
def load_document(session_factory):
    async def _load(document_id: uuid.UUID) -> Document | None:
        async with session_scope(session_factory) as session:
            return await session.get(Document, document_id)
    return _load


@pytest.fixture
def load_pages(session_factory):
    async def _load(document_id: uuid.UUID) -> list[str]:
        from paperflow.pipeline.document_store import DocumentStore
        async with session_scope(session_factory) as session:
            return await DocumentStore(session).page_texts(document_id)
    return _load


@pytest.fixture
def sample_pdf_bytes() -> bytes:
    return SAMPLE_PDF


# ─────────────────────────────────────────────────────────────────────────────
# Collaborators + pipeline
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def mock_extractor():
    extractor = AsyncMock()
    extractor.extract.return_value = ["Invoice 2023\nACME GmbH", "Page two text"]
    return extractor


@pytest.fixture
def mock_provider():
    provider = AsyncMock()
    provider.enrich.return_value = EnrichmentResult(
        title="Invoice 2023", date_sent="15.03.2023", tags=["invoice"],
    )
    return provider


@pytest.fixture
def mock_index():
    index = AsyncMock()
    index.index.return_value = None
    return index


@pytest.fixture
def make_pipeline(session_factory, bus, clock, test_settings, mock_extractor, mock_provider, mock_index):
    def _build(event_bus=None, **overrides):
        from paperflow.pipeline.factory import build_pipeline
        kwargs = dict(
            session_factory=session_factory,
            bus=event_bus or bus,
            extractor=mock_extractor,
            enrichment_provider=mock_provider,
            index_client=mock_index,
            settings=test_settings,
            clock=clock,
        )
        kwargs.update(overrides)
        return build_pipeline(**kwargs)
    return _build
