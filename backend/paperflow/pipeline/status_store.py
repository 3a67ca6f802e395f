"""
StatusStore — the only writer of documents.status and the per-stage retry
columns.

Every method runs inside the caller's session/transaction (see UnitOfWork),
so a status change commits atomically with whatever stage output the
caller wrote alongside it.

Concurrency model
─────────────────
Compare-and-set is a single conditional UPDATE:

    UPDATE documents
       SET status = :next, status_changed_at = :now
     WHERE id = :id AND status = :expected

Only the writer whose UPDATE matched a row proceeds. A stage claim returns
the ``status_changed_at`` it wrote; completion and failure writes can pass
that value back as ``claimed_at`` so a late writer whose claim was reclaimed
in the meantime cannot overwrite the newer attempt.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from paperflow.core.errors import DocumentNotFoundError, InvalidTransitionError
from paperflow.models.documents import Document, retry_columns
from paperflow.pipeline.retry_policy import RetryPolicy, utcnow
from paperflow.pipeline.status import Stage, Status, can_transition

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 1000


def sanitize_error(reason: str | None) -> str:
    if reason is None or not reason.strip():
        return "Unknown error"
    return reason[:MAX_ERROR_LENGTH]


@dataclass(frozen=True)
class StageRetryState:
    retry_count:   int
    next_retry_at: datetime | None
    last_error:    str | None

    @property
    def is_clear(self) -> bool:
        return self.retry_count == 0 and self.next_retry_at is None and self.last_error is None


class StatusStore:
    """Status and retry bookkeeping for one unit of work."""

    def __init__(self, session: AsyncSession, policy: RetryPolicy) -> None:
        self._session = session
        self._policy  = policy

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_status(self, document_id: UUID) -> Status:
        result = await self._session.execute(
            select(Document.status).where(Document.id == document_id)
        )
        status = result.scalar_one_or_none()
        if status is None:
            raise DocumentNotFoundError(document_id)
        return status

    async def retry_state(self, document_id: UUID, stage: Stage) -> StageRetryState:
        cols = retry_columns(stage)
        result = await self._session.execute(
            select(cols.retry_count, cols.next_retry_at, cols.last_error)
            .where(Document.id == document_id)
        )
        row = result.first()
        if row is None:
            raise DocumentNotFoundError(document_id)
        return StageRetryState(retry_count=row[0], next_retry_at=row[1], last_error=row[2])

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def update_status(
        self,
        document_id: UUID,
        new_status: Status,
        now: datetime | None = None,
    ) -> None:
        """
        Unconditional write. Always succeeds for an existing document as
        long as the write is an edge of the lifecycle graph.
        """
        document = await self._lock(document_id)
        if document.status != new_status and not can_transition(document.status, new_status):
            raise InvalidTransitionError(document_id, document.status, new_status)
        document.status = new_status
        document.status_changed_at = now or utcnow()
        await self._session.flush()

    async def update_status_if_current(
        self,
        document_id: UUID,
        expected: Status,
        next_status: Status,
        now: datetime | None = None,
    ) -> bool:
        """
        Compare-and-set. Returns False, without mutating anything, when the
        stored status is not ``expected``. Raises InvalidTransitionError only
        when it is and ``expected -> next_status`` is not a lifecycle edge.
        """
        return await self._cas(document_id, expected, next_status, now or utcnow()) is not None

    async def claim_stage(
        self,
        document_id: UUID,
        stage: Stage,
        now: datetime | None = None,
    ) -> datetime | None:
        """
        Move the document into ``<stage>_IN_PROGRESS`` from one of the
        stage's entry statuses (first attempt first, then recovery).

        Returns the claim timestamp, or None when another delivery already
        owns the stage or the document has moved past it.
        """
        now = now or utcnow()
        for expected in stage.entry_statuses:
            claimed_at = await self._cas(document_id, expected, stage.in_progress, now)
            if claimed_at is not None:
                return claimed_at
        return None

    async def complete_stage(
        self,
        document_id: UUID,
        stage: Stage,
        claimed_at: datetime | None = None,
        now: datetime | None = None,
    ) -> bool:
        """
        ``<stage>_IN_PROGRESS → <stage>_COMPLETED`` plus a retry reset.
        False when the claim was lost (document reclaimed or re-claimed).
        """
        conditions = [Document.id == document_id, Document.status == stage.in_progress]
        if claimed_at is not None:
            conditions.append(Document.status_changed_at == claimed_at)

        result = await self._session.execute(
            update(Document)
            .where(*conditions)
            .values(status=stage.completed, status_changed_at=now or utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self._require_exists(document_id)
            return False

        await self.reset_stage_retry(document_id, stage)
        return True

    async def mark_stage_failure(
        self,
        document_id: UUID,
        stage: Stage,
        error_message: str | None,
        now: datetime | None = None,
        claimed_at: datetime | None = None,
    ) -> bool:
        """
        ``<stage>_IN_PROGRESS → <stage>_ERROR`` with retry bookkeeping:
        retry_count + 1, next_retry_at from the RetryPolicy, last_error.

        With ``claimed_at`` the write is fenced: it is skipped (returns
        False) when the document is no longer held by that claim.
        Without it, a document outside ``<stage>_IN_PROGRESS`` raises
        InvalidTransitionError.
        """
        now = now or utcnow()
        document = await self._lock(document_id)

        if claimed_at is not None and (
            document.status != stage.in_progress
            or document.status_changed_at != claimed_at
        ):
            logger.warning(
                "Failure write skipped, claim lost | doc=%s stage=%s status=%s",
                document_id, stage.value, document.status.value,
            )
            return False

        if not can_transition(document.status, stage.error):
            raise InvalidTransitionError(document_id, document.status, stage.error)

        count_key, next_key, error_key = retry_columns(stage).names
        retry_count = getattr(document, count_key) + 1

        document.status = stage.error
        document.status_changed_at = now
        setattr(document, count_key, retry_count)
        setattr(document, next_key, self._policy.next_retry_at(retry_count, now))
        setattr(document, error_key, sanitize_error(error_message))
        if stage is Stage.ENRICHMENT:
            document.failed_enrichment = True

        await self._session.flush()

        if self._policy.is_exhausted(retry_count):
            logger.error(
                "Retries exhausted, manual intervention required | doc=%s stage=%s attempts=%d",
                document_id, stage.value, retry_count,
            )
        return True

    async def reset_stage_retry(self, document_id: UUID, stage: Stage) -> None:
        count_key, next_key, error_key = retry_columns(stage).names
        values: dict[str, Any] = {count_key: 0, next_key: None, error_key: None}
        if stage is Stage.ENRICHMENT:
            values["failed_enrichment"] = False

        result = await self._session.execute(
            update(Document)
            .where(Document.id == document_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise DocumentNotFoundError(document_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _cas(
        self,
        document_id: UUID,
        expected: Status,
        next_status: Status,
        now: datetime,
    ) -> datetime | None:
        # A stored status other than ``expected`` is a lost race, reported
        # as None before the pair itself is checked against the graph.
        if not can_transition(expected, next_status):
            if await self.get_status(document_id) != expected:
                return None
            raise InvalidTransitionError(document_id, expected, next_status)

        result = await self._session.execute(
            update(Document)
            .where(Document.id == document_id, Document.status == expected)
            .values(status=next_status, status_changed_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return now
        await self._require_exists(document_id)
        return None

    async def _lock(self, document_id: UUID) -> Document:
        result = await self._session.execute(
            select(Document)
            .where(Document.id == document_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        document = result.scalars().first()
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    async def _require_exists(self, document_id: UUID) -> None:
        result = await self._session.execute(
            select(Document.id).where(Document.id == document_id)
        )
        if result.scalar_one_or_none() is None:
            raise DocumentNotFoundError(document_id)
