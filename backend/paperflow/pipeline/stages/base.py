"""
StageProcessor — the template every pipeline stage follows.

  ┌──────────────────────────────────────────────────────────────────┐
  │ 1. claim        UoW#1  CAS entry status → <stage>_IN_PROGRESS      │
  │                        lost → SKIPPED, missing → NOT_FOUND         │
  │ 2. prepare      UoW#2  load document + stage input                 │
  │                        PreconditionError → failure write           │
  │ 3. invoke       (no transaction) the slow collaborator call        │
  │                        StageError → failure write                  │
  │ 4. complete     UoW#3  CAS → <stage>_COMPLETED, reset retries,     │
  │                        persist output, audit, buffer next event    │
  │                        lost claim → SKIPPED, output discarded      │
  └──────────────────────────────────────────────────────────────────┘

The claim is the first statement of an attempt: on SQLite a read before
the write would let two concurrent deliveries deadlock on the lock
upgrade. Every later write is fenced on the claim timestamp, so an
attempt that was reclaimed as stale cannot overwrite its successor.

A database error is logged, never raised. During prepare or complete it
becomes a failure write. During the claim or the failure write itself
nothing is committed and ABORTED is returned. The recovery sweep then
re-dispatches the document or reclaims the stale claim.

Subclasses implement prepare(), invoke() and persist().
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Callable, ClassVar, Generic, TypeVar
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from paperflow.core.errors import CollaboratorError, DocumentNotFoundError, StageError
from paperflow.models.documents import Document
from paperflow.pipeline.events import StageEvent, event_for_stage
from paperflow.pipeline.retry_policy import utcnow
from paperflow.pipeline.status import Stage
from paperflow.pipeline.unit_of_work import UnitOfWork, UnitOfWorkFactory

logger = logging.getLogger(__name__)

WorkT = TypeVar("WorkT")
OutputT = TypeVar("OutputT")


class StageOutcome(str, Enum):
    COMPLETED = "completed"
    DEGRADED  = "degraded"    # completed with fallback data
    FAILED    = "failed"      # <stage>_ERROR written, retry scheduled
    SKIPPED   = "skipped"     # duplicate or stale delivery, nothing written
    NOT_FOUND = "not_found"
    ABORTED   = "aborted"     # database error, nothing committed


class StageProcessor(ABC, Generic[WorkT, OutputT]):

    stage: ClassVar[Stage]

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._uow = uow_factory
        self._clock = clock

    # ------------------------------------------------------------------
    # Stage hooks
    # ------------------------------------------------------------------

    @abstractmethod
    async def prepare(self, uow: UnitOfWork, document: Document) -> WorkT:
        """Collect the collaborator input. Raise PreconditionError if unusable."""

    @abstractmethod
    async def invoke(self, work: WorkT) -> OutputT:
        """The collaborator call. Runs outside any transaction."""

    @abstractmethod
    async def persist(self, uow: UnitOfWork, document_id: UUID, output: OutputT) -> dict[str, Any]:
        """Store the output; return audit detail."""

    def outcome_for(self, output: OutputT) -> StageOutcome:
        return StageOutcome.COMPLETED

    # ------------------------------------------------------------------
    # Template
    # ------------------------------------------------------------------

    async def handle(self, event: StageEvent) -> StageOutcome:
        """Event bus entry point."""
        return await self.process(event.document_id)

    async def process(self, document_id: UUID) -> StageOutcome:
        stage = self.stage.value
        try:
            async with self._uow() as uow:
                claimed_at = await uow.statuses.claim_stage(document_id, self.stage, now=self._clock())
        except DocumentNotFoundError:
            logger.warning("Document not found, event dropped | stage=%s doc=%s", stage, document_id)
            return StageOutcome.NOT_FOUND
        except SQLAlchemyError:
            logger.error("Stage claim failed | stage=%s doc=%s", stage, document_id, exc_info=True)
            return StageOutcome.ABORTED

        if claimed_at is None:
            logger.info("Stage already claimed or passed, skipping | stage=%s doc=%s", stage, document_id)
            return StageOutcome.SKIPPED

        logger.info("Stage started | stage=%s doc=%s", stage, document_id)

        try:
            async with self._uow() as uow:
                document = await uow.documents.require(document_id)
                work = await self.prepare(uow, document)
        except DocumentNotFoundError:
            logger.warning("Document deleted mid-stage | stage=%s doc=%s", stage, document_id)
            return StageOutcome.NOT_FOUND
        except StageError as exc:
            return await self._fail(document_id, claimed_at, exc)
        except SQLAlchemyError as exc:
            logger.error("Loading stage input failed | stage=%s doc=%s", stage, document_id, exc_info=True)
            return await self._fail(document_id, claimed_at, StageError(f"Loading input failed: {exc}"))

        try:
            output = await self._invoke(work)
        except StageError as exc:
            return await self._fail(document_id, claimed_at, exc)

        try:
            return await self._complete(document_id, claimed_at, output)
        except DocumentNotFoundError:
            logger.warning("Document deleted mid-stage | stage=%s doc=%s", stage, document_id)
            return StageOutcome.NOT_FOUND
        except SQLAlchemyError as exc:
            logger.error("Saving stage output failed | stage=%s doc=%s", stage, document_id, exc_info=True)
            return await self._fail(document_id, claimed_at, StageError(f"Saving output failed: {exc}"))

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _invoke(self, work: WorkT) -> OutputT:
        try:
            return await self.invoke(work)
        except StageError:
            raise
        except Exception as exc:
            raise CollaboratorError(f"{type(exc).__name__}: {exc}", stage=self.stage) from exc

    async def _complete(self, document_id: UUID, claimed_at: datetime, output: OutputT) -> StageOutcome:
        async with self._uow() as uow:
            completed = await uow.statuses.complete_stage(
                document_id, self.stage, claimed_at=claimed_at, now=self._clock(),
            )
            if not completed:
                logger.warning(
                    "Claim lost before completion, output discarded | stage=%s doc=%s",
                    self.stage.value, document_id,
                )
                return StageOutcome.SKIPPED

            detail = await self.persist(uow, document_id, output)
            await uow.documents.write_audit(
                document_id, f"document.{self.stage.value}_completed", detail,
            )
            next_stage = self.stage.next_stage
            if next_stage is not None:
                uow.publish(event_for_stage(next_stage, document_id))

        outcome = self.outcome_for(output)
        logger.info("Stage %s | stage=%s doc=%s", outcome.value, self.stage.value, document_id)
        return outcome

    async def _fail(self, document_id: UUID, claimed_at: datetime, exc: StageError) -> StageOutcome:
        reason = str(exc)
        logger.warning(
            "Stage failed | stage=%s doc=%s error=%s: %s",
            self.stage.value, document_id, type(exc).__name__, reason,
        )
        try:
            async with self._uow() as uow:
                recorded = await uow.statuses.mark_stage_failure(
                    document_id, self.stage, reason, now=self._clock(), claimed_at=claimed_at,
                )
                if recorded:
                    await uow.documents.write_audit(
                        document_id,
                        f"document.{self.stage.value}_failed",
                        {"error": reason[:500], "error_type": type(exc).__name__},
                        success=False,
                    )
        except DocumentNotFoundError:
            return StageOutcome.NOT_FOUND
        except SQLAlchemyError:
            # The claim is still held; stale reclaim moves the document on.
            logger.error(
                "Failure write failed | stage=%s doc=%s", self.stage.value, document_id, exc_info=True,
            )
            return StageOutcome.ABORTED

        return StageOutcome.FAILED if recorded else StageOutcome.SKIPPED
