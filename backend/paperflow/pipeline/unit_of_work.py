"""
Unit of work — one session, one transaction, one outbox of events.

    async with uow_factory() as uow:
        await uow.statuses.complete_stage(doc_id, Stage.OCR, claimed_at)
        await uow.documents.replace_pages(doc_id, pages)
        uow.publish(EnrichmentEvent(doc_id))

Events handed to publish() are buffered and reach the bus only after the
transaction commits. A rollback drops them. A publish failure after
commit is logged and left for the recovery sweep, never raised: the
database is already the source of truth at that point.
"""

from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction, async_sessionmaker

from paperflow.pipeline.document_store import DocumentStore
from paperflow.pipeline.event_bus import EventBus
from paperflow.pipeline.events import StageEvent
from paperflow.pipeline.retry_policy import RetryPolicy
from paperflow.pipeline.status_store import StatusStore

logger = logging.getLogger(__name__)


class UnitOfWork:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        bus: EventBus,
        policy: RetryPolicy,
    ) -> None:
        self._session_factory = session_factory
        self._bus = bus
        self._policy = policy
        self._pending: list[StageEvent] = []
        self._tx: AsyncSessionTransaction | None = None
        self.session: AsyncSession | None = None
        self.documents: DocumentStore | None = None
        self.statuses: StatusStore | None = None

    def publish(self, event: StageEvent) -> None:
        """Queue ``event`` for delivery once this unit of work commits."""
        self._pending.append(event)

    async def __aenter__(self) -> "UnitOfWork":
        self.session = self._session_factory()
        self._tx = await self.session.begin()
        self.documents = DocumentStore(self.session)
        self.statuses = StatusStore(self.session, self._policy)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is not None:
                await self._tx.rollback()
                if self._pending:
                    logger.debug("Dropped %d unpublished events on rollback", len(self._pending))
                self._pending.clear()
                return
            await self._tx.commit()
        finally:
            await self.session.close()

        await self._flush_events()

    async def _flush_events(self) -> None:
        events, self._pending = self._pending, []
        for event in events:
            try:
                await self._bus.publish(event)
            except Exception:
                logger.exception(
                    "Event publish failed after commit; recovery sweep will re-queue | "
                    "stage=%s doc=%s",
                    event.stage.value, event.document_id,
                )


UnitOfWorkFactory = Callable[[], UnitOfWork]


def unit_of_work_factory(
    session_factory: async_sessionmaker[AsyncSession],
    bus: EventBus,
    policy: RetryPolicy,
) -> UnitOfWorkFactory:
    def _make() -> UnitOfWork:
        return UnitOfWork(session_factory, bus, policy)
    return _make
