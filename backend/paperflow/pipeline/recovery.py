"""
Recovery sweep — the pipeline's only retry mechanism.

Runs every ``recovery_retry_fixed_delay_ms`` (Celery Beat, or a plain
asyncio loop in single-process mode). Each tick, per stage:

  1. reclaim   <stage>_IN_PROGRESS untouched for stale_in_progress_minutes
               → <stage>_ERROR with normal failure bookkeeping (the worker
               holding it is presumed dead)
  2. retry     <stage>_ERROR with retry_count < max_attempts and
               next_retry_at elapsed → re-publish the stage's entry event
  3. requeue   hand-off statuses (UPLOADED, OCR_COMPLETED,
               ENRICHMENT_COMPLETED) untouched for stale_handoff_minutes
               → re-publish the next stage's entry event

Publishing goes through the UnitOfWork, so events leave only after the
tick's writes have committed. Re-publishing is always safe: the stage
claim turns a duplicate into a no-op.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from paperflow.core.config import Settings
from paperflow.pipeline.events import event_for_stage
from paperflow.pipeline.retry_policy import RetryPolicy, utcnow
from paperflow.pipeline.status import Stage
from paperflow.pipeline.unit_of_work import UnitOfWorkFactory

logger = logging.getLogger(__name__)


@dataclass
class RecoveryReport:
    retried:   dict[Stage, int] = field(default_factory=dict)
    reclaimed: dict[Stage, int] = field(default_factory=dict)
    requeued:  dict[Stage, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.retried.values()) + sum(self.reclaimed.values()) + sum(self.requeued.values())

    def as_dict(self) -> dict[str, dict[str, int]]:
        return {
            "retried":   {s.value: n for s, n in self.retried.items()},
            "reclaimed": {s.value: n for s, n in self.reclaimed.items()},
            "requeued":  {s.value: n for s, n in self.requeued.items()},
        }


class RecoveryScheduler:

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        policy: RetryPolicy,
        enabled: bool = True,
        batch_size: int = 50,
        stale_in_progress: timedelta = timedelta(minutes=60),
        stale_handoff: timedelta = timedelta(minutes=5),
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._uow = uow_factory
        self._policy = policy
        self._enabled = enabled
        self._batch_size = batch_size
        self._stale_in_progress = stale_in_progress
        self._stale_handoff = stale_handoff

    @classmethod
    def from_settings(
        cls,
        uow_factory: UnitOfWorkFactory,
        settings: Settings,
        policy: RetryPolicy | None = None,
    ) -> "RecoveryScheduler":
        return cls(
            uow_factory,
            policy or RetryPolicy.from_settings(settings),
            enabled=settings.recovery_retry_enabled,
            batch_size=settings.recovery_retry_batch_size,
            stale_in_progress=timedelta(minutes=settings.recovery_stale_in_progress_minutes),
            stale_handoff=timedelta(minutes=settings.recovery_stale_handoff_minutes),
        )

    async def run_once(self, now: datetime | None = None) -> RecoveryReport:
        report = RecoveryReport()
        if not self._enabled:
            logger.debug("Recovery sweep disabled")
            return report

        now = now or utcnow()
        for stage in Stage:
            report.reclaimed[stage] = await self._reclaim_stale(stage, now)
        for stage in Stage:
            report.retried[stage] = await self._dispatch_retries(stage, now)
        for stage in Stage:
            report.requeued[stage] = await self._requeue_stalled(stage, now)

        if report.total:
            logger.info(
                "Recovery sweep | retried=%s reclaimed=%s requeued=%s",
                _fmt(report.retried), _fmt(report.reclaimed), _fmt(report.requeued),
            )
        else:
            logger.debug("Recovery sweep found no eligible documents")
        return report

    async def run_forever(self, interval: timedelta) -> None:
        """Fixed-delay loop for single-process deployments."""
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Recovery sweep failed; retrying next tick")
            await asyncio.sleep(interval.total_seconds())

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _reclaim_stale(self, stage: Stage, now: datetime) -> int:
        reclaimed = 0
        async with self._uow() as uow:
            candidates = await uow.documents.find_stale_in_progress(
                stage, now - self._stale_in_progress, self._batch_size,
            )
            for document in candidates:
                since = document.status_changed_at
                reason = f"Stale {stage.value} in progress since {since.isoformat()}"
                if await uow.statuses.mark_stage_failure(
                    document.id, stage, reason, now=now, claimed_at=since,
                ):
                    await uow.documents.write_audit(
                        document.id, "document.stale_reclaimed",
                        {"stage": stage.value, "since": since.isoformat()},
                        success=False,
                    )
                    reclaimed += 1
        if reclaimed:
            logger.warning("Reclaimed %d stale documents | stage=%s", reclaimed, stage.value)
        return reclaimed

    async def _dispatch_retries(self, stage: Stage, now: datetime) -> int:
        async with self._uow() as uow:
            candidates = await uow.documents.find_retryable(
                stage, now, self._policy.max_attempts, self._batch_size,
            )
            for document in candidates:
                uow.publish(event_for_stage(stage, document.id))
        return len(candidates)

    async def _requeue_stalled(self, stage: Stage, now: datetime) -> int:
        async with self._uow() as uow:
            candidates = await uow.documents.find_stalled(
                stage.predecessor_status, now - self._stale_handoff, self._batch_size,
            )
            for document in candidates:
                uow.publish(event_for_stage(stage, document.id))
        return len(candidates)


def _fmt(counts: dict[Stage, int]) -> str:
    return ",".join(f"{stage.value}:{n}" for stage, n in counts.items() if n) or "0"
