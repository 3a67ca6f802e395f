"""
Document lifecycle state machine.

    UPLOADED
       │
       ▼
    OCR_IN_PROGRESS ───────────► OCR_ERROR
       │            ◄─────────── (recovery)
       ▼
    OCR_COMPLETED
       │
       ▼
    ENRICHMENT_IN_PROGRESS ────► ENRICHMENT_ERROR
       │                   ◄──── (recovery)
       ▼
    ENRICHMENT_COMPLETED
       │
       ▼
    INDEXING_IN_PROGRESS ──────► INDEXING_ERROR
       │                 ◄────── (recovery)
       ▼
    INDEXING_COMPLETED

A stage may start from its predecessor's COMPLETED status (UPLOADED for OCR)
or from its own ERROR status when re-entered by the recovery sweep.
"""

from __future__ import annotations

from enum import Enum


class Status(str, Enum):
    """Maps to documents.status."""

    UPLOADED               = "UPLOADED"
    OCR_IN_PROGRESS        = "OCR_IN_PROGRESS"
    OCR_COMPLETED          = "OCR_COMPLETED"
    OCR_ERROR              = "OCR_ERROR"
    ENRICHMENT_IN_PROGRESS = "ENRICHMENT_IN_PROGRESS"
    ENRICHMENT_COMPLETED   = "ENRICHMENT_COMPLETED"
    ENRICHMENT_ERROR       = "ENRICHMENT_ERROR"
    INDEXING_IN_PROGRESS   = "INDEXING_IN_PROGRESS"
    INDEXING_COMPLETED     = "INDEXING_COMPLETED"
    INDEXING_ERROR         = "INDEXING_ERROR"

    @property
    def stage(self) -> "Stage | None":
        """The stage owning this status; None for UPLOADED."""
        return _STAGE_OF.get(self)

    @property
    def is_error(self) -> bool:
        return self.value.endswith("_ERROR")

    @property
    def is_in_progress(self) -> bool:
        return self.value.endswith("_IN_PROGRESS")


class Stage(str, Enum):
    """One independent unit of pipeline work."""

    OCR        = "ocr"
    ENRICHMENT = "enrichment"
    INDEXING   = "indexing"

    @property
    def in_progress(self) -> Status:
        return Status(f"{self.name}_IN_PROGRESS")

    @property
    def completed(self) -> Status:
        return Status(f"{self.name}_COMPLETED")

    @property
    def error(self) -> Status:
        return Status(f"{self.name}_ERROR")

    @property
    def predecessor_status(self) -> Status:
        """Status a document must hold for a first attempt at this stage."""
        return _PREDECESSOR[self]

    @property
    def entry_statuses(self) -> tuple[Status, Status]:
        """(first attempt, recovery re-entry)."""
        return (self.predecessor_status, self.error)

    @property
    def next_stage(self) -> "Stage | None":
        return _NEXT_STAGE[self]


_PREDECESSOR: dict[Stage, Status] = {
    Stage.OCR:        Status.UPLOADED,
    Stage.ENRICHMENT: Status.OCR_COMPLETED,
    Stage.INDEXING:   Status.ENRICHMENT_COMPLETED,
}

_NEXT_STAGE: dict[Stage, Stage | None] = {
    Stage.OCR:        Stage.ENRICHMENT,
    Stage.ENRICHMENT: Stage.INDEXING,
    Stage.INDEXING:   None,
}

_STAGE_OF: dict[Status, Stage] = {
    status: stage
    for stage in Stage
    for status in (stage.in_progress, stage.completed, stage.error)
}


def _build_transitions() -> dict[Status, frozenset[Status]]:
    graph: dict[Status, set[Status]] = {status: set() for status in Status}
    for stage in Stage:
        for entry in stage.entry_statuses:
            graph[entry].add(stage.in_progress)
        graph[stage.in_progress].update({stage.completed, stage.error})
    return {status: frozenset(targets) for status, targets in graph.items()}


TRANSITIONS: dict[Status, frozenset[Status]] = _build_transitions()

INITIAL_STATUS = Status.UPLOADED
TERMINAL_STATUS = Status.INDEXING_COMPLETED


def can_transition(current: Status, target: Status) -> bool:
    """True if ``current → target`` is an edge of the lifecycle graph."""
    return target in TRANSITIONS[current]
