"""
Pipeline error taxonomy.

  PipelineError
    ├── DocumentNotFoundError   event references a document that no longer exists
    ├── InvalidTransitionError  status write outside the lifecycle graph (a defect)
    ├── InvalidUploadError      upload rejected before a Document is created
    └── StageError              a stage could not produce its output
          ├── PreconditionError   required input missing or empty
          └── CollaboratorError   extractor / enrichment / index call failed
                ├── ExtractionError
                └── IndexingError

Stage processors turn every StageError into a failure write on the
document. Nothing in this module is raised onto the event bus.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from paperflow.pipeline.status import Stage, Status


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class DocumentNotFoundError(PipelineError):
    def __init__(self, document_id: UUID) -> None:
        super().__init__(f"Document not found with ID: {document_id}")
        self.document_id = document_id


class InvalidTransitionError(PipelineError):
    def __init__(self, document_id: UUID, current: "Status", target: "Status") -> None:
        super().__init__(
            f"Illegal status transition for document {document_id}: "
            f"{current.value} -> {target.value}"
        )
        self.document_id = document_id
        self.current = current
        self.target = target


class InvalidUploadError(PipelineError):
    """Raised by the ingestion service; ``code`` is machine-readable."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class StageError(PipelineError):
    """A stage failed to produce output. Consumes one retry attempt."""

    stage: "Stage | None" = None

    def __init__(self, message: str, stage: "Stage | None" = None) -> None:
        super().__init__(message)
        if stage is not None:
            self.stage = stage


class PreconditionError(StageError):
    """The stage's input is missing or empty (e.g. zero pages to enrich)."""


class CollaboratorError(StageError):
    """The external call itself failed or timed out."""


class ExtractionError(CollaboratorError):
    pass


class IndexingError(CollaboratorError):
    pass
