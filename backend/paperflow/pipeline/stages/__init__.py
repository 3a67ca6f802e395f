"""Stage processors: OCR → Enrichment → Indexing."""

from paperflow.pipeline.stages.base import StageOutcome, StageProcessor
from paperflow.pipeline.stages.enrichment import EnrichmentStage
from paperflow.pipeline.stages.indexing import IndexingStage
from paperflow.pipeline.stages.ocr import OcrStage

__all__ = [
    "EnrichmentStage",
    "IndexingStage",
    "OcrStage",
    "StageOutcome",
    "StageProcessor",
]
