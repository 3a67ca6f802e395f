"""
Text Extraction Orchestrator
════════════════════════════

Implements the OCR stage's collaborator: PDF bytes in, ordered page texts
out.

  1.  Try PyMuPDF (native text layer)
  2a. avg chars/page >= threshold  → done, pages returned as read
  2b. otherwise the document is scanned → run the configured OCR backend
      and clean each page with the TextCleaner (OCR noise)
  3.  OCR unavailable or empty → fall back to the PyMuPDF pages
      (a blank page set is still a valid extraction)

Anything that prevents reading the file at all (corrupt PDF, encrypted
document, library crash) raises ExtractionError.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod

from paperflow.core.errors import ExtractionError
from paperflow.processing.cleaning import TextCleaner
from paperflow.processing.ocr import (
    BaseTextExtractor,
    ExtractionStrategyResult,
    PyMuPDFExtractor,
    UnstructuredExtractor,
)

logger = logging.getLogger(__name__)


class TextExtractor(ABC):
    """Collaborator contract of the OCR stage."""

    @abstractmethod
    async def extract(self, pdf_bytes: bytes) -> list[str]:
        """Return page texts in page order; raise ExtractionError on failure."""


class PdfTextExtractor(TextExtractor):
    """
    Usage::

        extractor = PdfTextExtractor.from_settings(settings)
        pages = await extractor.extract(pdf_bytes)
    """

    def __init__(
        self,
        native: BaseTextExtractor | None = None,
        ocr: BaseTextExtractor | None = None,
        cleaner: TextCleaner | None = None,
    ) -> None:
        self._native = native or PyMuPDFExtractor()
        self._ocr = ocr
        self._cleaner = cleaner or TextCleaner()

    @classmethod
    def from_settings(cls, settings) -> "PdfTextExtractor":
        ocr: BaseTextExtractor | None = None
        if settings.ocr_backend.lower() == "unstructured":
            ocr = UnstructuredExtractor(timeout_seconds=settings.ocr_timeout_seconds)
        return cls(ocr=ocr)

    async def extract(self, pdf_bytes: bytes) -> list[str]:
        t0 = time.monotonic()
        try:
            native = await self._native.extract(pdf_bytes)
        except Exception as exc:
            raise ExtractionError(f"Could not read PDF: {exc}") from exc

        if not native.is_likely_scanned():
            return self._finish(native, t0)

        logger.info(
            "Document appears scanned (avg %.0f chars/page) | ocr_backend=%s",
            native.avg_chars_per_page,
            self._ocr.strategy_name if self._ocr else "none",
        )
        ocr_result = await self._run_ocr(pdf_bytes)
        if ocr_result is not None and ocr_result.total_chars > 0:
            return self._finish(ocr_result, t0, clean=True)

        return self._finish(native, t0)

    async def _run_ocr(self, pdf_bytes: bytes) -> ExtractionStrategyResult | None:
        if self._ocr is None:
            return None
        try:
            return await self._ocr.extract(pdf_bytes)
        except ImportError as exc:
            logger.warning("OCR backend %s not installed: %s", self._ocr.strategy_name, exc)
        except Exception as exc:
            # The text layer already read; keep it rather than fail the stage.
            logger.error("OCR backend %s failed: %s", self._ocr.strategy_name, exc, exc_info=True)
        return None

    def _finish(
        self,
        result: ExtractionStrategyResult,
        t0: float,
        clean: bool = False,
    ) -> list[str]:
        pages = result.page_texts()
        if clean:
            pages = [self._cleaner.clean(text) for text in pages]
        logger.info(
            "Extraction complete | strategy=%s pages=%d used_ocr=%s elapsed_ms=%.0f",
            result.strategy_name, len(pages), result.used_ocr, (time.monotonic() - t0) * 1000,
        )
        return pages
