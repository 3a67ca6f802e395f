"""
Text extraction strategies for PDFs
═══════════════════════════════════

Strategy 1: PyMuPDF (fitz)
  - Reads the native PDF text layer in-process, milliseconds per page
  - Returns empty text for image-only (scanned) pages

Strategy 2: Unstructured.io
  - Layout detection + Tesseract OCR for scanned pages
  - Runs locally; needs poppler + tesseract in the worker image
  - Optional dependency (``pip install paperflow[ocr]``)

Both report through ExtractionStrategyResult so the orchestrator in
extractor.py never needs to know which backend produced the pages.

Unlike a best-effort indexer, the pipeline must distinguish "no text"
from "could not read the file": strategies raise on failure and the
orchestrator turns that into ExtractionError.
"""

from __future__ import annotations

import asyncio
import io
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Below this average the document is treated as scanned / image-based.
MIN_CHARS_PER_PAGE_THRESHOLD = 50


@dataclass
class PageText:
    """Text of one page; ``page_number`` is 1-based."""
    page_number:       int
    text:              str
    extraction_method: str = "unknown"


@dataclass
class ExtractionStrategyResult:
    pages:         list[PageText]
    strategy_name: str
    elapsed_ms:    float = 0.0
    used_ocr:      bool  = False

    @property
    def total_chars(self) -> int:
        return sum(len(p.text) for p in self.pages)

    @property
    def avg_chars_per_page(self) -> float:
        if not self.pages:
            return 0.0
        return self.total_chars / len(self.pages)

    def is_likely_scanned(self) -> bool:
        return self.avg_chars_per_page < MIN_CHARS_PER_PAGE_THRESHOLD

    def page_texts(self) -> list[str]:
        return [p.text for p in sorted(self.pages, key=lambda p: p.page_number)]


class BaseTextExtractor(ABC):
    """
    A text extraction strategy.

    Accepts raw PDF bytes (never a path, workers stay stateless) and runs
    the blocking library call in the default thread executor.
    """

    @property
    @abstractmethod
    def strategy_name(self) -> str:
        """Name used in logs."""

    @abstractmethod
    def _extract_sync(self, pdf_bytes: bytes) -> ExtractionStrategyResult:
        """Blocking extraction; runs in a worker thread."""

    async def extract(self, pdf_bytes: bytes) -> ExtractionStrategyResult:
        loop = asyncio.get_running_loop()
        t0 = time.monotonic()
        result = await loop.run_in_executor(None, self._extract_sync, pdf_bytes)
        result.elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "%s | pages=%d total_chars=%d avg_chars_per_page=%.0f elapsed_ms=%.0f",
            self.strategy_name, len(result.pages), result.total_chars,
            result.avg_chars_per_page, result.elapsed_ms,
        )
        return result


class PyMuPDFExtractor(BaseTextExtractor):

    @property
    def strategy_name(self) -> str:
        return "pymupdf"

    def _extract_sync(self, pdf_bytes: bytes) -> ExtractionStrategyResult:
        import fitz  # PyMuPDF; imported here to avoid module-level import cost

        pages: list[PageText] = []
        with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
            for page_num, page in enumerate(doc, start=1):
                raw = page.get_text("text") or ""
                pages.append(PageText(
                    page_number=page_num,
                    text=raw.strip(),
                    extraction_method=self.strategy_name,
                ))
        return ExtractionStrategyResult(pages=pages, strategy_name=self.strategy_name)


class UnstructuredExtractor(BaseTextExtractor):
    """
    OCR fallback using the open-source Unstructured library.

    strategy="hi_res" runs layout detection + Tesseract; "ocr_only" forces
    Tesseract on every page and is cheaper on memory.
    """

    def __init__(self, strategy: str = "hi_res", timeout_seconds: float = 120) -> None:
        self._strategy = strategy
        self._timeout = timeout_seconds

    @property
    def strategy_name(self) -> str:
        return "unstructured"

    async def extract(self, pdf_bytes: bytes) -> ExtractionStrategyResult:
        # OCR on pathological scans can run for minutes; bound it.
        return await asyncio.wait_for(super().extract(pdf_bytes), timeout=self._timeout)

    def _extract_sync(self, pdf_bytes: bytes) -> ExtractionStrategyResult:
        from unstructured.partition.pdf import partition_pdf

        elements = partition_pdf(
            file=io.BytesIO(pdf_bytes),
            strategy=self._strategy,
            include_page_breaks=True,
            extract_images_in_pdf=False,
        )

        pages_dict: dict[int, list[str]] = {}
        for elem in elements:
            page_num = (elem.metadata.page_number if elem.metadata else None) or 1
            texts = pages_dict.setdefault(page_num, [])
            text = str(elem).strip()
            if text:
                texts.append(text)

        pages = [
            PageText(page_number=pn, text="\n".join(texts), extraction_method=self.strategy_name)
            for pn, texts in sorted(pages_dict.items())
        ]
        return ExtractionStrategyResult(
            pages=pages, strategy_name=self.strategy_name, used_ocr=True,
        )
