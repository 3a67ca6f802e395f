"""
Document Processing Package
════════════════════════════

Collaborators of the OCR and Enrichment stages.

Modules
───────
  ocr.py        Extraction strategies (PyMuPDF text layer, Unstructured OCR)
  extractor.py  Orchestrator that picks a strategy and returns page texts
  cleaning.py   OCR noise removal before text reaches the LLM
"""

from paperflow.processing.cleaning import CleaningRules, TextCleaner
from paperflow.processing.extractor import PdfTextExtractor, TextExtractor

__all__ = [
    "CleaningRules",
    "PdfTextExtractor",
    "TextCleaner",
    "TextExtractor",
]
