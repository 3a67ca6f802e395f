"""
OCR text cleaning.

Raw OCR output is full of scanner noise: table rules (``|||||``, ``____``),
stray glyphs and ragged spacing. The cleaner reduces a page to one line of
plain text suitable for an LLM prompt:

  1. split into lines and trim each
  2. drop lines shorter than ``minimum_line_length``
  3. drop lines containing a run of 3+ separator characters
  4. strip characters outside Unicode letters, numbers, punctuation, spaces
  5. collapse runs of whitespace
  6. join the surviving lines with a single space
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass

_KEPT_CATEGORIES = ("L", "N", "P", "Z")


@dataclass(frozen=True)
class CleaningRules:
    separator_pattern:      str = r"[|/\\_~^*]{3,}"
    multiple_spaces_pattern: str = r"\s{2,}"
    minimum_line_length:    int = 3


class TextCleaner:

    def __init__(self, rules: CleaningRules | None = None) -> None:
        self._rules = rules or CleaningRules()
        self._separator = re.compile(self._rules.separator_pattern)
        self._spaces = re.compile(self._rules.multiple_spaces_pattern)

    def clean(self, raw_text: str | None) -> str:
        if raw_text is None or not raw_text.strip():
            return ""

        lines = []
        for line in raw_text.splitlines():
            line = line.strip()
            if not self._is_valid_line(line):
                continue
            line = self._spaces.sub(" ", self._strip_non_standard(line)).strip()
            if line:
                lines.append(line)
        return " ".join(lines)

    def _is_valid_line(self, line: str) -> bool:
        return (
            len(line) >= self._rules.minimum_line_length
            and self._separator.search(line) is None
        )

    @staticmethod
    def _strip_non_standard(line: str) -> str:
        return "".join(
            ch for ch in line if unicodedata.category(ch).startswith(_KEPT_CATEGORIES)
        )
