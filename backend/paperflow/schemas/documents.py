"""
Pipeline data contracts — Pydantic schemas exchanged with collaborators.

  EnrichmentResult    what an EnrichmentProvider returns (parsed LLM JSON)
  IndexableDocument   what the Indexing stage hands to the search index

Design decisions:
  - ``date_sent`` stays a string on the wire (``dd.MM.yyyy``); parsing into
    a date happens in the Enrichment stage so a bad date never rejects an
    otherwise usable result.
  - Tags accept both ``["invoice"]`` and ``[{"name": "invoice"}]``; models
    are inconsistent about which shape they emit.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Fallback enrichment record (stored when the provider gives us nothing usable)
# ---------------------------------------------------------------------------

FALLBACK_TITLE = "Unknown Title"
FALLBACK_DATE = "01.01.2000"
DATE_FORMAT = "%d.%m.%Y"   # dd.MM.yyyy


class EnrichmentResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title:     str | None = None
    date_sent: str | None = None
    tags:      list[str]  = Field(default_factory=list)
    failed:    bool       = Field(False, alias="flagFailedEnrichment")

    @field_validator("title", "date_sent", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @field_validator("tags", mode="before")
    @classmethod
    def _normalise_tags(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, (str, dict)):
            value = [value]
        if not isinstance(value, (list, tuple)):
            raise ValueError("tags must be a list of names")
        names: list[str] = []
        for item in value:
            name = item.get("name") if isinstance(item, dict) else item
            if name is not None and str(name).strip():
                names.append(str(name).strip())
        return names

    @property
    def is_empty(self) -> bool:
        return self.title is None and self.date_sent is None and not self.tags

    @property
    def tag_names(self) -> list[str]:
        return list(self.tags)

    @classmethod
    def fallback(cls) -> "EnrichmentResult":
        return cls(title=FALLBACK_TITLE, date_sent=FALLBACK_DATE, tags=[], failed=True)


class IndexableDocument(BaseModel):
    """Search-index payload for one document."""

    id:           UUID
    file_name:    str
    content_type: str | None = None
    tags:         list[str]  = Field(default_factory=list)
    year:         int
    full_text:    str        = ""
    owner:        str | None = None

    def to_index_body(self) -> dict[str, Any]:
        return {
            "id":          str(self.id),
            "fileName":    self.file_name,
            "contentType": self.content_type,
            "tags":        self.tags,
            "year":        self.year,
            "fullText":    self.full_text,
            "owner":       self.owner,
        }
