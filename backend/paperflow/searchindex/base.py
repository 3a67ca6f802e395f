"""
Search Index — Abstract Base

Every concrete search backend implements this interface. The Indexing
stage only speaks this protocol, so backends are swappable without
touching pipeline code.

Contract (enforced by ALL implementations):
  - index() is an upsert keyed by document id; re-indexing the same
    document replaces the earlier entry.
  - Any failure to store the document raises IndexingError.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from paperflow.schemas.documents import IndexableDocument


class SearchIndexClient(ABC):

    @abstractmethod
    async def index(self, document: IndexableDocument) -> None:
        """Upsert ``document``. Raises IndexingError on failure."""

    async def close(self) -> None:
        """Release pooled connections. No-op by default."""
