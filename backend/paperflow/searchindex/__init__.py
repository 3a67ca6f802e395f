"""Search index adapters used by the Indexing stage."""

from paperflow.searchindex.base import SearchIndexClient
from paperflow.searchindex.factory import get_search_index

__all__ = ["SearchIndexClient", "get_search_index"]
