"""
Search Index Factory

Selects the search backend from config. Pipeline wiring only imports
get_search_index(); nothing else touches the concrete classes.
"""

from __future__ import annotations

from paperflow.core.config import Settings
from paperflow.searchindex.base import SearchIndexClient


def get_search_index(settings: Settings) -> SearchIndexClient:
    backend = settings.search_backend.lower()

    if backend == "elasticsearch":
        from paperflow.searchindex.elasticsearch import ElasticsearchIndexClient
        return ElasticsearchIndexClient(
            base_url=settings.elasticsearch_url,
            index_name=settings.search_index_name,
            api_key=settings.elasticsearch_api_key,
            timeout=settings.search_timeout_seconds,
        )

    raise ValueError(
        f"Unknown search backend: '{backend}'. Valid options: 'elasticsearch'"
    )
