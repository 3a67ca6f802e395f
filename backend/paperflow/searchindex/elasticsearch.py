"""
Elasticsearch search index over its REST API.

    PUT {elasticsearch_url}/{index}/_doc/{document_id}

One httpx.AsyncClient per process, reused across calls. Auth is an
optional API key (``Authorization: ApiKey ...``); leave it empty for a
local/Docker cluster without security.
"""

from __future__ import annotations

import logging

import httpx

from paperflow.core.errors import IndexingError
from paperflow.schemas.documents import IndexableDocument
from paperflow.searchindex.base import SearchIndexClient

logger = logging.getLogger(__name__)


class ElasticsearchIndexClient(SearchIndexClient):

    def __init__(
        self,
        base_url: str,
        index_name: str = "documents",
        api_key: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"ApiKey {api_key}"
        self._index_name = index_name
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def index(self, document: IndexableDocument) -> None:
        path = f"/{self._index_name}/_doc/{document.id}"
        try:
            resp = await self._http.put(path, json=document.to_index_body())
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Indexing rejected | doc=%s status=%d body=%s",
                document.id, exc.response.status_code, exc.response.text[:300],
            )
            raise IndexingError(
                f"Elasticsearch returned {exc.response.status_code} for document {document.id}"
            ) from exc
        except httpx.RequestError as exc:
            logger.error("Indexing network error | doc=%s error=%s", document.id, exc)
            raise IndexingError(f"Elasticsearch unreachable: {exc}") from exc

        logger.info(
            "Document indexed | doc=%s index=%s result=%s",
            document.id, self._index_name, resp.json().get("result"),
        )

    async def close(self) -> None:
        await self._http.aclose()
