"""
Enrichment providers — derive title, date and tags from document text.

  ┌────────────────────────────────────────────────┐
  │  EnrichmentStage                               │
  │     │  enrich(cleaned first-page text)         │
  │     ▼                                          │
  │  OllamaEnrichmentProvider                      │
  │     │  [SystemMessage, HumanMessage]           │
  │     ▼                                          │
  │  ChatOllama.ainvoke  ──►  raw model text       │
  │     │                                          │
  │     ▼                                          │
  │  response_parser.parse_enrichment_result       │
  └────────────────────────────────────────────────┘

Providers may raise or return None; the Enrichment stage owns the
timeout and the fallback record.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from paperflow.llm.response_parser import parse_enrichment_result
from paperflow.schemas.documents import EnrichmentResult

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You extract metadata from scanned business documents. "
    "Answer with a single JSON object and nothing else."
)

PROMPT_TEMPLATE = (
    'Give me a json-format with title, date_sent as dd.MM.yyyy and 5 tags '
    'for this text: "{text}"'
)


class EnrichmentProvider(ABC):
    """Collaborator contract of the Enrichment stage."""

    @abstractmethod
    async def enrich(self, text: str) -> EnrichmentResult | None:
        """Return the parsed result, None when the model gave nothing usable."""


class OllamaEnrichmentProvider(EnrichmentProvider):
    """
    Runs a local Ollama model (default: mistral) through LangChain.

    Usage::

        provider = OllamaEnrichmentProvider.from_settings(settings)
        result = await provider.enrich(text)
    """

    def __init__(self, llm: BaseChatModel, model_name: str = "") -> None:
        self._llm = llm
        self._model_name = model_name

    @classmethod
    def from_settings(cls, settings) -> "OllamaEnrichmentProvider":
        from langchain_community.chat_models import ChatOllama
        llm = ChatOllama(
            model=settings.enrichment_model,
            base_url=settings.ollama_base_url,
            temperature=settings.enrichment_temperature,
        )
        return cls(llm, model_name=settings.enrichment_model)

    @staticmethod
    def build_messages(text: str) -> list[BaseMessage]:
        return [
            SystemMessage(content=SYSTEM_PROMPT),
            HumanMessage(content=PROMPT_TEMPLATE.format(text=text)),
        ]

    async def enrich(self, text: str) -> EnrichmentResult | None:
        logger.info("Calling enrichment model | model=%s chars=%d", self._model_name, len(text))
        response = await self._llm.ainvoke(self.build_messages(text))
        content = response.content if isinstance(response.content, str) else str(response.content)
        logger.debug("Enrichment model response: %s", content[:500])
        return parse_enrichment_result(content)
