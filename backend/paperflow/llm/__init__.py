"""
LLM Package

Document enrichment through a local Ollama model via LangChain.

Public API::

    from paperflow.llm import OllamaEnrichmentProvider

    provider = OllamaEnrichmentProvider.from_settings(settings)
    result = await provider.enrich(page_text)   # EnrichmentResult | None
"""

from paperflow.llm.enrichment import EnrichmentProvider, OllamaEnrichmentProvider
from paperflow.llm.response_parser import extract_embedded_json, parse_enrichment_result

__all__ = [
    "EnrichmentProvider",
    "OllamaEnrichmentProvider",
    "extract_embedded_json",
    "parse_enrichment_result",
]
