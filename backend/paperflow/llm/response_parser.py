"""
LLM response parsing.

Local models rarely return bare JSON. Typical shapes seen from Mistral:

    Here is the result:
    ```json
    {"title": "Invoice 2023", "date_sent": "15.03.2023", "tags": [...]}
    ```

or prose wrapped around a bare object. We take the first fenced block
holding an object, else the span from the first ``{`` to the last ``}``,
and validate it into an EnrichmentResult. Anything unusable yields None.
"""

from __future__ import annotations

import json
import logging
import re

from pydantic import ValidationError

from paperflow.schemas.documents import EnrichmentResult

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)


def extract_embedded_json(text: str | None) -> str:
    """Return the JSON object embedded in ``text``, or "" when there is none."""
    if text is None or not text.strip():
        return ""

    match = _FENCED_JSON.search(text)
    if match:
        return match.group(1).strip()

    first, last = text.find("{"), text.rfind("}")
    if first != -1 and last > first:
        return text[first:last + 1].strip()
    return ""


def parse_enrichment_result(raw: str | None) -> EnrichmentResult | None:
    payload = extract_embedded_json(raw)
    if not payload:
        logger.warning("LLM response contained no JSON object")
        return None

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        logger.warning("LLM response JSON invalid: %s", exc)
        return None
    if not isinstance(data, dict):
        return None

    try:
        return EnrichmentResult.model_validate(data)
    except ValidationError as exc:
        logger.warning("LLM response failed validation: %s", exc.errors()[:3])
        return None
