"""
Unit Tests — OCR text cleaning and LLM response parsing
"""

from __future__ import annotations

import pytest

from paperflow.llm.response_parser import extract_embedded_json, parse_enrichment_result
from paperflow.processing.cleaning import CleaningRules, TextCleaner
from paperflow.schemas.documents import FALLBACK_DATE, FALLBACK_TITLE, EnrichmentResult


@pytest.mark.unit
class TestTextCleaner:

    def test_lines_joined_with_single_space(self):
        assert TextCleaner().clean("Invoice 2023\n  ACME   GmbH  \nTotal: 42,00") == (
            "Invoice 2023 ACME GmbH Total: 42,00"
        )

    def test_short_and_separator_lines_dropped(self):
        raw = "ok\nRechnung Nr. 17\n|||||||||\n____ Betrag ____\nEnde gut"
        assert TextCleaner().clean(raw) == "Rechnung Nr. 17 Ende gut"

    def test_non_standard_characters_stripped(self):
        assert TextCleaner().clean("Total € 42 ★ paid") == "Total 42 paid"

    def test_umlauts_are_letters(self):
        assert TextCleaner().clean("Größe: Übermaß") == "Größe: Übermaß"

    @pytest.mark.parametrize("raw", [None, "", "   \n\t  ", "ab\n|||"])
    def test_nothing_usable_returns_empty(self, raw):
        assert TextCleaner().clean(raw) == ""

    def test_custom_minimum_line_length(self):
        cleaner = TextCleaner(CleaningRules(minimum_line_length=10))
        assert cleaner.clean("short\nlong enough line") == "long enough line"


@pytest.mark.unit
class TestEmbeddedJson:

    def test_fenced_block_preferred(self):
        text = 'noise {"a": 0}\n```json\n{"title": "X"}\n```\ntrailing }'
        assert extract_embedded_json(text) == '{"title": "X"}'

    def test_outermost_braces(self):
        text = 'Here you go: {"title": "X", "tags": [{"name": "a"}]} Thanks!'
        assert extract_embedded_json(text) == '{"title": "X", "tags": [{"name": "a"}]}'

    @pytest.mark.parametrize("text", [None, "", "no json here", "} backwards {"])
    def test_no_object(self, text):
        assert extract_embedded_json(text) == ""


@pytest.mark.unit
class TestParseEnrichmentResult:

    def test_typical_mistral_answer(self):
        raw = (
            "Sure! Here is the JSON:\n```json\n"
            '{"title": "Invoice 2023", "date_sent": "15.03.2023", '
            '"tags": [{"name": "invoice"}, {"name": "acme"}]}\n```'
        )
        result = parse_enrichment_result(raw)
        assert result.title == "Invoice 2023"
        assert result.date_sent == "15.03.2023"
        assert result.tag_names == ["invoice", "acme"]
        assert result.failed is False

    def test_plain_string_tags_and_provider_flag(self):
        result = parse_enrichment_result(
            '{"title": " ", "tags": ["a", "", "b"], "flagFailedEnrichment": true}'
        )
        assert result.title is None
        assert result.tag_names == ["a", "b"]
        assert result.failed is True

    @pytest.mark.parametrize("raw", ["nothing", '{"title": "x",}', "[1, 2]", '{"tags": 5}'])
    def test_unusable_answers_yield_none(self, raw):
        assert parse_enrichment_result(raw) is None

    def test_empty_object_is_empty_result(self):
        result = parse_enrichment_result("{}")
        assert result is not None and result.is_empty


@pytest.mark.unit
class TestFallbackRecord:

    def test_fallback_values(self):
        fallback = EnrichmentResult.fallback()
        assert fallback.title == FALLBACK_TITLE == "Unknown Title"
        assert fallback.date_sent == FALLBACK_DATE == "01.01.2000"
        assert fallback.tags == []
        assert fallback.failed is True
