"""
Tests for execution/contract_rag/entities.py

Covers: EntitySpan, merge_spans, RegexEntityDetector and the
        LLMEntityDetector response handling (client mocked).
"""

import json
import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest


class TestEntitySpan:

    def test_shifted(self):
        from execution.contract_rag.entities import EntitySpan
        span = EntitySpan(3, 9, "amount", "$5,000")
        moved = span.shifted(100)
        assert (moved.start, moved.end) == (103, 109)
        assert moved.label == "amount"
        assert moved.text == "$5,000"


class TestMergeSpans:

    def test_overlapping_spans_merge(self):
        from execution.contract_rag.entities import EntitySpan, merge_spans
        merged = merge_spans([
            EntitySpan(10, 20, "date"),
            EntitySpan(0, 5, "amount"),
            EntitySpan(15, 30, "clause"),
        ])
        assert [(s.start, s.end) for s in merged] == [(0, 5), (10, 30)]
        assert merged[1].label == "date"

    def test_adjacent_spans_stay_separate(self):
        from execution.contract_rag.entities import EntitySpan, merge_spans
        merged = merge_spans([EntitySpan(0, 5, "a"), EntitySpan(5, 9, "b")])
        assert len(merged) == 2


class TestRegexEntityDetector:

    def test_finds_amounts_dates_and_clauses(self):
        from execution.contract_rag.entities import RegexEntityDetector
        text = "Under Section 4.2 the Buyer pays $250,000.00 on March 15, 2025."
        found = {s.text for s in RegexEntityDetector().find(text)}
        assert "$250,000.00" in found
        assert "March 15, 2025" in found
        assert "Section 4.2" in found

    def test_organizations(self):
        from execution.contract_rag.entities import RegexEntityDetector
        spans = RegexEntityDetector().find("The supplier is Northwind Consulting LLC, based in Ohio.")
        assert any(s.label == "organization" for s in spans)

    def test_hebrew_amount(self):
        from execution.contract_rag.entities import RegexEntityDetector
        spans = RegexEntityDetector().find('הלקוח ישלם 10,000 ש"ח בכל חודש')
        assert any(s.label == "amount" for s in spans)

    def test_async_interface(self):
        from execution.contract_rag.entities import RegexEntityDetector
        spans = asyncio.run(RegexEntityDetector().detect_entities("Due on 2025-06-30."))
        assert [s.text for s in spans] == ["2025-06-30"]


def _chat_response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class TestLLMEntityDetector:

    def _detector(self, content):
        from execution.contract_rag.entities import LLMEntityDetector
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=_chat_response(content))
        return LLMEntityDetector(client=client, base_delay=0), client

    def test_offsets_recovered_from_text(self):
        window = "Alpha Corp pays $5,000 to Beta Inc on January 1, 2026."
        payload = json.dumps({"entities": [
            {"text": "Alpha Corp", "type": "organization"},
            {"text": "$5,000", "type": "amount"},
            {"text": "January 1, 2026", "type": "date"},
        ]})
        detector, _ = self._detector(payload)
        spans = asyncio.run(detector.detect_entities(window))
        assert [window[s.start:s.end] for s in spans] == ["Alpha Corp", "$5,000", "January 1, 2026"]

    def test_invented_entities_dropped(self):
        payload = json.dumps({"entities": [{"text": "Gamma LLC", "type": "organization"}]})
        detector, _ = self._detector(payload)
        assert asyncio.run(detector.detect_entities("Alpha Corp pays Beta Inc.")) == []

    def test_blank_window_skips_call(self):
        detector, client = self._detector("{}")
        assert asyncio.run(detector.detect_entities("   ")) == []
        client.chat.completions.create.assert_not_called()

    def test_invalid_json_is_transient(self):
        from execution.contract_rag.entities import LLMEntityDetector
        from execution.contract_rag.errors import TransientServiceError
        with pytest.raises(TransientServiceError):
            LLMEntityDetector._parse("not json")

    def test_bare_list_payload(self):
        from execution.contract_rag.entities import LLMEntityDetector
        parsed = LLMEntityDetector._parse(json.dumps([{"text": "X Ltd", "type": "organization"}, {"type": "date"}]))
        assert parsed == [{"text": "X Ltd", "type": "organization"}]
