"""Unit tests for extraction-service output parsing."""

import json

import pytest

from backend.llm.anthropic import LLMError, LLMUnavailable
from runner.ingest.errors import ExtractionParseError, ExtractionServiceError
from runner.ingest.extraction import (
    RELATIONSHIP_SYSTEM_PROMPT,
    SYSTEM_PROMPT,
    ExtractionClient,
    build_relationship_prompt,
    clamp_confidence,
    parse_extraction,
    parse_relationships,
)
from tests.conftest import ARTICLE_JSON, FakeLLM


class TestParseExtraction:
    def test_plain_json(self):
        result = parse_extraction(json.dumps(ARTICLE_JSON))
        assert result.title == "Acme Launches Model X"
        assert result.category == "AI"
        assert [e.name for e in result.entities] == ["Acme Corp", "Acme Model X", "AI"]
        assert result.timeline_event["entity"] == "Acme Corp"

    def test_markdown_fenced_json(self):
        raw = "```json\n" + json.dumps(ARTICLE_JSON) + "\n```"
        assert parse_extraction(raw).title == "Acme Launches Model X"

    def test_bare_fence(self):
        raw = "```\n" + json.dumps(ARTICLE_JSON) + "\n```"
        assert parse_extraction(raw).content.startswith("Acme released")

    def test_invalid_json(self):
        with pytest.raises(ExtractionParseError) as e:
            parse_extraction("Sure! Here is the brief: {")
        assert e.value.status_code == 500
        assert e.value.log_status == "ai_validation_error"
        assert e.value.error == "Failed to parse AI response as JSON."

    def test_not_an_object(self):
        with pytest.raises(ExtractionParseError):
            parse_extraction("[1, 2, 3]")

    @pytest.mark.parametrize("missing", ["title", "content"])
    def test_missing_required_field(self, missing):
        obj = dict(ARTICLE_JSON)
        obj[missing] = "   "
        with pytest.raises(ExtractionParseError):
            parse_extraction(json.dumps(obj))

    def test_category_coerced(self):
        obj = dict(ARTICLE_JSON, category="Space exploration")
        result = parse_extraction(json.dumps(obj))
        assert result.category == "Space"
        assert result.raw_category == "Space exploration"

    def test_optional_fields_tolerated(self):
        result = parse_extraction(json.dumps({"title": "T", "content": "C", "entities": ["bad", {"name": "X"}]}))
        assert result.category == "Intelligence Brief"
        assert result.summary == ""
        assert len(result.entities) == 1
        assert result.entities[0].type == ""
        assert result.timeline_event is None


class TestParseRelationships:
    def test_valid(self):
        raw = json.dumps(
            [
                {"subject": "Acme", "predicate": "Partnered With", "object": "Globex", "confidence": 0.8},
                {"subject": "Acme", "predicate": "likes", "object": "Globex"},
                {"subject": "", "predicate": "acquired", "object": "Globex"},
                "noise",
            ]
        )
        triples = parse_relationships(raw)
        assert len(triples) == 1
        assert triples[0].predicate == "partnered_with"
        assert triples[0].confidence == 0.8

    def test_confidence_clamped_and_defaulted(self):
        raw = json.dumps(
            [
                {"subject": "A", "predicate": "acquired", "object": "B", "confidence": 7},
                {"subject": "A", "predicate": "developed", "object": "C"},
            ]
        )
        triples = parse_relationships(raw)
        assert triples[0].confidence == 1.0
        assert triples[1].confidence == 0.7

    def test_non_array_is_empty(self):
        assert parse_relationships('{"subject": "A"}') == []

    def test_clamp(self):
        assert clamp_confidence(-3) == 0.0
        assert clamp_confidence("high") == 0.7
        assert clamp_confidence(True) == 0.7


class TestExtractionClient:
    def test_title_hint_sent(self):
        llm = FakeLLM()
        ExtractionClient(complete=llm).extract_article("body text", title="Acme news")
        system, user, max_tokens = llm.calls[0]
        assert system == SYSTEM_PROMPT
        assert user.startswith("Page title: Acme news")
        assert max_tokens == 2000

    def test_service_failure_wrapped(self):
        client = ExtractionClient(complete=FakeLLM(article=LLMUnavailable("timeout")))
        with pytest.raises(ExtractionServiceError) as e:
            client.extract_article("body")
        assert e.value.log_status == "ai_validation_error"

        client = ExtractionClient(complete=FakeLLM(article=LLMError("HTTP 529")))
        with pytest.raises(ExtractionServiceError):
            client.extract_article("body")

    def test_empty_output(self):
        client = ExtractionClient(complete=FakeLLM(article="   "))
        with pytest.raises(ExtractionServiceError) as e:
            client.extract_article("body")
        assert e.value.error == "Empty response from Anthropic."

    def test_relationships_need_two_entities(self):
        llm = FakeLLM()
        assert ExtractionClient(complete=llm).extract_relationships(["Acme"], "text") == []
        assert llm.calls_for(RELATIONSHIP_SYSTEM_PROMPT) == []

    def test_relationship_prompt_context_capped(self):
        prompt = build_relationship_prompt(["Acme", "Globex"], "x" * 5000)
        assert "Entities: Acme, Globex" in prompt
        assert prompt.endswith("x" * 3000)
        assert "x" * 3001 not in prompt

    def test_summary_too_short(self):
        client = ExtractionClient(complete=FakeLLM(summary="Acme is a company."))
        assert client.summarize_entity("Acme", "company") is None
