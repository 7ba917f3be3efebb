"""Tests for JSON recovery from raw model text."""

import pytest

from ebios_llm.llm.errors import EmptyResponseError, MalformedJsonError
from ebios_llm.llm.extract import generate_candidates, looks_truncated, parse_json_from_text


class TestWellFormedResponses:
    """A single JSON value survives prose, fences and whitespace unchanged."""

    @pytest.mark.parametrize(
        "text",
        [
            '{"name": "ERP", "items": [1, 2]}',
            '  \n{"name": "ERP", "items": [1, 2]}\n  ',
            '```json\n{"name": "ERP", "items": [1, 2]}\n```',
            '```\n{"name": "ERP", "items": [1, 2]}\n```',
            'Here is the result:\n{"name": "ERP", "items": [1, 2]}\nHope this helps.',
        ],
    )
    def test_returns_object_unchanged(self, text):
        assert parse_json_from_text("OpenAI", text) == {"name": "ERP", "items": [1, 2]}

    def test_fenced_array(self):
        assert parse_json_from_text("Gemini", "```json\n[1,2,3]\n```") == [1, 2, 3]

    def test_array_inside_prose(self):
        assert parse_json_from_text("Mistral", 'Sure! ["Préventive", "Corrective"] Anything else?') == [
            "Préventive",
            "Corrective",
        ]

    def test_first_of_several_objects_wins(self):
        text = 'First {"a": {"nested": true}} then {"b": 2}'
        assert parse_json_from_text("Groq", text) == {"a": {"nested": True}}

    def test_braces_inside_strings_do_not_confuse_scanning(self):
        text = 'Result: {"text": "a } inside", "ok": true} done'
        assert parse_json_from_text("xAI", text) == {"text": "a } inside", "ok": True}


class TestRepairs:
    def test_bare_property_is_wrapped(self):
        assert parse_json_from_text("Gemini", '"status": "ok"') == {"status": "ok"}

    def test_truncated_object_is_closed(self):
        assert parse_json_from_text("Gemini", '{"a": 1, "b": [1,2') == {"a": 1, "b": [1, 2]}

    def test_incomplete_last_line_is_dropped(self):
        text = '{\n  "context": "ok",\n  "securityBaseline": "ISO 27001",\n  "businessVal'
        assert parse_json_from_text("Gemini", text) == {
            "context": "ok",
            "securityBaseline": "ISO 27001",
        }

    def test_trailing_comma_removed_before_closing(self):
        assert parse_json_from_text("Qwen", '{"a": 1,\n"b": 2,') == {"a": 1, "b": 2}

    def test_truncation_inside_string_is_reported(self):
        with pytest.raises(MalformedJsonError) as exc_info:
            parse_json_from_text("Gemini", '{"description": "the attacker then')

        assert exc_info.value.truncated is True
        assert "truncated" in str(exc_info.value)
        assert "token limit" in str(exc_info.value)


class TestFailures:
    @pytest.mark.parametrize("text", ["", "   \n ", None])
    def test_empty_text(self, text):
        with pytest.raises(EmptyResponseError, match="Anthropic"):
            parse_json_from_text("Anthropic", text)

    def test_plain_prose_is_not_json(self):
        with pytest.raises(MalformedJsonError) as exc_info:
            parse_json_from_text("DeepSeek", "I'm sorry, I cannot help with that request.")

        assert exc_info.value.truncated is False
        assert "did not return valid JSON" in str(exc_info.value)
        assert "DeepSeek" in str(exc_info.value)

    def test_null_is_never_returned(self):
        with pytest.raises(MalformedJsonError):
            parse_json_from_text("OpenAI", "null")


class TestCandidates:
    def test_candidates_are_ordered_and_deduplicated(self):
        candidates = generate_candidates('```json\n{"a": 1}\n```')

        assert candidates[0].startswith("```json")
        assert candidates.count('{"a": 1}') == 1

    def test_looks_truncated(self):
        assert looks_truncated('{"a": 1, "b": ')
        assert not looks_truncated('{"a": 1}')
        assert not looks_truncated("{ no keys here")
        assert not looks_truncated("plain text")
