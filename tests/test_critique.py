"""Tests for the bounded self-critique loop."""

import asyncio

import pytest

from ebios_llm.llm.critique import generate_with_critique
from ebios_llm.llm.errors import EmptyResponseError, ValidationError


def _at_least_four_values(data):
    count = len(data["businessValues"])
    if count < 4:
        return [f"businessValues must contain at least 4 items, got {count}"]
    return []


def _names_filled(data):
    return [f"business value {i} has no name" for i, v in enumerate(data["businessValues"], 1) if not v["name"]]


class _ScriptedModel:
    """Returns queued answers and records every prompt it receives."""

    def __init__(self, answers):
        self.answers = list(answers)
        self.prompts: list[str] = []

    async def __call__(self, prompt: str):
        self.prompts.append(prompt)
        answer = self.answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer


def _values(*names):
    return {"businessValues": [{"name": name} for name in names]}


def test_succeeds_on_third_attempt_with_latest_feedback_only():
    model = _ScriptedModel([_values("a", ""), _values("a", "b", "c"), _values("a", "b", "c", "d")])

    result = asyncio.run(
        generate_with_critique(model, "Generate business values", [_at_least_four_values, _names_filled])
    )

    assert result.attempts == 3
    assert result.value == _values("a", "b", "c", "d")
    assert result.rejected == [
        ["businessValues must contain at least 4 items, got 2", "business value 2 has no name"],
        ["businessValues must contain at least 4 items, got 3"],
    ]

    assert model.prompts[0] == "Generate business values"
    assert "- businessValues must contain at least 4 items, got 2\n- business value 2 has no name" in model.prompts[1]
    final_prompt = model.prompts[2]
    assert final_prompt.startswith("Generate business values\n\nFEEDBACK TO ADDRESS")
    assert "got 3" in final_prompt
    assert "got 2" not in final_prompt
    assert "has no name" not in final_prompt


def test_first_valid_answer_is_returned_immediately():
    model = _ScriptedModel([_values("a", "b", "c", "d")])

    result = asyncio.run(generate_with_critique(model, "p", [_at_least_four_values]))

    assert result.attempts == 1
    assert result.rejected == []
    assert model.prompts == ["p"]


def test_exhausted_budget_raises_with_outstanding_issues():
    model = _ScriptedModel([_values("a"), _values("a", "b"), _values("a", "b", "c")])

    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(generate_with_critique(model, "p", [_at_least_four_values], provider="gemini"))

    assert exc_info.value.issues == ["businessValues must contain at least 4 items, got 3"]
    assert exc_info.value.provider == "gemini"
    assert "after 3 attempts" in str(exc_info.value)
    assert len(model.prompts) == 3


def test_validation_error_from_generation_counts_as_attempt():
    model = _ScriptedModel([ValidationError(["<root>: 'businessValues' is a required property"]), _values("a", "b", "c", "d")])

    result = asyncio.run(generate_with_critique(model, "p", [_at_least_four_values]))

    assert result.attempts == 2
    assert "'businessValues' is a required property" in model.prompts[1]


def test_other_errors_propagate_untouched():
    error = EmptyResponseError("Gemini returned an empty response.", provider="gemini")
    model = _ScriptedModel([error])

    with pytest.raises(EmptyResponseError) as exc_info:
        asyncio.run(generate_with_critique(model, "p", [_at_least_four_values]))

    assert exc_info.value is error
    assert len(model.prompts) == 1
