"""Response schemas and post-condition checkers for the five workshop steps."""

from collections.abc import Collection
from typing import Any

from ebios_llm.llm.base import JsonSchema
from ebios_llm.llm.critique import Checker
from ebios_llm.validation import (
    LIKELIHOODS,
    MEASURE_TYPES,
    RISK_SOURCE_TYPES,
    SEVERITIES,
    validate_workshop_response,
)


def _string(**extra: Any) -> JsonSchema:
    return {"type": "string", **extra}


def _array_of(item_properties: dict[str, JsonSchema], required: list[str]) -> JsonSchema:
    return {
        "type": "array",
        "items": {"type": "object", "properties": item_properties, "required": required},
    }


WORKSHOP_SCHEMAS: dict[int, JsonSchema] = {
    1: {
        "type": "object",
        "properties": {
            "context": _string(),
            "securityBaseline": _string(),
            "businessValues": _array_of(
                {"name": _string(), "description": _string()},
                ["name", "description"],
            ),
            "dreadedEvents": _array_of(
                {
                    "businessValueName": _string(),
                    "name": _string(),
                    "severity": _string(enum=list(SEVERITIES)),
                },
                ["businessValueName", "name", "severity"],
            ),
        },
        "required": ["context", "securityBaseline", "businessValues", "dreadedEvents"],
    },
    2: _array_of(
        {
            "name": _string(),
            "description": _string(),
            "type": _string(enum=list(RISK_SOURCE_TYPES)),
        },
        ["name", "description", "type"],
    ),
    3: _array_of(
        {
            "riskSourceId": _string(),
            "dreadedEventId": _string(),
            "description": _string(),
            "likelihood": _string(enum=list(LIKELIHOODS)),
        },
        ["riskSourceId", "dreadedEventId", "description", "likelihood"],
    ),
    4: {
        "type": "object",
        "properties": {"description": _string()},
        "required": ["description"],
    },
    5: _array_of(
        {
            "type": _string(enum=list(MEASURE_TYPES)),
            "description": _string(),
        },
        ["type", "description"],
    ),
}

# Collection checked by ``min_items``: a top-level key for object responses, None for arrays.
_COUNTED_COLLECTION: dict[int, str | None] = {1: "businessValues", 2: None, 3: None, 5: None}


def get_workshop_schema(step: int) -> JsonSchema:
    try:
        return WORKSHOP_SCHEMAS[step]
    except KeyError:
        raise ValueError(f"Workshop {step} is not recognized (expected 1-5)") from None


def workshop_checker(
    step: int,
    *,
    min_items: int | None = None,
    risk_source_ids: Collection[str] | None = None,
    dreaded_event_ids: Collection[str] | None = None,
) -> Checker:
    """Build a post-condition checker for one workshop step.

    ``min_items`` adds a minimum cardinality on the step's main collection
    (business values for workshop 1, the top-level array otherwise).
    """
    if min_items is not None and step not in _COUNTED_COLLECTION:
        raise ValueError(f"Workshop {step} has no collection to count")

    def check(data: Any) -> list[str]:
        issues = validate_workshop_response(
            step,
            data,
            risk_source_ids=risk_source_ids,
            dreaded_event_ids=dreaded_event_ids,
        )
        if min_items is None:
            return issues

        key = _COUNTED_COLLECTION[step]
        items = data.get(key) if key and isinstance(data, dict) else data
        if isinstance(items, list) and len(items) < min_items:
            name = key or "items"
            issues.append(f"Workshop {step}: expected at least {min_items} {name}, got {len(items)}")
        return issues

    return check
