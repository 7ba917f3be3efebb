"""Structural checks and injection scrubbing for workshop responses.

Every check returns a list of human-readable issues rather than a boolean, so
the result can be fed back to the model as critique.
"""

import json
import re
from collections.abc import Collection
from typing import Any

from ebios_llm.logging_config import get_logger

logger = get_logger("validation")

MAX_PAYLOAD_CHARS = 100_000
MIN_OPERATIONAL_DESCRIPTION_CHARS = 50

SEVERITIES = ("Critique", "Élevée", "Moyenne", "Faible")
RISK_SOURCE_TYPES = ("Humaine", "Technique", "Environnementale")
LIKELIHOODS = ("Élevée", "Moyenne", "Faible")
MEASURE_TYPES = ("Préventive", "Détective", "Corrective")

INJECTION_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("Script injection", re.compile(r"<script[\s\S]*?>[\s\S]*?</script\s*>", re.IGNORECASE)),
    # Opening tag left without its closing tag.
    ("Script injection", re.compile(r"<script\b[^>]*>?", re.IGNORECASE)),
    ("JavaScript URL", re.compile(r"javascript:", re.IGNORECASE)),
    ("Event handler injection", re.compile(r"\bon\w+\s*=", re.IGNORECASE)),
    ("Code evaluation", re.compile(r"\beval\s*\(", re.IGNORECASE)),
    ("Document manipulation", re.compile(r"document\.(?:write|writeln|cookie)", re.IGNORECASE)),
    ("Window manipulation", re.compile(r"window\.(?:location|open)", re.IGNORECASE)),
    ("Iframe injection", re.compile(r"<iframe[\s\S]*?>", re.IGNORECASE)),
    ("Object injection", re.compile(r"<object[\s\S]*?>", re.IGNORECASE)),
    ("Embed injection", re.compile(r"<embed[\s\S]*?>", re.IGNORECASE)),
)


def validate_payload_text(text: str | None) -> list[str]:
    """Guard a raw JSON payload before it is trusted: non-empty, bounded, not ``null``."""
    if not text or not text.strip():
        return ["Empty response from the model"]
    if len(text) > MAX_PAYLOAD_CHARS:
        return [f"Response too large ({len(text)} characters, limit {MAX_PAYLOAD_CHARS})"]
    try:
        parsed = json.loads(text)
    except ValueError as exc:
        return [f"Invalid JSON: {exc}"]
    if parsed is None:
        return ["JSON response is null"]
    return []


def _is_blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


def _require_text(item: dict, field: str, where: str) -> list[str]:
    if _is_blank(item.get(field)):
        return [f"{where}: '{field}' is missing or empty"]
    return []


def _check_enum(item: dict, field: str, allowed: tuple[str, ...], where: str) -> list[str]:
    value = item.get(field)
    if _is_blank(value):
        return [f"{where}: '{field}' is missing or empty"]
    if value not in allowed:
        return [f"{where}: invalid {field} '{value}'. Allowed values: {', '.join(allowed)}"]
    return []


def _non_empty_list(data: Any, label: str) -> list[str]:
    if not isinstance(data, list):
        return [f"{label}: response must be an array"]
    if not data:
        return [f"{label}: no items were generated"]
    return []


def _validate_workshop1(data: Any) -> list[str]:
    if not isinstance(data, dict):
        return ["Workshop 1: response must be an object"]

    issues = [
        f"Workshop 1: field '{field}' is missing"
        for field in ("context", "securityBaseline", "businessValues", "dreadedEvents")
        if field not in data
    ]
    if issues:
        return issues

    business_values = data["businessValues"]
    dreaded_events = data["dreadedEvents"]
    if not isinstance(business_values, list) or not business_values:
        issues.append("Workshop 1: businessValues must be a non-empty array")
        business_values = []
    if not isinstance(dreaded_events, list) or not dreaded_events:
        issues.append("Workshop 1: dreadedEvents must be a non-empty array")
        dreaded_events = []

    names: set[str] = set()
    for index, value in enumerate(business_values, start=1):
        where = f"Workshop 1: business value {index}"
        if not isinstance(value, dict):
            issues.append(f"{where} must be an object")
            continue
        issues.extend(_require_text(value, "name", where))
        issues.extend(_require_text(value, "description", where))
        if not _is_blank(value.get("name")):
            names.add(value["name"].strip())

    for index, event in enumerate(dreaded_events, start=1):
        where = f"Workshop 1: dreaded event {index}"
        if not isinstance(event, dict):
            issues.append(f"{where} must be an object")
            continue
        issues.extend(_require_text(event, "name", where))
        issues.extend(_check_enum(event, "severity", SEVERITIES, where))
        reference = event.get("businessValueName")
        if _is_blank(reference):
            issues.append(f"{where}: 'businessValueName' is missing or empty")
        elif names and reference.strip() not in names:
            issues.append(f"{where}: businessValueName '{reference}' does not match any business value")

    return issues


def _validate_workshop2(data: Any) -> list[str]:
    issues = _non_empty_list(data, "Workshop 2")
    if issues:
        return issues
    for index, source in enumerate(data, start=1):
        where = f"Workshop 2: risk source {index}"
        if not isinstance(source, dict):
            issues.append(f"{where} must be an object")
            continue
        issues.extend(_require_text(source, "name", where))
        issues.extend(_require_text(source, "description", where))
        issues.extend(_check_enum(source, "type", RISK_SOURCE_TYPES, where))
    return issues


def _validate_workshop3(
    data: Any,
    risk_source_ids: Collection[str] | None,
    dreaded_event_ids: Collection[str] | None,
) -> list[str]:
    if not isinstance(data, list):
        return ["Workshop 3: response must be an array"]

    issues: list[str] = []
    for index, scenario in enumerate(data, start=1):
        where = f"Workshop 3: strategic scenario {index}"
        if not isinstance(scenario, dict):
            issues.append(f"{where} must be an object")
            continue
        for field, known in (("riskSourceId", risk_source_ids), ("dreadedEventId", dreaded_event_ids)):
            field_issues = _require_text(scenario, field, where)
            issues.extend(field_issues)
            if not field_issues and known is not None and scenario[field] not in known:
                issues.append(f"{where}: {field} '{scenario[field]}' is not one of the provided ids")
        issues.extend(_require_text(scenario, "description", where))
        issues.extend(_check_enum(scenario, "likelihood", LIKELIHOODS, where))
    return issues


def _validate_workshop4(data: Any) -> list[str]:
    if not isinstance(data, dict):
        return ["Workshop 4: response must be an object"]
    description = data.get("description")
    if not isinstance(description, str):
        return ["Workshop 4: 'description' is missing or not a string"]
    if len(description) < MIN_OPERATIONAL_DESCRIPTION_CHARS:
        return [
            f"Workshop 4: description too short ({len(description)} characters, "
            f"minimum {MIN_OPERATIONAL_DESCRIPTION_CHARS})"
        ]
    return []


def _validate_workshop5(data: Any) -> list[str]:
    issues = _non_empty_list(data, "Workshop 5")
    if issues:
        return issues
    for index, measure in enumerate(data, start=1):
        where = f"Workshop 5: measure {index}"
        if not isinstance(measure, dict):
            issues.append(f"{where} must be an object")
            continue
        issues.extend(_check_enum(measure, "type", MEASURE_TYPES, where))
        issues.extend(_require_text(measure, "description", where))
    return issues


def validate_workshop_response(
    step: int,
    data: Any,
    *,
    risk_source_ids: Collection[str] | None = None,
    dreaded_event_ids: Collection[str] | None = None,
) -> list[str]:
    """Return every structural issue in a workshop response; empty means valid."""
    match step:
        case 1:
            return _validate_workshop1(data)
        case 2:
            return _validate_workshop2(data)
        case 3:
            return _validate_workshop3(data, risk_source_ids, dreaded_event_ids)
        case 4:
            return _validate_workshop4(data)
        case 5:
            return _validate_workshop5(data)
        case _:
            return [f"Workshop {step} is not recognized"]


def detect_injection(text: str) -> list[str]:
    """Names of the injection patterns found in ``text``."""
    threats: list[str] = []
    for threat, pattern in INJECTION_PATTERNS:
        if threat not in threats and pattern.search(text):
            threats.append(threat)
    return threats


def sanitize_text(text: str) -> str:
    """Remove every injection pattern match from a string."""
    cleaned = text
    for _, pattern in INJECTION_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    return cleaned


def sanitize_value(value: Any) -> Any:
    """Recursively sanitize every string in a parsed JSON value, keys included."""
    if isinstance(value, str):
        cleaned = sanitize_text(value)
        if cleaned != value:
            logger.warning(f"Removed suspicious content: {', '.join(detect_injection(value))}")
        return cleaned
    if isinstance(value, list):
        return [sanitize_value(item) for item in value]
    if isinstance(value, dict):
        return {sanitize_text(str(key)): sanitize_value(item) for key, item in value.items()}
    return value
