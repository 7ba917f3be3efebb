"""
Recover a JSON value from raw model text.

Each strategy is a pure function from the trimmed response text to zero or
more candidate substrings. Candidates are tried in strategy order with
``json.loads``; duplicates are skipped and the first one that parses wins.

Known limitation: truncation repair drops a dangling last line and closes
whatever is still open. For deeply nested truncations this can yield a
structurally valid object that is missing data.
"""

import json
import re
from collections.abc import Callable, Iterable
from typing import Any

from ebios_llm.logging_config import get_logger

from .errors import EmptyResponseError, MalformedJsonError

logger = get_logger("extract")

Strategy = Callable[[str], Iterable[str]]

_BARE_PROPERTY = re.compile(r'^"[^"]+"\s*:')
_JSON_FENCE = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)
_ANY_FENCE = re.compile(r"```[a-zA-Z]*\s*([\s\S]*?)\s*```")
_SCHEMA_LIKE_KEY = re.compile(r'"[A-Za-z_][\w\- ]*"\s*:')

_CLOSERS = {"{": "}", "[": "]"}


def _full_text(text: str) -> Iterable[str]:
    yield text


def _wrapped_property(text: str) -> Iterable[str]:
    """``"key": value`` fragments missing their enclosing braces."""
    if _BARE_PROPERTY.match(text):
        yield "{" + text.rstrip(",") + "}"


def _open_containers(text: str) -> tuple[list[str], bool]:
    """Return the stack of unclosed ``{``/``[`` outside strings, and whether text ends inside a string."""
    stack: list[str] = []
    in_string = False
    escaped = False
    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in _CLOSERS:
            stack.append(char)
        elif char in ("}", "]") and stack and _CLOSERS[stack[-1]] == char:
            stack.pop()
    return stack, in_string


def _close(text: str) -> str | None:
    stack, in_string = _open_containers(text)
    if in_string or not stack:
        return None
    body = text.rstrip().rstrip(",").rstrip()
    return body + "".join(_CLOSERS[opener] for opener in reversed(stack))


def _truncation_repairs(text: str) -> Iterable[str]:
    """Close a response that opens an object but stops before the end."""
    if not text.startswith("{") or text.endswith("}"):
        return

    lines = text.split("\n")
    last_line = lines[-1].strip()
    if len(lines) > 1 and last_line and not last_line.endswith(('"', ",", "}", "]")):
        logger.debug("Response looks truncated, dropping incomplete last line")
        if completed := _close("\n".join(lines[:-1])):
            yield completed

    if completed := _close(text):
        yield completed


def _fenced_blocks(text: str) -> Iterable[str]:
    json_fence = _JSON_FENCE.search(text)
    if json_fence:
        yield json_fence.group(1)
        return
    if any_fence := _ANY_FENCE.search(text):
        yield any_fence.group(1)


def _balanced_objects(text: str) -> Iterable[str]:
    """Top-level balanced ``{...}`` spans, in order of appearance."""
    depth = 0
    start = -1
    in_string = False
    escaped = False
    for index, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"' and depth > 0:
            in_string = True
        elif char == "{":
            if depth == 0:
                start = index
            depth += 1
        elif char == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                yield text[start : index + 1]


def _widest_array(text: str) -> Iterable[str]:
    start = text.find("[")
    end = text.rfind("]")
    if start != -1 and end > start:
        yield text[start : end + 1]


STRATEGIES: tuple[Strategy, ...] = (
    _full_text,
    _wrapped_property,
    _truncation_repairs,
    _fenced_blocks,
    _balanced_objects,
    _widest_array,
)


def generate_candidates(text: str) -> list[str]:
    """Ordered, deduplicated parse candidates for a response text."""
    trimmed = text.strip()
    candidates: list[str] = []
    seen: set[str] = set()
    for strategy in STRATEGIES:
        for candidate in strategy(trimmed):
            candidate = candidate.strip()
            if candidate and candidate not in seen:
                seen.add(candidate)
                candidates.append(candidate)
    return candidates


def looks_truncated(text: str) -> bool:
    """An object that opens but never closes and already carries JSON keys."""
    trimmed = text.strip()
    return (
        trimmed.startswith("{")
        and not trimmed.endswith("}")
        and _SCHEMA_LIKE_KEY.search(trimmed) is not None
    )


def parse_json_from_text(provider: str, text: str | None) -> Any:
    """
    Parse the JSON value carried by a model response.

    Raises:
        EmptyResponseError: the text is empty or whitespace.
        MalformedJsonError: no candidate parsed; ``truncated`` tells whether the
            text looks like cut-off JSON rather than prose.
    """
    trimmed = (text or "").strip()
    if not trimmed:
        logger.error(f"[{provider}] Empty response received")
        raise EmptyResponseError(f"{provider} returned an empty response.", provider=provider)

    for candidate in generate_candidates(trimmed):
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            logger.debug(f"[{provider}] Candidate did not parse: {candidate[:100]!r}")
            continue
        if parsed is None:
            continue
        return parsed

    logger.error(f"[{provider}] All parse candidates failed for response: {trimmed[:300]!r}")

    if looks_truncated(trimmed):
        raise MalformedJsonError(
            f"{provider} returned a truncated JSON response. It looks valid but incomplete. "
            "Reduce the complexity of the request or increase the token limit.",
            provider=provider,
            truncated=True,
        )

    raise MalformedJsonError(
        f'{provider} did not return valid JSON. Received: "{trimmed[:300]}..."',
        provider=provider,
        truncated=False,
    )
