"""
Prompt and schema compilation for JSON-producing requests.

The reminder text is appended for every provider, including those with a
native structured-output mode, because some providers ignore the native
contract under load.
"""

import json
from typing import Any

from ebios_llm.logging_config import get_logger

from .base import LLMRequest

logger = get_logger("prompting")

JSON_ONLY_INSTRUCTION = """IMPORTANT: Respond STRICTLY with valid JSON and nothing else.
- Do not start with explanatory text
- Do not end with comments
- Return only the raw JSON, without markdown code fences
- Make sure the JSON is well-formed and parsable"""

# Marker used to detect an already-augmented system instruction.
SYSTEM_REMINDER_MARKER = "You MUST follow these output format rules"

SYSTEM_REMINDER = f"""{SYSTEM_REMINDER_MARKER}:
1. Respond ONLY with valid JSON
2. No text before or after the JSON
3. No explanations or comments
4. The JSON must be well-formed and parsable
5. Follow the provided schema exactly when one is given"""


def stringify_schema(schema: Any) -> str:
    """Render a schema for embedding in a prompt; empty string if it cannot be serialized."""
    if not schema:
        return ""
    try:
        return json.dumps(schema, indent=2, ensure_ascii=False, default=str)
    except (TypeError, ValueError) as exc:
        logger.warning(f"Could not serialize response schema for the prompt: {exc}")
        return ""


def build_json_user_prompt(prompt: str, schema: Any = None) -> str:
    """Append the JSON-only contract, and the schema when given, to a user prompt."""
    if not schema:
        return f"{prompt}\n\n{JSON_ONLY_INSTRUCTION}"

    schema_text = stringify_schema(schema)
    if schema_text:
        return (
            f"{prompt}\n\n{JSON_ONLY_INSTRUCTION}\n\n"
            f"Expected JSON schema:\n{schema_text}\n\n"
            "Respond only with JSON that matches this schema exactly, "
            "including field names and enum values."
        )

    return f"{prompt}\n\n{JSON_ONLY_INSTRUCTION}\nFollow the provided JSON schema."


def build_json_system_instruction(
    system_instruction: str | None,
    schema: Any = None,
    json_mode: bool = False,
) -> str | None:
    """
    Extend a system instruction with the JSON-only reminder.

    Applies when a schema is given or ``json_mode`` is set. Idempotent: an
    instruction that already carries the reminder is returned unchanged.
    """
    if not schema and not json_mode:
        return system_instruction
    if not system_instruction:
        return SYSTEM_REMINDER
    if SYSTEM_REMINDER_MARKER in system_instruction:
        return system_instruction
    return f"{system_instruction}\n\n{SYSTEM_REMINDER}"


def compile_request(
    prompt: str,
    system_instruction: str | None,
    schema: Any,
) -> LLMRequest:
    """Build the request sent to chat-style providers, schema contract included."""
    user_prompt = build_json_user_prompt(prompt, schema) if schema else prompt
    return LLMRequest(
        user_prompt=user_prompt,
        system_instruction=build_json_system_instruction(system_instruction, schema),
        response_schema=schema or None,
    )


def append_feedback(prompt: str, issues: list[str]) -> str:
    """Append a feedback block listing issues verbatim to the original prompt."""
    if not issues:
        return prompt
    rendered = "\n".join(f"- {issue}" for issue in issues)
    return (
        f"{prompt}\n\n"
        "FEEDBACK TO ADDRESS (your previous answer had these problems; fix all of them):\n"
        f"{rendered}"
    )


def prepare_json_call(
    prompt: str,
    system_instruction: str | None,
    schema: Any,
) -> tuple[str, str | None]:
    """
    Arguments for a ``generate_content`` call that must yield JSON.

    With a schema the adapter compiles the prompt itself; without one the
    JSON-only contract is applied here so it is never skipped.
    """
    if schema:
        return prompt, system_instruction
    return (
        build_json_user_prompt(prompt),
        build_json_system_instruction(system_instruction, json_mode=True),
    )
