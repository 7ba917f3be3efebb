"""Bounded re-generation driven by structural post-conditions.

Each attempt runs the full generation chain, then the checks. When issues
remain, the next attempt re-sends the original prompt with only the latest
issues appended as feedback. The loop never returns a value that failed its
checks.
"""

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ebios_llm.logging_config import get_logger

from .errors import ValidationError
from .prompting import append_feedback

logger = get_logger("critique")

DEFAULT_MAX_ATTEMPTS = 3

Checker = Callable[[Any], list[str]]
Generate = Callable[[str], Awaitable[Any]]


class CritiqueState(str, Enum):
    ATTEMPT = "attempt"
    VALIDATE = "validate"
    SUCCEED = "succeed"
    FAIL_EXHAUSTED = "fail_exhausted"


@dataclass
class CritiqueResult:
    """Accepted value plus the issues each rejected attempt produced."""

    value: Any
    attempts: int
    rejected: list[list[str]] = field(default_factory=list)


def run_checks(value: Any, checkers: Sequence[Checker]) -> list[str]:
    """Concatenate the issues reported by every checker, in order."""
    issues: list[str] = []
    for checker in checkers:
        issues.extend(checker(value))
    return issues


async def generate_with_critique(
    generate: Generate,
    prompt: str,
    checkers: Sequence[Checker],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    provider: str | None = None,
) -> CritiqueResult:
    """Call ``generate`` until the checkers report no issues or the budget runs out.

    ``generate`` receives the prompt to send and returns the parsed JSON value.
    A ``ValidationError`` raised by ``generate`` counts as a failed attempt;
    every other error propagates untouched.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    state = CritiqueState.ATTEMPT
    attempt = 0
    issues: list[str] = []
    rejected: list[list[str]] = []
    value: Any = None

    while True:
        if state is CritiqueState.ATTEMPT:
            attempt += 1
            logger.info(f"Generation attempt {attempt}/{max_attempts}")
            try:
                value = await generate(append_feedback(prompt, issues))
            except ValidationError as exc:
                issues = list(exc.issues)
                rejected.append(issues)
                logger.info(f"Attempt {attempt} rejected by schema check: {len(issues)} issue(s)")
                state = CritiqueState.FAIL_EXHAUSTED if attempt >= max_attempts else CritiqueState.ATTEMPT
                continue
            state = CritiqueState.VALIDATE

        elif state is CritiqueState.VALIDATE:
            issues = run_checks(value, checkers)
            if not issues:
                state = CritiqueState.SUCCEED
                continue
            rejected.append(issues)
            logger.info(f"Attempt {attempt} failed post-conditions: {len(issues)} issue(s)")
            state = CritiqueState.FAIL_EXHAUSTED if attempt >= max_attempts else CritiqueState.ATTEMPT

        elif state is CritiqueState.SUCCEED:
            if attempt > 1:
                logger.info(f"Post-conditions satisfied on attempt {attempt}")
            return CritiqueResult(value=value, attempts=attempt, rejected=rejected)

        else:
            rendered = "\n  - ".join(issues)
            logger.error(f"Post-conditions still failing after {attempt} attempts")
            raise ValidationError(
                issues,
                provider=provider,
                message=(
                    f"The generated response still failed validation after {attempt} attempts:\n"
                    f"  - {rendered}"
                ),
            )
