"""Deterministic pre-checks run before any AI call.

A failed pre-check fails the whole registration assessment: AI scoring is
skipped and the registration cannot be auto-approved.
"""

import json
from typing import Any, Optional

from pydantic import BaseModel, Field

EXPERIENCE_LEVEL_NAMES = {
    1: "Beginner",
    2: "Competent Crew",
    3: "Coastal Skipper",
    4: "Offshore Skipper",
}

RISK_LEVELS = ("Coastal sailing", "Offshore sailing", "Extreme sailing")


class PrecheckResult(BaseModel):
    passed: bool
    reasoning: str
    missing: list[str] = Field(default_factory=list)


def experience_level_name(level: Optional[int]) -> str:
    if level is None:
        return "Not set"
    return EXPERIENCE_LEVEL_NAMES.get(level, f"Level {level}")


def normalize_levels(value: Any) -> set[str]:
    """
    Turn a stored risk-level value into a set of level names.

    Rows hold a single string, a list, or a JSON-encoded list depending on
    which form wrote them.
    """
    if value is None:
        return set()

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return set()
        if text.startswith("[") or text.startswith('"'):
            try:
                return normalize_levels(json.loads(text))
            except json.JSONDecodeError:
                pass
        return {text}

    if isinstance(value, (list, tuple, set)):
        levels: set[str] = set()
        for item in value:
            levels |= normalize_levels(item)
        return levels

    return {str(value).strip()}


def check_risk_level(required: Any, crew: Any) -> PrecheckResult:
    """Every level the journey requires must be among the crew's comfort levels."""
    required_levels = normalize_levels(required)
    if not required_levels:
        return PrecheckResult(passed=True, reasoning="Journey has no risk level requirement")

    crew_levels = normalize_levels(crew)
    missing = sorted(required_levels - crew_levels)

    if missing:
        return PrecheckResult(
            passed=False,
            reasoning=(
                f"Risk level mismatch: journey requires {', '.join(sorted(required_levels))}; "
                f"crew is missing {', '.join(missing)}"
            ),
            missing=missing,
        )

    return PrecheckResult(
        passed=True,
        reasoning=f"Crew is comfortable with all required risk levels ({', '.join(sorted(required_levels))})",
    )


def check_experience_level(crew_level: Optional[int], required_level: Optional[int]) -> PrecheckResult:
    """Crew ordinal level (1-4) must be at least the required minimum."""
    if required_level is None:
        return PrecheckResult(passed=True, reasoning="No minimum experience level required")

    required_name = experience_level_name(required_level)

    if crew_level is None:
        return PrecheckResult(
            passed=False,
            reasoning=f"Crew has no experience level set; {required_name} ({required_level}) is required",
        )

    crew_name = experience_level_name(crew_level)

    if crew_level < required_level:
        return PrecheckResult(
            passed=False,
            reasoning=(
                f"Experience level too low: crew is {crew_name} ({crew_level}), "
                f"journey requires {required_name} ({required_level})"
            ),
        )

    return PrecheckResult(
        passed=True,
        reasoning=f"Crew experience {crew_name} meets the required {required_name}",
    )
