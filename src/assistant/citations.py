"""Leg citation checks on assistant replies.

Replies cite legs inline as `[[leg:UUID:Name]]`. A citation whose id never
came back from a tool is fabricated: its markup is removed and the plain
name kept.
"""

import re
from typing import Iterable

LEG_CITATION_RE = re.compile(r"\[\[leg:([a-f0-9-]+):([^\]]+)\]\]", re.IGNORECASE)

_HALLUCINATION_PATTERNS = [
    re.compile(r"\b\d+[-\s]?days?\b.*(?:trip|cruise|journey|adventure|sailing)", re.IGNORECASE),
    re.compile(r"(?:trip|cruise|journey|adventure|leg).*\b\d+[-\s]?days?\b", re.IGNORECASE),
    re.compile(r"^[-•*]\s*[A-Z][^-\n]+[-–]\s*\d+\s*[Dd]ays?", re.MULTILINE),
    re.compile(r"here\s+(?:are|is)\s+(?:a\s+)?(?:few|some|the)\s+legs?\b", re.IGNORECASE),
    re.compile(
        r"(?:found|discovered|have)\s+(?:a\s+)?(?:few|some|these)\s+(?:great|perfect|ideal)?\s*"
        r"(?:sailing\s+)?(?:legs?|options?|trips?)",
        re.IGNORECASE,
    ),
]


def format_leg_citation(leg_id: str, name: str) -> str:
    return f"[[leg:{leg_id}:{name}]]"


def filter_leg_citations(content: str, valid_ids: Iterable[str]) -> tuple[str, int]:
    """
    Strip citation markup for leg ids not in `valid_ids`.

    Returns:
        Tuple of (filtered content, number of citations removed)
    """
    valid = {leg_id.lower() for leg_id in valid_ids}
    removed = 0

    def replace(match: "re.Match[str]") -> str:
        nonlocal removed
        if match.group(1).lower() in valid:
            return match.group(0)
        removed += 1
        return match.group(2)

    return LEG_CITATION_RE.sub(replace, content), removed


def detect_plain_text_hallucination(content: str, has_valid_legs: bool) -> bool:
    """
    Flag phrasing typical of invented results when no real legs were found.

    Observability only; content is never changed because of it.
    """
    if has_valid_legs:
        return False
    if LEG_CITATION_RE.search(content):
        return False
    return any(pattern.search(content) for pattern in _HALLUCINATION_PATTERNS)
