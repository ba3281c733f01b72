"""Tolerant JSON extraction for model output.

Models wrap JSON in markdown fences, add prose around it, leave trailing
commas or stop before closing their brackets. These helpers recover what
they can; anything still unparseable raises ParseError.
"""

import json
import re
from typing import Any, Literal, Optional

from shared.errors import ParseError

_FENCE_RE = re.compile(r"```[a-zA-Z_]*\s*\n?([\s\S]*?)```")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")

_CLOSERS = {"{": "}", "[": "]"}


def strip_code_fences(text: str) -> str:
    """Return the contents of the first fenced block, or the text unchanged."""
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def extract_json_text(text: str, expect: Literal["object", "array"] = "object") -> Optional[str]:
    """
    Cut the JSON payload out of surrounding prose.

    Takes everything from the first opening bracket of the expected kind to
    the last matching closing bracket. If no closing bracket exists the tail
    is returned as-is so repair_json can close it.
    """
    opener, closer = ("{", "}") if expect == "object" else ("[", "]")

    start = text.find(opener)
    if start == -1:
        return None

    end = text.rfind(closer)
    if end < start:
        return text[start:]
    return text[start:end + 1]


def repair_json(text: str) -> str:
    """Strip trailing commas and close unbalanced brackets in nesting order."""
    repaired = _TRAILING_COMMA_RE.sub(r"\1", text)

    stack: list[str] = []
    in_string = False
    escaped = False

    for char in repaired:
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
            stack.append(_CLOSERS[char])
        elif char in ("}", "]") and stack and stack[-1] == char:
            stack.pop()

    if in_string:
        repaired += '"'

    repaired = repaired.rstrip()
    if repaired.endswith(","):
        repaired = repaired[:-1]

    return repaired + "".join(reversed(stack))


def parse_json_response(
    text: Optional[str],
    expect: Literal["object", "array"] = "object"
) -> Any:
    """
    Parse a JSON object or array out of raw model output.

    Args:
        text: Raw model output
        expect: Which top-level JSON shape is required

    Returns:
        The parsed dict or list

    Raises:
        ParseError: If no JSON of the expected shape can be recovered
    """
    if not text or not text.strip():
        raise ParseError("Empty model response", raw_text=text or "")

    candidate = extract_json_text(strip_code_fences(text), expect)
    if candidate is None:
        candidate = extract_json_text(text, expect)
    if candidate is None:
        raise ParseError(f"No JSON {expect} found in model response", raw_text=text)

    for attempt in (candidate, repair_json(candidate)):
        try:
            parsed = json.loads(attempt)
        except json.JSONDecodeError:
            continue

        if expect == "object" and isinstance(parsed, dict):
            return parsed
        if expect == "array" and isinstance(parsed, list):
            return parsed

    raise ParseError(f"Could not parse JSON {expect} from model response", raw_text=text)
