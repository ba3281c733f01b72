"""Tool calls embedded in model text.

The model requests tools by writing a fenced block:

    ```tool_call
    {"name": "search_legs", "arguments": {"startDate": "2025-06-01"}}
    ```

A block may hold one call, a list of calls, or `{"tool_calls": [...]}`.
The first block with that shape wins; it gets a repair pass before parsing.
"""

import json
import re
import uuid
from typing import Any, Optional

from shared.logging import get_logger
from shared.models import ToolCall
from shared.parsing import repair_json

logger = get_logger(__name__)

_TOOL_BLOCK_RE = re.compile(r"```(?:tool_calls?|tool_code|json)\s*\n?([\s\S]*?)```")
# A block the model never closed because it ran out of tokens
_OPEN_TOOL_BLOCK_RE = re.compile(r"```(?:tool_calls?|tool_code|json)\s*\n?([\s\S]*)$")


def _load(text: str) -> Optional[Any]:
    text = text.strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    try:
        return json.loads(repair_json(text))
    except json.JSONDecodeError:
        return None


def _coerce_arguments(raw: Any) -> Optional[dict[str, Any]]:
    if raw is None:
        return {}
    if isinstance(raw, str):
        raw = _load(raw)
    return raw if isinstance(raw, dict) else None


def _as_calls(payload: Any) -> list[ToolCall]:
    if isinstance(payload, dict) and isinstance(payload.get("tool_calls"), list):
        payload = payload["tool_calls"]

    items = payload if isinstance(payload, list) else [payload]
    calls: list[ToolCall] = []

    for item in items:
        if not isinstance(item, dict):
            return []
        name = item.get("name")
        if not isinstance(name, str) or not name:
            return []
        arguments = _coerce_arguments(item.get("arguments", item.get("parameters")))
        if arguments is None:
            return []
        calls.append(ToolCall(id=str(uuid.uuid4()), name=name, arguments=arguments))

    return calls


def parse_tool_calls(text: str) -> list[ToolCall]:
    """Return the calls from the first well-shaped tool block, or an empty list."""
    blocks = _TOOL_BLOCK_RE.findall(text)
    closed_end = 0
    for match in _TOOL_BLOCK_RE.finditer(text):
        closed_end = match.end()
    open_block = _OPEN_TOOL_BLOCK_RE.search(text, closed_end)
    if open_block:
        blocks.append(open_block.group(1))

    for block in blocks:
        payload = _load(block)
        if payload is None:
            continue
        calls = _as_calls(payload)
        if calls:
            return calls

    if blocks:
        logger.warning("Tool block found but no valid tool call parsed", blocks=len(blocks))
    return []


def strip_tool_blocks(text: str) -> str:
    """Remove tool blocks, leaving only prose meant for the user."""
    text = _TOOL_BLOCK_RE.sub("", text)
    text = _OPEN_TOOL_BLOCK_RE.sub("", text)
    return text.strip()
