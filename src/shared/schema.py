"""JSON Schema validation for tool arguments."""

import re
from typing import Any

from jsonschema import Draft7Validator

_SNAKE_RE = re.compile(r"_([a-z])")


def validate_schema(data: Any, schema: dict[str, Any]) -> tuple[bool, list[str]]:
    """
    Validate data against a JSON Schema.

    Returns:
        Tuple of (is_valid, list of error messages)
    """
    if not schema:
        return True, []

    validator = Draft7Validator(schema)
    errors = sorted(validator.iter_errors(data), key=lambda e: ".".join(str(p) for p in e.path))

    if not errors:
        return True, []

    error_messages = [
        f"{'.'.join(str(p) for p in e.path)}: {e.message}" if e.path else e.message
        for e in errors
    ]

    return False, error_messages


def to_camel_case(name: str) -> str:
    return _SNAKE_RE.sub(lambda m: m.group(1).upper(), name)


def normalize_arguments(arguments: dict[str, Any], schema: dict[str, Any]) -> dict[str, Any]:
    """
    Map snake_case argument keys onto the schema's declared camelCase keys.

    Models frequently emit `leg_id` for a declared `legId`. Keys already
    declared by the schema, or with no camelCase counterpart, pass through.
    """
    declared = set(schema.get("properties", {}).keys())
    normalized: dict[str, Any] = {}

    for key, value in arguments.items():
        if key in declared:
            normalized[key] = value
            continue
        camel = to_camel_case(key)
        normalized[camel if camel in declared else key] = value

    return normalized
