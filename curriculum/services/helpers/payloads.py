"""
Boundary parsers for request payloads.

Engines receive plain dicts (from JSON bodies or direct callers) and parse
each field once into the typed value they store. Every parser raises
ValidationError with a field-level ``details`` entry; nothing downstream
re-checks the shape.
"""

import json
import re
from datetime import datetime, timezone

from curriculum.core.exceptions import ValidationError


def _fail(field: str, message: str):
    raise ValidationError(f"{field}: {message}", details={field: message})


def parse_str(
    value,
    field: str,
    *,
    required: bool = False,
    min_len: int = 0,
    max_len: int | None = None,
    pattern: str | None = None,
) -> str | None:
    """Trimmed string; empty optional strings become None."""
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            _fail(field, "is required")
        return None
    if not isinstance(value, str):
        _fail(field, "must be a string")
    value = value.strip()
    if len(value) < min_len:
        _fail(field, f"must be at least {min_len} characters")
    if max_len is not None and len(value) > max_len:
        _fail(field, f"must be at most {max_len} characters")
    if pattern is not None and not re.fullmatch(pattern, value):
        _fail(field, f"must match {pattern}")
    return value


def parse_choice(value, field: str, choices, *, default=None) -> str | None:
    if value is None:
        return default
    if value not in choices:
        _fail(field, f"must be one of {list(choices)}")
    return value


def parse_int(value, field: str, *, minimum: int | None = None, required: bool = False) -> int | None:
    if value is None:
        if required:
            _fail(field, "is required")
        return None
    if isinstance(value, bool):
        _fail(field, "must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        _fail(field, "must be an integer")
    if isinstance(value, float) and value != number:
        _fail(field, "must be an integer")
    if minimum is not None and number < minimum:
        _fail(field, f"must be >= {minimum}")
    return number


def parse_bool(value, field: str, *, default: bool = False) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        _fail(field, "must be a boolean")
    return value


def parse_string_list(value, field: str) -> list[str]:
    """List of non-empty strings; None becomes an empty list."""
    if value is None:
        return []
    if not isinstance(value, list):
        _fail(field, "must be a list of strings")
    items = []
    for item in value:
        if not isinstance(item, str) or not item.strip():
            _fail(field, "must contain only non-empty strings")
        items.append(item.strip())
    return items


def parse_id_list(value, field: str) -> list[int]:
    """Distinct positive integer ids, in first-seen order; None becomes an empty list."""
    if value is None:
        return []
    if not isinstance(value, list):
        _fail(field, "must be a list of ids")
    ids = []
    for item in value:
        if isinstance(item, bool) or not isinstance(item, int) or item < 1:
            _fail(field, "must contain only positive integers")
        if item not in ids:
            ids.append(item)
    return ids


def parse_json_object(value, field: str) -> dict | None:
    """JSON object with string keys whose content is serialisable as-is."""
    if value is None:
        return None
    if not isinstance(value, dict) or not all(isinstance(k, str) for k in value):
        _fail(field, "must be a JSON object")
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        _fail(field, "must contain only JSON values")
    return value


def parse_object_list(value, field: str) -> list[dict]:
    if value is None:
        return []
    if not isinstance(value, list):
        _fail(field, "must be a list of JSON objects")
    if not all(isinstance(item, dict) for item in value):
        _fail(field, "must be a list of JSON objects")
    return [parse_json_object(item, field) for item in value]


def parse_datetime(value, field: str) -> datetime | None:
    """ISO-8601 timestamp; naive values are taken as UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            _fail(field, "must be an ISO-8601 datetime")
    else:
        _fail(field, "must be an ISO-8601 datetime")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def pick(data: dict, fields) -> dict:
    """Subset of ``data`` limited to ``fields`` that are actually present."""
    return {f: data[f] for f in fields if f in data}
