from __future__ import annotations

import json
from typing import Any


def _ensure_token(value: str, *, name: str) -> str:
    value = value.strip()
    if not value:
        msg = f"{name} token is required"
        raise ValueError(msg)
    if len(value) > 500:
        msg = f"{name} token appears to be too long"
        raise ValueError(msg)
    if any(char in value for char in [" ", "\n", "\t"]):
        msg = f"{name} token contains invalid characters"
        raise ValueError(msg)
    return value


def _parse_positive_int(
    value: Any,
    *,
    default: int,
    name: str,
    minimum: int = 1,
    maximum: int | None = None,
) -> int:
    try:
        parsed = int(str(value if value not in (None, "") else default))
    except ValueError as exc:
        msg = f"{name} must be a valid integer"
        raise ValueError(msg) from exc
    if parsed < minimum:
        msg = f"{name} must be at least {minimum}"
        raise ValueError(msg)
    if maximum is not None and parsed > maximum:
        msg = f"{name} must be {maximum} or less"
        raise ValueError(msg)
    return parsed


def _parse_json_list(value: Any, *, name: str) -> list[Any]:
    if isinstance(value, list | tuple):
        return list(value)
    try:
        parsed = json.loads(str(value))
    except json.JSONDecodeError as exc:
        msg = f"{name} must be a JSON list"
        raise ValueError(msg) from exc
    if not isinstance(parsed, list):
        msg = f"{name} must be a JSON list"
        raise ValueError(msg)
    return parsed
