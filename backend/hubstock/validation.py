from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from flask import request

from .errors import ValidationError


ACTOR_HEADER = "X-Actor-Id"


@dataclass(frozen=True)
class Field:
    """
    One accepted request-body field.

    kind: "int", "str" or "list". Fields not declared in a policy are rejected,
    so clients cannot smuggle in values the route does not expect.
    """
    kind: str
    required: bool = False
    max_length: int | None = None


def _coerce_int(name: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal")
    raise ValidationError(f"{name} must be an integer")


def _coerce_str(name: str, value: Any, max_length: int | None) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be a string")
    value = value.strip()
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f"{name} must be at most {max_length} characters")
    return value


def validate_payload(payload: Any, fields: dict[str, Field]) -> dict:
    """Check a JSON body against a field policy and return the coerced values."""
    if not isinstance(payload, dict):
        raise ValidationError("request body must be a JSON object")

    unknown = sorted(set(payload) - set(fields))
    if unknown:
        raise ValidationError(f"unknown field(s): {', '.join(unknown)}")

    clean = {}
    for name, field in fields.items():
        value = payload.get(name)
        if value is None or (field.kind == "str" and isinstance(value, str) and not value.strip()):
            if field.required:
                raise ValidationError(f"{name} is required")
            continue

        if field.kind == "int":
            clean[name] = _coerce_int(name, value)
        elif field.kind == "str":
            clean[name] = _coerce_str(name, value, field.max_length)
        elif field.kind == "list":
            if not isinstance(value, list):
                raise ValidationError(f"{name} must be a list")
            clean[name] = value
        else:
            raise ValueError(f"unsupported field kind {field.kind!r}")
    return clean


def json_body() -> Any:
    return request.get_json(silent=True) or {}


def query_int(name: str, default: int | None = None, *, minimum: int | None = None,
              maximum: int | None = None) -> int | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    value = _coerce_int(name, raw)
    if minimum is not None:
        value = max(minimum, value)
    if maximum is not None:
        value = min(maximum, value)
    return value


def current_actor_id() -> str | None:
    """Actor identity is asserted by the upstream session layer via a header."""
    actor = request.headers.get(ACTOR_HEADER, "").strip()
    return actor[:64] or None
