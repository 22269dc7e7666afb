"""Tri-state field updates: leave alone, clear, or set.

A JSON change set cannot tell "don't touch" from "clear" once it is parsed
into nullable attributes. ``Patch`` keeps the distinction: a key missing
from the payload is ``UNSET``, an explicit ``null`` is ``CLEAR`` and
anything else is ``Set(value)``.
"""

import json
from dataclasses import dataclass
from typing import Any

from protean.exceptions import ValidationError


class _Unset:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "UNSET"

    def __bool__(self):
        return False


class _Clear:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "CLEAR"


UNSET = _Unset()
CLEAR = _Clear()


@dataclass(frozen=True)
class Set:
    value: Any


Patch = _Unset | _Clear | Set


def patch_from(payload: dict, key: str) -> Patch:
    if key not in payload:
        return UNSET
    if payload[key] is None:
        return CLEAR
    return Set(payload[key])


def parse_changes(raw: str | dict | None, allowed: tuple[str, ...]) -> dict[str, Patch]:
    """Turn a JSON object of changes into ``{field: Patch}`` for ``allowed`` fields.

    Unknown keys and empty change sets are rejected.
    """
    if raw is None or raw == "":
        payload = {}
    elif isinstance(raw, dict):
        payload = raw
    else:
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise ValidationError({"changes": ["Changes must be a JSON object"]}) from exc
    if not isinstance(payload, dict):
        raise ValidationError({"changes": ["Changes must be a JSON object"]})

    unknown = sorted(set(payload) - set(allowed))
    if unknown:
        raise ValidationError({"changes": [f"Unknown fields: {', '.join(unknown)}"]})
    if not payload:
        raise ValidationError({"changes": ["At least one field must be provided"]})

    return {key: patch_from(payload, key) for key in allowed}
