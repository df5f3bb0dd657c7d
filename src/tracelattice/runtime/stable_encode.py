from __future__ import annotations

import json
from typing import Mapping


def stable_compact_text(value: object) -> str:
    """Deterministic compact JSON for CRDT payload fingerprints.

    Mapping keys are sorted; sequence order is kept. Two payloads that differ
    only in key insertion order encode to the same text.
    """
    return json.dumps(
        stable_json_value(value, source="fingerprint"),
        separators=(",", ":"),
        ensure_ascii=True,
    )


def stable_json_value(value: object, *, source: str) -> object:
    """Normalize a decoded payload into sorted JSON carriers.

    Values outside the JSON model are rejected rather than encoded through repr().
    """
    if isinstance(value, Mapping):
        return {
            str(key): stable_json_value(value[key], source=f"{source}.{key}")
            for key in sorted(value, key=str)
        }
    if isinstance(value, (tuple, list)):
        return [
            stable_json_value(item, source=f"{source}[{index}]")
            for index, item in enumerate(value)
        ]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    raise TypeError(
        f"stable_json_value does not support value type {type(value).__name__} at {source}"
    )
