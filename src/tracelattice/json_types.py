"""JSON-like value types used at the trace document boundary."""

from __future__ import annotations

from typing import TypeAlias


JSONScalar: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
JSONObject: TypeAlias = dict[str, JSONValue]
JSONArray: TypeAlias = list[JSONValue]
Number: TypeAlias = int | float


def format_number(value: Number) -> str:
    """Render a document number; integral floats print without a fraction."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
