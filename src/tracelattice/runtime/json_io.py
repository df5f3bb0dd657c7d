from __future__ import annotations

import json
from pathlib import Path


def read_json_path(
    path: Path,
    *,
    encoding: str = "utf-8",
) -> object:
    """Read and parse a JSON document; errors propagate to the caller."""
    return json.loads(path.read_text(encoding=encoding))


def dump_json_pretty(payload: object) -> str:
    return json.dumps(payload, indent=2, sort_keys=False, ensure_ascii=False)


def write_json_pretty(path: Path, payload: object) -> None:
    path.write_text(dump_json_pretty(payload) + "\n", encoding="utf-8")
