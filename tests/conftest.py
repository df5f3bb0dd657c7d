from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
for candidate in (ROOT, ROOT / "src"):
    if str(candidate) not in sys.path:
        sys.path.insert(0, str(candidate))


import pytest

FIXTURES = Path(__file__).resolve().parent / "fixtures"


@pytest.fixture
def commit_trace_path() -> Path:
    return FIXTURES / "commit_trace.json"


@pytest.fixture
def split_brain_trace_path() -> Path:
    return FIXTURES / "split_brain_trace.json"


@pytest.fixture
def write_config(tmp_path: Path):
    def _write(content: str, *, name: str = "tracelattice.toml") -> Path:
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return path

    return _write
