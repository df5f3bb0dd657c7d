"""Unreachability markers."""

from __future__ import annotations

from typing import NoReturn

from tracelattice.exceptions import NeverThrown


def never(reason: str = "", **env: object) -> NoReturn:
    """Mark a code path as intentionally unreachable.

    The env payload is carried on the raised exception for diagnostics; it is
    not evaluated.
    """
    raise NeverThrown(reason or "never() marker reached", env=env)
