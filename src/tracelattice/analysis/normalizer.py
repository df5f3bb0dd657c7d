"""Fill the derived step fields of a trace.

Precedence rule: a value supplied by the trace document always wins over the
derived one. `None` means "not supplied". The single exception is an explicit
empty `boundaries_moved`, which `EmptyMovesPolicy` decides: REDERIVE treats it
like an absent list, PRESERVE keeps it as "no moves occurred".
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, replace
from enum import StrEnum

from tracelattice.analysis.boundary_moves import derive_boundary_moves, justify_moves
from tracelattice.analysis.geometry import classify_geometry
from tracelattice.analysis.invariant_checks import check_invariants
from tracelattice.model import BoundaryMove, HistoryShape, Step, Trace

logger = logging.getLogger(__name__)


class EmptyMovesPolicy(StrEnum):
    REDERIVE = "rederive"
    PRESERVE = "preserve"


@dataclass(frozen=True)
class NormalizePolicy:
    empty_moves: EmptyMovesPolicy = EmptyMovesPolicy.REDERIVE
    justify_moves: bool = True

    @classmethod
    def from_config(cls, section: Mapping[str, object] | None) -> NormalizePolicy:
        """Build a policy from a `[normalize]` config table; bad values fall back to defaults."""
        if not isinstance(section, Mapping):
            return cls()
        empty_moves = EmptyMovesPolicy.REDERIVE
        raw_empty = section.get("empty_moves")
        if isinstance(raw_empty, str):
            try:
                empty_moves = EmptyMovesPolicy(raw_empty.strip().lower())
            except ValueError:
                logger.debug("ignoring unknown empty_moves policy %r", raw_empty)
        raw_justify = section.get("justify_moves")
        justify = raw_justify if isinstance(raw_justify, bool) else True
        return cls(empty_moves=empty_moves, justify_moves=justify)


def _resolve_moves(
    explicit: tuple[BoundaryMove, ...] | None,
    derived: list[BoundaryMove],
    policy: NormalizePolicy,
) -> tuple[BoundaryMove, ...]:
    if explicit is None:
        return tuple(derived)
    if not explicit and policy.empty_moves is EmptyMovesPolicy.REDERIVE:
        return tuple(derived)
    return explicit


def normalize_step(
    step: Step,
    prev: Step | None,
    *,
    history_shape: HistoryShape = HistoryShape.LINE,
    policy: NormalizePolicy = NormalizePolicy(),
) -> Step:
    derived = derive_boundary_moves(prev, step) if prev is not None else []
    if policy.justify_moves:
        derived = justify_moves(derived, step.certificates)
    boundaries_moved = _resolve_moves(step.boundaries_moved, derived, policy)

    geometry = step.geometry_highlight
    if geometry is None:
        label = classify_geometry(step, prev, derived)
        geometry = label.value if label is not None else None

    checks = step.invariants_checked
    if checks is None:
        checks = tuple(check_invariants(step, prev, history_shape=history_shape))

    invariants_ok = step.invariants_ok
    if invariants_ok is None:
        invariants_ok = all(check.holds for check in checks) and step.violation is None

    return replace(
        step,
        boundaries_moved=boundaries_moved,
        geometry_highlight=geometry,
        invariants_checked=checks,
        invariants_ok=invariants_ok,
    )


def normalize(trace: Trace, policy: NormalizePolicy | None = None) -> Trace:
    """Return a new trace whose steps carry every derived field.

    Each step is compared with the previous *input* step, so explicit values on
    one step never influence what is derived for the next.
    """
    effective = policy or NormalizePolicy()
    steps = []
    failing = 0
    for index, step in enumerate(trace.steps):
        prev = trace.steps[index - 1] if index > 0 else None
        normalized = normalize_step(
            step,
            prev,
            history_shape=trace.history_shape,
            policy=effective,
        )
        failing += sum(1 for check in normalized.invariants_checked or () if not check.holds)
        steps.append(normalized)
    logger.debug(
        "normalized trace %r: %d steps, %d failing checks",
        trace.title,
        len(steps),
        failing,
    )
    return replace(trace, steps=tuple(steps))
