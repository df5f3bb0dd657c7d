from __future__ import annotations

from collections.abc import Mapping

from tracelattice.invariants import never
from tracelattice.json_types import JSONObject, Number, format_number
from tracelattice.model import (
    CounterState,
    CrdtState,
    EventLogState,
    GSetState,
    OpaqueState,
)
from tracelattice.runtime.stable_encode import stable_compact_text

NO_CRDT_FINGERPRINT = "no-crdt"


def _with_clock(payload: JSONObject, clock: Mapping[str, Number] | None) -> JSONObject:
    if clock is not None:
        payload["vectorClock"] = dict(clock)
    return payload


def state_fingerprint(state: CrdtState | None) -> str:
    """Comparable text for convergence checks.

    Set-like variants compare as sorted element lists; the rest compare by
    their stable serialization, vector clock included. The variant tag is part
    of the fingerprint.
    """
    match state:
        case None:
            return NO_CRDT_FINGERPRINT
        case GSetState():
            return f"gset:{','.join(sorted(state.add_set))}"
        case EventLogState():
            return f"events:{','.join(sorted(state.events))}"
        case CounterState():
            payload = _with_clock({"counts": dict(state.counts)}, state.vector_clock)
            return f"counter:{stable_compact_text(payload)}"
        case OpaqueState():
            payload = _with_clock(dict(state.payload), state.vector_clock)
            return f"opaque:{stable_compact_text(payload)}"
        case _:
            never("unknown CRDT state variant", variant=type(state).__name__)


def removed_elements(previous: tuple[str, ...], current: tuple[str, ...]) -> list[str]:
    """Elements of `previous` missing from `current`, in first-seen order."""
    current_set = set(current)
    return [item for item in dict.fromkeys(previous) if item not in current_set]


def first_clock_regression(
    previous: Mapping[str, Number],
    current: Mapping[str, Number],
) -> tuple[str, Number, Number] | None:
    """First node whose clock entry decreased; a missing entry reads as 0."""
    for node, before in previous.items():
        after = current.get(node, 0)
        if after < before:
            return (node, before, after)
    return None


def format_clock(clock: Mapping[str, Number]) -> str:
    return "[" + ", ".join(f"{node}:{format_number(value)}" for node, value in clock.items()) + "]"
