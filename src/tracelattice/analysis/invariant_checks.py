"""Consensus invariant battery.

Line-shaped histories are checked against the boundary lattice, leader
authority, and the coupling law (committed trunk monotone in (epoch, index)).
DAG/CRDT histories replace that battery with monotonicity and convergence
laws. A violation is reported as an `InvariantCheck` with `holds=False`;
nothing in this module raises for a misbehaving trace.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from tracelattice.analysis.crdt import (
    first_clock_regression,
    format_clock,
    removed_elements,
    state_fingerprint,
)
from tracelattice.json_types import Number, format_number
from tracelattice.model import (
    EventLogState,
    GSetState,
    HistoryShape,
    InvariantCheck,
    LogEntry,
    ReplicaState,
    Step,
)

INVARIANT_DESCRIPTIONS: dict[str, str] = {
    "T ≤ C": "Can only trim committed entries; trimming uncommitted entries loses data.",
    "D ≤ E": "Can only durably store entries that exist in the log.",
    "A ≤ E": "Can only apply entries that exist in the log.",
    "A ≤ C": "Only committed entries reach the state machine; applying wet cement exposes phantom state.",
    "D ≥ C": "Committed entries must be durable on every replica that claims them.",
    "Authority uniqueness": "At most one valid leader per (configEpoch, leaderEpoch).",
    "Authority fencing": "Old leaders must be fenced once a higher epoch exists.",
    "Trunk monotone": "Committed entries are monotone in (epoch, index) and never change value.",
    "C monotone": "The commit frontier never decreases.",
    "Set monotone": "G-set elements are never removed.",
    "Events monotone": "The event log only grows.",
    "VC monotone": "Vector clock entries never decrease on the same replica.",
    "Convergence": "All non-partitioned replicas hold the same state.",
}


def invariant_family(name: str) -> str:
    """Strip the replica or epoch qualifier from a check name."""
    head, _, _ = name.partition(" (")
    return head


def describe_invariant(name: str) -> str:
    return INVARIANT_DESCRIPTIONS.get(invariant_family(name), "")


def _lattice_check(
    name: str,
    replica_id: str,
    *,
    left: tuple[str, Number],
    right: tuple[str, Number],
    violation_text: str,
) -> InvariantCheck:
    left_name, left_value = left
    right_name, right_value = right
    holds = left_value <= right_value
    detail = (
        f"{format_number(left_value)} ≤ {format_number(right_value)}"
        if holds
        else (
            f"VIOLATION: {left_name}={format_number(left_value)} > "
            f"{right_name}={format_number(right_value)} - {violation_text}"
        )
    )
    return InvariantCheck(invariant=f"{name} ({replica_id})", holds=holds, detail=detail)


def boundary_lattice_checks(replica_id: str, state: ReplicaState) -> list[InvariantCheck]:
    checks = [
        _lattice_check(
            "T ≤ C",
            replica_id,
            left=("T", state.T),
            right=("C", state.C),
            violation_text="trimmed beyond commit frontier",
        ),
        _lattice_check(
            "D ≤ E",
            replica_id,
            left=("D", state.D),
            right=("E", state.E),
            violation_text="durable frontier beyond append frontier",
        ),
        _lattice_check(
            "A ≤ E",
            replica_id,
            left=("A", state.A),
            right=("E", state.E),
            violation_text="applied beyond append frontier",
        ),
        _lattice_check(
            "A ≤ C",
            replica_id,
            left=("A", state.A),
            right=("C", state.C),
            violation_text="applied uncommitted entries",
        ),
    ]
    if state.C > 0 and state.D < state.C:
        checks.append(
            InvariantCheck(
                invariant=f"D ≥ C ({replica_id})",
                holds=False,
                detail=(
                    f"WARNING: D={format_number(state.D)} < C={format_number(state.C)} - "
                    "committed entries not durable on this replica"
                ),
            )
        )
    return checks


def authority_checks(replicas: Mapping[str, ReplicaState]) -> list[InvariantCheck]:
    leaders = [
        (replica_id, state)
        for replica_id, state in replicas.items()
        if state.leader and not state.crashed
    ]
    groups: dict[str, list[str]] = {}
    for replica_id, state in leaders:
        config_epoch = state.config_epoch if state.config_epoch is not None else 0
        groups.setdefault(
            f"{format_number(config_epoch)}:{format_number(state.epoch)}", []
        ).append(replica_id)

    checks: list[InvariantCheck] = []
    for epoch_key, claimants in groups.items():
        unique = len(claimants) <= 1
        checks.append(
            InvariantCheck(
                invariant=f"Authority uniqueness (epoch {epoch_key})",
                holds=unique,
                detail=(
                    f"Single leader: {claimants[0]}"
                    if unique
                    else (
                        f"VIOLATION: Multiple leaders in epoch {epoch_key}: "
                        f"[{', '.join(claimants)}] - split brain"
                    )
                ),
            )
        )

    if len(leaders) > 1:
        active = [(replica_id, state) for replica_id, state in leaders if not state.partitioned]
        epochs = list(dict.fromkeys(state.epoch for _, state in active))
        if len(epochs) > 1:
            claimants = ", ".join(
                f"{replica_id}(e={format_number(state.epoch)})" for replica_id, state in active
            )
            checks.append(
                InvariantCheck(
                    invariant="Authority fencing",
                    holds=False,
                    detail=(
                        f"WARNING: {len(active)} active leaders across epochs "
                        f"[{', '.join(format_number(epoch) for epoch in epochs)}]: {claimants} - "
                        "old leader not yet fenced"
                    ),
                )
            )
    return checks


def committed_slice(state: ReplicaState) -> list[LogEntry]:
    """Committed entries in history-space order."""
    committed = [entry for entry in state.log if entry.index <= state.C]
    return sorted(committed, key=lambda entry: entry.coordinate(state.shard).sort_key())


def trunk_monotone_check(
    replica_id: str,
    prev_state: ReplicaState,
    curr_state: ReplicaState,
) -> InvariantCheck:
    """Coupling law for a replica whose commit frontier advanced.

    Only the first regression in the previous committed slice is reported.
    """
    current = committed_slice(curr_state)
    detail = f"C advanced: {format_number(prev_state.C)} → {format_number(curr_state.C)}"
    holds = True
    for before in committed_slice(prev_state):
        after = next((entry for entry in current if entry.index == before.index), None)
        if after is None:
            continue
        if after.leader_epoch < before.leader_epoch:
            holds = False
            detail = (
                f"Coupling law violated: entry at idx={format_number(before.index)} changed "
                f"from epoch {format_number(before.leader_epoch)} to "
                f"{format_number(after.leader_epoch)} - committed trunk is not "
                "monotone in (epoch, index)"
            )
            break
        if after.leader_epoch == before.leader_epoch and after.value != before.value:
            holds = False
            detail = (
                f"Trunk integrity violated: entry at idx={format_number(before.index)}, "
                f"epoch={format_number(before.leader_epoch)} changed value from \"{before.value}\" "
                f"to \"{after.value}\""
            )
            break
    return InvariantCheck(invariant=f"Trunk monotone ({replica_id})", holds=holds, detail=detail)


def cross_step_checks(step: Step, prev: Step) -> list[InvariantCheck]:
    checks: list[InvariantCheck] = []
    for replica_id, curr_state in step.replicas.items():
        prev_state = prev.replicas.get(replica_id)
        if prev_state is None or curr_state.crashed:
            continue
        if curr_state.C > prev_state.C:
            checks.append(trunk_monotone_check(replica_id, prev_state, curr_state))
        if curr_state.C < prev_state.C:
            checks.append(
                InvariantCheck(
                    invariant=f"C monotone ({replica_id})",
                    holds=False,
                    detail=(
                        f"VIOLATION: C decreased from {format_number(prev_state.C)} "
                        f"to {format_number(curr_state.C)} - "
                        "commit frontier must be monotonically non-decreasing"
                    ),
                )
            )
    return checks


def check_line_invariants(step: Step, prev: Step | None = None) -> list[InvariantCheck]:
    checks: list[InvariantCheck] = []
    for replica_id, state in step.replicas.items():
        if state.crashed:
            continue
        checks.extend(boundary_lattice_checks(replica_id, state))
    checks.extend(authority_checks(step.replicas))
    if prev is not None:
        checks.extend(cross_step_checks(step, prev))
    return checks


def _monotone_set_check(
    name: str,
    replica_id: str,
    previous: tuple[str, ...],
    current: tuple[str, ...],
    *,
    holds_detail: str,
    noun: str,
) -> InvariantCheck:
    removed = removed_elements(previous, current)
    return InvariantCheck(
        invariant=f"{name} ({replica_id})",
        holds=not removed,
        detail=(
            holds_detail
            if not removed
            else f"VIOLATION: removed {noun}: {{{', '.join(removed)}}}"
        ),
    )


def crdt_monotonicity_checks(step: Step, prev: Step) -> list[InvariantCheck]:
    checks: list[InvariantCheck] = []
    for replica_id, curr_state in step.replicas.items():
        prev_state = prev.replicas.get(replica_id)
        if prev_state is None or curr_state.crashed:
            continue
        before = prev_state.crdt
        after = curr_state.crdt
        if before is None or after is None:
            continue
        if isinstance(before, GSetState) and isinstance(after, GSetState):
            elements = list(dict.fromkeys(after.add_set))
            checks.append(
                _monotone_set_check(
                    "Set monotone",
                    replica_id,
                    before.add_set,
                    after.add_set,
                    holds_detail=f"{{{', '.join(elements)}}} ⊇ prev",
                    noun="elements",
                )
            )
        if isinstance(before, EventLogState) and isinstance(after, EventLogState):
            checks.append(
                _monotone_set_check(
                    "Events monotone",
                    replica_id,
                    before.events,
                    after.events,
                    holds_detail=(
                        f"{len(set(after.events))} events ⊇ prev {len(set(before.events))}"
                    ),
                    noun="events",
                )
            )
        if before.vector_clock is not None and after.vector_clock is not None:
            regression = first_clock_regression(before.vector_clock, after.vector_clock)
            detail = format_clock(after.vector_clock)
            if regression is not None:
                node, was, now = regression
                detail = (
                    f"VIOLATION: {node}: {format_number(was)} → {format_number(now)} (decreased)"
                )
            checks.append(
                InvariantCheck(
                    invariant=f"VC monotone ({replica_id})",
                    holds=regression is None,
                    detail=detail,
                )
            )
    return checks


def convergence_check(step: Step) -> InvariantCheck | None:
    """Agreement among active replicas; skipped while any replica is partitioned."""
    if any(state.partitioned for state in step.replicas.values()):
        return None
    active = {
        replica_id: state
        for replica_id, state in step.replicas.items()
        if not state.crashed
    }
    if len(active) <= 1:
        return None
    groups: dict[str, list[str]] = {}
    for replica_id, state in active.items():
        groups.setdefault(state_fingerprint(state.crdt), []).append(replica_id)
    if len(groups) == 1:
        return InvariantCheck(
            invariant="Convergence",
            holds=True,
            detail=f"All {len(active)} active replicas agree",
        )
    diverging = " vs ".join(",".join(members) for members in groups.values())
    return InvariantCheck(
        invariant="Convergence",
        holds=False,
        detail=f"Diverged: {diverging} - may converge later",
    )


def check_dag_invariants(step: Step, prev: Step | None = None) -> list[InvariantCheck]:
    checks: list[InvariantCheck] = []
    if prev is not None:
        checks.extend(crdt_monotonicity_checks(step, prev))
    convergence = convergence_check(step)
    if convergence is not None:
        checks.append(convergence)
    return checks


def check_invariants(
    step: Step,
    prev: Step | None = None,
    *,
    history_shape: HistoryShape = HistoryShape.LINE,
) -> list[InvariantCheck]:
    if history_shape == HistoryShape.DAG:
        return check_dag_invariants(step, prev)
    return check_line_invariants(step, prev)


def validate_trace(
    steps: Sequence[Step],
    *,
    history_shape: HistoryShape = HistoryShape.LINE,
) -> dict[Number, list[InvariantCheck]]:
    """Run the battery over every step, keyed by step id."""
    results: dict[Number, list[InvariantCheck]] = {}
    for index, step in enumerate(steps):
        prev = steps[index - 1] if index > 0 else None
        results[step.id] = check_invariants(step, prev, history_shape=history_shape)
    return results
