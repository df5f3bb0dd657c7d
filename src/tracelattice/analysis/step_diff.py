from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from tracelattice.analysis.boundary_moves import shared_replica_ids
from tracelattice.codec import encode_certificate, encode_log_entry
from tracelattice.json_types import JSONObject, Number
from tracelattice.model import BOUNDARIES, BoundaryKey, Certificate, LogEntry, Step

DIFF_FLAGS: tuple[str, ...] = ("crashed", "recovered", "partitioned", "danger")


@dataclass(frozen=True)
class BoundaryChange:
    replica: str
    boundary: BoundaryKey
    old: Number
    new: Number


@dataclass(frozen=True)
class EntryChange:
    replica: str
    entry: LogEntry


@dataclass(frozen=True)
class ValueChange:
    replica: str
    old: Number | str
    new: Number | str


@dataclass(frozen=True)
class FlagChange:
    replica: str
    flag: str
    old: bool
    new: bool


@dataclass(frozen=True)
class StepDiff:
    boundaries_changed: tuple[BoundaryChange, ...] = ()
    entries_added: tuple[EntryChange, ...] = ()
    entries_removed: tuple[EntryChange, ...] = ()
    epoch_changed: tuple[ValueChange, ...] = ()
    role_changed: tuple[ValueChange, ...] = ()
    flags_changed: tuple[FlagChange, ...] = ()
    certs_issued: tuple[Certificate, ...] = ()
    violation_appeared: bool = False
    violation_resolved: bool = False

    @property
    def is_empty(self) -> bool:
        return not (
            self.boundaries_changed
            or self.entries_added
            or self.entries_removed
            or self.epoch_changed
            or self.role_changed
            or self.flags_changed
            or self.certs_issued
            or self.violation_appeared
            or self.violation_resolved
        )

    def touched_replicas(self) -> list[str]:
        """Replica ids with any per-replica change, in first-seen order."""
        groups: tuple[tuple[object, ...], ...] = (
            self.boundaries_changed,
            self.entries_added,
            self.entries_removed,
            self.epoch_changed,
            self.role_changed,
            self.flags_changed,
        )
        seen: dict[str, None] = {}
        for group in groups:
            for change in group:
                seen.setdefault(getattr(change, "replica"), None)
        return list(seen)


def compute_step_diff(prev: Step | None, curr: Step) -> StepDiff:
    violation_appeared = curr.violation is not None and (prev is None or prev.violation is None)
    violation_resolved = curr.violation is None and prev is not None and prev.violation is not None
    if prev is None:
        return StepDiff(
            certs_issued=curr.certificates,
            violation_appeared=violation_appeared,
            violation_resolved=violation_resolved,
        )

    boundaries: list[BoundaryChange] = []
    added: list[EntryChange] = []
    removed: list[EntryChange] = []
    epochs: list[ValueChange] = []
    roles: list[ValueChange] = []
    flags: list[FlagChange] = []
    for replica_id in shared_replica_ids(prev, curr):
        before = prev.replicas[replica_id]
        after = curr.replicas[replica_id]

        for boundary in BOUNDARIES:
            old, new = before.boundary(boundary), after.boundary(boundary)
            if old != new:
                boundaries.append(BoundaryChange(replica_id, boundary, old, new))

        before_keys = {entry.identity() for entry in before.log}
        after_keys = {entry.identity() for entry in after.log}
        added.extend(
            EntryChange(replica_id, entry)
            for entry in after.log
            if entry.identity() not in before_keys
        )
        removed.extend(
            EntryChange(replica_id, entry)
            for entry in before.log
            if entry.identity() not in after_keys
        )

        if before.epoch != after.epoch:
            epochs.append(ValueChange(replica_id, before.epoch, after.epoch))
        if before.role != after.role:
            roles.append(ValueChange(replica_id, before.role, after.role))
        for flag in DIFF_FLAGS:
            old_flag, new_flag = bool(getattr(before, flag)), bool(getattr(after, flag))
            if old_flag != new_flag:
                flags.append(FlagChange(replica_id, flag, old_flag, new_flag))

    return StepDiff(
        boundaries_changed=tuple(boundaries),
        entries_added=tuple(added),
        entries_removed=tuple(removed),
        epoch_changed=tuple(epochs),
        role_changed=tuple(roles),
        flags_changed=tuple(flags),
        certs_issued=curr.certificates,
        violation_appeared=violation_appeared,
        violation_resolved=violation_resolved,
    )


def step_diff_at(index: int, steps: Sequence[Step]) -> StepDiff | None:
    if index < 0 or index >= len(steps):
        return None
    prev = steps[index - 1] if index > 0 else None
    return compute_step_diff(prev, steps[index])


def step_diff_payload(diff: StepDiff) -> JSONObject:
    return {
        "boundaries_changed": [
            {"replica": c.replica, "boundary": c.boundary.value, "old": c.old, "new": c.new}
            for c in diff.boundaries_changed
        ],
        "entries_added": [
            {"replica": c.replica, "entry": encode_log_entry(c.entry)} for c in diff.entries_added
        ],
        "entries_removed": [
            {"replica": c.replica, "entry": encode_log_entry(c.entry)}
            for c in diff.entries_removed
        ],
        "epoch_changed": [
            {"replica": c.replica, "old": c.old, "new": c.new} for c in diff.epoch_changed
        ],
        "role_changed": [
            {"replica": c.replica, "old": c.old, "new": c.new} for c in diff.role_changed
        ],
        "flags_changed": [
            {"replica": c.replica, "flag": c.flag, "old": c.old, "new": c.new}
            for c in diff.flags_changed
        ],
        "certs_issued": [encode_certificate(cert) for cert in diff.certs_issued],
        "violation_appeared": diff.violation_appeared,
        "violation_resolved": diff.violation_resolved,
    }
