"""Step geometry classification.

A step is assigned the label of the first rule in `GEOMETRY_RULES` that
decides it. Ties are broken by rule order only.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass

from tracelattice.model import (
    BoundaryKey,
    BoundaryMove,
    CertificateType,
    GeometryKey,
    Step,
)


@dataclass(frozen=True)
class GeometryMeta:
    label: str
    desc: str


GEOMETRY_META: dict[GeometryKey, GeometryMeta] = {
    GeometryKey.SAFETY: GeometryMeta("Safety", "Quorum intersection: who must confirm"),
    GeometryKey.AUTHORITY: GeometryMeta("Authority", "Epoch fencing: who may write"),
    GeometryKey.COUPLING: GeometryMeta("Coupling", "Sets x epochs: why both matter"),
    GeometryKey.RESOURCE: GeometryMeta("Resource", "Retention and trim: what history is kept"),
    GeometryKey.OBSERVATION: GeometryMeta("Observation", "Read/write contracts: what clients see"),
    GeometryKey.OWNERSHIP: GeometryMeta("Ownership", "Sharding: who owns what keyspace"),
    GeometryKey.MEMBERSHIP: GeometryMeta("Membership", "Config epochs: who is in the group"),
    GeometryKey.CAUSALITY: GeometryMeta("Causality", "Partial order: DAG and CALM"),
    GeometryKey.COMPOSITION: GeometryMeta("Composition", "Transactions and externalization"),
    GeometryKey.FAILURE: GeometryMeta("Failure", "Fault model: what can break"),
    GeometryKey.LIVENESS: GeometryMeta("Liveness", "Progress: will certificates keep forming?"),
}

_GEOMETRY_VALUES = frozenset(key.value for key in GeometryKey)
_COMPOSITION_CERTIFICATES = frozenset(
    {CertificateType.EXTERNALIZATION, CertificateType.TRANSACTION}
)


@dataclass(frozen=True)
class GeometryContext:
    step: Step
    prev: Step | None
    moves: Sequence[BoundaryMove]

    def moved(self, boundary: BoundaryKey) -> bool:
        return any(move.boundary == boundary for move in self.moves)


@dataclass(frozen=True)
class GeometryRule:
    name: str
    decide: Callable[[GeometryContext], GeometryKey | None]


def _violation_rule(ctx: GeometryContext) -> GeometryKey | None:
    violation = ctx.step.violation
    if violation is None:
        return None
    if violation.type in _GEOMETRY_VALUES:
        return GeometryKey(violation.type)
    return GeometryKey.COUPLING


def _control_plane_rule(ctx: GeometryContext) -> GeometryKey | None:
    control_plane = ctx.step.control_plane
    if control_plane is None:
        return None
    if control_plane.shard_map:
        return GeometryKey.OWNERSHIP
    return GeometryKey.MEMBERSHIP


def _composition_rule(ctx: GeometryContext) -> GeometryKey | None:
    for certificate in ctx.step.certificates:
        if certificate.type in _COMPOSITION_CERTIFICATES:
            return GeometryKey.COMPOSITION
    return None


def _commit_rule(ctx: GeometryContext) -> GeometryKey | None:
    return GeometryKey.SAFETY if ctx.moved(BoundaryKey.C) else None


def _epoch_rule(ctx: GeometryContext) -> GeometryKey | None:
    if ctx.prev is None:
        return None
    for replica_id, replica in ctx.step.replicas.items():
        previous = ctx.prev.replicas.get(replica_id)
        if previous is not None and previous.epoch != replica.epoch:
            return GeometryKey.AUTHORITY
    return None


def _failure_rule(ctx: GeometryContext) -> GeometryKey | None:
    for replica in ctx.step.replicas.values():
        if replica.crashed or replica.recovered:
            return GeometryKey.FAILURE
    return None


def _trim_rule(ctx: GeometryContext) -> GeometryKey | None:
    return GeometryKey.RESOURCE if ctx.moved(BoundaryKey.T) else None


def _observation_rule(ctx: GeometryContext) -> GeometryKey | None:
    return GeometryKey.OBSERVATION if ctx.step.observations else None


GEOMETRY_RULES: tuple[GeometryRule, ...] = (
    GeometryRule("violation", _violation_rule),
    GeometryRule("control_plane", _control_plane_rule),
    GeometryRule("composition_certificate", _composition_rule),
    GeometryRule("commit_moved", _commit_rule),
    GeometryRule("epoch_changed", _epoch_rule),
    GeometryRule("crash_or_recovery", _failure_rule),
    GeometryRule("trim_moved", _trim_rule),
    GeometryRule("observations", _observation_rule),
)


def classify_geometry(
    step: Step,
    prev: Step | None,
    moves: Sequence[BoundaryMove],
    *,
    rules: Sequence[GeometryRule] = GEOMETRY_RULES,
) -> GeometryKey | None:
    ctx = GeometryContext(step=step, prev=prev, moves=moves)
    for rule in rules:
        label = rule.decide(ctx)
        if label is not None:
            return label
    return None


def matching_rule(
    step: Step,
    prev: Step | None,
    moves: Sequence[BoundaryMove],
) -> str | None:
    """Name of the rule that decides the step's geometry, for explanations."""
    ctx = GeometryContext(step=step, prev=prev, moves=moves)
    for rule in GEOMETRY_RULES:
        if rule.decide(ctx) is not None:
            return rule.name
    return None
