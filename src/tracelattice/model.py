"""Core trace data model.

Every value here is immutable once decoded. Normalization never mutates a step;
it builds a new one with `dataclasses.replace`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Mapping

from tracelattice.json_types import JSONObject, JSONValue, Number


class BoundaryKey(StrEnum):
    T = "T"
    D = "D"
    A = "A"
    C = "C"
    E = "E"


BOUNDARIES: tuple[BoundaryKey, ...] = (
    BoundaryKey.T,
    BoundaryKey.D,
    BoundaryKey.A,
    BoundaryKey.C,
    BoundaryKey.E,
)


class GeometryKey(StrEnum):
    SAFETY = "safety"
    AUTHORITY = "authority"
    COUPLING = "coupling"
    RESOURCE = "resource"
    OBSERVATION = "observation"
    OWNERSHIP = "ownership"
    MEMBERSHIP = "membership"
    CAUSALITY = "causality"
    COMPOSITION = "composition"
    FAILURE = "failure"
    LIVENESS = "liveness"


class CertificateType(StrEnum):
    AUTHORITY = "authority"
    COMMIT = "commit"
    READ = "read"
    TRIM = "trim"
    EXTERNALIZATION = "externalization"
    TRANSACTION = "transaction"


class BugClass(StrEnum):
    PHANTOM_COMMIT = "phantom_commit"
    SPLIT_BRAIN = "split_brain"
    RESURRECTED_HISTORY = "resurrected_history"
    ZOMBIE_SIDE_EFFECT = "zombie_side_effect"
    READ_ANOMALY = "read_anomaly"
    DATA_LOSS_AFTER_ACK = "data_loss_after_ack"
    TRIM_CLIFF = "trim_cliff"
    RECONFIG_SPLIT_BRAIN = "reconfig_split_brain"
    ELECTION_STORM = "election_storm"


class HistoryShape(StrEnum):
    LINE = "line"
    DAG = "dag"


class CrdtKind(StrEnum):
    GSET = "gset"
    COUNTER = "counter"
    EVENT_LOG = "events"
    OPAQUE = "opaque"


@dataclass(frozen=True)
class Coordinate:
    """Address of a log entry in the history space.

    Committed entries must be monotone under the lexicographic order of
    `sort_key()`.
    """

    leader_epoch: Number
    index: Number
    shard: str | None = None
    config_epoch: Number | None = None

    def sort_key(self) -> tuple[str, Number, Number, Number]:
        return (
            self.shard or "",
            self.config_epoch if self.config_epoch is not None else 0,
            self.leader_epoch,
            self.index,
        )


@dataclass(frozen=True)
class LogEntry:
    index: Number
    value: str
    leader_epoch: Number
    config_epoch: Number | None = None
    origin_leader: str | None = None

    def coordinate(self, shard: str | None = None) -> Coordinate:
        return Coordinate(
            leader_epoch=self.leader_epoch,
            index=self.index,
            shard=shard,
            config_epoch=self.config_epoch,
        )

    def identity(self) -> tuple[Number, str, Number]:
        return (self.index, self.value, self.leader_epoch)


@dataclass(frozen=True)
class GSetState:
    add_set: tuple[str, ...]
    remove_set: tuple[str, ...] = ()
    vector_clock: Mapping[str, Number] | None = None
    kind: CrdtKind = field(default=CrdtKind.GSET, init=False)


@dataclass(frozen=True)
class CounterState:
    counts: Mapping[str, Number]
    vector_clock: Mapping[str, Number] | None = None
    kind: CrdtKind = field(default=CrdtKind.COUNTER, init=False)


@dataclass(frozen=True)
class EventLogState:
    events: tuple[str, ...]
    vector_clock: Mapping[str, Number] | None = None
    kind: CrdtKind = field(default=CrdtKind.EVENT_LOG, init=False)


@dataclass(frozen=True)
class OpaqueState:
    payload: JSONObject
    vector_clock: Mapping[str, Number] | None = None
    kind: CrdtKind = field(default=CrdtKind.OPAQUE, init=False)


CrdtState = GSetState | CounterState | EventLogState | OpaqueState


@dataclass(frozen=True)
class ReplicaState:
    T: Number
    D: Number
    A: Number
    C: Number
    E: Number
    epoch: Number
    log: tuple[LogEntry, ...] = ()
    config_epoch: Number | None = None
    shard: str | None = None
    leader: bool = False
    crashed: bool = False
    recovered: bool = False
    partitioned: bool = False
    danger: bool = False
    crdt: CrdtState | None = None

    def boundary(self, key: BoundaryKey) -> Number:
        return getattr(self, key.value)

    @property
    def role(self) -> str:
        return "leader" if self.leader else "follower"


@dataclass(frozen=True)
class CertificateEvidence:
    quorum: tuple[str, ...] | None = None
    boundary: BoundaryKey | None = None
    from_: Number | None = None
    to: Number | None = None
    config_epoch: Number | None = None


@dataclass(frozen=True)
class Certificate:
    type: str
    holder: str
    detail: str = ""
    epoch: Number | None = None
    shard: str | None = None
    evidence: CertificateEvidence | None = None
    valid: bool | None = None


@dataclass(frozen=True)
class Message:
    from_: str
    to: str
    label: str
    type: str
    epoch: Number | None = None
    delivered: bool | None = None


@dataclass(frozen=True)
class Observation:
    type: str
    actor: str
    target_replica: str | None = None
    op_id: str | None = None
    result: str | None = None
    consistency: str | None = None
    detail: str | None = None


@dataclass(frozen=True)
class Violation:
    type: str
    law: str = ""
    detail: str = ""
    framework_ref: str = ""
    bug_class: BugClass | str | None = None


@dataclass(frozen=True)
class MembershipConfig:
    epoch: Number
    members: tuple[str, ...]


@dataclass(frozen=True)
class ShardOwnership:
    shard: str
    config_epoch: Number
    replicas: tuple[str, ...]


@dataclass(frozen=True)
class ControlPlaneState:
    configs: tuple[MembershipConfig, ...] = ()
    current_config_epoch: Number | None = None
    shard_map: tuple[ShardOwnership, ...] = ()
    notes: str | None = None


@dataclass(frozen=True)
class BoundaryMove:
    replica: str
    boundary: BoundaryKey
    from_: Number
    to: Number
    justified_by: Certificate | None = None


@dataclass(frozen=True)
class InvariantCheck:
    invariant: str
    holds: bool
    detail: str = ""


@dataclass(frozen=True)
class Step:
    """One frame of the storyboard.

    The derived fields are `None` when the document did not supply them; an
    explicit empty sequence is a distinct, supplied value.
    """

    id: Number
    replicas: Mapping[str, ReplicaState]
    event: str = ""
    narration: str = ""
    messages: tuple[Message, ...] = ()
    certificates: tuple[Certificate, ...] = ()
    observations: tuple[Observation, ...] | None = None
    control_plane: ControlPlaneState | None = None
    violation: Violation | None = None
    boundaries_moved: tuple[BoundaryMove, ...] | None = None
    geometry_highlight: str | None = None
    invariants_checked: tuple[InvariantCheck, ...] | None = None
    invariants_ok: bool | None = None
    extras: Mapping[str, JSONValue] = field(default_factory=dict)


@dataclass(frozen=True)
class Trace:
    title: str
    spec: JSONObject
    steps: tuple[Step, ...]
    description: str = ""
    environment: JSONObject | None = None
    history_shape: HistoryShape = HistoryShape.LINE
    extras: Mapping[str, JSONValue] = field(default_factory=dict)

    @property
    def is_dag(self) -> bool:
        return self.history_shape == HistoryShape.DAG
