"""Decode trace documents into the core model and encode them back.

Decoding assumes the document already passed `loader.validate_document`; the
fields outside the minimal schema are read leniently. Encoding writes the
original document keys; a derived step field is written only when it is set.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from tracelattice.exceptions import TraceSchemaError
from tracelattice.invariants import never
from tracelattice.json_types import JSONObject, JSONValue, Number
from tracelattice.model import (
    BoundaryKey,
    BoundaryMove,
    BugClass,
    Certificate,
    CertificateEvidence,
    ControlPlaneState,
    CounterState,
    CrdtKind,
    CrdtState,
    EventLogState,
    GSetState,
    HistoryShape,
    InvariantCheck,
    LogEntry,
    MembershipConfig,
    Message,
    Observation,
    OpaqueState,
    ReplicaState,
    ShardOwnership,
    Step,
    Trace,
    Violation,
)

_TRACE_KEYS = frozenset(
    {"title", "description", "spec", "environment", "historyShape", "steps"}
)
_STEP_KEYS = frozenset(
    {
        "id",
        "event",
        "narration",
        "replicas",
        "messages",
        "certificates",
        "observations",
        "controlPlane",
        "violation",
        "boundaries_moved",
        "geometry_highlight",
        "invariants_checked",
        "invariants_ok",
    }
)


def _text(value: object, default: str = "") -> str:
    if value is None:
        return default
    return str(value)


def _optional_text(value: object) -> str | None:
    if value is None:
        return None
    return str(value)


def _number(value: object) -> Number | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    return None


def _sequence(value: object) -> Sequence[object]:
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        return value
    return ()


def _mapping(value: object) -> Mapping[str, object]:
    if isinstance(value, Mapping):
        return value
    return {}


def _text_tuple(value: object) -> tuple[str, ...]:
    return tuple(str(item) for item in _sequence(value))


def _number_map(value: object) -> dict[str, Number] | None:
    if not isinstance(value, Mapping):
        return None
    clock: dict[str, Number] = {}
    for key, raw in value.items():
        number = _number(raw)
        clock[str(key)] = number if number is not None else 0
    return clock


def decode_log_entry(payload: Mapping[str, object]) -> LogEntry:
    index = payload.get("idx", payload.get("index"))
    value = payload.get("val", payload.get("value"))
    epoch = payload.get("epoch", payload.get("leaderEpoch"))
    origin = payload.get("origin_leader", payload.get("originLeader"))
    return LogEntry(
        index=_number(index) or 0,
        value=_text(value),
        leader_epoch=_number(epoch) or 0,
        config_epoch=_number(payload.get("configEpoch")),
        origin_leader=_optional_text(origin),
    )


def decode_crdt_state(payload: object) -> CrdtState | None:
    """Resolve a CRDT blob into its tagged variant.

    An explicit `kind` key wins; otherwise the variant is chosen from the blob's
    shape, in the order add-set, counts, events.
    """
    if payload is None:
        return None
    if not isinstance(payload, Mapping):
        return OpaqueState(payload={"value": payload})
    vector_clock = _number_map(payload.get("vectorClock"))
    kind = payload.get("kind")
    if kind == CrdtKind.GSET or (kind is None and isinstance(payload.get("addSet"), list)):
        return GSetState(
            add_set=_text_tuple(payload.get("addSet")),
            remove_set=_text_tuple(payload.get("removeSet")),
            vector_clock=vector_clock,
        )
    if kind == CrdtKind.COUNTER or (kind is None and isinstance(payload.get("counts"), Mapping)):
        return CounterState(
            counts=_number_map(payload.get("counts")) or {},
            vector_clock=vector_clock,
        )
    if kind == CrdtKind.EVENT_LOG or (kind is None and isinstance(payload.get("events"), list)):
        return EventLogState(
            events=_text_tuple(payload.get("events")),
            vector_clock=vector_clock,
        )
    opaque = {
        str(key): value
        for key, value in payload.items()
        if key not in {"kind", "vectorClock"}
    }
    return OpaqueState(payload=opaque, vector_clock=vector_clock)


def decode_replica(payload: Mapping[str, object]) -> ReplicaState:
    crdt_payload = payload.get("crdtState", payload.get("state"))
    return ReplicaState(
        T=_number(payload.get("T")) or 0,
        D=_number(payload.get("D")) or 0,
        A=_number(payload.get("A")) or 0,
        C=_number(payload.get("C")) or 0,
        E=_number(payload.get("E")) or 0,
        epoch=_number(payload.get("epoch")) or 0,
        log=tuple(
            decode_log_entry(_mapping(entry)) for entry in _sequence(payload.get("log"))
        ),
        config_epoch=_number(payload.get("configEpoch")),
        shard=_optional_text(payload.get("shard")),
        leader=bool(payload.get("leader")),
        crashed=bool(payload.get("crashed")),
        recovered=bool(payload.get("recovered")),
        partitioned=bool(payload.get("partitioned")),
        danger=bool(payload.get("danger")),
        crdt=decode_crdt_state(crdt_payload),
    )


def _decode_boundary(value: object, *, step_index: int, where: str) -> BoundaryKey:
    try:
        return BoundaryKey(str(value))
    except ValueError:
        raise TraceSchemaError(
            f"Step {step_index}: {where} must be one of T, D, A, C, E (got {value!r})",
            step_index=step_index,
            field=where,
        ) from None


def decode_certificate(payload: Mapping[str, object], *, step_index: int = 0) -> Certificate:
    evidence_payload = payload.get("evidence")
    evidence = None
    if isinstance(evidence_payload, Mapping):
        boundary_raw = evidence_payload.get("boundary")
        evidence = CertificateEvidence(
            quorum=(
                _text_tuple(evidence_payload["quorum"])
                if "quorum" in evidence_payload
                else None
            ),
            boundary=(
                _decode_boundary(
                    boundary_raw,
                    step_index=step_index,
                    where="certificate evidence boundary",
                )
                if boundary_raw is not None
                else None
            ),
            from_=_number(evidence_payload.get("from")),
            to=_number(evidence_payload.get("to")),
            config_epoch=_number(evidence_payload.get("configEpoch")),
        )
    valid = payload.get("valid")
    return Certificate(
        type=_text(payload.get("type")),
        holder=_text(payload.get("holder")),
        detail=_text(payload.get("detail")),
        epoch=_number(payload.get("epoch")),
        shard=_optional_text(payload.get("shard")),
        evidence=evidence,
        valid=bool(valid) if valid is not None else None,
    )


def _decode_message(payload: Mapping[str, object]) -> Message:
    delivered = payload.get("delivered")
    return Message(
        from_=_text(payload.get("from")),
        to=_text(payload.get("to")),
        label=_text(payload.get("label")),
        type=_text(payload.get("type")),
        epoch=_number(payload.get("epoch")),
        delivered=bool(delivered) if delivered is not None else None,
    )


def _decode_observation(payload: Mapping[str, object]) -> Observation:
    return Observation(
        type=_text(payload.get("type")),
        actor=_text(payload.get("actor")),
        target_replica=_optional_text(payload.get("targetReplica")),
        op_id=_optional_text(payload.get("opId")),
        result=_optional_text(payload.get("result")),
        consistency=_optional_text(payload.get("consistency")),
        detail=_optional_text(payload.get("detail")),
    )


def _bug_class(value: object) -> str | None:
    text = _optional_text(value)
    if text is None:
        return None
    try:
        return BugClass(text)
    except ValueError:
        return text


def _decode_violation(payload: Mapping[str, object]) -> Violation:
    return Violation(
        type=_text(payload.get("type")),
        law=_text(payload.get("law")),
        detail=_text(payload.get("detail")),
        framework_ref=_text(payload.get("framework_ref")),
        bug_class=_bug_class(payload.get("bug_class")),
    )


def _decode_control_plane(payload: Mapping[str, object]) -> ControlPlaneState:
    return ControlPlaneState(
        configs=tuple(
            MembershipConfig(
                epoch=_number(_mapping(item).get("epoch")) or 0,
                members=_text_tuple(_mapping(item).get("members")),
            )
            for item in _sequence(payload.get("configs"))
        ),
        current_config_epoch=_number(payload.get("currentConfigEpoch")),
        shard_map=tuple(
            ShardOwnership(
                shard=_text(_mapping(item).get("shard")),
                config_epoch=_number(_mapping(item).get("configEpoch")) or 0,
                replicas=_text_tuple(_mapping(item).get("replicas")),
            )
            for item in _sequence(payload.get("shardMap"))
        ),
        notes=_optional_text(payload.get("notes")),
    )


def _decode_move(payload: Mapping[str, object], *, step_index: int) -> BoundaryMove:
    justified = payload.get("justified_by")
    return BoundaryMove(
        replica=_text(payload.get("replica")),
        boundary=_decode_boundary(
            payload.get("boundary"),
            step_index=step_index,
            where="boundaries_moved boundary",
        ),
        from_=_number(payload.get("from")) or 0,
        to=_number(payload.get("to")) or 0,
        justified_by=(
            decode_certificate(justified, step_index=step_index)
            if isinstance(justified, Mapping)
            else None
        ),
    )


def _decode_check(payload: Mapping[str, object]) -> InvariantCheck:
    return InvariantCheck(
        invariant=_text(payload.get("invariant")),
        holds=bool(payload.get("holds")),
        detail=_text(payload.get("detail")),
    )


def decode_step(payload: Mapping[str, object], *, step_index: int = 0) -> Step:
    moves_payload = payload.get("boundaries_moved")
    checks_payload = payload.get("invariants_checked")
    observations_payload = payload.get("observations")
    control_plane_payload = payload.get("controlPlane")
    violation_payload = payload.get("violation")
    geometry = payload.get("geometry_highlight")
    invariants_ok = payload.get("invariants_ok")
    return Step(
        id=_number(payload.get("id")) or 0,
        replicas={
            str(replica_id): decode_replica(_mapping(replica))
            for replica_id, replica in _mapping(payload.get("replicas")).items()
        },
        event=_text(payload.get("event")),
        narration=_text(payload.get("narration")),
        messages=tuple(
            _decode_message(_mapping(item)) for item in _sequence(payload.get("messages"))
        ),
        certificates=tuple(
            decode_certificate(_mapping(item), step_index=step_index)
            for item in _sequence(payload.get("certificates"))
        ),
        observations=(
            tuple(_decode_observation(_mapping(item)) for item in _sequence(observations_payload))
            if observations_payload is not None
            else None
        ),
        control_plane=(
            _decode_control_plane(control_plane_payload)
            if isinstance(control_plane_payload, Mapping)
            else None
        ),
        violation=(
            _decode_violation(violation_payload)
            if isinstance(violation_payload, Mapping)
            else None
        ),
        boundaries_moved=(
            tuple(
                _decode_move(_mapping(item), step_index=step_index)
                for item in _sequence(moves_payload)
            )
            if moves_payload is not None
            else None
        ),
        geometry_highlight=_optional_text(geometry),
        invariants_checked=(
            tuple(_decode_check(_mapping(item)) for item in _sequence(checks_payload))
            if checks_payload is not None
            else None
        ),
        invariants_ok=bool(invariants_ok) if invariants_ok is not None else None,
        extras={str(key): value for key, value in payload.items() if key not in _STEP_KEYS},
    )


def decode_trace(payload: Mapping[str, object]) -> Trace:
    environment = payload.get("environment")
    shape = payload.get("historyShape")
    return Trace(
        title=_text(payload.get("title")),
        description=_text(payload.get("description")),
        spec=dict(_mapping(payload.get("spec"))),
        environment=dict(environment) if isinstance(environment, Mapping) else None,
        history_shape=HistoryShape.DAG if shape == HistoryShape.DAG else HistoryShape.LINE,
        steps=tuple(
            decode_step(_mapping(step), step_index=index)
            for index, step in enumerate(_sequence(payload.get("steps")))
        ),
        extras={str(key): value for key, value in payload.items() if key not in _TRACE_KEYS},
    )


def _drop_none(payload: dict[str, JSONValue]) -> JSONObject:
    return {key: value for key, value in payload.items() if value is not None}


def encode_log_entry(entry: LogEntry) -> JSONObject:
    return _drop_none(
        {
            "idx": entry.index,
            "val": entry.value,
            "epoch": entry.leader_epoch,
            "configEpoch": entry.config_epoch,
            "origin_leader": entry.origin_leader,
        }
    )


def encode_crdt_state(state: CrdtState) -> JSONObject:
    match state:
        case GSetState():
            payload: dict[str, JSONValue] = {"addSet": list(state.add_set)}
            if state.remove_set:
                payload["removeSet"] = list(state.remove_set)
        case CounterState():
            payload = {"counts": dict(state.counts)}
        case EventLogState():
            payload = {"events": list(state.events)}
        case OpaqueState():
            payload = dict(state.payload)
        case _:
            never("unknown CRDT state variant", variant=type(state).__name__)
    if state.vector_clock is not None:
        payload["vectorClock"] = dict(state.vector_clock)
    return payload


def encode_replica(replica: ReplicaState) -> JSONObject:
    payload: dict[str, JSONValue] = {
        "T": replica.T,
        "D": replica.D,
        "A": replica.A,
        "C": replica.C,
        "E": replica.E,
        "epoch": replica.epoch,
        "configEpoch": replica.config_epoch,
        "shard": replica.shard,
        "log": [encode_log_entry(entry) for entry in replica.log],
    }
    for flag in ("leader", "crashed", "recovered", "partitioned", "danger"):
        if getattr(replica, flag):
            payload[flag] = True
    if replica.crdt is not None:
        payload["crdtState"] = encode_crdt_state(replica.crdt)
    return _drop_none(payload)


def encode_certificate(certificate: Certificate) -> JSONObject:
    evidence = certificate.evidence
    return _drop_none(
        {
            "type": certificate.type,
            "holder": certificate.holder,
            "epoch": certificate.epoch,
            "shard": certificate.shard,
            "detail": certificate.detail,
            "evidence": (
                _drop_none(
                    {
                        "quorum": list(evidence.quorum) if evidence.quorum is not None else None,
                        "boundary": evidence.boundary.value if evidence.boundary else None,
                        "from": evidence.from_,
                        "to": evidence.to,
                        "configEpoch": evidence.config_epoch,
                    }
                )
                if evidence is not None
                else None
            ),
            "valid": certificate.valid,
        }
    )


def encode_move(move: BoundaryMove) -> JSONObject:
    return _drop_none(
        {
            "replica": move.replica,
            "boundary": move.boundary.value,
            "from": move.from_,
            "to": move.to,
            "justified_by": (
                encode_certificate(move.justified_by)
                if move.justified_by is not None
                else None
            ),
        }
    )


def encode_check(check: InvariantCheck) -> JSONObject:
    return {"invariant": check.invariant, "holds": check.holds, "detail": check.detail}


def _encode_control_plane(state: ControlPlaneState) -> JSONObject:
    return _drop_none(
        {
            "configs": [
                {"epoch": config.epoch, "members": list(config.members)}
                for config in state.configs
            ],
            "currentConfigEpoch": state.current_config_epoch,
            "shardMap": [
                {
                    "shard": owner.shard,
                    "configEpoch": owner.config_epoch,
                    "replicas": list(owner.replicas),
                }
                for owner in state.shard_map
            ],
            "notes": state.notes,
        }
    )


def encode_step(step: Step) -> JSONObject:
    payload: dict[str, JSONValue] = {
        "id": step.id,
        "event": step.event,
        "narration": step.narration,
        "replicas": {
            replica_id: encode_replica(replica)
            for replica_id, replica in step.replicas.items()
        },
        "messages": [
            _drop_none(
                {
                    "from": message.from_,
                    "to": message.to,
                    "label": message.label,
                    "type": message.type,
                    "epoch": message.epoch,
                    "delivered": message.delivered,
                }
            )
            for message in step.messages
        ],
        "certificates": [encode_certificate(cert) for cert in step.certificates],
        "geometry_highlight": step.geometry_highlight,
    }
    if step.boundaries_moved is not None:
        payload["boundaries_moved"] = [encode_move(move) for move in step.boundaries_moved]
    if step.invariants_checked is not None:
        payload["invariants_checked"] = [encode_check(check) for check in step.invariants_checked]
    if step.invariants_ok is not None:
        payload["invariants_ok"] = step.invariants_ok
    if step.observations is not None:
        payload["observations"] = [
            _drop_none(
                {
                    "type": observation.type,
                    "actor": observation.actor,
                    "targetReplica": observation.target_replica,
                    "opId": observation.op_id,
                    "result": observation.result,
                    "consistency": observation.consistency,
                    "detail": observation.detail,
                }
            )
            for observation in step.observations
        ]
    if step.control_plane is not None:
        payload["controlPlane"] = _encode_control_plane(step.control_plane)
    if step.violation is not None:
        payload["violation"] = _drop_none(
            {
                "type": step.violation.type,
                "law": step.violation.law,
                "detail": step.violation.detail,
                "framework_ref": step.violation.framework_ref,
                "bug_class": step.violation.bug_class,
            }
        )
    payload.update(step.extras)
    return payload


def encode_trace(trace: Trace) -> JSONObject:
    payload: dict[str, JSONValue] = {
        "title": trace.title,
        "description": trace.description,
        "spec": trace.spec,
        "historyShape": trace.history_shape.value,
        "steps": [encode_step(step) for step in trace.steps],
    }
    if trace.environment is not None:
        payload["environment"] = trace.environment
    payload.update(trace.extras)
    return payload
