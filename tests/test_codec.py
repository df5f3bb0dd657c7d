from __future__ import annotations

import pytest

from tracelattice.codec import (
    decode_crdt_state,
    decode_log_entry,
    decode_replica,
    decode_trace,
    encode_crdt_state,
    encode_log_entry,
    encode_replica,
    encode_step,
    encode_trace,
)
from tracelattice.exceptions import TraceSchemaError
from tracelattice.model import (
    BoundaryKey,
    BugClass,
    CounterState,
    CrdtKind,
    EventLogState,
    GSetState,
    HistoryShape,
    LogEntry,
    OpaqueState,
)
from tests.trace_builders import raw_replica, raw_step, raw_trace


def test_decode_log_entry_reads_document_keys_and_aliases() -> None:
    assert decode_log_entry({"idx": 2, "val": "x", "epoch": 3}) == LogEntry(
        index=2, value="x", leader_epoch=3
    )
    assert decode_log_entry(
        {"index": 2, "value": "x", "leaderEpoch": 3, "originLeader": "r1", "configEpoch": 1}
    ) == LogEntry(index=2, value="x", leader_epoch=3, config_epoch=1, origin_leader="r1")


def test_log_entry_coordinate_sorts_missing_shard_and_config_first() -> None:
    low = LogEntry(index=9, value="a", leader_epoch=1).coordinate()
    high = LogEntry(index=1, value="b", leader_epoch=2).coordinate()
    sharded = LogEntry(index=1, value="c", leader_epoch=1, config_epoch=1).coordinate("s1")
    assert sorted([sharded, high, low], key=lambda c: c.sort_key()) == [low, high, sharded]


@pytest.mark.parametrize(
    ("payload", "kind"),
    [
        ({"addSet": ["a", "b"], "removeSet": ["c"]}, CrdtKind.GSET),
        ({"counts": {"r1": 2}}, CrdtKind.COUNTER),
        ({"events": ["e1"]}, CrdtKind.EVENT_LOG),
        ({"register": "v"}, CrdtKind.OPAQUE),
        ({"kind": "events", "addSet": ["a"], "events": ["e1"]}, CrdtKind.EVENT_LOG),
    ],
)
def test_decode_crdt_state_resolves_the_variant_once(payload: dict, kind: CrdtKind) -> None:
    state = decode_crdt_state(payload)
    assert state is not None
    assert state.kind == kind


def test_decode_crdt_state_reads_fields_and_vector_clock() -> None:
    state = decode_crdt_state({"addSet": ["a"], "vectorClock": {"n1": 2, "n2": "bad"}})
    assert state == GSetState(add_set=("a",), vector_clock={"n1": 2, "n2": 0})
    assert decode_crdt_state({"counts": {"r1": 1}}) == CounterState(counts={"r1": 1})
    assert decode_crdt_state({"events": ["e"]}) == EventLogState(events=("e",))


def test_decode_crdt_state_wraps_non_objects() -> None:
    assert decode_crdt_state(None) is None
    assert decode_crdt_state(5) == OpaqueState(payload={"value": 5})


def test_decode_replica_reads_flags_and_state_alias() -> None:
    state = decode_replica(
        raw_replica(
            C=1,
            leader=True,
            partitioned=1,
            shard="s1",
            configEpoch=2,
            state={"addSet": ["a"]},
            log=[{"idx": 1, "val": "x", "epoch": 1}],
        )
    )
    assert state.C == 1
    assert state.leader and state.partitioned
    assert not state.crashed
    assert state.shard == "s1"
    assert state.config_epoch == 2
    assert state.role == "leader"
    assert state.crdt == GSetState(add_set=("a",))
    assert state.log == (LogEntry(index=1, value="x", leader_epoch=1),)


def test_decode_trace_reads_optional_step_fields() -> None:
    trace = decode_trace(
        raw_trace(
            raw_step(
                0,
                {"r1": raw_replica()},
                event="start",
                certificates=[
                    {
                        "type": "commit",
                        "holder": "r1",
                        "evidence": {"boundary": "C", "to": 1, "quorum": ["r1", "r2"]},
                    }
                ],
                observations=[],
                controlPlane={
                    "configs": [{"epoch": 1, "members": ["r1"]}],
                    "shardMap": [{"shard": "s1", "configEpoch": 1, "replicas": ["r1"]}],
                },
                violation={"type": "safety", "law": "quorum", "detail": "d"},
                boundaries_moved=[{"replica": "r1", "boundary": "C", "from": 0, "to": 1}],
                geometry_highlight=None,
            ),
            historyShape="dag",
        )
    )
    assert trace.history_shape == HistoryShape.DAG
    assert trace.is_dag
    (step,) = trace.steps
    assert step.event == "start"
    assert step.certificates[0].evidence.boundary == BoundaryKey.C
    assert step.certificates[0].evidence.quorum == ("r1", "r2")
    assert step.observations == ()
    assert step.control_plane.shard_map[0].shard == "s1"
    assert step.violation.type == "safety"
    assert step.boundaries_moved[0].boundary == BoundaryKey.C
    assert step.geometry_highlight is None
    assert step.invariants_checked is None
    assert step.invariants_ok is None


def test_absent_derived_fields_decode_as_none_and_empty_as_empty() -> None:
    absent, empty = decode_trace(
        raw_trace(
            raw_step(0, {}),
            raw_step(1, {}, boundaries_moved=[], invariants_checked=[]),
        )
    ).steps
    assert absent.boundaries_moved is None
    assert absent.invariants_checked is None
    assert empty.boundaries_moved == ()
    assert empty.invariants_checked == ()


def test_violation_bug_class_reads_the_known_vocabulary() -> None:
    known, unknown, absent = decode_trace(
        raw_trace(
            raw_step(0, {}, violation={"type": "authority", "bug_class": "split_brain"}),
            raw_step(1, {}, violation={"type": "other", "bug_class": "lost_ack"}),
            raw_step(2, {}, violation={"type": "other"}),
        )
    ).steps
    assert known.violation.bug_class is BugClass.SPLIT_BRAIN
    assert unknown.violation.bug_class == "lost_ack"
    assert not isinstance(unknown.violation.bug_class, BugClass)
    assert absent.violation.bug_class is None
    assert encode_step(known)["violation"]["bug_class"] == "split_brain"


def test_unknown_history_shape_reads_as_line() -> None:
    trace = decode_trace(raw_trace(raw_step(0, {}), historyShape="tree"))
    assert trace.history_shape == HistoryShape.LINE


def test_invalid_boundary_in_moves_is_a_schema_error() -> None:
    with pytest.raises(TraceSchemaError) as exc_info:
        decode_trace(
            raw_trace(
                raw_step(0, {}),
                raw_step(1, {}, boundaries_moved=[{"replica": "r1", "boundary": "X"}]),
            )
        )
    assert exc_info.value.step_index == 1
    assert "must be one of T, D, A, C, E" in str(exc_info.value)


def test_encode_log_entry_writes_document_keys() -> None:
    assert encode_log_entry(LogEntry(index=1, value="x", leader_epoch=2)) == {
        "idx": 1,
        "val": "x",
        "epoch": 2,
    }


def test_encode_replica_writes_only_set_flags() -> None:
    payload = encode_replica(
        decode_replica(raw_replica(leader=True, crdtState={"events": ["e"]}))
    )
    assert payload["leader"] is True
    assert "crashed" not in payload
    assert "shard" not in payload
    assert payload["crdtState"] == {"events": ["e"]}


def test_encode_crdt_state_keeps_vector_clock() -> None:
    state = GSetState(add_set=("a",), remove_set=("b",), vector_clock={"n1": 1})
    assert encode_crdt_state(state) == {
        "addSet": ["a"],
        "removeSet": ["b"],
        "vectorClock": {"n1": 1},
    }
    assert decode_crdt_state(encode_crdt_state(state)) == state


def test_encode_step_omits_unset_derived_fields() -> None:
    (step,) = decode_trace(raw_trace(raw_step(0, {"r1": raw_replica()}))).steps
    payload = encode_step(step)
    assert payload["geometry_highlight"] is None
    assert "boundaries_moved" not in payload
    assert "invariants_checked" not in payload
    assert "invariants_ok" not in payload


def test_unknown_keys_survive_decode_and_encode() -> None:
    raw = raw_trace(
        raw_step(0, {"r1": raw_replica()}, annotation={"color": "red"}),
        description="desc",
        environment={"seed": 7},
        author="someone",
    )
    payload = encode_trace(decode_trace(raw))
    assert payload["author"] == "someone"
    assert payload["environment"] == {"seed": 7}
    assert payload["description"] == "desc"
    assert payload["historyShape"] == "line"
    assert payload["steps"][0]["annotation"] == {"color": "red"}
