from __future__ import annotations

import json
from pathlib import Path

import pytest

from tracelattice.analysis.normalizer import EmptyMovesPolicy, NormalizePolicy
from tracelattice.exceptions import TraceSchemaError
from tracelattice.loader import load_trace, load_trace_from_json, validate_document
from tracelattice.model import GeometryKey, HistoryShape
from tests.trace_builders import raw_replica, raw_step, raw_trace


def _schema_error(raw: object) -> TraceSchemaError:
    with pytest.raises(TraceSchemaError) as exc_info:
        validate_document(raw)
    return exc_info.value


def test_validate_document_returns_the_document_unchanged() -> None:
    raw = raw_trace(raw_step(0, {"r1": raw_replica()}), description="kept")
    assert validate_document(raw) is raw


@pytest.mark.parametrize("raw", [None, [], "trace", 3])
def test_non_object_document_is_rejected(raw: object) -> None:
    assert str(_schema_error(raw)) == "Trace must be a non-null object"


@pytest.mark.parametrize(
    ("raw", "message", "field"),
    [
        (
            {"spec": {}, "steps": [raw_step(0, {})]},
            "Trace.title is required and must be a string",
            "title",
        ),
        (
            {"title": 7, "spec": {}, "steps": [raw_step(0, {})]},
            "Trace.title is required and must be a string",
            "title",
        ),
        (
            {"title": "t", "spec": [], "steps": [raw_step(0, {})]},
            "Trace.spec is required and must be an object",
            "spec",
        ),
        (
            {"title": "t", "spec": {}, "steps": []},
            "Trace.steps is required and must be a non-empty array",
            "steps",
        ),
        (
            {"title": "t", "spec": {}},
            "Trace.steps is required and must be a non-empty array",
            "steps",
        ),
    ],
)
def test_top_level_fields_are_required(raw: object, message: str, field: str) -> None:
    error = _schema_error(raw)
    assert str(error) == message
    assert error.field == field
    assert error.step_index is None


def test_step_must_be_an_object() -> None:
    error = _schema_error(raw_trace(raw_step(0, {}), 5))
    assert str(error) == "Step 1: step must be an object"
    assert error.step_index == 1


@pytest.mark.parametrize("step_id", [None, "1", True])
def test_step_id_must_be_a_number(step_id: object) -> None:
    error = _schema_error(raw_trace(raw_step(step_id, {})))
    assert str(error) == "Step 0: id is required and must be a number"
    assert error.location == {"step_index": 0, "replica_id": None, "field": "id"}


def test_step_replicas_must_be_an_object() -> None:
    error = _schema_error(raw_trace(raw_step(0, ["r1"])))
    assert str(error) == "Step 0: replicas is required and must be an object"
    assert error.field == "replicas"


def test_replica_must_be_an_object() -> None:
    error = _schema_error(raw_trace(raw_step(0, {"r1": 4})))
    assert str(error) == "Step 0, replica r1: replica must be an object"
    assert error.replica_id == "r1"


def test_missing_boundary_names_step_replica_and_boundary() -> None:
    replica = raw_replica()
    del replica["C"]
    error = _schema_error(
        raw_trace(
            raw_step(0, {"r1": raw_replica()}),
            raw_step(1, {"r1": raw_replica(), "r2": raw_replica()}),
            raw_step(2, {"r1": replica}),
        )
    )
    assert str(error) == "Step 2, replica r1: boundary C is required and must be a number"
    assert (error.step_index, error.replica_id, error.field) == (2, "r1", "C")


@pytest.mark.parametrize("value", ["3", True, None])
def test_boundary_values_must_be_numbers(value: object) -> None:
    error = _schema_error(raw_trace(raw_step(0, {"r1": raw_replica(E=value)})))
    assert str(error) == "Step 0, replica r1: boundary E is required and must be a number"


def test_replica_epoch_and_log_are_required() -> None:
    error = _schema_error(raw_trace(raw_step(0, {"r1": raw_replica(epoch="1")})))
    assert str(error) == "Step 0, replica r1: epoch is required and must be a number"

    error = _schema_error(raw_trace(raw_step(0, {"r1": raw_replica(log={})})))
    assert str(error) == "Step 0, replica r1: log is required and must be an array"


def test_first_violation_in_document_order_is_reported() -> None:
    missing_epoch = raw_replica()
    del missing_epoch["epoch"]
    error = _schema_error(
        raw_trace(
            raw_step(0, {"r1": raw_replica()}),
            raw_step(1, {"r1": raw_replica(D="x")}),
            raw_step(2, {"r1": missing_epoch}),
        )
    )
    assert error.step_index == 1
    assert error.field == "D"


def test_float_boundaries_and_extra_keys_are_accepted() -> None:
    raw = raw_trace(
        raw_step(0.5, {"r1": raw_replica(C=1.0, E=2, crdtState={"addSet": ["a"]})}, note="x"),
        environment={"seed": 1},
    )
    assert validate_document(raw) is raw


def test_load_trace_from_json_decodes_and_normalizes() -> None:
    raw = raw_trace(
        raw_step(0, {"r1": raw_replica(D=1, E=1)}),
        raw_step(1, {"r1": raw_replica(D=1, E=1, A=1, C=1)}),
    )
    trace = load_trace_from_json(raw)
    assert trace.title == "raw"
    assert trace.history_shape == HistoryShape.LINE
    first, second = trace.steps
    assert first.boundaries_moved == ()
    assert first.geometry_highlight is None
    assert first.invariants_ok is True
    assert [(m.boundary.value, m.from_, m.to) for m in second.boundaries_moved] == [
        ("A", 0, 1),
        ("C", 0, 1),
    ]
    assert second.geometry_highlight == GeometryKey.SAFETY
    assert second.invariants_ok is True


def test_load_trace_from_json_applies_policy() -> None:
    raw = raw_trace(
        raw_step(0, {"r1": raw_replica()}),
        raw_step(1, {"r1": raw_replica(E=1)}, boundaries_moved=[]),
    )
    rederived = load_trace_from_json(raw)
    preserved = load_trace_from_json(
        raw, policy=NormalizePolicy(empty_moves=EmptyMovesPolicy.PRESERVE)
    )
    assert len(rederived.steps[1].boundaries_moved) == 1
    assert preserved.steps[1].boundaries_moved == ()


def test_load_trace_reads_a_file(commit_trace_path: Path) -> None:
    trace = load_trace(commit_trace_path)
    assert trace.title == "Quorum commit"
    assert [step.id for step in trace.steps] == [0, 1, 2]
    assert trace.steps[2].extras == {"annotation": "kept verbatim"}


def test_load_trace_wraps_unreadable_and_malformed_files(tmp_path: Path) -> None:
    missing = tmp_path / "missing.json"
    with pytest.raises(TraceSchemaError, match="Failed to load trace: .*missing.json"):
        load_trace(missing)

    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(TraceSchemaError, match="Failed to load trace"):
        load_trace(broken)


def test_load_trace_reports_schema_errors_from_files(tmp_path: Path) -> None:
    path = tmp_path / "trace.json"
    path.write_text(json.dumps({"title": "t", "spec": {}, "steps": []}), encoding="utf-8")
    with pytest.raises(TraceSchemaError, match="Trace.steps"):
        load_trace(path)
