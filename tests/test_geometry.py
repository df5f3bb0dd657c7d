from __future__ import annotations

import pytest

from tracelattice.analysis.boundary_moves import derive_boundary_moves
from tracelattice.analysis.geometry import (
    GEOMETRY_META,
    GEOMETRY_RULES,
    GeometryRule,
    classify_geometry,
    matching_rule,
)
from tracelattice.model import (
    BoundaryKey,
    CertificateType,
    ControlPlaneState,
    GeometryKey,
    MembershipConfig,
    Observation,
    ShardOwnership,
    Violation,
)
from tests.trace_builders import certificate, move, replica, step


def _quiet_pair():
    prev = step(0, {"r1": replica(D=1, E=1), "r2": replica(D=1, E=1)})
    curr = step(1, {"r1": replica(D=1, E=1), "r2": replica(D=1, E=1)})
    return prev, curr


def test_rule_order_is_fixed() -> None:
    assert [rule.name for rule in GEOMETRY_RULES] == [
        "violation",
        "control_plane",
        "composition_certificate",
        "commit_moved",
        "epoch_changed",
        "crash_or_recovery",
        "trim_moved",
        "observations",
    ]


def test_every_geometry_has_metadata() -> None:
    assert set(GEOMETRY_META) == set(GeometryKey)


def test_quiet_step_has_no_geometry() -> None:
    prev, curr = _quiet_pair()
    assert classify_geometry(curr, prev, []) is None
    assert classify_geometry(curr, None, []) is None
    assert matching_rule(curr, prev, []) is None


@pytest.mark.parametrize(
    ("violation_type", "expected"),
    [
        ("authority", GeometryKey.AUTHORITY),
        ("liveness", GeometryKey.LIVENESS),
        ("split brain", GeometryKey.COUPLING),
    ],
)
def test_violation_rule(violation_type: str, expected: GeometryKey) -> None:
    curr = step(1, {"r1": replica()}, violation=Violation(type=violation_type))
    assert classify_geometry(curr, None, []) == expected


def test_violation_wins_over_every_other_rule() -> None:
    prev = step(0, {"r1": replica()})
    curr = step(
        1,
        {"r1": replica(C=1, E=1, D=1, epoch=2, crashed=True)},
        violation=Violation(type="resource"),
        certificates=(certificate(CertificateType.TRANSACTION),),
    )
    moves = derive_boundary_moves(prev, curr)
    assert classify_geometry(curr, prev, moves) == GeometryKey.RESOURCE
    assert matching_rule(curr, prev, moves) == "violation"


def test_control_plane_rule() -> None:
    membership = step(
        1,
        {},
        control_plane=ControlPlaneState(configs=(MembershipConfig(epoch=2, members=("r1",)),)),
    )
    ownership = step(
        1,
        {},
        control_plane=ControlPlaneState(
            shard_map=(ShardOwnership(shard="s1", config_epoch=2, replicas=("r1",)),)
        ),
    )
    assert classify_geometry(membership, None, []) == GeometryKey.MEMBERSHIP
    assert classify_geometry(ownership, None, []) == GeometryKey.OWNERSHIP


@pytest.mark.parametrize(
    "cert_type", [CertificateType.EXTERNALIZATION, CertificateType.TRANSACTION]
)
def test_composition_rule(cert_type: CertificateType) -> None:
    curr = step(1, {}, certificates=(certificate(cert_type),))
    moves = [move("r1", BoundaryKey.C, 0, 1)]
    assert classify_geometry(curr, None, moves) == GeometryKey.COMPOSITION


def test_commit_move_rule() -> None:
    prev, curr = _quiet_pair()
    assert classify_geometry(curr, prev, [move("r1", BoundaryKey.C, 0, 1)]) == GeometryKey.SAFETY


def test_commit_move_wins_over_epoch_change() -> None:
    prev = step(0, {"r1": replica(D=1, E=1)})
    curr = step(1, {"r1": replica(D=1, E=1, C=1, epoch=2)})
    assert classify_geometry(curr, prev, derive_boundary_moves(prev, curr)) == GeometryKey.SAFETY


def test_epoch_change_rule_needs_a_shared_replica() -> None:
    prev = step(0, {"r1": replica(epoch=1)})
    changed = step(1, {"r1": replica(epoch=2)})
    unrelated = step(1, {"r9": replica(epoch=2)})
    assert classify_geometry(changed, prev, []) == GeometryKey.AUTHORITY
    assert classify_geometry(unrelated, prev, []) is None
    assert classify_geometry(changed, None, []) is None


@pytest.mark.parametrize("flag", ["crashed", "recovered"])
def test_failure_rule(flag: str) -> None:
    curr = step(1, {"r1": replica(), "r2": replica(**{flag: True})})
    assert classify_geometry(curr, None, [move("r1", BoundaryKey.T, 0, 1)]) == GeometryKey.FAILURE


def test_trim_move_rule() -> None:
    prev, curr = _quiet_pair()
    assert classify_geometry(curr, prev, [move("r1", BoundaryKey.T, 0, 1)]) == GeometryKey.RESOURCE


def test_observation_rule_needs_a_non_empty_list() -> None:
    observed = step(1, {}, observations=(Observation(type="read", actor="client"),))
    silent = step(1, {}, observations=())
    assert classify_geometry(observed, None, []) == GeometryKey.OBSERVATION
    assert classify_geometry(silent, None, []) is None


def test_moves_on_other_boundaries_do_not_classify() -> None:
    prev, curr = _quiet_pair()
    moves = [move("r1", BoundaryKey.D, 1, 2), move("r1", BoundaryKey.E, 1, 2)]
    assert classify_geometry(curr, prev, moves) is None


def test_custom_rule_table() -> None:
    prev, curr = _quiet_pair()
    always = GeometryRule("always", lambda ctx: GeometryKey.LIVENESS)
    assert classify_geometry(curr, prev, [], rules=(always,)) == GeometryKey.LIVENESS
