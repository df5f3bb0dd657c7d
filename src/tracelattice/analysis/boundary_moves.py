from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import replace

from tracelattice.model import (
    BOUNDARIES,
    BoundaryKey,
    BoundaryMove,
    Certificate,
    CertificateType,
    Step,
)

_CERTIFICATE_FOR_BOUNDARY: dict[BoundaryKey, str] = {
    BoundaryKey.C: CertificateType.COMMIT,
    BoundaryKey.T: CertificateType.TRIM,
}


def shared_replica_ids(prev: Step, curr: Step) -> list[str]:
    """Replica ids present in both steps, in first-seen order across prev then curr."""
    ordered = list(dict.fromkeys([*prev.replicas, *curr.replicas]))
    return [
        replica_id
        for replica_id in ordered
        if replica_id in prev.replicas and replica_id in curr.replicas
    ]


def derive_boundary_moves(prev: Step, curr: Step) -> list[BoundaryMove]:
    """Every boundary counter that differs between two adjacent steps.

    Replicas that exist in only one of the steps produce no moves.
    """
    moves: list[BoundaryMove] = []
    for replica_id in shared_replica_ids(prev, curr):
        prev_replica = prev.replicas[replica_id]
        curr_replica = curr.replicas[replica_id]
        for boundary in BOUNDARIES:
            before = prev_replica.boundary(boundary)
            after = curr_replica.boundary(boundary)
            if before != after:
                moves.append(
                    BoundaryMove(
                        replica=replica_id,
                        boundary=boundary,
                        from_=before,
                        to=after,
                    )
                )
    return moves


def _evidence_justifies(certificate: Certificate, move: BoundaryMove) -> bool:
    evidence = certificate.evidence
    if evidence is None or evidence.boundary != move.boundary:
        return False
    return evidence.to is None or evidence.to == move.to


def find_justification(
    move: BoundaryMove,
    certificates: Sequence[Certificate],
) -> Certificate | None:
    for certificate in certificates:
        if _evidence_justifies(certificate, move):
            return certificate
    expected_type = _CERTIFICATE_FOR_BOUNDARY.get(move.boundary)
    if expected_type is None:
        return None
    for certificate in certificates:
        if certificate.type == expected_type:
            return certificate
    return None


def justify_moves(
    moves: Iterable[BoundaryMove],
    certificates: Sequence[Certificate],
) -> list[BoundaryMove]:
    """Attach the certificate that justifies each move, if the step carries one.

    Evidence naming the moved boundary (and, when given, its target value) wins
    over a bare commit/trim certificate.
    """
    justified: list[BoundaryMove] = []
    for move in moves:
        if move.justified_by is not None:
            justified.append(move)
            continue
        certificate = find_justification(move, certificates)
        justified.append(
            replace(move, justified_by=certificate) if certificate is not None else move
        )
    return justified


def unjustified_moves(moves: Iterable[BoundaryMove]) -> list[BoundaryMove]:
    """C and T moves with no certificate behind them."""
    return [
        move
        for move in moves
        if move.boundary in _CERTIFICATE_FOR_BOUNDARY and move.justified_by is None
    ]
