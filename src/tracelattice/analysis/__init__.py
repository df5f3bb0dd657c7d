"""Trace normalization and invariant verification pipeline."""

from .boundary_moves import derive_boundary_moves, justify_moves
from .geometry import GEOMETRY_RULES, GeometryRule, classify_geometry
from .invariant_checks import (
    check_dag_invariants,
    check_invariants,
    check_line_invariants,
    validate_trace,
)
from .memo import AnalysisCache
from .normalizer import EmptyMovesPolicy, NormalizePolicy, normalize
from .step_diff import StepDiff, compute_step_diff, step_diff_at

__all__ = [
    "AnalysisCache",
    "EmptyMovesPolicy",
    "GEOMETRY_RULES",
    "GeometryRule",
    "NormalizePolicy",
    "StepDiff",
    "check_dag_invariants",
    "check_invariants",
    "check_line_invariants",
    "classify_geometry",
    "compute_step_diff",
    "derive_boundary_moves",
    "justify_moves",
    "normalize",
    "step_diff_at",
    "validate_trace",
]
