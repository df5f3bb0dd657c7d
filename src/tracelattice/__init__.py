"""tracelattice package root."""

from tracelattice.exceptions import NeverThrown, TraceSchemaError
from tracelattice.invariants import never
from tracelattice.loader import load_trace, load_trace_from_json, validate_document

__all__ = [
    "__version__",
    "NeverThrown",
    "TraceSchemaError",
    "load_trace",
    "load_trace_from_json",
    "never",
    "validate_document",
]

__version__ = "0.1.0"
