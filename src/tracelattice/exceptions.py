"""Exception types raised by tracelattice."""

from __future__ import annotations


class TraceSchemaError(ValueError):
    """A trace document does not satisfy the minimal trace schema.

    This is the only error the analysis core produces for user input. Invariant
    violations are reported as data and never raised.
    """

    def __init__(
        self,
        message: str,
        *,
        step_index: int | None = None,
        replica_id: str | None = None,
        field: str | None = None,
    ):
        super().__init__(message)
        self.step_index = step_index
        self.replica_id = replica_id
        self.field = field

    @property
    def location(self) -> dict[str, object]:
        return {
            "step_index": self.step_index,
            "replica_id": self.replica_id,
            "field": self.field,
        }


class NeverThrown(RuntimeError):
    """Raised by never() when a code path that should be unreachable runs."""

    def __init__(self, message: str, *, env: dict[str, object] | None = None):
        super().__init__(message)
        self.env = dict(env or {})
