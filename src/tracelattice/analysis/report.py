from __future__ import annotations

from dataclasses import dataclass

from tracelattice.analysis.boundary_moves import unjustified_moves
from tracelattice.analysis.geometry import GEOMETRY_META
from tracelattice.analysis.invariant_checks import describe_invariant
from tracelattice.json_types import JSONObject, Number
from tracelattice.model import GeometryKey, InvariantCheck, Step, Trace


@dataclass(frozen=True)
class StepSummary:
    step_id: Number
    event: str
    geometry: str | None
    passed: int
    failed: tuple[InvariantCheck, ...]
    unjustified: tuple[str, ...]
    violation: str | None

    @property
    def ok(self) -> bool:
        return not self.failed and self.violation is None


@dataclass(frozen=True)
class TraceSummary:
    title: str
    history_shape: str
    steps: tuple[StepSummary, ...]

    @property
    def failing_checks(self) -> int:
        return sum(len(step.failed) for step in self.steps)

    @property
    def ok(self) -> bool:
        return all(step.ok for step in self.steps)


def summarize_step(step: Step) -> StepSummary:
    checks = step.invariants_checked or ()
    return StepSummary(
        step_id=step.id,
        event=step.event,
        geometry=step.geometry_highlight,
        passed=sum(1 for check in checks if check.holds),
        failed=tuple(check for check in checks if not check.holds),
        unjustified=tuple(
            f"{move.replica}.{move.boundary.value} {move.from_}→{move.to}"
            for move in unjustified_moves(step.boundaries_moved or ())
        ),
        violation=step.violation.type if step.violation is not None else None,
    )


def summarize_trace(trace: Trace) -> TraceSummary:
    """Summary of an already-normalized trace."""
    return TraceSummary(
        title=trace.title,
        history_shape=trace.history_shape.value,
        steps=tuple(summarize_step(step) for step in trace.steps),
    )


def _geometry_label(geometry: str | None) -> str:
    if geometry is None:
        return "-"
    try:
        return GEOMETRY_META[GeometryKey(geometry)].label
    except ValueError:
        return geometry


def summary_payload(summary: TraceSummary) -> JSONObject:
    return {
        "title": summary.title,
        "historyShape": summary.history_shape,
        "ok": summary.ok,
        "failing_checks": summary.failing_checks,
        "steps": [
            {
                "id": step.step_id,
                "event": step.event,
                "geometry": step.geometry,
                "passed": step.passed,
                "failed": [
                    {
                        "invariant": check.invariant,
                        "detail": check.detail,
                        "law": describe_invariant(check.invariant),
                    }
                    for check in step.failed
                ],
                "unjustified_moves": list(step.unjustified),
                "violation": step.violation,
            }
            for step in summary.steps
        ],
    }


def render_summary_markdown(summary: TraceSummary) -> str:
    lines = [
        f"# {summary.title}",
        "",
        f"- history shape: {summary.history_shape}",
        f"- failing checks: {summary.failing_checks}",
        "",
        "| step | geometry | passed | failed | violation |",
        "| --- | --- | --- | --- | --- |",
    ]
    for step in summary.steps:
        lines.append(
            f"| {step.step_id} | {_geometry_label(step.geometry)} | {step.passed} "
            f"| {len(step.failed)} | {step.violation or ''} |"
        )
    failing = [step for step in summary.steps if step.failed]
    if failing:
        lines.extend(["", "## Failing invariants", ""])
        for step in failing:
            for check in step.failed:
                law = describe_invariant(check.invariant)
                suffix = f" ({law})" if law else ""
                lines.append(f"- step {step.step_id}: `{check.invariant}`: {check.detail}{suffix}")
    return "\n".join(lines) + "\n"
