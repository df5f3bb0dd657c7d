from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer

from tracelattice.analysis.report import (
    render_summary_markdown,
    summarize_trace,
    summary_payload,
)
from tracelattice.analysis.step_diff import step_diff_at, step_diff_payload
from tracelattice.codec import encode_trace
from tracelattice.config import (
    check_defaults,
    fail_on_violations as configured_fail_on_violations,
    merge_payload,
    normalize_defaults,
    normalize_policy,
)
from tracelattice.exceptions import TraceSchemaError
from tracelattice.loader import load_trace
from tracelattice.model import Trace
from tracelattice.runtime.json_io import dump_json_pretty, write_json_pretty

app = typer.Typer(add_completion=False)

_STDOUT_ALIAS = "-"
_EXIT_VIOLATIONS = 1
_EXIT_SCHEMA = 2


def _configure_logging(verbose: bool) -> None:
    if verbose and not logging.getLogger().handlers:
        logging.basicConfig(level=logging.DEBUG)


def _load(path: Path, config: Optional[Path]) -> Trace:
    policy = normalize_policy(normalize_defaults(config_path=config))
    try:
        return load_trace(path, policy=policy)
    except TraceSchemaError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=_EXIT_SCHEMA) from None


@app.command()
def check(
    path: Path = typer.Argument(..., help="Trace document (JSON)."),
    config: Optional[Path] = typer.Option(None, "--config"),
    fail_on_violations: Optional[bool] = typer.Option(
        None, "--fail-on-violations/--no-fail-on-violations"
    ),
    show_all: bool = typer.Option(False, "--all", help="Print passing checks too."),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Normalize a trace and report the invariant checks of every step."""
    _configure_logging(verbose)
    trace = _load(path, config)
    failing = 0
    failed_steps = 0
    for step in trace.steps:
        checks = step.invariants_checked or ()
        step_failures = [check for check in checks if not check.holds]
        failing += len(step_failures)
        geometry = step.geometry_highlight or "-"
        typer.echo(
            f"step {step.id} [{geometry}] {len(checks) - len(step_failures)} ok, "
            f"{len(step_failures)} failing"
        )
        for check in checks:
            if check.holds and not show_all:
                continue
            marker = "ok  " if check.holds else "FAIL"
            typer.echo(f"  {marker} {check.invariant}: {check.detail}")
        if step.violation is not None:
            typer.echo(f"  VIOLATION {step.violation.type}: {step.violation.detail}")
        if step.invariants_ok is False:
            failed_steps += 1
    typer.echo(f"{trace.title}: {failing} failing check(s) across {len(trace.steps)} step(s)")
    settings = merge_payload(
        {"fail_on_violations": fail_on_violations},
        check_defaults(config_path=config),
    )
    should_fail = configured_fail_on_violations(settings)
    if (failing or failed_steps) and should_fail:
        raise typer.Exit(code=_EXIT_VIOLATIONS)


@app.command()
def normalize(
    path: Path = typer.Argument(..., help="Trace document (JSON)."),
    out: str = typer.Option(_STDOUT_ALIAS, "--out", help="Output file, '-' for stdout."),
    config: Optional[Path] = typer.Option(None, "--config"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Write the trace with every derived step field filled in."""
    _configure_logging(verbose)
    payload = encode_trace(_load(path, config))
    if out == _STDOUT_ALIAS:
        typer.echo(dump_json_pretty(payload))
        return
    write_json_pretty(Path(out), payload)
    typer.echo(f"Wrote normalized trace: {out}")


@app.command()
def diff(
    path: Path = typer.Argument(..., help="Trace document (JSON)."),
    index: int = typer.Argument(..., help="Zero-based step index."),
    config: Optional[Path] = typer.Option(None, "--config"),
) -> None:
    """Print the delta between step INDEX and its predecessor."""
    trace = _load(path, config)
    result = step_diff_at(index, trace.steps)
    if result is None:
        typer.echo(
            f"error: step index {index} out of range (0..{len(trace.steps) - 1})", err=True
        )
        raise typer.Exit(code=_EXIT_SCHEMA)
    typer.echo(dump_json_pretty(step_diff_payload(result)))


@app.command()
def report(
    path: Path = typer.Argument(..., help="Trace document (JSON)."),
    output_format: str = typer.Option("markdown", "--format", help="markdown or json."),
    config: Optional[Path] = typer.Option(None, "--config"),
) -> None:
    """Summarize geometry and invariant results per step."""
    if output_format not in {"markdown", "json"}:
        raise typer.BadParameter("format must be 'markdown' or 'json'", param_hint="--format")
    summary = summarize_trace(_load(path, config))
    if output_format == "json":
        typer.echo(dump_json_pretty(summary_payload(summary)))
        return
    typer.echo(render_summary_markdown(summary), nl=False)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
