"""Boundary guard for raw trace documents.

`validate_document` is the only place the pipeline rejects input. It reports
the first schema violation in document order with its step index, replica id
and field.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from tracelattice.analysis.normalizer import NormalizePolicy, normalize
from tracelattice.codec import decode_trace
from tracelattice.exceptions import TraceSchemaError
from tracelattice.model import BOUNDARIES, Trace
from tracelattice.runtime.json_io import read_json_path
from tracelattice.schema import TraceDocumentDTO

logger = logging.getLogger(__name__)

_BOUNDARY_NAMES = frozenset(boundary.value for boundary in BOUNDARIES)


def _replica_error(
    step_index: int, replica_id: str, field: str
) -> TraceSchemaError:
    prefix = f"Step {step_index}, replica {replica_id}"
    if field in _BOUNDARY_NAMES:
        message = f"{prefix}: boundary {field} is required and must be a number"
    elif field == "epoch":
        message = f"{prefix}: epoch is required and must be a number"
    elif field == "log":
        message = f"{prefix}: log is required and must be an array"
    else:
        message = f"{prefix}: {field} is invalid"
    return TraceSchemaError(message, step_index=step_index, replica_id=replica_id, field=field)


def located_error(error: Mapping[str, Any]) -> TraceSchemaError:
    """Translate one pydantic error into a located, human-readable schema error."""
    loc = tuple(error["loc"])
    match loc:
        case ():
            return TraceSchemaError("Trace must be a non-null object")
        case ("title", *_):
            return TraceSchemaError(
                "Trace.title is required and must be a string", field="title"
            )
        case ("spec", *_):
            return TraceSchemaError(
                "Trace.spec is required and must be an object", field="spec"
            )
        case ("steps",):
            return TraceSchemaError(
                "Trace.steps is required and must be a non-empty array", field="steps"
            )
        case ("steps", int() as step_index):
            return TraceSchemaError(
                f"Step {step_index}: step must be an object", step_index=step_index
            )
        case ("steps", int() as step_index, "id", *_):
            return TraceSchemaError(
                f"Step {step_index}: id is required and must be a number",
                step_index=step_index,
                field="id",
            )
        case ("steps", int() as step_index, "replicas"):
            return TraceSchemaError(
                f"Step {step_index}: replicas is required and must be an object",
                step_index=step_index,
                field="replicas",
            )
        case ("steps", int() as step_index, "replicas", str() as replica_id):
            return TraceSchemaError(
                f"Step {step_index}, replica {replica_id}: replica must be an object",
                step_index=step_index,
                replica_id=replica_id,
            )
        case ("steps", int() as step_index, "replicas", str() as replica_id, str() as field, *_):
            return _replica_error(step_index, replica_id, field)
        case _:
            where = ".".join(str(part) for part in loc)
            return TraceSchemaError(f"Trace document invalid at {where}: {error['msg']}")


def validate_document(raw: object) -> Mapping[str, object]:
    """Assert the minimal trace schema and return the document unchanged."""
    try:
        TraceDocumentDTO.model_validate(raw)
    except ValidationError as exc:
        raise located_error(exc.errors()[0]) from None
    if not isinstance(raw, Mapping):
        raise TraceSchemaError("Trace must be a non-null object")
    return raw


def load_trace_from_json(raw: object, *, policy: NormalizePolicy | None = None) -> Trace:
    payload = validate_document(raw)
    trace = decode_trace(payload)
    logger.debug("decoded trace %r with %d steps", trace.title, len(trace.steps))
    return normalize(trace, policy)


def load_trace(path: Path, *, policy: NormalizePolicy | None = None) -> Trace:
    try:
        raw = read_json_path(path)
    except (OSError, UnicodeError, json.JSONDecodeError) as exc:
        raise TraceSchemaError(f"Failed to load trace: {path} ({exc})") from exc
    logger.debug("read trace document %s", path)
    return load_trace_from_json(raw, policy=policy)
