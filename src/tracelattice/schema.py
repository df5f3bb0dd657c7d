"""Boundary DTOs for the minimal trace document schema.

Only the fields the analysis core relies on are declared; everything else is
carried through untouched (`extra="allow"`) and read leniently by the codec.
Numbers are strict: booleans and numeric strings are rejected.
"""

from __future__ import annotations

from typing import Any, Dict, List, Union

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt, StrictStr

NumberDTO = Union[StrictInt, StrictFloat]


class ReplicaDTO(BaseModel):
    model_config = ConfigDict(extra="allow")

    T: NumberDTO
    D: NumberDTO
    A: NumberDTO
    C: NumberDTO
    E: NumberDTO
    epoch: NumberDTO
    log: List[Any]


class StepDTO(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: NumberDTO
    replicas: Dict[str, ReplicaDTO]


class TraceDocumentDTO(BaseModel):
    model_config = ConfigDict(extra="allow")

    title: StrictStr
    spec: Dict[str, Any]
    steps: List[StepDTO] = Field(min_length=1)
