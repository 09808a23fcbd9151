from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

Pipeline = Literal["training"]


class ManifestIO(BaseModel):
    path: str
    checksum_sha256: str
    logical_name: str


class StructuredWarning(BaseModel):
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class StepManifest(BaseModel):
    run_id: str
    pipeline: Pipeline
    step_name: str

    started_at: datetime
    finished_at: datetime
    duration_s: float

    inputs: List[ManifestIO] = Field(default_factory=list)
    outputs: List[ManifestIO] = Field(default_factory=list)

    row_count_in: int
    row_count_out: int

    schema_fingerprint: str
    data_fingerprint: str

    metrics: Dict[str, Any] = Field(default_factory=dict)
    warnings: List[StructuredWarning] = Field(default_factory=list)


class TrainingSummary(BaseModel):
    """What coordinate descent produced: visit order, per-iteration loss and the model shape."""

    task_type: str
    coordinate_ids: List[str]
    loss_history: List[float] = Field(default_factory=list)
    iterations_run: int
    converged: bool
    # coordinate_id -> kind, shard, model type and model count
    coordinates: Dict[str, Dict[str, Any]] = Field(default_factory=dict)


class RunManifest(BaseModel):
    run_id: str
    pipeline: Pipeline
    started_at: datetime
    finished_at: datetime
    git_sha: Optional[str] = None

    config: Dict[str, Any]
    inputs: List[ManifestIO] = Field(default_factory=list)
    outputs: List[ManifestIO] = Field(default_factory=list)

    row_counts_by_step: Dict[str, Dict[str, int]] = Field(default_factory=dict)
    training: Optional[TrainingSummary] = None
    warnings: List[StructuredWarning] = Field(default_factory=list)
