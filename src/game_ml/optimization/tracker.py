from __future__ import annotations

from collections import Counter
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, Field


class OptimizationTracker(BaseModel):
    """Diagnostics of one optimizer run (one fixed effect, or one random-effect entity)."""

    optimizer: str
    success: bool
    convergence_reason: str
    iterations: int
    function_evaluations: int
    objective_trace: List[float] = Field(default_factory=list)
    elapsed_s: float = 0.0

    @property
    def final_objective(self) -> Optional[float]:
        return self.objective_trace[-1] if self.objective_trace else None


class RandomEffectOptimizationTracker(BaseModel):
    """Aggregate over the per-entity optimizer runs of one random-effect coordinate."""

    num_entities_trained: int
    num_entities_skipped: int = 0
    iterations: Dict[str, float] = Field(default_factory=dict)
    convergence_reasons: Dict[str, int] = Field(default_factory=dict)
    num_failed: int = 0
    elapsed_s: float = 0.0

    @classmethod
    def from_trackers(
        cls,
        trackers: Sequence[OptimizationTracker],
        *,
        num_entities_skipped: int = 0,
        elapsed_s: float = 0.0,
    ) -> "RandomEffectOptimizationTracker":
        iters = [t.iterations for t in trackers]
        stats: Dict[str, float] = {}
        if iters:
            stats = {
                "min": float(min(iters)),
                "mean": float(sum(iters) / len(iters)),
                "max": float(max(iters)),
            }
        reasons = Counter(t.convergence_reason for t in trackers)
        return cls(
            num_entities_trained=len(trackers),
            num_entities_skipped=int(num_entities_skipped),
            iterations=stats,
            convergence_reasons=dict(sorted(reasons.items())),
            num_failed=sum(1 for t in trackers if not t.success),
            elapsed_s=float(elapsed_s),
        )
