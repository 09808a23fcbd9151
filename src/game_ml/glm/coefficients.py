from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

import numpy as np

from game_ml.glm.scoring import score_vectors


def _frozen_vector(values: Any, *, name: str) -> np.ndarray:
    arr = np.array(values, dtype=np.float64, copy=True)
    if arr.ndim != 1:
        raise ValueError(f"{name} must be 1-d, got shape {arr.shape}")
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class Coefficients:
    """Learned weights of one GLM, indexed like the feature vectors they score."""

    means: np.ndarray
    variances: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "means", _frozen_vector(self.means, name="means"))
        if self.variances is not None:
            variances = _frozen_vector(self.variances, name="variances")
            if variances.shape != self.means.shape:
                raise ValueError(
                    f"variances length {variances.shape[0]} != means length {self.means.shape[0]}"
                )
            object.__setattr__(self, "variances", variances)

    @classmethod
    def zeros(cls, length: int) -> "Coefficients":
        return cls(np.zeros(int(length), dtype=np.float64))

    @property
    def length(self) -> int:
        return int(self.means.shape[0])

    def compute_score(self, features: Any) -> float:
        return score_vectors(self.means, features)

    def non_finite(self) -> List[Tuple[int, float]]:
        bad = np.flatnonzero(~np.isfinite(self.means))
        return [(int(i), float(self.means[i])) for i in bad]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Coefficients):
            return NotImplemented
        if not np.array_equal(self.means, other.means):
            return False
        if self.variances is None or other.variances is None:
            return self.variances is None and other.variances is None
        return np.array_equal(self.variances, other.variances)

    def __hash__(self) -> int:
        return hash((self.means.tobytes(), None if self.variances is None else self.variances.tobytes()))

    def __repr__(self) -> str:
        return f"Coefficients(means={self.means.tolist()})"
