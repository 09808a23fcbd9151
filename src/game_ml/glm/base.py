from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Iterable, Tuple

import numpy as np

from game_ml.glm.coefficients import Coefficients
from game_ml.glm.task_type import TaskType
from game_ml.utils.broadcast import Broadcast

MODEL_TYPE = "modelType"


class GeneralizedLinearModel(ABC):
    """
    Trained artifact of one coordinate: coefficients plus a model family.

    "score" is the linear predictor `coefficients . features` (no link function);
    "mean" is the family's inverse link applied to `score + offset`.

    Models are immutable; `update_coefficients` returns a new instance.
    """

    def __init__(self, coefficients: Coefficients) -> None:
        if not isinstance(coefficients, Coefficients):
            coefficients = Coefficients(coefficients)
        self._coefficients = coefficients

    @property
    def coefficients(self) -> Coefficients:
        return self._coefficients

    @property
    @abstractmethod
    def model_type(self) -> TaskType:
        ...

    @staticmethod
    @abstractmethod
    def mean_from_margin(margins: np.ndarray) -> np.ndarray:
        """Vectorised inverse link over total margins (score + offset)."""

    @abstractmethod
    def compute_mean(self, features: Any, offset: float) -> float:
        """Family-specific mean response for one data point: link(score + offset)."""

    def compute_score(self, features: Any) -> float:
        return self._coefficients.compute_score(features)

    def compute_mean_function_with_offset(self, features: Any, offset: float) -> float:
        return self.compute_mean(features, offset)

    def compute_mean_function(self, features: Any) -> float:
        return self.compute_mean_function_with_offset(features, 0.0)

    def update_coefficients(self, coefficients: Coefficients) -> "GeneralizedLinearModel":
        return type(self)(coefficients)

    def validate_coefficients(self) -> None:
        """
        Raise if any coefficient is NaN or infinite, listing every bad index.

        Not called implicitly; callers decide when to check (usually after training).
        """
        bad = self._coefficients.non_finite()
        if bad:
            msg = "".join(f"Index [{i}] has value [{v}]\n" for i, v in bad)
            raise ValueError(f"Detected invalid coefficients / offset: {msg}")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GeneralizedLinearModel):
            return NotImplemented
        return self.model_type == other.model_type and self._coefficients == other._coefficients

    def __hash__(self) -> int:
        return hash((self.model_type, self._coefficients))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(coefficients: {self._coefficients.means.tolist()})"


def compute_mean_functions_with_offsets(
    model: GeneralizedLinearModel,
    features_with_offsets: Iterable[Tuple[Any, float]],
) -> np.ndarray:
    """
    Mean function values for many (features, offset) pairs under one model.

    The model is shared once for the whole batch and released as soon as the batch is done.
    """
    with Broadcast(model) as shared:
        out = [shared.value.compute_mean_function_with_offset(f, float(o)) for f, o in features_with_offsets]
    return np.asarray(out, dtype=np.float64)


def compute_mean_functions(model: GeneralizedLinearModel, features: Iterable[Any]) -> np.ndarray:
    return compute_mean_functions_with_offsets(model, ((f, 0.0) for f in features))
