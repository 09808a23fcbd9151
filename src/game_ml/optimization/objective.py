from __future__ import annotations

from typing import Callable, Dict, Optional, Tuple

import numpy as np
import scipy.sparse as sp
from scipy.special import expit

from game_ml.glm.task_type import TaskType

# (margins, labels) -> (pointwise loss, d loss / d margin, d2 loss / d margin2)
PointwiseLoss = Callable[[np.ndarray, np.ndarray], Tuple[np.ndarray, np.ndarray, np.ndarray]]


def _squared(z: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    r = z - y
    return 0.5 * r * r, r, np.ones_like(z)


def _logistic(z: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    p = expit(z)
    return np.logaddexp(0.0, z) - y * z, p - y, p * (1.0 - p)


def _poisson(z: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    mu = np.exp(z)
    return mu - y * z, mu - y, mu


def _smoothed_hinge(z: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    # Rennie & Srebro smoothed hinge; labels {0,1} map to {-1,+1}
    t = np.where(y > 0.5, 1.0, -1.0)
    m = t * z
    loss = np.where(m <= 0.0, 0.5 - m, np.where(m < 1.0, 0.5 * (1.0 - m) ** 2, 0.0))
    dm = np.where(m <= 0.0, -1.0, np.where(m < 1.0, m - 1.0, 0.0))
    d2 = np.where((m > 0.0) & (m < 1.0), 1.0, 0.0)
    return loss, t * dm, d2


_POINTWISE_LOSSES: Dict[TaskType, PointwiseLoss] = {
    TaskType.LINEAR_REGRESSION: _squared,
    TaskType.LOGISTIC_REGRESSION: _logistic,
    TaskType.POISSON_REGRESSION: _poisson,
    TaskType.SMOOTHED_HINGE_LOSS_LINEAR_SVM: _smoothed_hinge,
}

TWICE_DIFFERENTIABLE = frozenset(
    {TaskType.LINEAR_REGRESSION, TaskType.LOGISTIC_REGRESSION, TaskType.POISSON_REGRESSION}
)


def pointwise_loss(task_type: TaskType | str, margins: np.ndarray, labels: np.ndarray) -> np.ndarray:
    loss, _, _ = _POINTWISE_LOSSES[TaskType.parse(task_type)](
        np.asarray(margins, dtype=np.float64), np.asarray(labels, dtype=np.float64)
    )
    return loss


def validate_labels(task_type: TaskType, labels: np.ndarray) -> None:
    if labels.size == 0:
        return
    if not np.all(np.isfinite(labels)):
        raise ValueError(f"Training labels must be finite for {task_type.value} (found NaN/inf responses)")
    if task_type == TaskType.LOGISTIC_REGRESSION and (labels.min() < 0.0 or labels.max() > 1.0):
        raise ValueError("Logistic regression labels must lie in [0, 1]")
    if task_type == TaskType.POISSON_REGRESSION and labels.min() < 0.0:
        raise ValueError("Poisson regression labels must be non-negative")


class GlmObjective:
    """
    Weighted GLM training objective for one (sub-)problem:

        sum_i w_i * loss(x_i . beta + offset_i, y_i) + 0.5 * l2_weight * ||beta||^2

    `offsets` carry the residual contribution of every other coordinate, so each
    coordinate optimizes its own two-term problem.
    """

    def __init__(
        self,
        task_type: TaskType | str,
        X: sp.csr_matrix,
        labels: np.ndarray,
        offsets: np.ndarray,
        weights: Optional[np.ndarray] = None,
        *,
        l2_weight: float = 0.0,
    ) -> None:
        self.task_type = TaskType.parse(task_type)
        self.X = sp.csr_matrix(X, dtype=np.float64)
        n = self.X.shape[0]
        self.labels = np.asarray(labels, dtype=np.float64)
        self.offsets = np.asarray(offsets, dtype=np.float64)
        self.weights = np.ones(n, dtype=np.float64) if weights is None else np.asarray(weights, dtype=np.float64)
        for name, arr in (("labels", self.labels), ("offsets", self.offsets), ("weights", self.weights)):
            if arr.shape != (n,):
                raise ValueError(f"{name} has shape {arr.shape}, expected ({n},)")
        if self.weights.size and (not np.all(np.isfinite(self.weights)) or self.weights.min() < 0.0):
            raise ValueError("Sample weights must be finite and non-negative")
        if l2_weight < 0.0:
            raise ValueError(f"l2_weight must be >= 0, got {l2_weight}")
        validate_labels(self.task_type, self.labels)
        self.l2_weight = float(l2_weight)
        self._loss = _POINTWISE_LOSSES[self.task_type]

    @property
    def num_features(self) -> int:
        return int(self.X.shape[1])

    @property
    def num_samples(self) -> int:
        return int(self.X.shape[0])

    def margins(self, coef: np.ndarray) -> np.ndarray:
        return self.X @ coef + self.offsets

    def value(self, coef: np.ndarray) -> float:
        return self.value_and_gradient(coef)[0]

    def value_and_gradient(self, coef: np.ndarray) -> Tuple[float, np.ndarray]:
        coef = np.asarray(coef, dtype=np.float64)
        loss, d1, _ = self._loss(self.margins(coef), self.labels)
        value = float(np.dot(self.weights, loss))
        grad = self.X.T @ (self.weights * d1)
        if self.l2_weight > 0.0:
            value += 0.5 * self.l2_weight * float(np.dot(coef, coef))
            grad = grad + self.l2_weight * coef
        return value, np.asarray(grad, dtype=np.float64)

    def hessian_vector(self, coef: np.ndarray, v: np.ndarray) -> np.ndarray:
        if self.task_type not in TWICE_DIFFERENTIABLE:
            raise ValueError(f"{self.task_type.value} loss is not twice differentiable; use the LBFGS optimizer")
        coef = np.asarray(coef, dtype=np.float64)
        _, _, d2 = self._loss(self.margins(coef), self.labels)
        hv = self.X.T @ (self.weights * d2 * (self.X @ v))
        if self.l2_weight > 0.0:
            hv = hv + self.l2_weight * v
        return np.asarray(hv, dtype=np.float64)
