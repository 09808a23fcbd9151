from __future__ import annotations

from typing import Any, Callable, Dict, Type

import numpy as np
from scipy.special import expit

from game_ml.glm.base import GeneralizedLinearModel
from game_ml.glm.coefficients import Coefficients
from game_ml.glm.task_type import TaskType


class LinearRegressionModel(GeneralizedLinearModel):
    @property
    def model_type(self) -> TaskType:
        return TaskType.LINEAR_REGRESSION

    @staticmethod
    def mean_from_margin(margins: np.ndarray) -> np.ndarray:
        return np.asarray(margins, dtype=np.float64)

    def compute_mean(self, features: Any, offset: float) -> float:
        return float(self.mean_from_margin(self.compute_score(features) + offset))


class LogisticRegressionModel(GeneralizedLinearModel):
    @property
    def model_type(self) -> TaskType:
        return TaskType.LOGISTIC_REGRESSION

    @staticmethod
    def mean_from_margin(margins: np.ndarray) -> np.ndarray:
        return expit(np.asarray(margins, dtype=np.float64))

    def compute_mean(self, features: Any, offset: float) -> float:
        return float(self.mean_from_margin(self.compute_score(features) + offset))


class PoissonRegressionModel(GeneralizedLinearModel):
    @property
    def model_type(self) -> TaskType:
        return TaskType.POISSON_REGRESSION

    @staticmethod
    def mean_from_margin(margins: np.ndarray) -> np.ndarray:
        return np.exp(np.asarray(margins, dtype=np.float64))

    def compute_mean(self, features: Any, offset: float) -> float:
        return float(self.mean_from_margin(self.compute_score(features) + offset))


class SmoothedHingeLossLinearSVMModel(GeneralizedLinearModel):
    """Linear SVM; the "mean" is the raw margin, thresholded at 0 by callers."""

    @property
    def model_type(self) -> TaskType:
        return TaskType.SMOOTHED_HINGE_LOSS_LINEAR_SVM

    @staticmethod
    def mean_from_margin(margins: np.ndarray) -> np.ndarray:
        return np.asarray(margins, dtype=np.float64)

    def compute_mean(self, features: Any, offset: float) -> float:
        return float(self.mean_from_margin(self.compute_score(features) + offset))


_MODEL_CLASSES: Dict[TaskType, Type[GeneralizedLinearModel]] = {
    TaskType.LINEAR_REGRESSION: LinearRegressionModel,
    TaskType.LOGISTIC_REGRESSION: LogisticRegressionModel,
    TaskType.POISSON_REGRESSION: PoissonRegressionModel,
    TaskType.SMOOTHED_HINGE_LOSS_LINEAR_SVM: SmoothedHingeLossLinearSVMModel,
}


def model_for_task(task_type: TaskType | str, coefficients: Coefficients) -> GeneralizedLinearModel:
    return _MODEL_CLASSES[TaskType.parse(task_type)](coefficients)


def mean_function_for_task(task_type: TaskType | str) -> Callable[[np.ndarray], np.ndarray]:
    """Vectorised inverse link for a family: maps total margins (score + offset) to means."""
    return _MODEL_CLASSES[TaskType.parse(task_type)].mean_from_margin
