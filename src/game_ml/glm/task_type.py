from __future__ import annotations

from enum import Enum


class TaskType(str, Enum):
    LINEAR_REGRESSION = "LINEAR_REGRESSION"
    LOGISTIC_REGRESSION = "LOGISTIC_REGRESSION"
    POISSON_REGRESSION = "POISSON_REGRESSION"
    SMOOTHED_HINGE_LOSS_LINEAR_SVM = "SMOOTHED_HINGE_LOSS_LINEAR_SVM"

    @classmethod
    def parse(cls, value: "str | TaskType") -> "TaskType":
        if isinstance(value, TaskType):
            return value
        key = str(value).strip().upper()
        try:
            return cls(key)
        except ValueError:
            allowed = ", ".join(t.value for t in cls)
            raise ValueError(f"Unknown task type '{value}' (allowed: {allowed})") from None
