from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from scipy.optimize import minimize

from game_ml.optimization.objective import TWICE_DIFFERENTIABLE, GlmObjective
from game_ml.optimization.tracker import OptimizationTracker


class OptimizerType(str, Enum):
    LBFGS = "LBFGS"
    TRON = "TRON"


# scipy method backing each optimizer type
_SCIPY_METHODS = {
    OptimizerType.LBFGS: "L-BFGS-B",
    OptimizerType.TRON: "trust-ncg",
}


class OptimizationError(RuntimeError):
    """The optimizer produced an unusable solution (e.g. diverged to NaN/inf)."""


@dataclass(frozen=True)
class OptimizerConfig:
    optimizer_type: str = OptimizerType.LBFGS.value
    max_iterations: int = 100
    tolerance: float = 1e-6
    l2_weight: float = 0.0

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "optimizer_type", OptimizerType(str(self.optimizer_type).upper()).value)
        except ValueError:
            allowed = ", ".join(t.value for t in OptimizerType)
            raise ValueError(f"Unknown optimizer type '{self.optimizer_type}' (allowed: {allowed})") from None
        if int(self.max_iterations) < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if not float(self.tolerance) > 0.0:
            raise ValueError(f"tolerance must be > 0, got {self.tolerance}")
        if float(self.l2_weight) < 0.0:
            raise ValueError(f"l2_weight must be >= 0, got {self.l2_weight}")


def fit_glm(
    objective: GlmObjective,
    *,
    config: OptimizerConfig,
    initial: Optional[np.ndarray] = None,
) -> Tuple[np.ndarray, OptimizationTracker]:
    """
    Minimize a GLM objective from `initial` (cold start at zeros when None).

    Failures are not retried here: a non-finite solution raises OptimizationError and
    anything scipy raises propagates as is.
    """
    opt_type = OptimizerType(config.optimizer_type)
    if opt_type == OptimizerType.TRON and objective.task_type not in TWICE_DIFFERENTIABLE:
        raise ValueError(f"TRON requires a twice differentiable loss; {objective.task_type.value} is not")

    d = objective.num_features
    x0 = np.zeros(d, dtype=np.float64) if initial is None else np.array(initial, dtype=np.float64, copy=True)
    if x0.shape != (d,):
        raise ValueError(f"Initial coefficients have shape {x0.shape}, expected ({d},)")

    trace: List[float] = []
    last: Dict[str, Any] = {}

    def fun(x: np.ndarray) -> Tuple[float, np.ndarray]:
        v, g = objective.value_and_gradient(x)
        last["x"] = np.array(x, copy=True)
        last["v"] = v
        return v, g

    def callback(xk: np.ndarray) -> None:
        if "x" in last and np.array_equal(xk, last["x"]):
            trace.append(float(last["v"]))
        else:
            trace.append(objective.value(xk))

    trace.append(objective.value(x0))
    t0 = time.perf_counter()

    options = {"maxiter": int(config.max_iterations), "gtol": float(config.tolerance)}
    if opt_type == OptimizerType.LBFGS:
        options["ftol"] = float(config.tolerance)
        res = minimize(fun=fun, x0=x0, jac=True, method=_SCIPY_METHODS[opt_type], options=options, callback=callback)
    else:
        res = minimize(
            fun=fun,
            x0=x0,
            jac=True,
            hessp=objective.hessian_vector,
            method=_SCIPY_METHODS[opt_type],
            options=options,
            callback=callback,
        )

    elapsed = time.perf_counter() - t0
    coef = np.asarray(res.x, dtype=np.float64)
    if not np.all(np.isfinite(coef)):
        raise OptimizationError(
            f"{opt_type.value} diverged: non-finite coefficients after {int(getattr(res, 'nit', -1))} iterations "
            f"({res.message})"
        )

    tracker = OptimizationTracker(
        optimizer=opt_type.value,
        success=bool(res.success),
        convergence_reason=str(res.message),
        iterations=int(getattr(res, "nit", len(trace) - 1)),
        function_evaluations=int(getattr(res, "nfev", -1)),
        objective_trace=[float(v) for v in trace],
        elapsed_s=float(elapsed),
    )
    return coef, tracker
