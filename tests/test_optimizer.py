from __future__ import annotations

import numpy as np
import pytest
import scipy.sparse as sp

from game_ml.optimization.objective import GlmObjective
from game_ml.optimization.optimizer import OptimizerConfig, fit_glm


def _logistic_problem(seed: int = 0) -> GlmObjective:
    rng = np.random.default_rng(seed)
    X = np.column_stack([np.ones(200), rng.normal(size=200)])
    p = 1.0 / (1.0 + np.exp(-(X @ np.array([-0.5, 1.5]))))
    y = (rng.uniform(size=200) < p).astype(np.float64)
    return GlmObjective("LOGISTIC_REGRESSION", sp.csr_matrix(X), y, np.zeros(200), l2_weight=1e-2)


@pytest.mark.parametrize("task_type", ["LINEAR_REGRESSION", "LOGISTIC_REGRESSION", "POISSON_REGRESSION"])
def test_gradient_and_hessian_match_finite_differences(task_type: str) -> None:
    rng = np.random.default_rng(1)
    X = sp.csr_matrix(rng.normal(size=(30, 4)))
    y = rng.integers(0, 2, size=30).astype(np.float64)
    obj = GlmObjective(task_type, X, y, rng.normal(size=30) * 0.1, rng.uniform(0.5, 2.0, size=30), l2_weight=0.3)
    coef = rng.normal(size=4) * 0.2
    v = rng.normal(size=4)

    _, grad = obj.value_and_gradient(coef)
    eps = 1e-6
    fd = np.array(
        [(obj.value(coef + eps * e) - obj.value(coef - eps * e)) / (2 * eps) for e in np.eye(4)]
    )
    assert np.allclose(grad, fd, rtol=1e-5, atol=1e-5)

    hv_fd = (obj.value_and_gradient(coef + eps * v)[1] - obj.value_and_gradient(coef - eps * v)[1]) / (2 * eps)
    assert np.allclose(obj.hessian_vector(coef, v), hv_fd, rtol=1e-4, atol=1e-4)


def test_lbfgs_and_tron_agree() -> None:
    obj = _logistic_problem()
    lbfgs, t1 = fit_glm(obj, config=OptimizerConfig("LBFGS", max_iterations=200, tolerance=1e-9))
    tron, t2 = fit_glm(obj, config=OptimizerConfig("tron", max_iterations=200, tolerance=1e-9))

    assert np.allclose(lbfgs, tron, atol=1e-4)
    assert t1.optimizer == "LBFGS" and t2.optimizer == "TRON"
    assert t1.objective_trace[-1] <= t1.objective_trace[0]


def test_initial_coefficients_must_match_dimension() -> None:
    with pytest.raises(ValueError, match="Initial coefficients have shape"):
        fit_glm(_logistic_problem(), config=OptimizerConfig(), initial=np.zeros(3))


def test_tron_needs_a_twice_differentiable_loss() -> None:
    X = sp.csr_matrix(np.eye(3))
    obj = GlmObjective("SMOOTHED_HINGE_LOSS_LINEAR_SVM", X, np.array([1.0, 0.0, 1.0]), np.zeros(3))
    with pytest.raises(ValueError, match="TRON requires a twice differentiable loss"):
        fit_glm(obj, config=OptimizerConfig("TRON"))
    coef, tracker = fit_glm(obj, config=OptimizerConfig("LBFGS"))
    assert coef.shape == (3,)
    assert tracker.final_objective is not None


def test_optimizer_config_validation() -> None:
    with pytest.raises(ValueError, match="Unknown optimizer type"):
        OptimizerConfig("SGD")
    with pytest.raises(ValueError, match="max_iterations"):
        OptimizerConfig(max_iterations=0)
    with pytest.raises(ValueError, match="l2_weight"):
        OptimizerConfig(l2_weight=-1.0)


def test_labels_are_checked_per_family() -> None:
    X = sp.csr_matrix(np.eye(2))
    with pytest.raises(ValueError, match=r"labels must lie in \[0, 1\]"):
        GlmObjective("LOGISTIC_REGRESSION", X, np.array([0.0, 2.0]), np.zeros(2))
    with pytest.raises(ValueError, match="non-negative"):
        GlmObjective("POISSON_REGRESSION", X, np.array([-1.0, 2.0]), np.zeros(2))
    with pytest.raises(ValueError, match="finite"):
        GlmObjective("LINEAR_REGRESSION", X, np.array([np.nan, 2.0]), np.zeros(2))
