from __future__ import annotations

from typing import Any

import numpy as np
import pandas as pd
import scipy.sparse as sp

from game_ml.data.vectors import as_sparse_vector, vector_size
from game_ml.glm.kernels import csr_row_dots, sparse_dense_dot


def _dense(value: Any) -> np.ndarray:
    if sp.issparse(value):
        return as_sparse_vector(value).toarray().ravel()
    return np.asarray(value, dtype=np.float64)


def score_vectors(coefficients: Any, features: Any) -> float:
    """
    Dot product of a coefficient vector and a feature vector.

    Either operand may be dense (ndarray / sequence) or scipy.sparse. The declared
    lengths must match: a shorter operand is an error, never silently truncated.
    """
    n_coef = vector_size(coefficients)
    n_feat = vector_size(features)
    if n_coef != n_feat:
        raise ValueError(f"Coefficients.size = {n_coef} and features.size = {n_feat}")

    if sp.issparse(coefficients):
        coef = as_sparse_vector(coefficients)
        return float(sparse_dense_dot(coef.indices, coef.data, _dense(features)))
    dense_coef = np.asarray(coefficients, dtype=np.float64)
    if sp.issparse(features):
        feat = as_sparse_vector(features)
        return float(sparse_dense_dot(feat.indices, feat.data, dense_coef))
    return float(np.dot(dense_coef, np.asarray(features, dtype=np.float64)))


def score_matrix(X: sp.csr_matrix, means: np.ndarray) -> np.ndarray:
    """Raw scores (X @ means) for every row of a design matrix."""
    if X.shape[1] != means.shape[0]:
        raise ValueError(f"Coefficients.size = {means.shape[0]} and features.size = {X.shape[1]}")
    csr = sp.csr_matrix(X)
    return csr_row_dots(csr.indptr, csr.indices, csr.data, np.asarray(means, dtype=np.float64))


def score_frame(frame: pd.DataFrame, *, coefficients_column: str, features_column: str) -> pd.Series:
    """Column-wise form of `score_vectors`: one score per row from two vector columns."""
    missing = [c for c in (coefficients_column, features_column) if c not in frame.columns]
    if missing:
        raise ValueError(f"frame missing required columns for scoring: {missing}")
    scores = [
        score_vectors(c, f)
        for c, f in zip(frame[coefficients_column].tolist(), frame[features_column].tolist(), strict=True)
    ]
    return pd.Series(scores, index=frame.index, dtype=np.float64, name="score")
