from __future__ import annotations

import numpy as np

try:
    import numba as nb
except Exception as e:  # pragma: no cover
    raise ImportError("numba is required for GLM scoring kernels. Install with `pip install numba`.") from e


@nb.njit(cache=True)
def sparse_dense_dot(indices: np.ndarray, values: np.ndarray, dense: np.ndarray) -> float:
    """
    Dot product of a sparse vector (active indices/values) with a dense vector.

    Callers check that both vectors declare the same length; indices must be < len(dense).
    """
    s = 0.0
    for k in range(indices.shape[0]):
        s += float(values[k]) * float(dense[indices[k]])
    return s


@nb.njit(parallel=True, cache=True)
def csr_row_dots(indptr: np.ndarray, indices: np.ndarray, data: np.ndarray, dense: np.ndarray) -> np.ndarray:
    """
    Per-row dot products of a CSR matrix with a dense coefficient vector (X @ beta).

    Rows are independent, so they are scored in parallel.
    """
    n = indptr.shape[0] - 1
    out = np.empty(n, dtype=np.float64)
    for i in nb.prange(n):
        s = 0.0
        for k in range(indptr[i], indptr[i + 1]):
            s += float(data[k]) * float(dense[indices[k]])
        out[i] = s
    return out
