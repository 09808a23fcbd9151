from __future__ import annotations

from typing import Any, Mapping, Sequence

import numpy as np
import scipy.sparse as sp


def as_sparse_vector(value: Any) -> sp.csr_matrix:
    """
    Convert one record's feature vector into the internal `1 x d` CSR row.

    Accepted encodings:
      - any scipy.sparse matrix/array (row, column or 1-d)
      - a mapping {"size", "indices", "values"} (how sparse vectors land in parquet structs);
        `indices=None` means `values` is dense
      - a dense sequence / ndarray
    """
    if value is None:
        raise ValueError("Feature vector is missing (null)")

    if sp.issparse(value):
        if value.ndim == 1:
            return sp.csr_matrix(value.reshape((1, -1)), dtype=np.float64)
        if value.shape[0] != 1:
            if value.shape[1] == 1:
                return sp.csr_matrix(value.T, dtype=np.float64)
            raise ValueError(f"Expected a single feature row, got sparse shape {value.shape}")
        return sp.csr_matrix(value, dtype=np.float64)

    if isinstance(value, Mapping):
        return _from_struct(value)

    arr = np.asarray(value, dtype=np.float64)
    if arr.ndim != 1:
        raise ValueError(f"Expected a 1-d dense feature vector, got shape {arr.shape}")
    return sp.csr_matrix(arr.reshape(1, -1))


def _from_struct(value: Mapping[str, Any]) -> sp.csr_matrix:
    values = value.get("values")
    if values is None:
        raise ValueError(f"Sparse vector struct has no 'values': keys={sorted(value.keys())}")
    vals = np.asarray(values, dtype=np.float64)
    indices = value.get("indices")
    if indices is None:
        size = int(value.get("size") or vals.shape[0])
        if size != vals.shape[0]:
            raise ValueError(f"Dense vector struct declares size={size} but has {vals.shape[0]} values")
        return sp.csr_matrix(vals.reshape(1, -1))

    idx = np.asarray(indices, dtype=np.int64)
    if idx.shape != vals.shape:
        raise ValueError(f"Sparse vector struct has {idx.shape[0]} indices but {vals.shape[0]} values")
    if value.get("size") is None:
        raise ValueError("Sparse vector struct is missing 'size'")
    size = int(value["size"])
    if idx.size and (int(idx.min()) < 0 or int(idx.max()) >= size):
        raise ValueError(f"Sparse vector index out of range for size={size}: {idx.tolist()}")
    rows = np.zeros(idx.shape[0], dtype=np.int64)
    return sp.csr_matrix((vals, (rows, idx)), shape=(1, size))


def vector_size(value: Any) -> int:
    """Declared length of a dense or sparse vector operand."""
    if sp.issparse(value):
        if value.ndim == 1:
            return int(value.shape[0])
        if value.shape[0] != 1 and value.shape[1] != 1:
            raise ValueError(f"Expected a vector, got sparse shape {value.shape}")
        return int(max(value.shape))
    arr = np.asarray(value)
    if arr.ndim != 1:
        raise ValueError(f"Expected a 1-d vector, got shape {arr.shape}")
    return int(arr.shape[0])


def stack_rows(rows: Sequence[sp.csr_matrix], *, num_features: int) -> sp.csr_matrix:
    """Stack `1 x d` rows into an `n x d` design matrix (an empty matrix for no rows)."""
    if not rows:
        return sp.csr_matrix((0, num_features), dtype=np.float64)
    return sp.vstack(rows, format="csr", dtype=np.float64)
