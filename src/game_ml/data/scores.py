from __future__ import annotations

from typing import Iterable, Mapping, Optional

import numpy as np
import pandas as pd

from game_ml.data.ids import UNIQUE_SAMPLE_ID


class CoordinateDataScores:
    """
    Per-record score contributions keyed by unique sample id.

    The map is sparse over the full id space: ids with no entry contribute 0, which is
    what lets a coordinate that only sees part of the data combine with the others.
    Instances are immutable snapshots; arithmetic returns new objects.
    """

    def __init__(self, scores: pd.Series) -> None:
        s = pd.Series(
            np.asarray(scores.to_numpy(), dtype=np.float64),
            index=pd.Index(np.asarray(scores.index, dtype=np.int64), name=UNIQUE_SAMPLE_ID),
            name="score",
        )
        if not s.index.is_unique:
            raise ValueError("CoordinateDataScores requires unique sample ids")
        self._scores = s

    @classmethod
    def from_arrays(cls, uids: Iterable[int], scores: Iterable[float]) -> "CoordinateDataScores":
        uid_arr = _as_array(uids, np.int64)
        score_arr = _as_array(scores, np.float64)
        if uid_arr.shape != score_arr.shape:
            raise ValueError(f"uids/scores length mismatch: {uid_arr.shape[0]} != {score_arr.shape[0]}")
        return cls(pd.Series(score_arr, index=uid_arr))

    @classmethod
    def from_mapping(cls, scores: Mapping[int, float]) -> "CoordinateDataScores":
        return cls.from_arrays(np.fromiter(scores.keys(), dtype=np.int64), np.fromiter(scores.values(), dtype=np.float64))

    @classmethod
    def zeros(cls, uids: Iterable[int]) -> "CoordinateDataScores":
        uid_arr = _as_array(uids, np.int64)
        return cls.from_arrays(uid_arr, np.zeros(uid_arr.shape[0], dtype=np.float64))

    @classmethod
    def empty(cls) -> "CoordinateDataScores":
        return cls.zeros(np.zeros(0, dtype=np.int64))

    def __len__(self) -> int:
        return int(self._scores.shape[0])

    def __contains__(self, uid: object) -> bool:
        return uid in self._scores.index

    def get(self, uid: int, default: float = 0.0) -> float:
        return float(self._scores.get(uid, default))

    @property
    def uids(self) -> np.ndarray:
        return self._scores.index.to_numpy(dtype=np.int64, copy=True)

    def aligned(self, uids: np.ndarray) -> np.ndarray:
        """Scores for `uids` in order; ids without an entry get 0."""
        return self._scores.reindex(np.asarray(uids, dtype=np.int64), fill_value=0.0).to_numpy(
            dtype=np.float64, copy=True
        )

    def _combine(self, other: "CoordinateDataScores", sign: float) -> "CoordinateDataScores":
        if not isinstance(other, CoordinateDataScores):
            return NotImplemented
        combined = self._scores.add(sign * other._scores, fill_value=0.0)
        return CoordinateDataScores(combined)

    def __add__(self, other: "CoordinateDataScores") -> "CoordinateDataScores":
        return self._combine(other, 1.0)

    def __sub__(self, other: "CoordinateDataScores") -> "CoordinateDataScores":
        return self._combine(other, -1.0)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CoordinateDataScores):
            return NotImplemented
        return self._scores.sort_index().equals(other._scores.sort_index())

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"CoordinateDataScores(n={len(self)})"

    def to_series(self) -> pd.Series:
        return self._scores.copy()

    def to_frame(self, *, score_column: str = "score") -> pd.DataFrame:
        return self._scores.rename(score_column).reset_index()

    @staticmethod
    def sum(scores: Iterable["CoordinateDataScores"], *, start: Optional["CoordinateDataScores"] = None) -> "CoordinateDataScores":
        total = start if start is not None else CoordinateDataScores.empty()
        for s in scores:
            total = total + s
        return total


def _as_array(values: Iterable, dtype: type) -> np.ndarray:
    if isinstance(values, (np.ndarray, pd.Index, pd.Series)):
        return np.asarray(values, dtype=dtype)
    return np.asarray(list(values), dtype=dtype)
