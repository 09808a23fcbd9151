from __future__ import annotations

from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import scipy.sparse as sp

from game_ml.data.datum import GameData, GameDatum
from game_ml.data.scores import CoordinateDataScores
from game_ml.data.vectors import stack_rows


def _read_only(arr: np.ndarray, dtype: type) -> np.ndarray:
    out = np.array(arr, dtype=dtype, copy=True)
    out.setflags(write=False)
    return out


def shard_dimension(data: GameData, feature_shard_id: str) -> int:
    """Feature dimension of a shard; every record must declare the same one."""
    sizes = {int(d.features(feature_shard_id).shape[1]) for d in data.values()}
    if len(sizes) > 1:
        raise ValueError(f"Feature shard '{feature_shard_id}' has inconsistent vector sizes: {sorted(sizes)}")
    return sizes.pop() if sizes else 0


@dataclass(frozen=True, eq=False)
class LocalDataset:
    """
    Column-oriented records of one optimization problem.

    base_offsets are the offsets the records were ingested with; offsets are the
    effective ones (base + residual score of the other coordinates).
    """

    uids: np.ndarray
    X: sp.csr_matrix
    labels: np.ndarray
    weights: np.ndarray
    base_offsets: np.ndarray
    offsets: np.ndarray

    @classmethod
    def from_records(
        cls, records: Sequence[Tuple[int, GameDatum]], *, feature_shard_id: str, num_features: int
    ) -> "LocalDataset":
        uids = np.fromiter((uid for uid, _ in records), dtype=np.int64, count=len(records))
        X = stack_rows([d.features(feature_shard_id) for _, d in records], num_features=num_features)
        labels = np.fromiter((d.response for _, d in records), dtype=np.float64, count=len(records))
        weights = np.fromiter((d.weight for _, d in records), dtype=np.float64, count=len(records))
        offsets = np.fromiter((d.offset for _, d in records), dtype=np.float64, count=len(records))
        return cls(
            uids=_read_only(uids, np.int64),
            X=X,
            labels=_read_only(labels, np.float64),
            weights=_read_only(weights, np.float64),
            base_offsets=_read_only(offsets, np.float64),
            offsets=_read_only(offsets, np.float64),
        )

    @property
    def num_samples(self) -> int:
        return int(self.uids.shape[0])

    @property
    def num_features(self) -> int:
        return int(self.X.shape[1])

    def update_offsets(self, scores: CoordinateDataScores) -> "LocalDataset":
        """New snapshot with offset = base offset + residual score (0 for ids without a score)."""
        return replace(self, offsets=_read_only(self.base_offsets + scores.aligned(self.uids), np.float64))

    def subset(self, rows: np.ndarray) -> "LocalDataset":
        rows = np.asarray(rows, dtype=np.int64)
        return LocalDataset(
            uids=_read_only(self.uids[rows], np.int64),
            X=self.X[rows],
            labels=_read_only(self.labels[rows], np.float64),
            weights=_read_only(self.weights[rows], np.float64),
            base_offsets=_read_only(self.base_offsets[rows], np.float64),
            offsets=_read_only(self.offsets[rows], np.float64),
        )


@dataclass(frozen=True, eq=False)
class FixedEffectDataset:
    """All records of the run, projected onto one feature shard."""

    feature_shard_id: str
    data: LocalDataset

    @classmethod
    def from_game_data(cls, data: GameData, *, feature_shard_id: str) -> "FixedEffectDataset":
        dim = shard_dimension(data, feature_shard_id)
        records = sorted(data.items())
        return cls(
            feature_shard_id=str(feature_shard_id),
            data=LocalDataset.from_records(records, feature_shard_id=feature_shard_id, num_features=dim),
        )

    @property
    def num_features(self) -> int:
        return self.data.num_features

    @property
    def num_samples(self) -> int:
        return self.data.num_samples

    def update_offsets(self, scores: CoordinateDataScores) -> "FixedEffectDataset":
        return replace(self, data=self.data.update_offsets(scores))


@dataclass(frozen=True, eq=False)
class RandomEffectDataset:
    """
    Records grouped by the value of one id tag, one sub-problem per entity.

    entities: every record of every entity (all of them are scored).
    training_rows: row positions (into entities[e]) used to train entity e; entities
                   below the active-data lower bound have no entry and get no model.
    """

    random_effect_type: str
    feature_shard_id: str
    num_features: int
    entities: Mapping[str, LocalDataset]
    training_rows: Mapping[str, np.ndarray]

    @classmethod
    def from_game_data(
        cls,
        data: GameData,
        *,
        random_effect_type: str,
        feature_shard_id: str,
        active_data_lower_bound: Optional[int] = None,
        active_data_upper_bound: Optional[int] = None,
        seed: int = 1337,
    ) -> "RandomEffectDataset":
        if active_data_lower_bound is not None and active_data_lower_bound < 1:
            raise ValueError(f"active_data_lower_bound must be >= 1, got {active_data_lower_bound}")
        if active_data_upper_bound is not None and active_data_upper_bound < 1:
            raise ValueError(f"active_data_upper_bound must be >= 1, got {active_data_upper_bound}")
        if (
            active_data_lower_bound is not None
            and active_data_upper_bound is not None
            and active_data_lower_bound > active_data_upper_bound
        ):
            raise ValueError(
                f"active_data_lower_bound ({active_data_lower_bound}) > active_data_upper_bound ({active_data_upper_bound})"
            )

        dim = shard_dimension(data, feature_shard_id)
        grouped: Dict[str, List[Tuple[int, GameDatum]]] = {}
        for uid, datum in sorted(data.items()):
            grouped.setdefault(datum.id_tag(random_effect_type), []).append((uid, datum))

        rng = np.random.default_rng(int(seed))
        entities: Dict[str, LocalDataset] = {}
        training_rows: Dict[str, np.ndarray] = {}
        for entity_id in sorted(grouped):
            local = LocalDataset.from_records(grouped[entity_id], feature_shard_id=feature_shard_id, num_features=dim)
            entities[entity_id] = local
            n = local.num_samples
            if active_data_lower_bound is not None and n < active_data_lower_bound:
                continue
            if active_data_upper_bound is not None and n > active_data_upper_bound:
                rows = np.sort(rng.choice(n, size=int(active_data_upper_bound), replace=False))
            else:
                rows = np.arange(n, dtype=np.int64)
            training_rows[entity_id] = _read_only(rows, np.int64)

        return cls(
            random_effect_type=str(random_effect_type),
            feature_shard_id=str(feature_shard_id),
            num_features=int(dim),
            entities=MappingProxyType(entities),
            training_rows=MappingProxyType(training_rows),
        )

    @property
    def num_samples(self) -> int:
        return int(sum(e.num_samples for e in self.entities.values()))

    @property
    def trainable_entities(self) -> List[str]:
        return list(self.training_rows.keys())

    @property
    def num_skipped_entities(self) -> int:
        return len(self.entities) - len(self.training_rows)

    def training_data(self, entity_id: str) -> LocalDataset:
        local = self.entities[entity_id]
        rows = self.training_rows[entity_id]
        if rows.shape[0] == local.num_samples:
            return local
        return local.subset(rows)

    def update_offsets(self, scores: CoordinateDataScores) -> "RandomEffectDataset":
        updated = {e: local.update_offsets(scores) for e, local in self.entities.items()}
        return replace(self, entities=MappingProxyType(updated))
