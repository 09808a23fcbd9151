from __future__ import annotations

from abc import ABC, abstractmethod
from collections import OrderedDict
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Tuple

import numpy as np
import pandas as pd

from game_ml.data.datum import GameData, GameDatum
from game_ml.data.ids import UNIQUE_SAMPLE_ID
from game_ml.data.scores import CoordinateDataScores
from game_ml.glm.base import MODEL_TYPE, GeneralizedLinearModel, compute_mean_functions_with_offsets
from game_ml.glm.families import mean_function_for_task
from game_ml.glm.task_type import TaskType


class DatumScoringModel(ABC):
    """Anything that turns a datum into a raw (pre-link) score contribution."""

    feature_shard_id: str

    @abstractmethod
    def score_datum(self, datum: GameDatum) -> float:
        ...

    @abstractmethod
    def glms(self) -> Iterator[Tuple[str, GeneralizedLinearModel]]:
        """(label, model) pairs of every GLM inside this scoring model."""

    @abstractmethod
    def summary(self) -> Dict[str, Any]:
        ...

    def score(self, data: GameData) -> CoordinateDataScores:
        uids = np.fromiter(data.keys(), dtype=np.int64, count=len(data))
        scores = np.fromiter((self.score_datum(d) for d in data.values()), dtype=np.float64, count=len(data))
        return CoordinateDataScores.from_arrays(uids, scores)

    def validate_coefficients(self) -> None:
        for label, glm in self.glms():
            try:
                glm.validate_coefficients()
            except ValueError as e:
                raise ValueError(f"{label}: {e}") from e


class FixedEffectModel(DatumScoringModel):
    def __init__(self, model: GeneralizedLinearModel, feature_shard_id: str) -> None:
        self.model = model
        self.feature_shard_id = str(feature_shard_id)

    @property
    def model_type(self) -> TaskType:
        return self.model.model_type

    def score_datum(self, datum: GameDatum) -> float:
        return self.model.compute_score(datum.features(self.feature_shard_id))

    def glms(self) -> Iterator[Tuple[str, GeneralizedLinearModel]]:
        yield "fixed-effect", self.model

    def summary(self) -> Dict[str, Any]:
        return {
            "kind": "fixed_effect",
            "feature_shard_id": self.feature_shard_id,
            MODEL_TYPE: self.model.model_type.value,
            "num_coefficients": self.model.coefficients.length,
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FixedEffectModel):
            return NotImplemented
        return self.feature_shard_id == other.feature_shard_id and self.model == other.model

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"FixedEffectModel(shard={self.feature_shard_id}, model={self.model!r})"


class RandomEffectModel(DatumScoringModel):
    """
    One GLM per entity of `random_effect_type` (e.g. one model per userId).

    Records whose entity has no model contribute a score of 0.
    """

    def __init__(
        self,
        models: Mapping[str, GeneralizedLinearModel],
        *,
        random_effect_type: str,
        feature_shard_id: str,
    ) -> None:
        self.models: Mapping[str, GeneralizedLinearModel] = MappingProxyType(dict(models))
        self.random_effect_type = str(random_effect_type)
        self.feature_shard_id = str(feature_shard_id)
        types = {m.model_type for m in self.models.values()}
        if len(types) > 1:
            raise ValueError(f"RandomEffectModel mixes model types: {sorted(t.value for t in types)}")

    @property
    def model_type(self) -> TaskType | None:
        for m in self.models.values():
            return m.model_type
        return None

    def score_datum(self, datum: GameDatum) -> float:
        model = self.models.get(datum.id_tag(self.random_effect_type))
        if model is None:
            return 0.0
        return model.compute_score(datum.features(self.feature_shard_id))

    def glms(self) -> Iterator[Tuple[str, GeneralizedLinearModel]]:
        for entity_id, model in self.models.items():
            yield f"{self.random_effect_type}={entity_id}", model

    def summary(self) -> Dict[str, Any]:
        model_type = self.model_type
        return {
            "kind": "random_effect",
            "random_effect_type": self.random_effect_type,
            "feature_shard_id": self.feature_shard_id,
            MODEL_TYPE: None if model_type is None else model_type.value,
            "num_models": int(len(self.models)),
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RandomEffectModel):
            return NotImplemented
        return (
            self.random_effect_type == other.random_effect_type
            and self.feature_shard_id == other.feature_shard_id
            and dict(self.models) == dict(other.models)
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return (
            f"RandomEffectModel(type={self.random_effect_type}, shard={self.feature_shard_id}, "
            f"num_models={len(self.models)})"
        )


class GameModel:
    """
    Additive model over coordinates: total score = sum of each coordinate's score.

    The mean for a record is link(total score + the record's own offset).
    """

    def __init__(self, models: Mapping[str, DatumScoringModel], *, task_type: TaskType | str) -> None:
        self.task_type = TaskType.parse(task_type)
        self._models: "OrderedDict[str, DatumScoringModel]" = OrderedDict(models)
        for cid, m in self._models.items():
            for label, glm in m.glms():
                if glm.model_type != self.task_type:
                    raise ValueError(
                        f"Coordinate '{cid}' ({label}) has model type {glm.model_type.value}, "
                        f"expected {self.task_type.value}"
                    )

    def __getitem__(self, coordinate_id: str) -> DatumScoringModel:
        return self._models[coordinate_id]

    def __contains__(self, coordinate_id: object) -> bool:
        return coordinate_id in self._models

    def __len__(self) -> int:
        return len(self._models)

    @property
    def coordinate_ids(self) -> List[str]:
        return list(self._models.keys())

    def items(self):
        return self._models.items()

    def score(self, data: GameData) -> CoordinateDataScores:
        return CoordinateDataScores.sum(m.score(data) for m in self._models.values())

    def compute_means(self, data: GameData) -> pd.Series:
        """
        link(total score + offset) per record.

        With a fixed-effect coordinate the batch goes through that coordinate's GLM, with every
        other coordinate's score folded into the per-record offset.
        """
        uids = np.fromiter(data.keys(), dtype=np.int64, count=len(data))
        offsets = np.fromiter((d.offset for d in data.values()), dtype=np.float64, count=len(data))
        fixed = next(((cid, m) for cid, m in self._models.items() if isinstance(m, FixedEffectModel)), None)
        if fixed is None:
            total = self.score(data).aligned(uids) + offsets
            means = mean_function_for_task(self.task_type)(total)
        else:
            cid, fe = fixed
            others = CoordinateDataScores.sum(m.score(data) for other, m in self._models.items() if other != cid)
            residual = others.aligned(uids) + offsets
            features = (d.features(fe.feature_shard_id) for d in data.values())
            means = compute_mean_functions_with_offsets(fe.model, zip(features, residual))
        return pd.Series(means, index=pd.Index(uids, name=UNIQUE_SAMPLE_ID), name="mean")

    def validate_coefficients(self) -> None:
        for cid, m in self._models.items():
            try:
                m.validate_coefficients()
            except ValueError as e:
                raise ValueError(f"Coordinate '{cid}': {e}") from e

    def summary(self) -> Dict[str, Any]:
        return {"task_type": self.task_type.value, "coordinates": {cid: m.summary() for cid, m in self._models.items()}}
