from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional, Tuple, Union

from game_ml.data.scores import CoordinateDataScores
from game_ml.glm.game_model import DatumScoringModel
from game_ml.glm.task_type import TaskType
from game_ml.optimization.tracker import OptimizationTracker, RandomEffectOptimizationTracker

Tracker = Union[OptimizationTracker, RandomEffectOptimizationTracker]


class Coordinate(ABC):
    """
    One block of a GAME model (a fixed effect or one random-effect type) together with
    its dataset and optimizer.

    A coordinate never decides when descent is done and never retries: whatever the
    optimizer raises propagates to the caller.

    Typical round, driven from outside:
        residual = sum of score(model) of every *other* coordinate
        model, tracker = coordinate.train_model(previous_model, residual)
        my_score = coordinate.score(model)
    """

    def __init__(self, coordinate_id: str, *, task_type: TaskType | str) -> None:
        self.coordinate_id = str(coordinate_id)
        self.task_type = TaskType.parse(task_type)

    def train_model(
        self,
        model: Optional[DatumScoringModel] = None,
        score: Optional[CoordinateDataScores] = None,
    ) -> Tuple[DatumScoringModel, Tracker]:
        """
        Train against the current dataset.

        model: warm start from this model; cold start when None.
        score: combined residual scores of the other coordinates; when given, the
               dataset offsets are refreshed first (same as `update_dataset(score)`).
        """
        if score is not None:
            self.update_dataset(score)
        return self._train_model(model)

    @abstractmethod
    def _train_model(self, model: Optional[DatumScoringModel]) -> Tuple[DatumScoringModel, Tracker]:
        ...

    @abstractmethod
    def update_dataset(self, score: CoordinateDataScores) -> None:
        """
        Swap in a new dataset snapshot whose per-record offset is the record's original
        offset plus its residual score (records absent from `score` get 0).
        """

    @abstractmethod
    def score(self, model: DatumScoringModel) -> CoordinateDataScores:
        """Raw score (no link, no offset) of `model` for every record of this coordinate."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.coordinate_id}, task_type={self.task_type.value})"
