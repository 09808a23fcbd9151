from __future__ import annotations

import logging
from typing import Optional, Tuple

from game_ml.algorithm.coordinate import Coordinate
from game_ml.data.datasets import FixedEffectDataset
from game_ml.data.scores import CoordinateDataScores
from game_ml.glm.coefficients import Coefficients
from game_ml.glm.families import model_for_task
from game_ml.glm.game_model import DatumScoringModel, FixedEffectModel
from game_ml.glm.scoring import score_matrix
from game_ml.glm.task_type import TaskType
from game_ml.optimization.objective import GlmObjective
from game_ml.optimization.optimizer import OptimizerConfig, fit_glm
from game_ml.optimization.tracker import OptimizationTracker

logger = logging.getLogger(__name__)


class FixedEffectCoordinate(Coordinate):
    """A single global GLM trained on every record of one feature shard."""

    def __init__(
        self,
        coordinate_id: str,
        dataset: FixedEffectDataset,
        *,
        task_type: TaskType | str,
        optimizer_config: Optional[OptimizerConfig] = None,
    ) -> None:
        super().__init__(coordinate_id, task_type=task_type)
        self._dataset = dataset
        self.optimizer_config = optimizer_config if optimizer_config is not None else OptimizerConfig()

    @property
    def dataset(self) -> FixedEffectDataset:
        return self._dataset

    def _check_model(self, model: DatumScoringModel) -> FixedEffectModel:
        if not isinstance(model, FixedEffectModel):
            raise TypeError(f"{self.coordinate_id}: expected FixedEffectModel, got {type(model).__name__}")
        if model.feature_shard_id != self._dataset.feature_shard_id:
            raise ValueError(
                f"{self.coordinate_id}: model shard '{model.feature_shard_id}' != dataset shard "
                f"'{self._dataset.feature_shard_id}'"
            )
        return model

    def _train_model(self, model: Optional[DatumScoringModel]) -> Tuple[FixedEffectModel, OptimizationTracker]:
        initial = None
        if model is not None:
            initial = self._check_model(model).model.coefficients.means

        local = self._dataset.data
        objective = GlmObjective(
            self.task_type,
            local.X,
            local.labels,
            local.offsets,
            local.weights,
            l2_weight=self.optimizer_config.l2_weight,
        )
        coef, tracker = fit_glm(objective, config=self.optimizer_config, initial=initial)
        glm = model_for_task(self.task_type, Coefficients(coef))
        logger.debug(
            "Trained fixed effect: coordinate=%s warm_start=%s iterations=%s objective=%s reason=%s",
            self.coordinate_id,
            model is not None,
            tracker.iterations,
            tracker.final_objective,
            tracker.convergence_reason,
        )
        return FixedEffectModel(glm, self._dataset.feature_shard_id), tracker

    def update_dataset(self, score: CoordinateDataScores) -> None:
        self._dataset = self._dataset.update_offsets(score)

    def score(self, model: DatumScoringModel) -> CoordinateDataScores:
        fe = self._check_model(model)
        local = self._dataset.data
        raw = score_matrix(local.X, fe.model.coefficients.means)
        return CoordinateDataScores.from_arrays(local.uids, raw)
