from __future__ import annotations

import logging
import time
from typing import Dict, List, Optional, Tuple

import numpy as np

from game_ml.algorithm.coordinate import Coordinate
from game_ml.data.datasets import RandomEffectDataset
from game_ml.data.scores import CoordinateDataScores
from game_ml.glm.base import GeneralizedLinearModel
from game_ml.glm.coefficients import Coefficients
from game_ml.glm.families import model_for_task
from game_ml.glm.game_model import DatumScoringModel, RandomEffectModel
from game_ml.glm.scoring import score_matrix
from game_ml.glm.task_type import TaskType
from game_ml.optimization.objective import GlmObjective
from game_ml.optimization.optimizer import OptimizerConfig, fit_glm
from game_ml.optimization.tracker import OptimizationTracker, RandomEffectOptimizationTracker

logger = logging.getLogger(__name__)


class RandomEffectCoordinate(Coordinate):
    """
    One independent GLM per entity of a random-effect type (per user, per item, ...).

    Entities below the dataset's active-data lower bound get no model and score 0.
    Warm starts reuse an entity's previous coefficients when it has them.
    """

    def __init__(
        self,
        coordinate_id: str,
        dataset: RandomEffectDataset,
        *,
        task_type: TaskType | str,
        optimizer_config: Optional[OptimizerConfig] = None,
    ) -> None:
        super().__init__(coordinate_id, task_type=task_type)
        self._dataset = dataset
        self.optimizer_config = optimizer_config if optimizer_config is not None else OptimizerConfig()

    @property
    def dataset(self) -> RandomEffectDataset:
        return self._dataset

    def _check_model(self, model: DatumScoringModel) -> RandomEffectModel:
        if not isinstance(model, RandomEffectModel):
            raise TypeError(f"{self.coordinate_id}: expected RandomEffectModel, got {type(model).__name__}")
        if model.random_effect_type != self._dataset.random_effect_type:
            raise ValueError(
                f"{self.coordinate_id}: model random effect type '{model.random_effect_type}' != dataset type "
                f"'{self._dataset.random_effect_type}'"
            )
        if model.feature_shard_id != self._dataset.feature_shard_id:
            raise ValueError(
                f"{self.coordinate_id}: model shard '{model.feature_shard_id}' != dataset shard "
                f"'{self._dataset.feature_shard_id}'"
            )
        return model

    def _train_model(
        self, model: Optional[DatumScoringModel]
    ) -> Tuple[RandomEffectModel, RandomEffectOptimizationTracker]:
        previous: Dict[str, GeneralizedLinearModel] = {}
        if model is not None:
            previous = dict(self._check_model(model).models)

        t0 = time.perf_counter()
        models: Dict[str, GeneralizedLinearModel] = {}
        trackers: List[OptimizationTracker] = []
        for entity_id in self._dataset.trainable_entities:
            local = self._dataset.training_data(entity_id)
            objective = GlmObjective(
                self.task_type,
                local.X,
                local.labels,
                local.offsets,
                local.weights,
                l2_weight=self.optimizer_config.l2_weight,
            )
            prior = previous.get(entity_id)
            initial = None if prior is None else prior.coefficients.means
            coef, tracker = fit_glm(objective, config=self.optimizer_config, initial=initial)
            models[entity_id] = model_for_task(self.task_type, Coefficients(coef))
            trackers.append(tracker)

        summary = RandomEffectOptimizationTracker.from_trackers(
            trackers,
            num_entities_skipped=self._dataset.num_skipped_entities,
            elapsed_s=time.perf_counter() - t0,
        )
        logger.debug(
            "Trained random effect: coordinate=%s type=%s entities=%s skipped=%s failed=%s",
            self.coordinate_id,
            self._dataset.random_effect_type,
            summary.num_entities_trained,
            summary.num_entities_skipped,
            summary.num_failed,
        )
        re_model = RandomEffectModel(
            models,
            random_effect_type=self._dataset.random_effect_type,
            feature_shard_id=self._dataset.feature_shard_id,
        )
        return re_model, summary

    def update_dataset(self, score: CoordinateDataScores) -> None:
        self._dataset = self._dataset.update_offsets(score)

    def score(self, model: DatumScoringModel) -> CoordinateDataScores:
        re_model = self._check_model(model)
        uids: List[np.ndarray] = []
        scores: List[np.ndarray] = []
        for entity_id, local in self._dataset.entities.items():
            glm = re_model.models.get(entity_id)
            uids.append(local.uids)
            if glm is None:
                scores.append(np.zeros(local.num_samples, dtype=np.float64))
            else:
                scores.append(score_matrix(local.X, glm.coefficients.means))
        if not uids:
            return CoordinateDataScores.empty()
        return CoordinateDataScores.from_arrays(np.concatenate(uids), np.concatenate(scores))
