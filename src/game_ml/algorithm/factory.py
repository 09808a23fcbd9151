from __future__ import annotations

from collections import OrderedDict
from typing import Dict

from game_ml.algorithm.coordinate import Coordinate
from game_ml.algorithm.fixed_effect import FixedEffectCoordinate
from game_ml.algorithm.random_effect import RandomEffectCoordinate
from game_ml.config.settings import CoordinateConfig, GameTrainingConfig
from game_ml.data.datasets import FixedEffectDataset, RandomEffectDataset
from game_ml.data.datum import GameData
from game_ml.glm.task_type import TaskType


def build_coordinate(
    cfg: CoordinateConfig, data: GameData, *, task_type: TaskType | str, seed: int = 1337
) -> Coordinate:
    if cfg.random_effect_type is None:
        if cfg.active_data_lower_bound is not None or cfg.active_data_upper_bound is not None:
            raise ValueError(f"{cfg.coordinate_id}: active data bounds only apply to random-effect coordinates")
        fe = FixedEffectDataset.from_game_data(data, feature_shard_id=cfg.feature_shard_id)
        return FixedEffectCoordinate(cfg.coordinate_id, fe, task_type=task_type, optimizer_config=cfg.optimizer)

    re = RandomEffectDataset.from_game_data(
        data,
        random_effect_type=cfg.random_effect_type,
        feature_shard_id=cfg.feature_shard_id,
        active_data_lower_bound=cfg.active_data_lower_bound,
        active_data_upper_bound=cfg.active_data_upper_bound,
        seed=seed,
    )
    return RandomEffectCoordinate(cfg.coordinate_id, re, task_type=task_type, optimizer_config=cfg.optimizer)


def build_coordinates(config: GameTrainingConfig, data: GameData) -> "OrderedDict[str, Coordinate]":
    """Coordinates in config order (which is also the descent order)."""
    out: Dict[str, Coordinate] = OrderedDict()
    for c in config.coordinates:
        out[c.coordinate_id] = build_coordinate(c, data, task_type=config.task_type, seed=config.seed)
    return out  # type: ignore[return-value]
