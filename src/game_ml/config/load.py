from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from game_ml.config.settings import CoordinateConfig, GameTrainingConfig
from game_ml.data.input_columns import InputColumnsNames
from game_ml.optimization.optimizer import OptimizerConfig


def load_training_config(path: Path) -> GameTrainingConfig:
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a YAML mapping at the top level")
    return training_config_from_dict(data)


def _optional_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


def optimizer_config_from_dict(data: Optional[Dict[str, Any]]) -> OptimizerConfig:
    data = data or {}
    defaults = OptimizerConfig()
    return OptimizerConfig(
        optimizer_type=str(data.get("optimizer_type", defaults.optimizer_type)),
        max_iterations=int(data.get("max_iterations", defaults.max_iterations)),
        tolerance=float(data.get("tolerance", defaults.tolerance)),
        l2_weight=float(data.get("l2_weight", defaults.l2_weight)),
    )


def coordinate_config_from_dict(data: Dict[str, Any]) -> CoordinateConfig:
    for key in ("coordinate_id", "feature_shard_id"):
        if not data.get(key):
            raise ValueError(f"Coordinate config missing '{key}': {data}")
    re_type = data.get("random_effect_type")
    return CoordinateConfig(
        coordinate_id=str(data["coordinate_id"]),
        feature_shard_id=str(data["feature_shard_id"]),
        random_effect_type=None if re_type is None else str(re_type),
        optimizer=optimizer_config_from_dict(data.get("optimizer")),
        active_data_lower_bound=_optional_int(data.get("active_data_lower_bound")),
        active_data_upper_bound=_optional_int(data.get("active_data_upper_bound")),
    )


def training_config_from_dict(data: Dict[str, Any]) -> GameTrainingConfig:
    coords_raw = data.get("coordinates")
    if not isinstance(coords_raw, list) or not coords_raw:
        raise ValueError("Training config needs a non-empty 'coordinates' list")
    coordinates: List[CoordinateConfig] = []
    for idx, c in enumerate(coords_raw):
        if not isinstance(c, dict):
            raise ValueError(f"coordinates[{idx}] must be a mapping")
        coordinates.append(coordinate_config_from_dict(c))

    if "input_path" not in data:
        raise ValueError("Training config missing 'input_path'")

    tol = data.get("convergence_tolerance")
    return GameTrainingConfig(
        input_path=Path(data["input_path"]),
        coordinates=tuple(coordinates),
        task_type=str(data.get("task_type", GameTrainingConfig.task_type)),
        artifacts_root=Path(data.get("artifacts_root", "artifacts")),
        seed=int(data.get("seed", 1337)),
        persist_step_outputs=bool(data.get("persist_step_outputs", False)),
        log_level=str(data.get("log_level", "INFO")),
        descent_iterations=int(data.get("descent_iterations", 1)),
        convergence_tolerance=None if tol is None else float(tol),
        input_columns=InputColumnsNames.with_overrides(data.get("input_columns")),
        num_partitions=int(data.get("num_partitions", 1)),
    )


def apply_cli_overrides(
    cfg: GameTrainingConfig,
    *,
    input_path: Optional[Path] = None,
    artifacts_root: Optional[Path] = None,
    task_type: Optional[str] = None,
    seed: Optional[int] = None,
    persist_step_outputs: Optional[bool] = None,
    log_level: Optional[str] = None,
    descent_iterations: Optional[int] = None,
    convergence_tolerance: Optional[float] = None,
    num_partitions: Optional[int] = None,
) -> GameTrainingConfig:
    return replace(
        cfg,
        input_path=input_path if input_path is not None else cfg.input_path,
        artifacts_root=artifacts_root if artifacts_root is not None else cfg.artifacts_root,
        task_type=task_type if task_type is not None else cfg.task_type,
        seed=seed if seed is not None else cfg.seed,
        persist_step_outputs=persist_step_outputs
        if persist_step_outputs is not None
        else cfg.persist_step_outputs,
        log_level=log_level if log_level is not None else cfg.log_level,
        descent_iterations=descent_iterations if descent_iterations is not None else cfg.descent_iterations,
        convergence_tolerance=convergence_tolerance
        if convergence_tolerance is not None
        else cfg.convergence_tolerance,
        num_partitions=num_partitions if num_partitions is not None else cfg.num_partitions,
    )
