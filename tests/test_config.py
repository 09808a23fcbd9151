from __future__ import annotations

from pathlib import Path

import pytest

from game_ml.config.load import apply_cli_overrides, load_training_config, training_config_from_dict

CONFIG_YAML = """
input_path: data/train.parquet
task_type: poisson_regression
descent_iterations: 3
convergence_tolerance: 1.0e-4
input_columns:
  RESPONSE: clicks
coordinates:
  - coordinate_id: global
    feature_shard_id: global_features
    optimizer:
      optimizer_type: tron
      max_iterations: 50
      l2_weight: 0.1
  - coordinate_id: per-user
    feature_shard_id: user_features
    random_effect_type: userId
    active_data_lower_bound: 2
    active_data_upper_bound: 100
  - coordinate_id: per-item
    feature_shard_id: item_features
    random_effect_type: itemId
"""


def _minimal(**extra) -> dict:
    d = {"input_path": "x.parquet", "coordinates": [{"coordinate_id": "g", "feature_shard_id": "f"}]}
    d.update(extra)
    return d


def test_load_training_config_from_yaml(tmp_path: Path) -> None:
    path = tmp_path / "game.yaml"
    path.write_text(CONFIG_YAML, encoding="utf-8")
    cfg = load_training_config(path)

    assert cfg.input_path == Path("data/train.parquet")
    assert cfg.task_type == "POISSON_REGRESSION"
    assert cfg.descent_iterations == 3
    assert cfg.convergence_tolerance == pytest.approx(1e-4)
    assert cfg.input_columns.response == "clicks"
    assert [c.coordinate_id for c in cfg.coordinates] == ["global", "per-user", "per-item"]

    g, u, _ = cfg.coordinates
    assert g.optimizer.optimizer_type == "TRON"
    assert g.optimizer.max_iterations == 50
    assert not g.is_random_effect
    assert u.active_data_lower_bound == 2 and u.active_data_upper_bound == 100
    assert cfg.id_tags == ["itemId", "userId"]
    assert cfg.feature_shards == ["global_features", "item_features", "user_features"]


def test_config_defaults() -> None:
    cfg = training_config_from_dict(_minimal())
    assert cfg.task_type == "LOGISTIC_REGRESSION"
    assert cfg.artifacts_root == Path("artifacts")
    assert cfg.descent_iterations == 1
    assert cfg.convergence_tolerance is None
    assert cfg.coordinates[0].optimizer.optimizer_type == "LBFGS"
    assert cfg.id_tags == []


@pytest.mark.parametrize(
    ("data", "match"),
    [
        (_minimal(task_type="ranking"), "Unknown task type"),
        (
            _minimal(coordinates=[{"coordinate_id": "g", "feature_shard_id": "f", "optimizer": {"optimizer_type": "adam"}}]),
            "Unknown optimizer type",
        ),
        (
            _minimal(
                coordinates=[
                    {"coordinate_id": "g", "feature_shard_id": "f"},
                    {"coordinate_id": "g", "feature_shard_id": "h", "random_effect_type": "userId"},
                ]
            ),
            "Duplicate coordinate ids",
        ),
        (_minimal(coordinates=[]), "non-empty 'coordinates'"),
        (_minimal(coordinates=[{"coordinate_id": "g"}]), "missing 'feature_shard_id'"),
        ({"coordinates": [{"coordinate_id": "g", "feature_shard_id": "f"}]}, "missing 'input_path'"),
        (_minimal(descent_iterations=0), "descent_iterations"),
    ],
)
def test_invalid_configs(data: dict, match: str) -> None:
    with pytest.raises(ValueError, match=match):
        training_config_from_dict(data)


def test_cli_overrides_only_replace_given_values() -> None:
    cfg = training_config_from_dict(_minimal(seed=7))
    out = apply_cli_overrides(cfg, artifacts_root=Path("elsewhere"), descent_iterations=4, task_type="linear_regression")
    assert out.artifacts_root == Path("elsewhere")
    assert out.descent_iterations == 4
    assert out.task_type == "LINEAR_REGRESSION"
    assert out.seed == 7
    assert out.input_path == cfg.input_path
