from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pandas as pd
import pytest
from typer.testing import CliRunner

from game_ml.cli.main import app
from game_ml.config.load import training_config_from_dict
from game_ml.pipelines.training import run_game_training


def _write_records(path: Path) -> int:
    rng = np.random.default_rng(11)
    users = {"u0": (8, -1.0), "u1": (8, 0.0), "u2": (8, 1.0), "u3": (2, 0.0)}
    rows = []
    for user, (n, bias) in users.items():
        for i in range(n):
            x = float(rng.normal())
            p = 1.0 / (1.0 + np.exp(-(0.5 * x + bias)))
            rows.append(
                {
                    "uid": f"{user}-{i}",
                    "response": float(rng.uniform() < p),
                    "weight": 1.0,
                    "userId": user,
                    "global": [1.0, x],
                    "per_user": [1.0],
                }
            )
    pd.DataFrame(rows).to_parquet(path, index=False)
    return len(rows)


def _config_dict(input_path: Path, artifacts_root: Path) -> dict:
    return {
        "input_path": str(input_path),
        "artifacts_root": str(artifacts_root),
        "task_type": "LOGISTIC_REGRESSION",
        "descent_iterations": 2,
        "persist_step_outputs": True,
        "coordinates": [
            {"coordinate_id": "global", "feature_shard_id": "global", "optimizer": {"l2_weight": 0.1}},
            {
                "coordinate_id": "per-user",
                "feature_shard_id": "per_user",
                "random_effect_type": "userId",
                "active_data_lower_bound": 3,
                "optimizer": {"optimizer_type": "TRON", "l2_weight": 1.0},
            },
        ],
    }


def test_training_pipeline_writes_required_artifacts(tmp_path: Path) -> None:
    input_path = tmp_path / "records.parquet"
    n = _write_records(input_path)
    cfg = training_config_from_dict(_config_dict(input_path, tmp_path / "artifacts"))

    res = run_game_training(cfg)
    run_dir = Path(res["artifacts_dir"])
    assert run_dir.name == res["run_id"]

    for name in ["run_manifest.json", "coordinate_trackers.json", "scores.parquet", "logs/run.log"]:
        assert (run_dir / name).exists(), f"missing {name}"

    log_text = (run_dir / "logs" / "run.log").read_text(encoding="utf-8")
    assert res["run_id"] in log_text
    assert "02_coordinate_descent" in log_text
    assert "per-user" in log_text
    assert "Run finished" in log_text

    for step_dir_name in ["00_ingest", "01_build_coordinates", "02_coordinate_descent", "03_score"]:
        step_dir = run_dir / "steps" / step_dir_name
        assert step_dir.exists(), f"missing step folder {step_dir_name}"
        for sidecar in ["step_manifest.json", "preview.csv", "schema.json", "outputs.parquet"]:
            assert (step_dir / sidecar).exists(), f"{step_dir_name} missing {sidecar}"

    manifest = json.loads((run_dir / "run_manifest.json").read_text(encoding="utf-8"))
    assert manifest["pipeline"] == "training"
    assert manifest["training"]["task_type"] == "LOGISTIC_REGRESSION"
    assert manifest["training"]["coordinate_ids"] == ["global", "per-user"]
    assert manifest["training"]["iterations_run"] == 2
    assert manifest["training"]["coordinates"]["per-user"]["num_models"] == 3
    assert len(manifest["training"]["loss_history"]) == 2
    assert manifest["row_counts_by_step"]["00_ingest"] == {"row_count_in": n, "row_count_out": n}
    assert [w["code"] for w in manifest["warnings"]] == ["entities_below_active_data_lower_bound"]
    assert {o["logical_name"] for o in manifest["outputs"]} == {"coordinate_trackers.json", "scores.parquet"}

    trackers = json.loads((run_dir / "coordinate_trackers.json").read_text(encoding="utf-8"))
    assert [t["coordinate_id"] for t in trackers] == ["global", "per-user", "global", "per-user"]
    assert trackers[1]["tracker"]["num_entities_trained"] == 3
    assert trackers[1]["tracker"]["num_entities_skipped"] == 1

    scores = pd.read_parquet(run_dir / "scores.parquet")
    assert len(scores) == n
    assert scores["unique_sample_id"].is_unique
    assert np.allclose(scores["score__global"] + scores["score__per-user"], scores["total_score"])
    assert scores["mean"].between(0.0, 1.0).all()
    # u3 is below the lower bound: no per-user contribution
    assert (scores.loc[scores["uid"].str.startswith("u3-"), "score__per-user"] == 0.0).all()


def test_training_pipeline_fails_on_missing_id_tag(tmp_path: Path) -> None:
    input_path = tmp_path / "records.parquet"
    _write_records(input_path)
    frame = pd.read_parquet(input_path).drop(columns=["userId"])
    frame.to_parquet(input_path, index=False)

    cfg = training_config_from_dict(_config_dict(input_path, tmp_path / "artifacts"))
    with pytest.raises(ValueError, match="Cannot find id in either record field: userId"):
        run_game_training(cfg)


def test_cli_training_run(tmp_path: Path) -> None:
    input_path = tmp_path / "records.parquet"
    _write_records(input_path)
    config_path = tmp_path / "game.json"
    config_path.write_text(json.dumps(_config_dict(input_path, tmp_path / "unused")), encoding="utf-8")

    artifacts_root = tmp_path / "cli-artifacts"
    result = CliRunner().invoke(
        app,
        [
            "training",
            "run",
            "--config",
            str(config_path),
            "--artifacts-root",
            str(artifacts_root),
            "--descent-iterations",
            "1",
        ],
    )
    assert result.exit_code == 0, result.output
    run_dirs = list((artifacts_root / "training").iterdir())
    assert len(run_dirs) == 1
    manifest = json.loads((run_dirs[0] / "run_manifest.json").read_text(encoding="utf-8"))
    assert manifest["training"]["iterations_run"] == 1
