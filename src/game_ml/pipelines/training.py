from __future__ import annotations

import random
import time
from dataclasses import asdict
from typing import Any, Dict, List, Mapping

import numpy as np
import pandas as pd

from game_ml.algorithm.coordinate import Coordinate
from game_ml.algorithm.coordinate_descent import CoordinateDescent, CoordinateDescentResult
from game_ml.algorithm.factory import build_coordinates
from game_ml.algorithm.random_effect import RandomEffectCoordinate
from game_ml.config.settings import GameTrainingConfig
from game_ml.data.datasets import shard_dimension
from game_ml.data.datum import GameData
from game_ml.data.ids import UNIQUE_SAMPLE_ID
from game_ml.data.input_columns import UID_ID_TAG
from game_ml.data.ingestion import get_game_dataset_from_dataframe, read_game_frame
from game_ml.glm.game_model import GameModel
from game_ml.io.artifacts import ArtifactWriter, manifest_io, new_run_id, utc_now, write_json
from game_ml.models.manifests import ManifestIO, RunManifest, StructuredWarning, TrainingSummary
from game_ml.utils.hashing import try_get_git_sha
from game_ml.utils.logging import configure_run_logger, get_step_logger

PIPELINE = "training"


def run_game_training(config: GameTrainingConfig) -> Dict[str, Any]:
    """
    Train a GAME model end to end: ingest -> coordinates -> coordinate descent -> score.

    Returns {"run_id", "artifacts_dir"}; everything else lands under the run directory.
    """
    random.seed(config.seed)
    np.random.seed(config.seed)

    started_at = utc_now()
    run_id = new_run_id()
    writer = ArtifactWriter(artifacts_root=config.artifacts_root, pipeline=PIPELINE, run_id=run_id)
    writer.init_run_dirs()

    logger = configure_run_logger(
        logs_dir=writer.logs_dir,
        run_id=run_id,
        pipeline=PIPELINE,
        level=config.log_level,
    )
    logger.info(
        "Run started: input_path=%s artifacts_root=%s task_type=%s coordinates=%s descent_iterations=%s seed=%s git_sha=%s",
        str(config.input_path),
        str(config.artifacts_root),
        config.task_type,
        [c.coordinate_id for c in config.coordinates],
        config.descent_iterations,
        config.seed,
        try_get_git_sha(),
    )

    run_inputs: List[ManifestIO] = []
    run_outputs: List[ManifestIO] = []
    run_warnings: List[StructuredWarning] = []
    row_counts_by_step: Dict[str, Dict[str, int]] = {}

    try:
        # -------------------------
        # 00. ingest
        # -------------------------
        step = "00_ingest"
        step_logger = get_step_logger(logger, step=step)
        step_logger.info("Starting step")
        t0 = time.perf_counter()

        frame = read_game_frame(config.input_path)
        if config.input_path.is_file():
            run_inputs.append(manifest_io(config.input_path, "input_records"))

        data = get_game_dataset_from_dataframe(
            frame,
            feature_shards=config.feature_shards,
            id_tags=config.id_tags,
            is_response_required=True,
            input_columns=config.input_columns,
            num_partitions=config.num_partitions,
        )
        shard_dims = {s: shard_dimension(data, s) for s in config.feature_shards}
        records_df = _records_frame(data, config.id_tags)
        metrics_00 = {"num_records": len(data), "num_input_columns": int(len(frame.columns)), "shard_dims": shard_dims}
        m00 = writer.write_step(
            step_idx=0,
            step_name="ingest",
            row_count_in=len(frame),
            df_out=records_df,
            inputs=list(run_inputs),
            metrics=metrics_00,
            persist_parquet=config.persist_step_outputs,
        )
        row_counts_by_step[step] = {"row_count_in": m00.row_count_in, "row_count_out": m00.row_count_out}
        step_logger.info(
            "Finished step: duration_s=%.3f row_count_in=%s row_count_out=%s shard_dims=%s",
            time.perf_counter() - t0,
            m00.row_count_in,
            m00.row_count_out,
            shard_dims,
        )

        # -------------------------
        # 01. build_coordinates
        # -------------------------
        step = "01_build_coordinates"
        step_logger = get_step_logger(logger, step=step)
        step_logger.info("Starting step")
        t0 = time.perf_counter()

        coordinates = build_coordinates(config, data)
        coords_df = _coordinates_frame(coordinates)
        for row in coords_df.to_dict(orient="records"):
            if row["num_entities_skipped"] > 0:
                run_warnings.append(
                    StructuredWarning(
                        code="entities_below_active_data_lower_bound",
                        message=f"{row['coordinate_id']}: {row['num_entities_skipped']} entities get no model",
                        details={"coordinate_id": row["coordinate_id"], "count": int(row["num_entities_skipped"])},
                    )
                )
        m01 = writer.write_step(
            step_idx=1,
            step_name="build_coordinates",
            row_count_in=len(data),
            df_out=coords_df,
            metrics={"num_coordinates": len(coordinates)},
            warnings=list(run_warnings),
            persist_parquet=config.persist_step_outputs,
        )
        row_counts_by_step[step] = {"row_count_in": m01.row_count_in, "row_count_out": m01.row_count_out}
        step_logger.info(
            "Finished step: duration_s=%.3f num_coordinates=%s",
            time.perf_counter() - t0,
            len(coordinates),
        )

        # -------------------------
        # 02. coordinate_descent
        # -------------------------
        step = "02_coordinate_descent"
        step_logger = get_step_logger(logger, step=step)
        step_logger.info("Starting step")
        t0 = time.perf_counter()

        descent = CoordinateDescent(
            coordinates,
            task_type=config.task_type,
            descent_iterations=config.descent_iterations,
            convergence_tolerance=config.convergence_tolerance,
            logger=step_logger,
        )
        result = descent.run(data)
        trackers_df = _trackers_frame(result)
        m02 = writer.write_step(
            step_idx=2,
            step_name="coordinate_descent",
            row_count_in=len(data),
            df_out=trackers_df,
            metrics={
                "iterations_run": result.iterations_run,
                "converged": result.converged,
                "loss_history": result.loss_history,
            },
            persist_parquet=config.persist_step_outputs,
        )
        row_counts_by_step[step] = {"row_count_in": m02.row_count_in, "row_count_out": m02.row_count_out}
        trackers_path = write_json(writer.run_dir / "coordinate_trackers.json", result.trackers)
        run_outputs.append(manifest_io(trackers_path, "coordinate_trackers.json"))
        step_logger.info(
            "Finished step: duration_s=%.3f iterations_run=%s converged=%s final_loss=%s",
            time.perf_counter() - t0,
            result.iterations_run,
            result.converged,
            result.loss_history[-1] if result.loss_history else None,
        )

        # -------------------------
        # 03. score
        # -------------------------
        step = "03_score"
        step_logger = get_step_logger(logger, step=step)
        step_logger.info("Starting step")
        t0 = time.perf_counter()

        scores_df = score_training_data(result.model, data)
        scores_path = writer.run_dir / "scores.parquet"
        scores_df.to_parquet(scores_path, index=False)
        run_outputs.append(manifest_io(scores_path, "scores.parquet"))

        m03 = writer.write_step(
            step_idx=3,
            step_name="score",
            row_count_in=len(data),
            df_out=scores_df,
            metrics={"mean_prediction": float(scores_df["mean"].mean()) if len(scores_df) else None},
            persist_parquet=config.persist_step_outputs,
        )
        row_counts_by_step[step] = {"row_count_in": m03.row_count_in, "row_count_out": m03.row_count_out}
        step_logger.info(
            "Finished step: duration_s=%.3f row_count_out=%s",
            time.perf_counter() - t0,
            m03.row_count_out,
        )

        finished_at = utc_now()
        run_manifest = RunManifest(
            run_id=run_id,
            pipeline=PIPELINE,
            started_at=started_at,
            finished_at=finished_at,
            git_sha=try_get_git_sha(),
            config=_config_dict(config),
            inputs=run_inputs,
            outputs=run_outputs,
            row_counts_by_step=row_counts_by_step,
            training=training_summary(result),
            warnings=run_warnings,
        )
        write_json(writer.run_dir / "run_manifest.json", run_manifest.model_dump(mode="json"))

        logger.info("Run finished: duration_s=%.3f", (finished_at - started_at).total_seconds())
        return {"run_id": run_id, "artifacts_dir": str(writer.run_dir)}
    except Exception:
        logger.exception("Training pipeline failed")
        raise


def score_training_data(model: GameModel, data: GameData) -> pd.DataFrame:
    """One row per record: per-coordinate scores, total score, offset and mean."""
    uids = np.fromiter(data.keys(), dtype=np.int64, count=len(data))
    out = pd.DataFrame({UNIQUE_SAMPLE_ID: uids})
    out[UID_ID_TAG] = [d.id_tags.get(UID_ID_TAG) for d in data.values()]
    for cid, m in model.items():
        out[f"score__{cid}"] = m.score(data).aligned(uids)
    out["total_score"] = model.score(data).aligned(uids)
    out["offset"] = np.fromiter((d.offset for d in data.values()), dtype=np.float64, count=len(data))
    out["mean"] = model.compute_means(data).reindex(uids).to_numpy()
    return out


def training_summary(result: CoordinateDescentResult) -> TrainingSummary:
    summary = result.model.summary()
    return TrainingSummary(
        task_type=summary["task_type"],
        coordinate_ids=result.model.coordinate_ids,
        loss_history=result.loss_history,
        iterations_run=result.iterations_run,
        converged=result.converged,
        coordinates=summary["coordinates"],
    )


def _records_frame(data: GameData, id_tags: List[str]) -> pd.DataFrame:
    rows = []
    for uid, d in data.items():
        row: Dict[str, Any] = {UNIQUE_SAMPLE_ID: uid, "response": d.response, "offset": d.offset, "weight": d.weight}
        for tag in id_tags:
            row[tag] = d.id_tags.get(tag)
        rows.append(row)
    return pd.DataFrame(rows, columns=[UNIQUE_SAMPLE_ID, "response", "offset", "weight", *id_tags])


def _coordinates_frame(coordinates: Mapping[str, Coordinate]) -> pd.DataFrame:
    rows = []
    for cid, c in coordinates.items():
        ds = c.dataset  # type: ignore[attr-defined]
        is_re = isinstance(c, RandomEffectCoordinate)
        rows.append(
            {
                "coordinate_id": cid,
                "kind": "random_effect" if is_re else "fixed_effect",
                "feature_shard_id": ds.feature_shard_id,
                "random_effect_type": ds.random_effect_type if is_re else None,
                "num_features": int(ds.num_features),
                "num_samples": int(ds.num_samples),
                "num_entities": len(ds.entities) if is_re else 1,
                "num_entities_skipped": int(ds.num_skipped_entities) if is_re else 0,
            }
        )
    return pd.DataFrame(rows)


def _trackers_frame(result: CoordinateDescentResult) -> pd.DataFrame:
    rows = []
    for t in result.trackers:
        tr = t["tracker"]
        if "num_entities_trained" in tr:
            iterations = tr["iterations"].get("mean")
            failed = int(tr["num_failed"])
            final_objective = None
        else:
            iterations = tr["iterations"]
            failed = 0 if tr["success"] else 1
            final_objective = tr["objective_trace"][-1] if tr["objective_trace"] else None
        rows.append(
            {
                "iteration": int(t["iteration"]),
                "coordinate_id": t["coordinate_id"],
                "optimizer_iterations": None if iterations is None else float(iterations),
                "num_failed": failed,
                "final_objective": final_objective,
                "elapsed_s": float(tr["elapsed_s"]),
            }
        )
    return pd.DataFrame(
        rows,
        columns=["iteration", "coordinate_id", "optimizer_iterations", "num_failed", "final_objective", "elapsed_s"],
    )


def _config_dict(config: GameTrainingConfig) -> Dict[str, Any]:
    d = asdict(config)
    d["input_path"] = str(config.input_path)
    d["artifacts_root"] = str(config.artifacts_root)
    d["input_columns"] = config.input_columns.to_dict()
    return d
