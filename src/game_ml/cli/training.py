from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from game_ml.config.load import apply_cli_overrides, load_training_config
from game_ml.pipelines.training import run_game_training

app = typer.Typer(add_completion=False, help="Train a GAME model with coordinate descent")


@app.command("run")
def run(
    config: Path = typer.Option(..., help="YAML config file (coordinates, optimizers, input columns)"),
    input_path: Optional[Path] = typer.Option(None, help="Override: parquet file or directory of input records"),
    artifacts_root: Optional[Path] = typer.Option(None, help="Override: where to write run artifacts"),
    task_type: Optional[str] = typer.Option(
        None, help="Override: LINEAR_REGRESSION, LOGISTIC_REGRESSION, POISSON_REGRESSION, SMOOTHED_HINGE_LOSS_LINEAR_SVM"
    ),
    seed: Optional[int] = typer.Option(None, help="Override: seed for down-sampling and run reproducibility"),
    persist_step_outputs: Optional[bool] = typer.Option(
        None,
        "--persist-step-outputs/--no-persist-step-outputs",
        help="Override: write step outputs as parquet alongside preview/schema/manifests",
    ),
    log_level: Optional[str] = typer.Option(None, help="Override: Python logging level (INFO, DEBUG, WARNING, ...)"),
    descent_iterations: Optional[int] = typer.Option(None, help="Override: passes over all coordinates"),
    convergence_tolerance: Optional[float] = typer.Option(
        None, help="Override: stop once the relative change of the training loss is at most this"
    ),
    num_partitions: Optional[int] = typer.Option(None, help="Override: ingestion partitions"),
) -> None:
    try:
        cfg = load_training_config(config)
        cfg = apply_cli_overrides(
            cfg,
            input_path=input_path,
            artifacts_root=artifacts_root,
            task_type=task_type,
            seed=seed,
            persist_step_outputs=persist_step_outputs,
            log_level=log_level,
            descent_iterations=descent_iterations,
            convergence_tolerance=convergence_tolerance,
            num_partitions=num_partitions,
        )
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e

    out = run_game_training(cfg)
    typer.echo(out["artifacts_dir"])
