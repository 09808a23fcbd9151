from __future__ import annotations

import json
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import pandas as pd

from game_ml.models.manifests import ManifestIO, StepManifest, StructuredWarning
from game_ml.utils.hashing import frame_fingerprints, sha256_file, sha256_hex

PREVIEW_ROWS = 200


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_run_id() -> str:
    ts = utc_now().strftime("%Y-%m-%dT%H%M%SZ")
    suffix = sha256_hex(f"{time.time_ns()}".encode("utf-8"))[:6]
    return f"{ts}_{suffix}"


def manifest_io(path: Path, logical_name: str) -> ManifestIO:
    return ManifestIO(path=str(path), checksum_sha256=sha256_file(path), logical_name=logical_name)


def write_json(path: Path, payload: Any) -> Path:
    path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    return path


class ArtifactWriter:
    """
    Lays out one run on disk:

        <artifacts_root>/<pipeline>/<run_id>/
            logs/run.log
            steps/NN_<name>/{preview.csv, schema.json, step_manifest.json, outputs.parquet?}
            run_manifest.json plus run-level outputs
    """

    def __init__(self, *, artifacts_root: Path, pipeline: str, run_id: str) -> None:
        self.artifacts_root = Path(artifacts_root)
        self.pipeline = pipeline
        self.run_id = run_id

        self.run_dir = self.artifacts_root / pipeline / run_id
        self.steps_dir = self.run_dir / "steps"
        self.logs_dir = self.run_dir / "logs"

    def init_run_dirs(self) -> None:
        self.steps_dir.mkdir(parents=True, exist_ok=False)
        self.logs_dir.mkdir(parents=True, exist_ok=False)

    def step_dir(self, step_idx: int, step_name: str) -> Path:
        return self.steps_dir / f"{step_idx:02d}_{step_name}"

    def write_step(
        self,
        *,
        step_idx: int,
        step_name: str,
        row_count_in: int,
        df_out: pd.DataFrame,
        inputs: Sequence[ManifestIO] = (),
        metrics: Optional[Dict[str, Any]] = None,
        warnings: Sequence[StructuredWarning] = (),
        persist_parquet: bool = False,
    ) -> StepManifest:
        """
        df_out is the step's tabular summary; only its head is kept unless persist_parquet.
        Object columns holding sparse vectors should be dropped by the caller first.
        """
        step_path = self.step_dir(step_idx, step_name)
        step_path.mkdir(parents=True, exist_ok=False)

        started_at = utc_now()
        t0 = time.perf_counter()

        preview_path = step_path / "preview.csv"
        df_out.head(PREVIEW_ROWS).to_csv(preview_path, index=False)
        schema_path = write_json(step_path / "schema.json", _schema_json(df_out))

        outputs = [manifest_io(preview_path, "preview.csv"), manifest_io(schema_path, "schema.json")]
        if persist_parquet:
            parquet_path = step_path / "outputs.parquet"
            df_out.to_parquet(parquet_path, index=False)
            outputs.append(manifest_io(parquet_path, "outputs.parquet"))

        sfp, dfp = frame_fingerprints(df_out, preview_rows=PREVIEW_ROWS)
        manifest = StepManifest(
            run_id=self.run_id,
            pipeline=self.pipeline,  # type: ignore[arg-type]
            step_name=step_name,
            started_at=started_at,
            finished_at=utc_now(),
            duration_s=time.perf_counter() - t0,
            inputs=list(inputs),
            outputs=outputs,
            row_count_in=int(row_count_in),
            row_count_out=int(len(df_out)),
            schema_fingerprint=sfp,
            data_fingerprint=dfp,
            metrics=dict(metrics or {}),
            warnings=list(warnings),
        )
        write_json(step_path / "step_manifest.json", manifest.model_dump(mode="json"))
        return manifest


def _schema_json(df: pd.DataFrame) -> Dict[str, Any]:
    cols = []
    for c in df.columns:
        nulls = int(df[c].isna().sum())
        cols.append(
            {
                "name": str(c),
                "dtype": str(df[c].dtype),
                "null_count": nulls,
                "null_rate": float(nulls / max(1, len(df))),
            }
        )
    return {"num_rows": int(len(df)), "columns": cols}
