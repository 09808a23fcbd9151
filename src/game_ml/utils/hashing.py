from __future__ import annotations

import hashlib
import json
import subprocess
from pathlib import Path
from typing import Iterable, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Union[str, Path]) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def _canonical_json(payload: object) -> bytes:
    return json.dumps(payload, sort_keys=True, default=str, separators=(",", ":")).encode("utf-8")


def schema_fingerprint(columns_and_dtypes: Iterable[Tuple[str, str]]) -> str:
    """Hash of (column_name, dtype) pairs; dtypes are pandas dtype strings."""
    return sha256_hex(_canonical_json([{"col": c, "dtype": d} for (c, d) in columns_and_dtypes]))


def data_fingerprint(preview_rows: Sequence[Mapping[str, object]]) -> str:
    """Hash of the (already truncated) preview rows for cheap regression checks between runs."""
    return sha256_hex(_canonical_json(list(preview_rows)))


def frame_fingerprints(df: pd.DataFrame, *, preview_rows: int = 200) -> Tuple[str, str]:
    sfp = schema_fingerprint((str(c), str(df[c].dtype)) for c in df.columns)
    dfp = data_fingerprint(df.head(preview_rows).to_dict(orient="records"))
    return sfp, dfp


def try_get_git_sha(cwd: Optional[Path] = None) -> Optional[str]:
    try:
        out = subprocess.check_output(["git", "rev-parse", "HEAD"], cwd=cwd, stderr=subprocess.DEVNULL)
    except (OSError, subprocess.CalledProcessError):
        return None
    sha = out.decode("utf-8").strip()
    return sha or None
