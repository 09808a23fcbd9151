from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import numpy as np
import pandas as pd
import pyarrow.parquet as pq

from game_ml.data.datum import DEFAULT_OFFSET, DEFAULT_WEIGHT, GameData, GameDatum
from game_ml.data.ids import UNIQUE_SAMPLE_ID, UniqueSampleIdGenerator
from game_ml.data.input_columns import UID_ID_TAG, InputColumn, InputColumnsNames
from game_ml.data.vectors import as_sparse_vector
from game_ml.utils.broadcast import Broadcast

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExtractionPlan:
    """
    Field accessors for one input schema, resolved once before any row is read.

    Every per-row conversion applies the same plan, so a column that is missing from
    the schema is reported up front instead of failing (or silently defaulting) per row.
    """

    feature_shards: Tuple[str, ...]
    id_tags: Tuple[str, ...]
    is_response_required: bool
    response_column: Optional[str]
    offset_column: Optional[str]
    weight_column: Optional[str]
    uid_column: Optional[str]
    meta_data_map_column: Optional[str]
    id_tags_in_row: frozenset

    @classmethod
    def resolve(
        cls,
        columns: Iterable[str],
        *,
        feature_shards: Iterable[str],
        id_tags: Iterable[str],
        is_response_required: bool,
        input_columns: InputColumnsNames,
    ) -> "ExtractionPlan":
        present = {str(c) for c in columns}

        def if_present(column: InputColumn) -> Optional[str]:
            name = input_columns[column]
            return name if name in present else None

        shards = tuple(sorted({str(s) for s in feature_shards}))
        missing_shards = [s for s in shards if s not in present]
        if missing_shards:
            raise ValueError(f"Input data is missing feature shard columns: {missing_shards}")

        response_column = if_present(InputColumn.RESPONSE)
        if is_response_required and response_column is None:
            raise ValueError(
                f"Response column '{input_columns[InputColumn.RESPONSE]}' is required but missing from input data"
            )

        tags = tuple(sorted({str(t) for t in id_tags}))
        return cls(
            feature_shards=shards,
            id_tags=tags,
            is_response_required=bool(is_response_required),
            response_column=response_column,
            offset_column=if_present(InputColumn.OFFSET),
            weight_column=if_present(InputColumn.WEIGHT),
            uid_column=if_present(InputColumn.UID),
            meta_data_map_column=if_present(InputColumn.META_DATA_MAP),
            id_tags_in_row=frozenset(t for t in tags if t in present),
        )


def validate_id_tags(id_tags: Iterable[str], input_columns: InputColumnsNames) -> None:
    """Response, offset, weight and uid columns can't be used for random effect or validation grouping."""
    reserved = input_columns.reserved_names()
    overlap = sorted(reserved.intersection(str(t) for t in id_tags))
    if overlap:
        raise ValueError(
            f"Cannot use required columns ({', '.join(sorted(reserved))}) for random effect/validation grouping: "
            f"{overlap}"
        )


def add_unique_sample_ids(
    frame: pd.DataFrame,
    *,
    num_partitions: int = 1,
    generator: Optional[UniqueSampleIdGenerator] = None,
) -> pd.DataFrame:
    """Return a copy of `frame` with an int64 `unique_sample_id` column."""
    if num_partitions < 1:
        raise ValueError(f"num_partitions must be >= 1, got {num_partitions}")
    if UNIQUE_SAMPLE_ID in frame.columns:
        raise ValueError(f"Input data already has a '{UNIQUE_SAMPLE_ID}' column")
    gen = generator if generator is not None else UniqueSampleIdGenerator()

    ids: List[np.ndarray] = []
    for positions in np.array_split(np.arange(len(frame)), num_partitions):
        ids.append(gen.next_partition_ids(int(positions.shape[0])))

    out = frame.copy()
    out[UNIQUE_SAMPLE_ID] = np.concatenate(ids) if ids else np.zeros(0, dtype=np.int64)
    return out


def _is_null(value: Any) -> bool:
    if value is None or value is pd.NA:
        return True
    if isinstance(value, (float, np.floating)):
        return math.isnan(value)
    return False


def _restore_integer_id_columns(frame: pd.DataFrame, columns: Iterable[Optional[str]]) -> pd.DataFrame:
    """
    Integer id columns holding nulls arrive as float64 (42 -> 42.0). Cast the ones whose
    values are all whole numbers back to nullable Int64 so ids stringify as "42".
    """
    out = frame
    for c in columns:
        if c is None or c not in frame.columns or not pd.api.types.is_float_dtype(frame[c].dtype):
            continue
        values = frame[c].dropna().to_numpy(dtype=np.float64)
        if values.size == 0 or not np.all(np.mod(values, 1.0) == 0.0):
            continue
        if out is frame:
            out = frame.copy()
        out[c] = frame[c].astype("Int64")
    return out


def _as_float(value: Any, *, field: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Field '{field}' is not numeric: {value!r}") from e


def _metadata_map(value: Any) -> Optional[Mapping[str, Any]]:
    if _is_null(value):
        return None
    if isinstance(value, Mapping):
        return value
    # pyarrow map<string,string> columns arrive in pandas as lists of (key, value) pairs
    if isinstance(value, (list, tuple, np.ndarray)):
        return {str(k): v for k, v in value}
    raise ValueError(f"Metadata map field has unsupported type {type(value).__name__}")


def get_id_tag_to_value_map_from_row(row: Mapping[str, Any], plan: ExtractionPlan) -> Dict[str, str]:
    """
    Resolve every id tag of the plan for one row: a top-level field of the same name
    wins, otherwise the tag is looked up in the metadata map.
    """
    meta: Optional[Mapping[str, Any]] = None
    if plan.meta_data_map_column is not None:
        meta = _metadata_map(row.get(plan.meta_data_map_column))

    out: Dict[str, str] = {}
    for tag in plan.id_tags:
        value: Any = None
        if tag in plan.id_tags_in_row:
            value = row.get(tag)
        if _is_null(value) and meta is not None:
            value = meta.get(tag)
        if _is_null(value):
            raise ValueError(f"Cannot find id in either record field: {tag} or in metadataMap with key: #{tag}")
        # random effect ids are always strings
        out[tag] = str(value)
    return out


def game_datum_from_row(row: Mapping[str, Any], plan: ExtractionPlan) -> GameDatum:
    """Build one datum from one row. Pure: depends only on the row and the (shared) plan."""
    features = {}
    for shard in plan.feature_shards:
        try:
            features[shard] = as_sparse_vector(row.get(shard))
        except ValueError as e:
            raise ValueError(f"Invalid feature vector in shard '{shard}': {e}") from e

    response = float("nan")
    if plan.response_column is not None:
        raw = row.get(plan.response_column)
        if _is_null(raw):
            if plan.is_response_required:
                raise ValueError(f"Response is required but missing (column '{plan.response_column}')")
        else:
            response = _as_float(raw, field=plan.response_column)

    offset = DEFAULT_OFFSET
    if plan.offset_column is not None and not _is_null(row.get(plan.offset_column)):
        offset = _as_float(row.get(plan.offset_column), field=plan.offset_column)

    weight = DEFAULT_WEIGHT
    if plan.weight_column is not None and not _is_null(row.get(plan.weight_column)):
        weight = _as_float(row.get(plan.weight_column), field=plan.weight_column)

    id_tags = get_id_tag_to_value_map_from_row(row, plan)
    if plan.uid_column is not None and not _is_null(row.get(plan.uid_column)):
        id_tags[UID_ID_TAG] = str(row.get(plan.uid_column))

    return GameDatum(response=response, offset=offset, weight=weight, feature_shards=features, id_tags=id_tags)


def _convert_partition(rows: Sequence[Mapping[str, Any]], shared_plan: Broadcast[ExtractionPlan]) -> GameData:
    plan = shared_plan.value
    out: GameData = {}
    for row in rows:
        uid = int(row[UNIQUE_SAMPLE_ID])
        try:
            out[uid] = game_datum_from_row(row, plan)
        except ValueError as e:
            raise ValueError(f"Failed to convert record {UNIQUE_SAMPLE_ID}={uid}: {e}") from e
    return out


def get_game_dataset_from_dataframe(
    frame: pd.DataFrame,
    *,
    feature_shards: Iterable[str],
    id_tags: Iterable[str],
    is_response_required: bool,
    input_columns: Optional[InputColumnsNames] = None,
    num_partitions: int = 1,
    generator: Optional[UniqueSampleIdGenerator] = None,
) -> GameData:
    """
    Convert a tabular source into GAME datums keyed by freshly assigned unique sample ids.

    feature_shards: columns holding one sparse feature vector each
    id_tags: grouping keys required on every record (row field or metadata map entry)
    is_response_required: training data needs a response; scoring data does not

    All-or-nothing: the first record that can't be converted aborts the whole call.
    """
    columns = input_columns if input_columns is not None else InputColumnsNames()
    tags: Set[str] = {str(t) for t in id_tags}
    validate_id_tags(tags, columns)

    with_ids = add_unique_sample_ids(frame, num_partitions=num_partitions, generator=generator)
    plan = ExtractionPlan.resolve(
        with_ids.columns,
        feature_shards=feature_shards,
        id_tags=tags,
        is_response_required=is_response_required,
        input_columns=columns,
    )
    with_ids = _restore_integer_id_columns(with_ids, [*sorted(plan.id_tags_in_row), plan.uid_column])

    data: GameData = {}
    with Broadcast(plan) as shared_plan:
        for part in np.array_split(np.arange(len(with_ids)), num_partitions):
            rows = with_ids.iloc[part].to_dict(orient="records")
            data.update(_convert_partition(rows, shared_plan))

    logger.info(
        "Converted %s records: feature_shards=%s id_tags=%s partitions=%s response_required=%s",
        len(data),
        list(plan.feature_shards),
        list(plan.id_tags),
        num_partitions,
        plan.is_response_required,
    )
    return data


def read_game_frame(path: Path, *, columns: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """Read a parquet file (or dataset directory) of input records into pandas."""
    if not Path(path).exists():
        raise FileNotFoundError(f"Missing input data: {path}")
    tbl = pq.read_table(Path(path), columns=list(columns) if columns is not None else None)
    # keep int ids with nulls as python ints instead of float64
    return tbl.to_pandas(integer_object_nulls=True)
