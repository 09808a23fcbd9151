from __future__ import annotations

import math
from pathlib import Path

import numpy as np
import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq
import pytest

from game_ml.data.ids import UNIQUE_SAMPLE_ID, UniqueSampleIdGenerator
from game_ml.data.ingestion import (
    ExtractionPlan,
    add_unique_sample_ids,
    game_datum_from_row,
    get_game_dataset_from_dataframe,
    get_id_tag_to_value_map_from_row,
    read_game_frame,
    validate_id_tags,
)
from game_ml.data.input_columns import InputColumnsNames


def _frame() -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "response": 1.0,
                "offset": 0.5,
                "weight": 2.0,
                "uid": "a",
                "userId": "u1",
                "metadataMap": {"itemId": "i9"},
                "global": [1.0, 0.0, 3.0],
            },
            {
                "response": 0.0,
                "offset": None,
                "weight": None,
                "uid": "b",
                "userId": None,
                "metadataMap": {"userId": "u2", "itemId": "i7"},
                "global": [1.0, 2.0, 0.0],
            },
        ]
    )


def test_unique_sample_ids_encode_partition_and_row() -> None:
    gen = UniqueSampleIdGenerator()
    assert gen.ids_for_partition(0, 3).tolist() == [0, 1, 2]
    assert gen.ids_for_partition(2, 2).tolist() == [2 << 33, (2 << 33) + 1]

    frame = pd.DataFrame({"x": range(4)})
    out = add_unique_sample_ids(frame, num_partitions=2)
    assert out[UNIQUE_SAMPLE_ID].tolist() == [0, 1, 1 << 33, (1 << 33) + 1]
    assert UNIQUE_SAMPLE_ID not in frame.columns
    assert out[UNIQUE_SAMPLE_ID].is_unique


def test_game_dataset_reads_fields_defaults_and_id_tags() -> None:
    data = get_game_dataset_from_dataframe(
        _frame(), feature_shards=["global"], id_tags=["userId", "itemId"], is_response_required=True
    )
    assert sorted(data) == [0, 1]

    first, second = data[0], data[1]
    assert first.response == 1.0
    assert first.offset == 0.5
    assert first.weight == 2.0
    assert first.id_tags == {"userId": "u1", "itemId": "i9", "uid": "a"}
    assert first.features("global").toarray().tolist() == [[1.0, 0.0, 3.0]]

    # null offset/weight fall back to defaults; null row field falls back to the metadata map
    assert second.offset == 0.0
    assert second.weight == 1.0
    assert second.id_tag("userId") == "u2"
    assert second.id_tag("itemId") == "i7"


def test_missing_id_tag_is_an_error() -> None:
    frame = _frame()
    frame["metadataMap"] = [{"itemId": "i9"}, {"itemId": "i7"}]
    with pytest.raises(ValueError, match="Cannot find id in either record field: userId"):
        get_game_dataset_from_dataframe(
            frame, feature_shards=["global"], id_tags=["userId"], is_response_required=True
        )


def test_required_columns_cannot_be_id_tags() -> None:
    with pytest.raises(ValueError, match="Cannot use required columns"):
        validate_id_tags(["userId", "weight"], InputColumnsNames())
    with pytest.raises(ValueError, match="Cannot use required columns"):
        get_game_dataset_from_dataframe(
            _frame(), feature_shards=["global"], id_tags=["response"], is_response_required=True
        )
    # renamed columns move the reserved set with them
    validate_id_tags(["response"], InputColumnsNames(response="label"))


def test_response_only_required_for_training() -> None:
    frame = _frame().drop(columns=["response"])
    with pytest.raises(ValueError, match="Response column 'response' is required"):
        get_game_dataset_from_dataframe(frame, feature_shards=["global"], id_tags=[], is_response_required=True)

    data = get_game_dataset_from_dataframe(frame, feature_shards=["global"], id_tags=[], is_response_required=False)
    assert all(math.isnan(d.response) and not d.has_response for d in data.values())


def test_custom_input_column_names() -> None:
    frame = _frame().rename(columns={"response": "label", "metadataMap": "meta"})
    columns = InputColumnsNames.with_overrides({"RESPONSE": "label", "metadataMap": "meta"})
    data = get_game_dataset_from_dataframe(
        frame, feature_shards=["global"], id_tags=["userId"], is_response_required=True, input_columns=columns
    )
    assert [d.response for d in data.values()] == [1.0, 0.0]
    assert data[1].id_tag("userId") == "u2"

    with pytest.raises(ValueError, match="Unknown input column"):
        InputColumnsNames.with_overrides({"label": "y"})


def test_missing_feature_shard_column() -> None:
    with pytest.raises(ValueError, match="missing feature shard columns"):
        get_game_dataset_from_dataframe(_frame(), feature_shards=["nope"], id_tags=[], is_response_required=True)


def test_row_conversion_is_pure_over_a_resolved_plan() -> None:
    frame = add_unique_sample_ids(_frame())
    plan = ExtractionPlan.resolve(
        frame.columns,
        feature_shards=["global"],
        id_tags=["userId"],
        is_response_required=True,
        input_columns=InputColumnsNames(),
    )
    row = frame.to_dict(orient="records")[0]
    assert get_id_tag_to_value_map_from_row(row, plan) == {"userId": "u1"}
    a = game_datum_from_row(row, plan)
    b = game_datum_from_row(row, plan)
    assert a.id_tags == b.id_tags
    assert (a.features("global") != b.features("global")).nnz == 0


def test_sparse_vector_structs() -> None:
    frame = pd.DataFrame(
        [
            {"response": 1.0, "global": {"size": 4, "indices": [3, 1], "values": [5.0, 2.0]}},
            {"response": 0.0, "global": {"size": 4, "indices": [9], "values": [1.0]}},
        ]
    )
    with pytest.raises(ValueError, match="index out of range"):
        get_game_dataset_from_dataframe(frame, feature_shards=["global"], id_tags=[], is_response_required=True)

    data = get_game_dataset_from_dataframe(
        frame.iloc[:1], feature_shards=["global"], id_tags=[], is_response_required=True
    )
    assert data[0].features("global").toarray().tolist() == [[0.0, 2.0, 0.0, 5.0]]


def test_read_game_frame_parquet_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "records.parquet"
    _frame().drop(columns=["metadataMap"]).to_parquet(path, index=False)
    frame = read_game_frame(path)
    data = get_game_dataset_from_dataframe(
        frame.iloc[:1], feature_shards=["global"], id_tags=["userId"], is_response_required=True
    )
    assert np.allclose(data[0].features("global").toarray(), [[1.0, 0.0, 3.0]])

    with pytest.raises(FileNotFoundError):
        read_game_frame(tmp_path / "missing.parquet")


def _int_id_frame() -> pd.DataFrame:
    # pandas stores int columns with a null as float64: userId -> [42.0, nan]
    return pd.DataFrame(
        {
            "response": [1.0, 0.0],
            "uid": [7, None],
            "userId": [42, None],
            "metadataMap": [{}, {"userId": "43"}],
            "global": [[1.0, 2.0], [0.0, 1.0]],
        }
    )


def test_integer_id_columns_with_nulls_keep_integer_strings() -> None:
    frame = _int_id_frame()
    assert frame["userId"].dtype == np.float64

    data = get_game_dataset_from_dataframe(
        frame, feature_shards=["global"], id_tags=["userId"], is_response_required=True
    )
    assert data[0].id_tags == {"userId": "42", "uid": "7"}
    assert data[1].id_tags == {"userId": "43"}
    # the caller's frame is left as it was
    assert frame["userId"].dtype == np.float64


def test_fractional_float_id_column_is_not_rounded() -> None:
    frame = _int_id_frame()
    frame["userId"] = [4.5, None]
    data = get_game_dataset_from_dataframe(
        frame, feature_shards=["global"], id_tags=["userId"], is_response_required=True
    )
    assert data[0].id_tag("userId") == "4.5"


def test_parquet_integer_id_columns_with_nulls(tmp_path: Path) -> None:
    path = tmp_path / "int_ids.parquet"
    table = pa.table(
        {
            "response": pa.array([1.0, 0.0], type=pa.float64()),
            "uid": pa.array([7, None], type=pa.int64()),
            "userId": pa.array([42, None], type=pa.int64()),
            "metadataMap": pa.array([[], [("userId", "43")]], type=pa.map_(pa.string(), pa.string())),
            "global": pa.array([[1.0, 2.0], [0.0, 1.0]], type=pa.list_(pa.float64())),
        }
    )
    pq.write_table(table, path)

    frame = read_game_frame(path)
    assert frame["userId"].tolist() == [42, None]

    data = get_game_dataset_from_dataframe(
        frame, feature_shards=["global"], id_tags=["userId"], is_response_required=True
    )
    assert data[0].id_tags == {"userId": "42", "uid": "7"}
    assert data[1].id_tags == {"userId": "43"}

    # pandas' own parquet writer stores the float64 columns; ids still come back whole
    _int_id_frame().drop(columns=["metadataMap"]).iloc[:1].to_parquet(tmp_path / "float_ids.parquet", index=False)
    data = get_game_dataset_from_dataframe(
        read_game_frame(tmp_path / "float_ids.parquet"),
        feature_shards=["global"],
        id_tags=["userId"],
        is_response_required=True,
    )
    assert data[0].id_tags == {"userId": "42", "uid": "7"}
