from __future__ import annotations

import numpy as np
import pytest

from game_data_factory import make_game_data
from game_ml.data.datasets import FixedEffectDataset, RandomEffectDataset, shard_dimension
from game_ml.data.ids import UNIQUE_SAMPLE_ID
from game_ml.data.scores import CoordinateDataScores


def test_scores_combine_over_the_union_of_ids() -> None:
    a = CoordinateDataScores.from_arrays([1, 2], [1.0, 2.0])
    b = CoordinateDataScores.from_mapping({2: 10.0, 3: 5.0})

    total = a + b
    assert total.aligned(np.array([1, 2, 3, 4])).tolist() == [1.0, 12.0, 5.0, 0.0]
    assert (a - a).aligned(np.array([1, 2])).tolist() == [0.0, 0.0]
    assert (-b).get(3) == -5.0
    assert b.get(99) == 0.0
    assert 3 in b and 1 not in b
    assert CoordinateDataScores.sum([a, b]) == total
    assert len(CoordinateDataScores.sum([])) == 0


def test_scores_require_unique_ids() -> None:
    with pytest.raises(ValueError, match="unique sample ids"):
        CoordinateDataScores.from_arrays([1, 1], [0.0, 1.0])
    with pytest.raises(ValueError, match="length mismatch"):
        CoordinateDataScores.from_arrays([1, 2], [0.0])


def test_scores_to_frame() -> None:
    frame = CoordinateDataScores.from_arrays([5, 6], [0.5, 1.5]).to_frame(score_column="s")
    assert frame.columns.tolist() == [UNIQUE_SAMPLE_ID, "s"]
    assert frame["s"].tolist() == [0.5, 1.5]


def test_shard_dimension_must_be_consistent() -> None:
    data = make_game_data([{"response": 1.0, "global": [1.0, 2.0]}, {"response": 0.0, "global": [1.0]}])
    with pytest.raises(ValueError, match="inconsistent vector sizes"):
        shard_dimension(data, "global")


def test_fixed_effect_dataset_offsets_are_base_plus_residual(mixed_effect_data) -> None:
    data = {uid: d.with_offset(0.25) for uid, d in mixed_effect_data.items()}
    ds = FixedEffectDataset.from_game_data(data, feature_shard_id="global")
    assert ds.num_samples == 20
    assert ds.num_features == 2

    first = ds.update_offsets(CoordinateDataScores.from_mapping({0: 1.0}))
    second = first.update_offsets(CoordinateDataScores.from_mapping({1: 2.0}))
    assert first.data.offsets[:2].tolist() == [1.25, 0.25]
    # replaced, not accumulated
    assert second.data.offsets[:2].tolist() == [0.25, 2.25]
    assert ds.data.offsets[:2].tolist() == [0.25, 0.25]
    with pytest.raises(ValueError):
        second.data.offsets[0] = 0.0


def test_random_effect_dataset_groups_and_bounds(mixed_effect_data) -> None:
    ds = RandomEffectDataset.from_game_data(
        mixed_effect_data,
        random_effect_type="userId",
        feature_shard_id="per_user",
        active_data_lower_bound=3,
        active_data_upper_bound=4,
        seed=3,
    )
    assert list(ds.entities) == ["u0", "u1", "u2", "u3"]
    assert ds.trainable_entities == ["u0", "u1", "u2"]
    assert ds.num_skipped_entities == 1
    assert ds.num_samples == 20
    assert all(ds.training_data(e).num_samples == 4 for e in ds.trainable_entities)
    # every record is still scored
    assert ds.entities["u3"].num_samples == 2

    again = RandomEffectDataset.from_game_data(
        mixed_effect_data,
        random_effect_type="userId",
        feature_shard_id="per_user",
        active_data_lower_bound=3,
        active_data_upper_bound=4,
        seed=3,
    )
    for e in ds.trainable_entities:
        assert ds.training_data(e).uids.tolist() == again.training_data(e).uids.tolist()


def test_random_effect_dataset_rejects_bad_bounds(mixed_effect_data) -> None:
    with pytest.raises(ValueError, match="active_data_lower_bound"):
        RandomEffectDataset.from_game_data(
            mixed_effect_data,
            random_effect_type="userId",
            feature_shard_id="per_user",
            active_data_lower_bound=5,
            active_data_upper_bound=2,
        )
    with pytest.raises(KeyError, match="no id tag 'itemId'"):
        RandomEffectDataset.from_game_data(mixed_effect_data, random_effect_type="itemId", feature_shard_id="per_user")
