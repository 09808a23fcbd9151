from __future__ import annotations

import numpy as np
import pytest

from game_data_factory import make_game_data
from game_ml.data.datum import GameData


@pytest.fixture
def mixed_effect_data() -> GameData:
    """y = 1 + 2*x + bias(user); users u0..u2 have 6 records each, u3 has 2."""
    rng = np.random.default_rng(7)
    biases = {"u0": -1.0, "u1": 0.5, "u2": 1.5, "u3": -0.5}
    counts = {"u0": 6, "u1": 6, "u2": 6, "u3": 2}
    rows = []
    for user, n in counts.items():
        for _ in range(n):
            x = float(rng.normal())
            rows.append(
                {
                    "response": 1.0 + 2.0 * x + biases[user],
                    "global": [1.0, x],
                    "per_user": [1.0],
                    "id_tags": {"userId": user},
                }
            )
    return make_game_data(rows, shards=["global", "per_user"])
