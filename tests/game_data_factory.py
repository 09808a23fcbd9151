from __future__ import annotations

from typing import Dict, List, Optional

import numpy as np
import scipy.sparse as sp

from game_ml.data.datum import GameData, GameDatum


def make_game_data(rows: List[Dict], *, shards: Optional[List[str]] = None) -> GameData:
    """rows: dicts with response/offset/weight, one dense feature list per shard and id tags."""
    shards = shards if shards is not None else ["global"]
    data: GameData = {}
    for uid, r in enumerate(rows):
        data[uid] = GameDatum(
            response=float(r["response"]),
            offset=float(r.get("offset", 0.0)),
            weight=float(r.get("weight", 1.0)),
            feature_shards={s: sp.csr_matrix(np.asarray([r[s]], dtype=np.float64)) for s in shards},
            id_tags=dict(r.get("id_tags", {})),
        )
    return data
