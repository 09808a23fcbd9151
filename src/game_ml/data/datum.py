from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Dict, Mapping

import scipy.sparse as sp

DEFAULT_OFFSET = 0.0
DEFAULT_WEIGHT = 1.0

# unique sample id -> datum
GameData = Dict[int, "GameDatum"]


@dataclass(frozen=True)
class GameDatum:
    """
    One training/scoring record.

    feature_shards: shard id -> `1 x d` CSR row; each coordinate reads exactly one shard.
    id_tags: grouping key -> value (e.g. "userId" -> "u42"), used to route the record to
             its random-effect sub-problem.
    """

    response: float
    offset: float = DEFAULT_OFFSET
    weight: float = DEFAULT_WEIGHT
    feature_shards: Mapping[str, sp.csr_matrix] = field(default_factory=dict)
    id_tags: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # read-only views so a shared datum can't be edited through its mappings
        object.__setattr__(self, "feature_shards", MappingProxyType(dict(self.feature_shards)))
        object.__setattr__(self, "id_tags", MappingProxyType(dict(self.id_tags)))

    @property
    def has_response(self) -> bool:
        return not math.isnan(self.response)

    def features(self, shard_id: str) -> sp.csr_matrix:
        try:
            return self.feature_shards[shard_id]
        except KeyError:
            raise KeyError(
                f"Datum has no feature shard '{shard_id}' (available: {sorted(self.feature_shards)})"
            ) from None

    def id_tag(self, tag: str) -> str:
        try:
            return self.id_tags[tag]
        except KeyError:
            raise KeyError(f"Datum has no id tag '{tag}' (available: {sorted(self.id_tags)})") from None

    def with_offset(self, offset: float) -> "GameDatum":
        return replace(self, offset=float(offset))
