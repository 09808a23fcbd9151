from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from game_ml.data.input_columns import InputColumnsNames
from game_ml.glm.task_type import TaskType
from game_ml.optimization.optimizer import OptimizerConfig


@dataclass(frozen=True)
class CoordinateConfig:
    """
    One coordinate of the GAME model.

    random_effect_type=None makes a fixed-effect coordinate; otherwise one model is
    trained per distinct value of that id tag (e.g. "userId").
    """

    coordinate_id: str
    feature_shard_id: str
    random_effect_type: Optional[str] = None
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)

    # random effects only: entities with fewer records get no model; entities with
    # more records are down-sampled (seeded) for training
    active_data_lower_bound: Optional[int] = None
    active_data_upper_bound: Optional[int] = None

    @property
    def is_random_effect(self) -> bool:
        return self.random_effect_type is not None


@dataclass(frozen=True)
class GameTrainingConfig:
    input_path: Path
    coordinates: Tuple[CoordinateConfig, ...]
    task_type: str = TaskType.LOGISTIC_REGRESSION.value

    artifacts_root: Path = Path("artifacts")
    seed: int = 1337
    persist_step_outputs: bool = False
    log_level: str = "INFO"

    # descent
    descent_iterations: int = 1
    # stop early once the relative change of the training loss drops to this value
    convergence_tolerance: Optional[float] = None

    # ingestion
    input_columns: InputColumnsNames = field(default_factory=InputColumnsNames)
    num_partitions: int = 1

    def __post_init__(self) -> None:
        object.__setattr__(self, "task_type", TaskType.parse(self.task_type).value)
        object.__setattr__(self, "coordinates", tuple(self.coordinates))
        if not self.coordinates:
            raise ValueError("GameTrainingConfig needs at least one coordinate")
        ids = [c.coordinate_id for c in self.coordinates]
        dupes = sorted({c for c in ids if ids.count(c) > 1})
        if dupes:
            raise ValueError(f"Duplicate coordinate ids: {dupes}")
        if self.descent_iterations < 1:
            raise ValueError(f"descent_iterations must be >= 1, got {self.descent_iterations}")
        if self.num_partitions < 1:
            raise ValueError(f"num_partitions must be >= 1, got {self.num_partitions}")

    @property
    def feature_shards(self) -> List[str]:
        return sorted({c.feature_shard_id for c in self.coordinates})

    @property
    def id_tags(self) -> List[str]:
        """Grouping keys every training record must carry (one per random-effect type)."""
        return sorted({c.random_effect_type for c in self.coordinates if c.random_effect_type is not None})
