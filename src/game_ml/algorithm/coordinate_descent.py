from __future__ import annotations

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

import numpy as np

from game_ml.algorithm.coordinate import Coordinate
from game_ml.data.datum import GameData
from game_ml.data.scores import CoordinateDataScores
from game_ml.glm.game_model import DatumScoringModel, GameModel
from game_ml.glm.task_type import TaskType
from game_ml.optimization.objective import pointwise_loss
from game_ml.utils.logging import get_coordinate_logger

_default_logger = logging.getLogger(__name__)


def evaluate_loss(task_type: TaskType | str, data: GameData, scores: CoordinateDataScores) -> float:
    """
    Weighted mean training loss of the combined model: margin = total score + original offset.

    Records without a response (scoring-only data) are ignored.
    """
    uids = np.fromiter(data.keys(), dtype=np.int64, count=len(data))
    labels = np.fromiter((d.response for d in data.values()), dtype=np.float64, count=len(data))
    offsets = np.fromiter((d.offset for d in data.values()), dtype=np.float64, count=len(data))
    weights = np.fromiter((d.weight for d in data.values()), dtype=np.float64, count=len(data))
    mask = np.isfinite(labels)
    if not mask.any():
        return float("nan")
    margins = scores.aligned(uids) + offsets
    loss = pointwise_loss(task_type, margins[mask], labels[mask])
    total_weight = float(weights[mask].sum())
    if total_weight <= 0.0:
        return float("nan")
    return float(np.dot(weights[mask], loss) / total_weight)


@dataclass(frozen=True)
class CoordinateDescentResult:
    model: GameModel
    scores: Mapping[str, CoordinateDataScores]
    trackers: List[Dict[str, Any]] = field(default_factory=list)
    loss_history: List[float] = field(default_factory=list)
    iterations_run: int = 0
    converged: bool = False


class CoordinateDescent:
    """
    Block coordinate descent over GAME coordinates.

    Coordinates are visited one at a time in insertion order. Before a coordinate trains,
    the scores of every *other* coordinate are summed into its residual; after it trains,
    its own score is refreshed. So at any point:

        total prediction(record) = sum of coordinate scores + record's original offset
    """

    def __init__(
        self,
        coordinates: Mapping[str, Coordinate],
        *,
        task_type: TaskType | str,
        descent_iterations: int = 1,
        convergence_tolerance: Optional[float] = None,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> None:
        if not coordinates:
            raise ValueError("CoordinateDescent needs at least one coordinate")
        if descent_iterations < 1:
            raise ValueError(f"descent_iterations must be >= 1, got {descent_iterations}")
        if convergence_tolerance is not None and convergence_tolerance < 0.0:
            raise ValueError(f"convergence_tolerance must be >= 0, got {convergence_tolerance}")
        self.coordinates: "OrderedDict[str, Coordinate]" = OrderedDict(coordinates)
        self.task_type = TaskType.parse(task_type)
        self.descent_iterations = int(descent_iterations)
        self.convergence_tolerance = convergence_tolerance
        self._logger = logger if logger is not None else _default_logger

    def _coordinate_logger(self, coordinate_id: str) -> logging.LoggerAdapter:
        base = self._logger.logger if isinstance(self._logger, logging.LoggerAdapter) else self._logger
        step = "-"
        if isinstance(self._logger, logging.LoggerAdapter) and self._logger.extra:
            step = str(self._logger.extra.get("step", "-"))
        return get_coordinate_logger(base, step=step, coordinate=coordinate_id)

    def run(self, training_data: GameData, initial_model: Optional[GameModel] = None) -> CoordinateDescentResult:
        models: "OrderedDict[str, DatumScoringModel]" = OrderedDict()
        scores: Dict[str, CoordinateDataScores] = {}
        if initial_model is not None:
            for cid, m in initial_model.items():
                if cid in self.coordinates:
                    models[cid] = m
                    scores[cid] = self.coordinates[cid].score(m)

        trackers: List[Dict[str, Any]] = []
        loss_history: List[float] = []
        converged = False
        iterations_run = 0

        for iteration in range(self.descent_iterations):
            iterations_run = iteration + 1
            for cid, coordinate in self.coordinates.items():
                clog = self._coordinate_logger(cid)
                t0 = time.perf_counter()

                residual = CoordinateDataScores.sum(s for other, s in scores.items() if other != cid)
                model, tracker = coordinate.train_model(models.get(cid), residual)
                model.validate_coefficients()

                models[cid] = model
                scores[cid] = coordinate.score(model)
                trackers.append(
                    {"iteration": iteration, "coordinate_id": cid, "tracker": tracker.model_dump(mode="json")}
                )
                clog.info(
                    "Trained coordinate: iteration=%s warm_start=%s duration_s=%.3f",
                    iteration,
                    iteration > 0 or (initial_model is not None and cid in initial_model),
                    time.perf_counter() - t0,
                )

            total = CoordinateDataScores.sum(scores.values())
            loss = evaluate_loss(self.task_type, training_data, total)
            loss_history.append(loss)
            self._logger.info("Finished descent iteration: iteration=%s training_loss=%.6f", iteration, loss)

            if self.convergence_tolerance is not None and len(loss_history) >= 2:
                prev, cur = loss_history[-2], loss_history[-1]
                rel = abs(prev - cur) / max(abs(prev), 1e-12)
                if rel <= self.convergence_tolerance:
                    converged = True
                    self._logger.info(
                        "Converged: iteration=%s relative_change=%.3e tolerance=%.3e",
                        iteration,
                        rel,
                        self.convergence_tolerance,
                    )
                    break

        game_model = GameModel(
            OrderedDict((cid, models[cid]) for cid in self.coordinates), task_type=self.task_type
        )
        return CoordinateDescentResult(
            model=game_model,
            scores=dict(scores),
            trackers=trackers,
            loss_history=loss_history,
            iterations_run=iterations_run,
            converged=converged,
        )
