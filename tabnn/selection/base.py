"""Shared skeleton of the neurons and inputs selection algorithms."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Tuple

import numpy as np

from ..core.errors import InvalidConfiguration, NumericalFailure, UnboundReference
from ..core.types import Array, TrainingResults
from ..data.dataset import InstanceUse
from ..training.strategy import TrainingStrategy


class SelectionStoppingCondition(Enum):
    MAXIMUM_TIME = "MaximumTime"
    SELECTION_ERROR_GOAL = "SelectionErrorGoal"
    MAXIMUM_SELECTION_FAILURES = "MaximumSelectionFailures"
    MAXIMUM_INPUTS = "MaximumInputs"
    MINIMUM_INPUTS = "MinimumInputs"
    MAXIMUM_GENERATIONS = "MaximumGenerations"
    ALGORITHM_FINISHED = "AlgorithmFinished"
    CANCELLED = "Cancelled"


@dataclass
class SelectionRecord:
    """One trained candidate and its scores."""

    candidate: Any
    training_loss: float
    selection_loss: float
    stopping_condition: str
    parameters: Array = field(repr=False, default_factory=lambda: np.zeros(0))

    def to_dict(self) -> Dict[str, Any]:
        candidate = list(self.candidate) if isinstance(self.candidate, (tuple, list)) else self.candidate
        return {
            "candidate": candidate,
            "training_loss": float(self.training_loss),
            "selection_loss": float(self.selection_loss),
            "stopping_condition": self.stopping_condition,
        }


@dataclass
class SelectionResults:
    method: str
    records: List[SelectionRecord] = field(default_factory=list)
    optimum: SelectionRecord | None = None
    stopping_condition: SelectionStoppingCondition = SelectionStoppingCondition.ALGORITHM_FINISHED
    elapsed_time: float = 0.0

    @property
    def optimal_selection_loss(self) -> float:
        return math.inf if self.optimum is None else float(self.optimum.selection_loss)

    @property
    def optimal_training_loss(self) -> float:
        return math.inf if self.optimum is None else float(self.optimum.training_loss)

    @property
    def optimal_candidate(self) -> Any:
        return None if self.optimum is None else self.optimum.candidate

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "stopping_condition": self.stopping_condition.value,
            "elapsed_time": float(self.elapsed_time),
            "optimum": None if self.optimum is None else self.optimum.to_dict(),
            "records": [record.to_dict() for record in self.records],
        }


def check_common(trials: int, max_selection_failures: int, max_time: float, selection_error_goal: float) -> None:
    if trials < 1:
        raise InvalidConfiguration(f"trials must be at least 1, got {trials}")
    if max_selection_failures < 1:
        raise InvalidConfiguration(f"max_selection_failures must be at least 1, got {max_selection_failures}")
    if max_time < 0:
        raise InvalidConfiguration(f"max_time must be non-negative, got {max_time}")
    if selection_error_goal < 0:
        raise InvalidConfiguration(f"selection_error_goal must be non-negative, got {selection_error_goal}")


class CandidateSearch:
    """Trains candidates through a borrowed training strategy.

    Subclasses snapshot what they change, train each candidate ``trials``
    times from fresh random parameters and restore before the next one.
    """

    method: str = ""

    def __init__(self, strategy: TrainingStrategy | None, config: Any, display: bool = True) -> None:
        if strategy is None:
            raise UnboundReference(f"{type(self).__name__} has no training strategy")
        config.validate()
        self.strategy = strategy
        self.config = config
        self.display = display
        self._seed_counter = 0
        self._start = 0.0

    @property
    def network(self):
        if self.strategy.network is None:
            raise UnboundReference("Training strategy has no neural network")
        return self.strategy.network

    @property
    def data_set(self):
        if self.strategy.data_set is None:
            raise UnboundReference("Training strategy has no data set")
        return self.strategy.data_set

    def _next_seed(self) -> int:
        self._seed_counter += 1
        return int(self.config.seed) + self._seed_counter

    def _elapsed(self) -> float:
        return time.perf_counter() - self._start

    @property
    def cancelled(self) -> bool:
        return self.strategy.cancellation.cancelled

    def _train_once(self) -> Tuple[TrainingResults | None, float, float]:
        try:
            results = self.strategy.perform_training()
        except NumericalFailure:
            return None, math.inf, math.inf
        if not results.converged:
            return results, math.inf, math.inf
        try:
            selection = self.strategy.loss_index().calculate_error(InstanceUse.SELECTION)
        except NumericalFailure:
            selection = math.inf
        if not np.isfinite(selection):
            selection = math.inf
        return results, float(results.final_training_loss), float(selection)

    def evaluate(self, candidate: Any) -> SelectionRecord:
        """Train the current configuration and keep the best of ``trials`` runs."""

        network = self.network
        best: SelectionRecord | None = None
        for _ in range(self.config.trials):
            network.set_parameters_random(self._next_seed())
            results, training, selection = self._train_once()
            condition = "NumericalFailure" if results is None else results.stopping_condition.value
            record = SelectionRecord(candidate, training, selection, condition, network.get_parameters())
            if best is None or record.selection_loss < best.selection_loss:
                best = record
            if self.cancelled:
                break
        if self.display:
            print(
                f"{self.method}: candidate {best.to_dict()['candidate']} "
                f"training loss {best.training_loss:.6g}, selection loss {best.selection_loss:.6g}"
            )
        return best

    def _stop_reason(self, best: SelectionRecord | None, failures: int) -> SelectionStoppingCondition | None:
        config = self.config
        if self.cancelled:
            return SelectionStoppingCondition.CANCELLED
        if best is not None and best.selection_loss <= config.selection_error_goal:
            return SelectionStoppingCondition.SELECTION_ERROR_GOAL
        if failures >= config.max_selection_failures:
            return SelectionStoppingCondition.MAXIMUM_SELECTION_FAILURES
        if self._elapsed() >= config.max_time:
            return SelectionStoppingCondition.MAXIMUM_TIME
        return None

    def _finish(self, results: SelectionResults) -> SelectionResults:
        results.elapsed_time = self._elapsed()
        if self.display:
            print(f"{self.method} stopped: {results.stopping_condition.value}")
            if results.optimum is not None:
                print(
                    f"Optimal candidate {results.optimum.to_dict()['candidate']} "
                    f"with selection loss {results.optimum.selection_loss:.6g}"
                )
        return results


def improves(record: SelectionRecord, best: SelectionRecord | None) -> bool:
    return best is None or record.selection_loss < best.selection_loss


__all__ = [
    "CandidateSearch",
    "SelectionRecord",
    "SelectionResults",
    "SelectionStoppingCondition",
    "check_common",
    "improves",
]
