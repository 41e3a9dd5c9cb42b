"""Incremental search over the width of the first hidden layer."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict

from ..core.errors import InvalidConfiguration
from .base import CandidateSearch, SelectionResults, SelectionStoppingCondition, check_common, improves


@dataclass
class IncrementalNeuronsConfig:
    minimum_neurons: int = 1
    maximum_neurons: int = 10
    step: int = 1
    trials: int = 1
    selection_error_goal: float = 0.0
    max_selection_failures: int = 10
    max_time: float = 3600.0
    seed: int = 0

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        check_common(self.trials, self.max_selection_failures, self.max_time, self.selection_error_goal)
        if self.minimum_neurons < 1:
            raise InvalidConfiguration(f"minimum_neurons must be at least 1, got {self.minimum_neurons}")
        if self.maximum_neurons < self.minimum_neurons:
            raise InvalidConfiguration("maximum_neurons must not be below minimum_neurons")
        if self.step < 1:
            raise InvalidConfiguration(f"step must be at least 1, got {self.step}")

    def to_tree(self) -> Dict[str, Any]:
        return {
            "minimum_neurons": self.minimum_neurons,
            "maximum_neurons": self.maximum_neurons,
            "step": self.step,
            "trials": self.trials,
            "selection_error_goal": self.selection_error_goal,
            "max_selection_failures": self.max_selection_failures,
            "max_time": self.max_time,
            "seed": self.seed,
        }

    @classmethod
    def from_tree(cls, tree: Dict[str, Any]) -> "IncrementalNeuronsConfig":
        defaults = cls()
        return cls(
            minimum_neurons=int(tree.get("minimum_neurons", defaults.minimum_neurons)),
            maximum_neurons=int(tree.get("maximum_neurons", defaults.maximum_neurons)),
            step=int(tree.get("step", defaults.step)),
            trials=int(tree.get("trials", defaults.trials)),
            selection_error_goal=float(tree.get("selection_error_goal", defaults.selection_error_goal)),
            max_selection_failures=int(tree.get("max_selection_failures", defaults.max_selection_failures)),
            max_time=float(tree.get("max_time", defaults.max_time)),
            seed=int(tree.get("seed", defaults.seed)),
        )


class IncrementalNeurons(CandidateSearch):
    """Trains widths ``minimum, minimum + step, ..., maximum`` and keeps the best."""

    method = "IncrementalNeurons"

    def __init__(self, strategy, config: IncrementalNeuronsConfig | None = None, display: bool = True) -> None:
        super().__init__(strategy, config or IncrementalNeuronsConfig(), display)

    def perform(self) -> SelectionResults:
        config = self.config
        network = self.network
        if not network.hidden_layer_indices():
            raise InvalidConfiguration("Incremental neurons: the neural network has no hidden layer")
        self._start = time.perf_counter()
        snapshot = network.snapshot()
        results = SelectionResults(self.method)
        failures = 0
        condition = SelectionStoppingCondition.ALGORITHM_FINISHED
        for neurons in range(config.minimum_neurons, config.maximum_neurons + 1, config.step):
            network.set_hidden_neurons(neurons, seed=self._next_seed())
            record = self.evaluate(neurons)
            network.restore(snapshot)
            results.records.append(record)
            if improves(record, results.optimum):
                results.optimum = record
                failures = 0
            else:
                failures += 1
            reason = self._stop_reason(results.optimum, failures)
            if reason is not None:
                condition = reason
                break
        results.stopping_condition = condition

        if results.optimum is not None:
            network.set_hidden_neurons(results.optimum.candidate)
            network.set_parameters(results.optimum.parameters)
        return self._finish(results)

    def to_tree(self) -> Dict[str, Any]:
        return {"NeuronsSelection": {"method": self.method, "config": self.config.to_tree()}}


__all__ = ["IncrementalNeurons", "IncrementalNeuronsConfig"]
