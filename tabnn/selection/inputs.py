"""Greedy inputs selection: growing and pruning."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

from ..core.errors import InvalidConfiguration
from .base import (
    CandidateSearch,
    SelectionRecord,
    SelectionResults,
    SelectionStoppingCondition,
    check_common,
    improves,
)


@dataclass
class GrowingInputsConfig:
    minimum_inputs: int = 1
    # None allows every candidate input.
    maximum_inputs: int | None = None
    trials: int = 1
    selection_error_goal: float = 0.0
    max_selection_failures: int = 3
    max_time: float = 3600.0
    seed: int = 0

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        check_common(self.trials, self.max_selection_failures, self.max_time, self.selection_error_goal)
        if self.minimum_inputs < 1:
            raise InvalidConfiguration(f"minimum_inputs must be at least 1, got {self.minimum_inputs}")
        if self.maximum_inputs is not None and self.maximum_inputs < self.minimum_inputs:
            raise InvalidConfiguration("maximum_inputs must not be below minimum_inputs")

    def to_tree(self) -> Dict[str, Any]:
        return {
            "minimum_inputs": self.minimum_inputs,
            "maximum_inputs": self.maximum_inputs,
            "trials": self.trials,
            "selection_error_goal": self.selection_error_goal,
            "max_selection_failures": self.max_selection_failures,
            "max_time": self.max_time,
            "seed": self.seed,
        }

    @classmethod
    def from_tree(cls, tree: Dict[str, Any]):
        defaults = cls()
        maximum = tree.get("maximum_inputs", defaults.maximum_inputs)
        return cls(
            minimum_inputs=int(tree.get("minimum_inputs", defaults.minimum_inputs)),
            maximum_inputs=None if maximum is None else int(maximum),
            trials=int(tree.get("trials", defaults.trials)),
            selection_error_goal=float(tree.get("selection_error_goal", defaults.selection_error_goal)),
            max_selection_failures=int(tree.get("max_selection_failures", defaults.max_selection_failures)),
            max_time=float(tree.get("max_time", defaults.max_time)),
            seed=int(tree.get("seed", defaults.seed)),
        )


@dataclass
class PruningInputsConfig(GrowingInputsConfig):
    pass


class InputsSearch(CandidateSearch):
    """Candidates are sets of data-set column indices used as inputs."""

    def apply_inputs(self, indices: Sequence[int]) -> None:
        data_set = self.data_set
        data_set.set_input_indices(sorted(indices))
        self.network.set_inputs_number(
            len(indices),
            input_names=data_set.input_names(),
            descriptives=data_set.input_descriptives(),
            seed=self._next_seed(),
        )

    def evaluate_inputs(self, indices: Sequence[int]) -> SelectionRecord:
        self.apply_inputs(indices)
        return self.evaluate(tuple(sorted(indices)))

    def _begin(self):
        self._start = time.perf_counter()
        return self.network.snapshot(), self.data_set.variable_uses

    def _restore(self, snapshot, uses) -> None:
        self.network.restore(snapshot)
        self.data_set.set_variable_uses(uses)

    def _install(self, results: SelectionResults, snapshot, uses) -> SelectionResults:
        self._restore(snapshot, uses)
        if results.optimum is not None:
            self.apply_inputs(results.optimum.candidate)
            self.network.set_parameters(results.optimum.parameters)
        return self._finish(results)

    def _best_of(self, candidates: List[List[int]], snapshot, uses) -> SelectionRecord | None:
        step_best: SelectionRecord | None = None
        for indices in candidates:
            record = self.evaluate_inputs(indices)
            self._restore(snapshot, uses)
            if improves(record, step_best):
                step_best = record
            if self.cancelled:
                break
        return step_best

    def to_tree(self) -> Dict[str, Any]:
        return {"InputsSelection": {"method": self.method, "config": self.config.to_tree()}}


class GrowingInputs(InputsSearch):
    """Adds, one at a time, the input whose inclusion gives the lowest selection loss."""

    method = "GrowingInputs"

    def __init__(self, strategy, config: GrowingInputsConfig | None = None, display: bool = True) -> None:
        super().__init__(strategy, config or GrowingInputsConfig(), display)

    def perform(self) -> SelectionResults:
        config = self.config
        snapshot, uses = self._begin()
        remaining = list(self.data_set.candidate_input_indices())
        if not remaining:
            raise InvalidConfiguration("Growing inputs: the data set has no candidate inputs")
        maximum = len(remaining) if config.maximum_inputs is None else min(config.maximum_inputs, len(remaining))
        results = SelectionResults(self.method)
        selected: List[int] = []
        failures = 0
        condition = SelectionStoppingCondition.ALGORITHM_FINISHED
        while remaining:
            step_best = self._best_of([selected + [index] for index in remaining], snapshot, uses)
            if step_best is None:
                break
            added = next(index for index in step_best.candidate if index not in selected)
            selected.append(added)
            remaining.remove(added)
            results.records.append(step_best)
            if improves(step_best, results.optimum):
                results.optimum = step_best
                failures = 0
            elif len(selected) > config.minimum_inputs:
                failures += 1
            reason = self._stop_reason(results.optimum, failures)
            if reason is None and len(selected) >= maximum:
                reason = SelectionStoppingCondition.MAXIMUM_INPUTS
            if reason is not None:
                condition = reason
                break
        results.stopping_condition = condition
        return self._install(results, snapshot, uses)


class PruningInputs(InputsSearch):
    """Removes, one at a time, the input whose exclusion gives the lowest selection loss."""

    method = "PruningInputs"

    def __init__(self, strategy, config: PruningInputsConfig | None = None, display: bool = True) -> None:
        super().__init__(strategy, config or PruningInputsConfig(), display)

    def perform(self) -> SelectionResults:
        config = self.config
        snapshot, uses = self._begin()
        selected = list(self.data_set.input_indices())
        if not selected:
            raise InvalidConfiguration("Pruning inputs: the data set has no inputs")
        minimum = min(config.minimum_inputs, len(selected))
        results = SelectionResults(self.method)
        baseline = self.evaluate_inputs(selected)
        self._restore(snapshot, uses)
        results.records.append(baseline)
        results.optimum = baseline
        failures = 0
        condition = self._stop_reason(results.optimum, failures)
        if condition is None and len(selected) <= minimum:
            condition = SelectionStoppingCondition.MINIMUM_INPUTS
        while condition is None:
            candidates = [[index for index in selected if index != removed] for removed in selected]
            step_best = self._best_of(candidates, snapshot, uses)
            if step_best is None:
                condition = SelectionStoppingCondition.ALGORITHM_FINISHED
                break
            selected = list(step_best.candidate)
            results.records.append(step_best)
            if improves(step_best, results.optimum):
                results.optimum = step_best
                failures = 0
            else:
                failures += 1
            condition = self._stop_reason(results.optimum, failures)
            if condition is None and len(selected) <= minimum:
                condition = SelectionStoppingCondition.MINIMUM_INPUTS
        results.stopping_condition = condition
        return self._install(results, snapshot, uses)


__all__ = [
    "GrowingInputs",
    "GrowingInputsConfig",
    "InputsSearch",
    "PruningInputs",
    "PruningInputsConfig",
]
