"""Genetic algorithm over binary input masks."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Tuple

import numpy as np

from ..core.errors import InvalidConfiguration
from ..core.types import SCALAR, Array, parse_enum
from ..training.optimizers.evolutionary import SelectionMethod, elite_indices, select_parents
from .base import SelectionRecord, SelectionResults, SelectionStoppingCondition, check_common, improves
from .inputs import InputsSearch


class CrossoverMethod(Enum):
    # Each gene comes from either parent with equal probability.
    INTERMEDIATE = "Intermediate"
    # Genes before a random cut come from the first parent, the rest from the second.
    LINE = "Line"


@dataclass
class GeneticAlgorithmConfig:
    population_size: int = 10
    maximum_generations: int = 10
    selection_method: SelectionMethod = SelectionMethod.ROULETTE_WHEEL
    crossover_method: CrossoverMethod = CrossoverMethod.INTERMEDIATE
    mutation_rate: float = 0.05
    elitism_size: int = 2
    tournament_size: int = 2
    initial_probability: float = 0.5
    trials: int = 1
    selection_error_goal: float = 0.0
    max_selection_failures: int = 100
    max_time: float = 3600.0
    seed: int = 0

    def __post_init__(self) -> None:
        self.selection_method = parse_enum(SelectionMethod, self.selection_method)
        self.crossover_method = parse_enum(CrossoverMethod, self.crossover_method)
        self.validate()

    def validate(self) -> None:
        check_common(self.trials, self.max_selection_failures, self.max_time, self.selection_error_goal)
        if self.population_size < 2:
            raise InvalidConfiguration(f"population_size must be at least 2, got {self.population_size}")
        if self.maximum_generations < 1:
            raise InvalidConfiguration(f"maximum_generations must be at least 1, got {self.maximum_generations}")
        if not 0 <= self.elitism_size < self.population_size:
            raise InvalidConfiguration(
                f"elitism_size must lie in [0, {self.population_size}), got {self.elitism_size}"
            )
        if not 0.0 <= self.mutation_rate <= 1.0:
            raise InvalidConfiguration(f"mutation_rate must lie in [0, 1], got {self.mutation_rate}")
        if not 0.0 < self.initial_probability <= 1.0:
            raise InvalidConfiguration(f"initial_probability must lie in (0, 1], got {self.initial_probability}")
        if self.tournament_size < 1:
            raise InvalidConfiguration(f"tournament_size must be at least 1, got {self.tournament_size}")

    def to_tree(self) -> Dict[str, Any]:
        return {
            "population_size": self.population_size,
            "maximum_generations": self.maximum_generations,
            "selection_method": self.selection_method.value,
            "crossover_method": self.crossover_method.value,
            "mutation_rate": self.mutation_rate,
            "elitism_size": self.elitism_size,
            "tournament_size": self.tournament_size,
            "initial_probability": self.initial_probability,
            "trials": self.trials,
            "selection_error_goal": self.selection_error_goal,
            "max_selection_failures": self.max_selection_failures,
            "max_time": self.max_time,
            "seed": self.seed,
        }

    @classmethod
    def from_tree(cls, tree: Dict[str, Any]) -> "GeneticAlgorithmConfig":
        defaults = cls()
        return cls(
            population_size=int(tree.get("population_size", defaults.population_size)),
            maximum_generations=int(tree.get("maximum_generations", defaults.maximum_generations)),
            selection_method=tree.get("selection_method", defaults.selection_method.value),
            crossover_method=tree.get("crossover_method", defaults.crossover_method.value),
            mutation_rate=float(tree.get("mutation_rate", defaults.mutation_rate)),
            elitism_size=int(tree.get("elitism_size", defaults.elitism_size)),
            tournament_size=int(tree.get("tournament_size", defaults.tournament_size)),
            initial_probability=float(tree.get("initial_probability", defaults.initial_probability)),
            trials=int(tree.get("trials", defaults.trials)),
            selection_error_goal=float(tree.get("selection_error_goal", defaults.selection_error_goal)),
            max_selection_failures=int(tree.get("max_selection_failures", defaults.max_selection_failures)),
            max_time=float(tree.get("max_time", defaults.max_time)),
            seed=int(tree.get("seed", defaults.seed)),
        )


def crossover(first: Array, second: Array, method: CrossoverMethod, rng: np.random.Generator) -> Array:
    if method is CrossoverMethod.INTERMEDIATE:
        return np.where(rng.random(first.size) < 0.5, first, second)
    cut = int(rng.integers(1, first.size)) if first.size > 1 else 0
    return np.concatenate([first[:cut], second[cut:]])


def flip_bits(mask: Array, rate: float, rng: np.random.Generator) -> Array:
    return np.logical_xor(mask, rng.random(mask.size) < rate)


def ensure_active(mask: Array, rng: np.random.Generator) -> Array:
    """Masks select at least one input."""

    if not mask.any():
        mask = mask.copy()
        mask[int(rng.integers(mask.size))] = True
    return mask


class GeneticAlgorithm(InputsSearch):
    """Evolves input masks; fitness is minus the selection loss of the trained network."""

    method = "GeneticAlgorithm"

    def __init__(self, strategy, config: GeneticAlgorithmConfig | None = None, display: bool = True) -> None:
        super().__init__(strategy, config or GeneticAlgorithmConfig(), display)
        self._cache: Dict[Tuple[int, ...], SelectionRecord] = {}

    def _fitness(self, masks: Array, genes: Array, snapshot, uses, results: SelectionResults) -> Array:
        fitness = np.empty(masks.shape[0], dtype=SCALAR)
        for i, mask in enumerate(masks):
            indices = tuple(int(v) for v in genes[mask])
            if indices not in self._cache:
                record = self.evaluate_inputs(indices)
                self._restore(snapshot, uses)
                self._cache[indices] = record
                results.records.append(record)
            record = self._cache[indices]
            fitness[i] = -record.selection_loss if math.isfinite(record.selection_loss) else -math.inf
            if improves(record, results.optimum):
                results.optimum = record
            if self.cancelled:
                fitness[i + 1 :] = -math.inf
                break
        return fitness

    def perform(self) -> SelectionResults:
        config = self.config
        rng = np.random.default_rng(config.seed)
        snapshot, uses = self._begin()
        self._cache = {}
        genes = np.asarray(self.data_set.candidate_input_indices(), dtype=int)
        if genes.size == 0:
            raise InvalidConfiguration("Genetic algorithm: the data set has no candidate inputs")
        population = rng.random((config.population_size, genes.size)) < config.initial_probability
        population[0] = True
        population = np.array([ensure_active(mask, rng) for mask in population])

        results = SelectionResults(self.method)
        failures = 0
        previous_best = math.inf
        condition = SelectionStoppingCondition.MAXIMUM_GENERATIONS
        for generation in range(1, config.maximum_generations + 1):
            fitness = self._fitness(population, genes, snapshot, uses, results)
            if results.optimal_selection_loss < previous_best:
                previous_best = results.optimal_selection_loss
                failures = 0
            else:
                failures += 1
            if self.display:
                print(f"{self.method}: generation {generation} best selection loss {previous_best:.6g}")
            reason = self._stop_reason(results.optimum, failures)
            if reason is not None:
                condition = reason
                break
            if generation == config.maximum_generations:
                break
            elites = elite_indices(fitness, config.elitism_size)
            offspring = config.population_size - elites.size
            parents = select_parents(
                fitness, 2 * offspring, config.selection_method, rng, config.tournament_size
            ).reshape(offspring, 2)
            children = [
                ensure_active(
                    flip_bits(crossover(population[a], population[b], config.crossover_method, rng), config.mutation_rate, rng),
                    rng,
                )
                for a, b in parents
            ]
            population = np.vstack([population[elites]] + [child[None, :] for child in children])
        results.stopping_condition = condition
        return self._install(results, snapshot, uses)


__all__ = [
    "CrossoverMethod",
    "GeneticAlgorithm",
    "GeneticAlgorithmConfig",
    "crossover",
    "ensure_active",
    "flip_bits",
]
