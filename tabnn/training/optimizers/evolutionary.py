"""Evolutionary algorithm over flat parameter vectors.

The fitness-proportional, rank and tournament selection operators defined
here are shared with the genetic inputs selection.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict

import numpy as np

from ...core.errors import InvalidConfiguration, NumericalFailure
from ...core.types import SCALAR, Array, parse_enum
from ...data.dataset import InstanceUse
from ..losses import LossIndex
from .base import OptimizerKind, OptimizerState, StepOutcome, gradient_norm, register_optimizer


class SelectionMethod(Enum):
    ROULETTE_WHEEL = "RouletteWheel"
    RANK_BASED = "RankBased"
    TOURNAMENT = "Tournament"


class RecombinationMethod(Enum):
    INTERMEDIATE = "Intermediate"
    LINE = "Line"


class MutationMethod(Enum):
    NORMAL = "Normal"
    UNIFORM = "Uniform"


# Intermediate and line recombination draw their mixing factor from this range.
RECOMBINATION_EXTENT = 0.25


def _roulette_weights(fitness: Array) -> Array:
    finite = np.isfinite(fitness)
    if not finite.any():
        return np.full(fitness.size, 1.0 / fitness.size)
    floor = float(np.min(fitness[finite]))
    shifted = np.where(finite, fitness - floor, 0.0)
    total = float(shifted.sum())
    if total <= 0.0:
        # Every finite individual is equally fit.
        return finite / finite.sum()
    return shifted / total


def _rank_weights(fitness: Array) -> Array:
    finite = np.isfinite(fitness)
    if not finite.any():
        return np.full(fitness.size, 1.0 / fitness.size)
    order = np.argsort(np.where(finite, fitness, -np.inf), kind="stable")
    ranks = np.empty(fitness.size, dtype=SCALAR)
    ranks[order] = np.arange(1, fitness.size + 1)
    ranks = np.where(finite, ranks, 0.0)
    return ranks / ranks.sum()


def select_parents(
    fitness: Array,
    count: int,
    method: SelectionMethod,
    rng: np.random.Generator,
    tournament_size: int = 2,
) -> Array:
    """Indices of ``count`` parents drawn from a population scored by ``fitness``.

    Higher fitness is better; non-finite fitness is never preferred over a
    finite one.
    """

    fitness = np.asarray(fitness, dtype=SCALAR)
    if method is SelectionMethod.TOURNAMENT:
        scores = np.where(np.isfinite(fitness), fitness, -np.inf)
        size = min(tournament_size, fitness.size)
        chosen = np.empty(count, dtype=int)
        for i in range(count):
            contestants = rng.choice(fitness.size, size=size, replace=False)
            chosen[i] = contestants[np.argmax(scores[contestants])]
        return chosen
    weights = _roulette_weights(fitness) if method is SelectionMethod.ROULETTE_WHEEL else _rank_weights(fitness)
    return rng.choice(fitness.size, size=count, replace=True, p=weights)


def elite_indices(fitness: Array, count: int) -> Array:
    scores = np.where(np.isfinite(fitness), fitness, -np.inf)
    return np.argsort(-scores, kind="stable")[:count]


def recombine(first: Array, second: Array, method: RecombinationMethod, rng: np.random.Generator) -> Array:
    low, high = -RECOMBINATION_EXTENT, 1.0 + RECOMBINATION_EXTENT
    if method is RecombinationMethod.INTERMEDIATE:
        mix = rng.uniform(low, high, size=first.shape)
    else:
        mix = rng.uniform(low, high)
    return first + mix * (second - first)


def mutate(individual: Array, method: MutationMethod, rate: float, scale: float, rng: np.random.Generator) -> Array:
    mask = rng.random(individual.shape) < rate
    if method is MutationMethod.NORMAL:
        noise = rng.normal(0.0, scale, size=individual.shape)
    else:
        noise = rng.uniform(-scale, scale, size=individual.shape)
    return individual + mask * noise


@dataclass
class EvolutionaryAlgorithmConfig:
    population_size: int = 20
    selection_method: SelectionMethod = SelectionMethod.ROULETTE_WHEEL
    recombination_method: RecombinationMethod = RecombinationMethod.INTERMEDIATE
    mutation_method: MutationMethod = MutationMethod.NORMAL
    mutation_rate: float = 0.1
    mutation_range: float = 0.1
    elitism_size: int = 2
    tournament_size: int = 2
    initial_range: float = 1.0
    seed: int = 0

    def __post_init__(self) -> None:
        self.selection_method = parse_enum(SelectionMethod, self.selection_method)
        self.recombination_method = parse_enum(RecombinationMethod, self.recombination_method)
        self.mutation_method = parse_enum(MutationMethod, self.mutation_method)
        self.validate()

    def validate(self) -> None:
        if self.population_size < 2:
            raise InvalidConfiguration(f"population_size must be at least 2, got {self.population_size}")
        if not 0 <= self.elitism_size < self.population_size:
            raise InvalidConfiguration(
                f"elitism_size must lie in [0, {self.population_size}), got {self.elitism_size}"
            )
        if not 0.0 <= self.mutation_rate <= 1.0:
            raise InvalidConfiguration(f"mutation_rate must lie in [0, 1], got {self.mutation_rate}")
        if self.mutation_range < 0 or self.initial_range <= 0:
            raise InvalidConfiguration("mutation_range must be non-negative and initial_range positive")
        if self.tournament_size < 1:
            raise InvalidConfiguration(f"tournament_size must be at least 1, got {self.tournament_size}")

    def to_tree(self) -> Dict[str, Any]:
        return {
            "population_size": self.population_size,
            "selection_method": self.selection_method.value,
            "recombination_method": self.recombination_method.value,
            "mutation_method": self.mutation_method.value,
            "mutation_rate": self.mutation_rate,
            "mutation_range": self.mutation_range,
            "elitism_size": self.elitism_size,
            "tournament_size": self.tournament_size,
            "initial_range": self.initial_range,
            "seed": self.seed,
        }

    @classmethod
    def from_tree(cls, tree: Dict[str, Any]) -> "EvolutionaryAlgorithmConfig":
        defaults = cls()
        return cls(
            population_size=int(tree.get("population_size", defaults.population_size)),
            selection_method=tree.get("selection_method", defaults.selection_method.value),
            recombination_method=tree.get("recombination_method", defaults.recombination_method.value),
            mutation_method=tree.get("mutation_method", defaults.mutation_method.value),
            mutation_rate=float(tree.get("mutation_rate", defaults.mutation_rate)),
            mutation_range=float(tree.get("mutation_range", defaults.mutation_range)),
            elitism_size=int(tree.get("elitism_size", defaults.elitism_size)),
            tournament_size=int(tree.get("tournament_size", defaults.tournament_size)),
            initial_range=float(tree.get("initial_range", defaults.initial_range)),
            seed=int(tree.get("seed", defaults.seed)),
        )


@dataclass
class EvolutionaryAlgorithmState(OptimizerState):
    population: Array | None = None
    fitness: Array | None = None
    rng: np.random.Generator | None = None


def _population_loss(loss: LossIndex, population: Array, batch) -> Array:
    losses = np.empty(population.shape[0], dtype=SCALAR)
    for i, individual in enumerate(population):
        try:
            losses[i] = loss.loss_at(individual, batch)
        except NumericalFailure:
            losses[i] = math.inf
    return losses


@register_optimizer(OptimizerKind.EVOLUTIONARY_ALGORITHM, EvolutionaryAlgorithmConfig)
class EvolutionaryAlgorithm:
    """One epoch is one generation; the fittest individual is installed after each."""

    def __init__(self, config: EvolutionaryAlgorithmConfig | None = None) -> None:
        self.config = config or EvolutionaryAlgorithmConfig()
        self.config.validate()

    def _install_best(self, loss: LossIndex, population: Array, fitness: Array, batch):
        best = int(elite_indices(fitness, 1)[0])
        if not np.isfinite(fitness[best]):
            raise NumericalFailure("Evolutionary algorithm: no individual has a finite loss")
        loss.network.set_parameters(population[best])
        return population[best].copy(), loss.evaluate(batch)

    def initialize(self, loss: LossIndex) -> EvolutionaryAlgorithmState:
        config = self.config
        rng = np.random.default_rng(config.seed)
        current = loss.network.get_parameters()
        population = rng.uniform(-config.initial_range, config.initial_range, size=(config.population_size, current.size))
        population[0] = current
        batch = loss.data_set.batch(InstanceUse.TRAINING)
        fitness = -_population_loss(loss, population, batch)
        parameters, evaluation = self._install_best(loss, population, fitness, batch)
        return EvolutionaryAlgorithmState(
            parameters,
            evaluation.loss,
            evaluation.gradient,
            population=population,
            fitness=fitness,
            rng=rng,
        )

    def step(self, loss: LossIndex, state: EvolutionaryAlgorithmState) -> StepOutcome:
        config = self.config
        rng = state.rng
        elites = elite_indices(state.fitness, config.elitism_size)
        offspring = config.population_size - elites.size
        parents = select_parents(
            state.fitness, 2 * offspring, config.selection_method, rng, config.tournament_size
        ).reshape(offspring, 2)
        children = np.empty((offspring, state.population.shape[1]), dtype=SCALAR)
        for i, (first, second) in enumerate(parents):
            child = recombine(state.population[first], state.population[second], config.recombination_method, rng)
            children[i] = mutate(
                child, config.mutation_method, config.mutation_rate, config.mutation_range * state.step_scale, rng
            )

        batch = loss.data_set.batch(InstanceUse.TRAINING)
        population = np.vstack([state.population[elites], children])
        fitness = np.concatenate([state.fitness[elites], -_population_loss(loss, children, batch)])
        parameters, evaluation = self._install_best(loss, population, fitness, batch)

        state.population, state.fitness = population, fitness
        state.parameters = parameters
        state.training_loss = evaluation.loss
        state.gradient = evaluation.gradient
        state.iteration += 1
        return StepOutcome(evaluation.loss, gradient_norm(evaluation.gradient))

    def retreat(self, state: EvolutionaryAlgorithmState) -> None:
        state.step_scale *= 0.5


__all__ = [
    "EvolutionaryAlgorithm",
    "EvolutionaryAlgorithmConfig",
    "EvolutionaryAlgorithmState",
    "MutationMethod",
    "RecombinationMethod",
    "SelectionMethod",
    "elite_indices",
    "mutate",
    "recombine",
    "select_parents",
]
