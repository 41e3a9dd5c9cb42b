"""Mini-batch optimizers: momentum SGD and Adam."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

import numpy as np

from ...core.errors import InvalidConfiguration
from ...core.types import Array
from ...data.dataset import InstanceUse
from ..losses import LossIndex
from .base import OptimizerKind, OptimizerState, StepOutcome, gradient_norm, initial_state, register_optimizer


def _check_batch_size(batch_size: int) -> None:
    if batch_size < 1:
        raise InvalidConfiguration(f"batch_size must be positive, got {batch_size}")


def _finish_epoch(loss: LossIndex, state: OptimizerState, parameters: Array, rate: float) -> StepOutcome:
    """Evaluate the full training partition at ``parameters`` and commit them."""

    loss.network.set_parameters(parameters)
    evaluation = loss.evaluate(loss.data_set.batch(InstanceUse.TRAINING))
    state.parameters = parameters
    state.training_loss = evaluation.loss
    state.gradient = evaluation.gradient
    state.learning_rate = rate
    return StepOutcome(evaluation.loss, gradient_norm(evaluation.gradient), rate)


@dataclass
class StochasticGradientDescentConfig:
    initial_learning_rate: float = 0.01
    initial_decay: float = 0.0
    momentum: float = 0.0
    nesterov: bool = False
    batch_size: int = 32
    seed: int = 0

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if self.initial_learning_rate <= 0:
            raise InvalidConfiguration(f"initial_learning_rate must be positive, got {self.initial_learning_rate}")
        if self.initial_decay < 0:
            raise InvalidConfiguration(f"initial_decay must be non-negative, got {self.initial_decay}")
        if not 0.0 <= self.momentum < 1.0:
            raise InvalidConfiguration(f"momentum must lie in [0, 1), got {self.momentum}")
        _check_batch_size(self.batch_size)

    def to_tree(self) -> Dict[str, Any]:
        return {
            "initial_learning_rate": self.initial_learning_rate,
            "initial_decay": self.initial_decay,
            "momentum": self.momentum,
            "nesterov": self.nesterov,
            "batch_size": self.batch_size,
            "seed": self.seed,
        }

    @classmethod
    def from_tree(cls, tree: Dict[str, Any]) -> "StochasticGradientDescentConfig":
        defaults = cls()
        return cls(
            initial_learning_rate=float(tree.get("initial_learning_rate", defaults.initial_learning_rate)),
            initial_decay=float(tree.get("initial_decay", defaults.initial_decay)),
            momentum=float(tree.get("momentum", defaults.momentum)),
            nesterov=bool(tree.get("nesterov", defaults.nesterov)),
            batch_size=int(tree.get("batch_size", defaults.batch_size)),
            seed=int(tree.get("seed", defaults.seed)),
        )


@dataclass
class StochasticGradientDescentState(OptimizerState):
    velocity: Array | None = None
    rng: np.random.Generator | None = None


@register_optimizer(OptimizerKind.STOCHASTIC_GRADIENT_DESCENT, StochasticGradientDescentConfig)
class StochasticGradientDescent:
    """One epoch is one shuffled pass over the training partition."""

    def __init__(self, config: StochasticGradientDescentConfig | None = None) -> None:
        self.config = config or StochasticGradientDescentConfig()
        self.config.validate()

    def initialize(self, loss: LossIndex) -> StochasticGradientDescentState:
        start = initial_state(loss)
        return StochasticGradientDescentState(
            start.parameters,
            start.training_loss,
            start.gradient,
            learning_rate=self.config.initial_learning_rate,
            velocity=np.zeros_like(start.parameters),
            rng=np.random.default_rng(self.config.seed),
        )

    def step(self, loss: LossIndex, state: StochasticGradientDescentState) -> StepOutcome:
        config = self.config
        parameters = state.parameters.copy()
        velocity = state.velocity.copy()
        iteration = state.iteration
        rate = config.initial_learning_rate * state.step_scale
        for batch in loss.data_set.batches(InstanceUse.TRAINING, config.batch_size, state.rng):
            loss.network.set_parameters(parameters)
            gradient = loss.evaluate(batch).gradient
            rate = config.initial_learning_rate * state.step_scale / (1.0 + config.initial_decay * iteration)
            velocity = config.momentum * velocity - rate * gradient
            if config.nesterov:
                parameters = parameters + config.momentum * velocity - rate * gradient
            else:
                parameters = parameters + velocity
            iteration += 1
        outcome = _finish_epoch(loss, state, parameters, rate)
        state.velocity = velocity
        state.iteration = iteration
        return outcome

    def retreat(self, state: StochasticGradientDescentState) -> None:
        state.step_scale *= 0.5
        state.velocity = np.zeros_like(state.parameters)


@dataclass
class AdaptiveMomentEstimationConfig:
    initial_learning_rate: float = 0.001
    beta_1: float = 0.9
    beta_2: float = 0.999
    epsilon: float = 1e-7
    batch_size: int = 32
    seed: int = 0

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if self.initial_learning_rate <= 0:
            raise InvalidConfiguration(f"initial_learning_rate must be positive, got {self.initial_learning_rate}")
        for name in ("beta_1", "beta_2"):
            value = getattr(self, name)
            if not 0.0 <= value < 1.0:
                raise InvalidConfiguration(f"{name} must lie in [0, 1), got {value}")
        if self.epsilon <= 0:
            raise InvalidConfiguration(f"epsilon must be positive, got {self.epsilon}")
        _check_batch_size(self.batch_size)

    def to_tree(self) -> Dict[str, Any]:
        return {
            "initial_learning_rate": self.initial_learning_rate,
            "beta_1": self.beta_1,
            "beta_2": self.beta_2,
            "epsilon": self.epsilon,
            "batch_size": self.batch_size,
            "seed": self.seed,
        }

    @classmethod
    def from_tree(cls, tree: Dict[str, Any]) -> "AdaptiveMomentEstimationConfig":
        defaults = cls()
        return cls(
            initial_learning_rate=float(tree.get("initial_learning_rate", defaults.initial_learning_rate)),
            beta_1=float(tree.get("beta_1", defaults.beta_1)),
            beta_2=float(tree.get("beta_2", defaults.beta_2)),
            epsilon=float(tree.get("epsilon", defaults.epsilon)),
            batch_size=int(tree.get("batch_size", defaults.batch_size)),
            seed=int(tree.get("seed", defaults.seed)),
        )


@dataclass
class AdaptiveMomentEstimationState(OptimizerState):
    first_moment: Array | None = None
    second_moment: Array | None = None
    rng: np.random.Generator | None = None


@register_optimizer(OptimizerKind.ADAPTIVE_MOMENT_ESTIMATION, AdaptiveMomentEstimationConfig)
class AdaptiveMomentEstimation:
    def __init__(self, config: AdaptiveMomentEstimationConfig | None = None) -> None:
        self.config = config or AdaptiveMomentEstimationConfig()
        self.config.validate()

    def initialize(self, loss: LossIndex) -> AdaptiveMomentEstimationState:
        start = initial_state(loss)
        return AdaptiveMomentEstimationState(
            start.parameters,
            start.training_loss,
            start.gradient,
            learning_rate=self.config.initial_learning_rate,
            first_moment=np.zeros_like(start.parameters),
            second_moment=np.zeros_like(start.parameters),
            rng=np.random.default_rng(self.config.seed),
        )

    def step(self, loss: LossIndex, state: AdaptiveMomentEstimationState) -> StepOutcome:
        config = self.config
        parameters = state.parameters.copy()
        first, second = state.first_moment.copy(), state.second_moment.copy()
        iteration = state.iteration
        rate = config.initial_learning_rate * state.step_scale
        for batch in loss.data_set.batches(InstanceUse.TRAINING, config.batch_size, state.rng):
            loss.network.set_parameters(parameters)
            gradient = loss.evaluate(batch).gradient
            iteration += 1
            first = config.beta_1 * first + (1.0 - config.beta_1) * gradient
            second = config.beta_2 * second + (1.0 - config.beta_2) * gradient * gradient
            first_hat = first / (1.0 - config.beta_1**iteration)
            second_hat = second / (1.0 - config.beta_2**iteration)
            parameters = parameters - rate * first_hat / (np.sqrt(second_hat) + config.epsilon)
        outcome = _finish_epoch(loss, state, parameters, rate)
        state.first_moment, state.second_moment = first, second
        state.iteration = iteration
        return outcome

    def retreat(self, state: AdaptiveMomentEstimationState) -> None:
        state.step_scale *= 0.5


__all__ = [
    "AdaptiveMomentEstimation",
    "AdaptiveMomentEstimationConfig",
    "AdaptiveMomentEstimationState",
    "StochasticGradientDescent",
    "StochasticGradientDescentConfig",
    "StochasticGradientDescentState",
]
