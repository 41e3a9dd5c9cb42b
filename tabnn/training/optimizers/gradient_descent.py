"""Steepest descent with a fixed or line-searched learning rate."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

import numpy as np

from ...core.errors import NumericalFailure
from ...core.types import Array
from ...data.dataset import InstanceUse
from ..line_search import LearningRateAlgorithm, LearningRateMethod, LineSearchResult, line_search
from ..losses import LossEvaluation, LossIndex
from .base import OptimizerKind, OptimizerState, StepOutcome, gradient_norm, initial_state, register_optimizer


def search_along(
    loss: LossIndex,
    state: OptimizerState,
    direction: Array,
    algorithm: LearningRateAlgorithm,
) -> Tuple[LineSearchResult, LossEvaluation]:
    """Line-search ``direction`` from ``state.parameters`` and evaluate the new point.

    Leaves the network at the chosen parameters; ``state`` is not touched.
    """

    if algorithm.method is LearningRateMethod.FIXED and state.step_scale != 1.0:
        algorithm = dataclasses.replace(algorithm, fixed_rate=algorithm.fixed_rate * state.step_scale)
    initial_rate = state.learning_rate if np.isfinite(state.learning_rate) else algorithm.initial_rate
    initial_rate = min(max(initial_rate * state.step_scale, algorithm.learning_rate_tolerance), algorithm.training_rate_max)
    batch = loss.data_set.batch(InstanceUse.TRAINING)
    result = line_search(loss, state.parameters, direction, batch, state.training_loss, algorithm, initial_rate)
    if not np.isfinite(result.loss):
        raise NumericalFailure(f"Line search: no finite loss along the direction (rate {result.rate:g})")
    return result, loss.evaluate(batch)


def accept(state: OptimizerState, loss: LossIndex, result: LineSearchResult, evaluation: LossEvaluation) -> StepOutcome:
    state.parameters = loss.network.get_parameters()
    state.training_loss = evaluation.loss
    state.gradient = evaluation.gradient
    state.learning_rate = result.rate
    state.iteration += 1
    return StepOutcome(evaluation.loss, gradient_norm(evaluation.gradient), result.rate)


@dataclass
class GradientDescentConfig:
    learning_rate_algorithm: LearningRateAlgorithm = field(default_factory=LearningRateAlgorithm)

    def validate(self) -> None:
        self.learning_rate_algorithm.validate()

    def to_tree(self) -> Dict[str, Any]:
        return {"learning_rate_algorithm": self.learning_rate_algorithm.to_tree()}

    @classmethod
    def from_tree(cls, tree: Dict[str, Any]) -> "GradientDescentConfig":
        return cls(LearningRateAlgorithm.from_tree(tree.get("learning_rate_algorithm", {})))


@register_optimizer(OptimizerKind.GRADIENT_DESCENT, GradientDescentConfig)
class GradientDescent:
    def __init__(self, config: GradientDescentConfig | None = None) -> None:
        self.config = config or GradientDescentConfig()
        self.config.validate()

    def initialize(self, loss: LossIndex) -> OptimizerState:
        return initial_state(loss)

    def step(self, loss: LossIndex, state: OptimizerState) -> StepOutcome:
        result, evaluation = search_along(loss, state, -state.gradient, self.config.learning_rate_algorithm)
        return accept(state, loss, result, evaluation)

    def retreat(self, state: OptimizerState) -> None:
        state.step_scale *= 0.5


__all__ = ["GradientDescent", "GradientDescentConfig", "accept", "search_along"]
