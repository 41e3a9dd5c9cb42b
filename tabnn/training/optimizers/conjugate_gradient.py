"""Nonlinear conjugate gradient with periodic restarts."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Tuple

from ...core.errors import InvalidConfiguration
from ...core.types import Array, parse_enum
from ..line_search import LearningRateAlgorithm
from ..losses import LossIndex
from .base import OptimizerKind, OptimizerState, StepOutcome, initial_state, register_optimizer
from .gradient_descent import accept, search_along


class TrainingDirectionMethod(Enum):
    FLETCHER_REEVES = "FR"
    POLAK_RIBIERE = "PR"


@dataclass
class ConjugateGradientConfig:
    training_direction_method: TrainingDirectionMethod = TrainingDirectionMethod.POLAK_RIBIERE
    # None restarts every ``parameter_count`` epochs.
    restart_interval: int | None = None
    learning_rate_algorithm: LearningRateAlgorithm = field(default_factory=LearningRateAlgorithm)

    def __post_init__(self) -> None:
        self.training_direction_method = parse_enum(TrainingDirectionMethod, self.training_direction_method)
        self.validate()

    def validate(self) -> None:
        if self.restart_interval is not None and self.restart_interval < 1:
            raise InvalidConfiguration(f"restart_interval must be at least 1, got {self.restart_interval}")
        self.learning_rate_algorithm.validate()

    def to_tree(self) -> Dict[str, Any]:
        return {
            "training_direction_method": self.training_direction_method.value,
            "restart_interval": self.restart_interval,
            "learning_rate_algorithm": self.learning_rate_algorithm.to_tree(),
        }

    @classmethod
    def from_tree(cls, tree: Dict[str, Any]) -> "ConjugateGradientConfig":
        interval = tree.get("restart_interval")
        return cls(
            training_direction_method=tree.get("training_direction_method", TrainingDirectionMethod.POLAK_RIBIERE.value),
            restart_interval=None if interval is None else int(interval),
            learning_rate_algorithm=LearningRateAlgorithm.from_tree(tree.get("learning_rate_algorithm", {})),
        )


@dataclass
class ConjugateGradientState(OptimizerState):
    direction: Array | None = None
    previous_gradient: Array | None = None
    steps_since_restart: int = 0


def conjugate_parameter(method: TrainingDirectionMethod, gradient: Array, previous: Array) -> float:
    denominator = float(previous @ previous)
    if denominator <= 0.0:
        return 0.0
    if method is TrainingDirectionMethod.FLETCHER_REEVES:
        return float(gradient @ gradient) / denominator
    return max(0.0, float(gradient @ (gradient - previous)) / denominator)


@register_optimizer(OptimizerKind.CONJUGATE_GRADIENT, ConjugateGradientConfig)
class ConjugateGradient:
    def __init__(self, config: ConjugateGradientConfig | None = None) -> None:
        self.config = config or ConjugateGradientConfig()
        self.config.validate()

    def initialize(self, loss: LossIndex) -> ConjugateGradientState:
        start = initial_state(loss)
        return ConjugateGradientState(start.parameters, start.training_loss, start.gradient)

    def direction(self, state: ConjugateGradientState) -> Tuple[Array, bool]:
        """Next search direction and whether it restarts the conjugate sequence."""

        gradient = state.gradient
        interval = self.config.restart_interval or max(1, gradient.size)
        if state.direction is None or state.previous_gradient is None or state.steps_since_restart >= interval:
            return -gradient, True
        beta = conjugate_parameter(self.config.training_direction_method, gradient, state.previous_gradient)
        direction = -gradient + beta * state.direction
        if float(direction @ gradient) >= 0.0:
            return -gradient, True
        return direction, False

    def step(self, loss: LossIndex, state: ConjugateGradientState) -> StepOutcome:
        direction, restarted = self.direction(state)
        result, evaluation = search_along(loss, state, direction, self.config.learning_rate_algorithm)
        state.previous_gradient = state.gradient
        state.direction = direction
        state.steps_since_restart = 1 if restarted else state.steps_since_restart + 1
        return accept(state, loss, result, evaluation)

    def retreat(self, state: ConjugateGradientState) -> None:
        state.direction = None
        state.previous_gradient = None
        state.step_scale *= 0.5


__all__ = [
    "ConjugateGradient",
    "ConjugateGradientConfig",
    "ConjugateGradientState",
    "TrainingDirectionMethod",
    "conjugate_parameter",
]
