"""Quasi-Newton method with a BFGS or DFP inverse-Hessian approximation."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

import numpy as np

from ...core.types import SCALAR, Array, parse_enum
from ..line_search import LearningRateAlgorithm
from ..losses import LossIndex
from .base import OptimizerKind, OptimizerState, StepOutcome, initial_state, register_optimizer
from .gradient_descent import accept, search_along

# Curvature s.y at or below this resets the approximation to the identity.
CURVATURE_EPSILON = 1e-12


class InverseHessianApproximation(Enum):
    BFGS = "BFGS"
    DFP = "DFP"


@dataclass
class QuasiNewtonConfig:
    inverse_hessian_approximation: InverseHessianApproximation = InverseHessianApproximation.BFGS
    learning_rate_algorithm: LearningRateAlgorithm = field(default_factory=LearningRateAlgorithm)

    def __post_init__(self) -> None:
        self.inverse_hessian_approximation = parse_enum(
            InverseHessianApproximation, self.inverse_hessian_approximation
        )
        self.validate()

    def validate(self) -> None:
        self.learning_rate_algorithm.validate()

    def to_tree(self) -> Dict[str, Any]:
        return {
            "inverse_hessian_approximation": self.inverse_hessian_approximation.value,
            "learning_rate_algorithm": self.learning_rate_algorithm.to_tree(),
        }

    @classmethod
    def from_tree(cls, tree: Dict[str, Any]) -> "QuasiNewtonConfig":
        return cls(
            inverse_hessian_approximation=tree.get(
                "inverse_hessian_approximation", InverseHessianApproximation.BFGS.value
            ),
            learning_rate_algorithm=LearningRateAlgorithm.from_tree(tree.get("learning_rate_algorithm", {})),
        )


@dataclass
class QuasiNewtonState(OptimizerState):
    inverse_hessian: Array | None = None


def bfgs_update(inverse_hessian: Array, s: Array, y: Array) -> Array:
    rho = 1.0 / float(s @ y)
    identity = np.eye(s.size, dtype=SCALAR)
    left = identity - rho * np.outer(s, y)
    right = identity - rho * np.outer(y, s)
    return left @ inverse_hessian @ right + rho * np.outer(s, s)


def dfp_update(inverse_hessian: Array, s: Array, y: Array) -> Array:
    hy = inverse_hessian @ y
    yhy = float(y @ hy)
    updated = inverse_hessian + np.outer(s, s) / float(s @ y)
    if yhy > CURVATURE_EPSILON:
        updated -= np.outer(hy, hy) / yhy
    return updated


UPDATES = {
    InverseHessianApproximation.BFGS: bfgs_update,
    InverseHessianApproximation.DFP: dfp_update,
}


@register_optimizer(OptimizerKind.QUASI_NEWTON, QuasiNewtonConfig)
class QuasiNewtonMethod:
    def __init__(self, config: QuasiNewtonConfig | None = None) -> None:
        self.config = config or QuasiNewtonConfig()
        self.config.validate()

    def initialize(self, loss: LossIndex) -> QuasiNewtonState:
        start = initial_state(loss)
        return QuasiNewtonState(start.parameters, start.training_loss, start.gradient)

    def step(self, loss: LossIndex, state: QuasiNewtonState) -> StepOutcome:
        size = state.gradient.size
        inverse_hessian = state.inverse_hessian
        if inverse_hessian is None:
            inverse_hessian = np.eye(size, dtype=SCALAR)
        direction = -(inverse_hessian @ state.gradient)
        if not float(direction @ state.gradient) < 0.0:
            inverse_hessian = np.eye(size, dtype=SCALAR)
            direction = -state.gradient

        previous_parameters, previous_gradient = state.parameters, state.gradient
        result, evaluation = search_along(loss, state, direction, self.config.learning_rate_algorithm)
        outcome = accept(state, loss, result, evaluation)

        s = state.parameters - previous_parameters
        y = state.gradient - previous_gradient
        if float(s @ y) <= CURVATURE_EPSILON:
            state.inverse_hessian = np.eye(size, dtype=SCALAR)
        else:
            state.inverse_hessian = UPDATES[self.config.inverse_hessian_approximation](inverse_hessian, s, y)
        return outcome

    def retreat(self, state: QuasiNewtonState) -> None:
        state.inverse_hessian = None
        state.step_scale *= 0.5


__all__ = [
    "InverseHessianApproximation",
    "QuasiNewtonConfig",
    "QuasiNewtonMethod",
    "QuasiNewtonState",
    "bfgs_update",
    "dfp_update",
]
