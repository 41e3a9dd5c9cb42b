"""Levenberg-Marquardt algorithm for sum-of-squares losses."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict

import numpy as np

from ...core.errors import InvalidConfiguration, NumericalFailure
from ...core.types import SCALAR
from ...data.dataset import InstanceUse
from ..losses import SQUARED_FAMILY, LossIndex, RegularizationKind
from .base import OptimizerKind, OptimizerState, StepOutcome, gradient_norm, initial_state, register_optimizer


@dataclass
class LevenbergMarquardtConfig:
    damping_parameter: float = 1e-3
    damping_factor: float = 10.0
    minimum_damping: float = 1e-6
    maximum_damping: float = 1e6

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if self.damping_factor <= 1.0:
            raise InvalidConfiguration(f"damping_factor must exceed 1, got {self.damping_factor}")
        if not 0.0 < self.minimum_damping <= self.maximum_damping:
            raise InvalidConfiguration("Damping bounds must satisfy 0 < minimum_damping <= maximum_damping")
        if not self.minimum_damping <= self.damping_parameter <= self.maximum_damping:
            raise InvalidConfiguration(
                f"damping_parameter {self.damping_parameter} lies outside "
                f"[{self.minimum_damping}, {self.maximum_damping}]"
            )

    def to_tree(self) -> Dict[str, Any]:
        return {
            "damping_parameter": self.damping_parameter,
            "damping_factor": self.damping_factor,
            "minimum_damping": self.minimum_damping,
            "maximum_damping": self.maximum_damping,
        }

    @classmethod
    def from_tree(cls, tree: Dict[str, Any]) -> "LevenbergMarquardtConfig":
        defaults = cls()
        return cls(**{key: float(tree.get(key, value)) for key, value in defaults.to_tree().items()})


@dataclass
class LevenbergMarquardtState(OptimizerState):
    damping: float = 1e-3


@register_optimizer(OptimizerKind.LEVENBERG_MARQUARDT, LevenbergMarquardtConfig)
class LevenbergMarquardtAlgorithm:
    """Damped Gauss-Newton steps on ``error = sum(r^2)``.

    With ``g = 2 J^T r`` and ``H = 2 J^T J`` each epoch solves
    ``(H + mu I) d = -g``. A step that lowers the loss is accepted and shrinks
    ``mu``; a rejected one grows it. Once ``mu`` reaches ``maximum_damping``
    without an improving step the epoch leaves the parameters unchanged.
    """

    def __init__(self, config: LevenbergMarquardtConfig | None = None) -> None:
        self.config = config or LevenbergMarquardtConfig()
        self.config.validate()

    def initialize(self, loss: LossIndex) -> LevenbergMarquardtState:
        if loss.error_kind not in SQUARED_FAMILY:
            raise InvalidConfiguration(
                f"Levenberg-Marquardt requires a sum-squared error, got {loss.error_kind.value}"
            )
        start = initial_state(loss)
        return LevenbergMarquardtState(
            start.parameters, start.training_loss, start.gradient, damping=self.config.damping_parameter
        )

    def _normal_equations(self, loss: LossIndex, state: LevenbergMarquardtState, batch):
        residuals, jacobian = loss.squared_errors_jacobian(batch)
        _, penalty_gradient = loss.regularization(state.parameters)
        gradient = 2.0 * jacobian.T @ residuals + penalty_gradient
        hessian = 2.0 * jacobian.T @ jacobian
        if loss.config.regularization is RegularizationKind.L2:
            hessian += 2.0 * loss.config.regularization_weight * np.eye(hessian.shape[0], dtype=SCALAR)
        return gradient, hessian

    def step(self, loss: LossIndex, state: LevenbergMarquardtState) -> StepOutcome:
        config = self.config
        batch = loss.data_set.batch(InstanceUse.TRAINING)
        gradient, hessian = self._normal_equations(loss, state, batch)
        identity = np.eye(hessian.shape[0], dtype=SCALAR)
        damping = state.damping
        while True:
            try:
                delta = np.linalg.solve(hessian + damping * identity, -gradient)
            except np.linalg.LinAlgError:
                delta = None
            if delta is not None and np.all(np.isfinite(delta)):
                try:
                    candidate_loss = loss.loss_at(state.parameters + delta, batch)
                except NumericalFailure:
                    candidate_loss = math.inf
                if candidate_loss < state.training_loss:
                    damping = max(damping / config.damping_factor, config.minimum_damping)
                    break
            if damping >= config.maximum_damping:
                # No improving step at the largest damping: keep the parameters.
                state.damping = config.maximum_damping
                loss.network.set_parameters(state.parameters)
                state.iteration += 1
                return StepOutcome(state.training_loss, gradient_norm(state.gradient), 1.0 / state.damping)
            damping = min(damping * config.damping_factor, config.maximum_damping)

        evaluation = loss.evaluate(batch)
        state.damping = damping
        state.parameters = loss.network.get_parameters()
        state.training_loss = evaluation.loss
        state.gradient = evaluation.gradient
        state.learning_rate = 1.0 / state.damping
        state.iteration += 1
        return StepOutcome(evaluation.loss, gradient_norm(evaluation.gradient), state.learning_rate)

    def retreat(self, state: LevenbergMarquardtState) -> None:
        state.damping = min(state.damping * self.config.damping_factor, self.config.maximum_damping)


__all__ = ["LevenbergMarquardtAlgorithm", "LevenbergMarquardtConfig", "LevenbergMarquardtState"]
