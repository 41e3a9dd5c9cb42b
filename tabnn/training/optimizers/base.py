"""Shared optimizer contract, stopping predicate and epoch loop."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, MutableMapping, Protocol, Sequence, Tuple, Type

import numpy as np

from ...core.errors import InvalidConfiguration, NumericalFailure
from ...core.types import Array, CancellationToken, StoppingCondition, TrainingResults, parse_enum
from ...data.dataset import InstanceUse
from ..losses import LossIndex


class OptimizerKind(Enum):
    GRADIENT_DESCENT = "GradientDescent"
    CONJUGATE_GRADIENT = "ConjugateGradient"
    QUASI_NEWTON = "QuasiNewtonMethod"
    LEVENBERG_MARQUARDT = "LevenbergMarquardtAlgorithm"
    STOCHASTIC_GRADIENT_DESCENT = "StochasticGradientDescent"
    ADAPTIVE_MOMENT_ESTIMATION = "AdaptiveMomentEstimation"
    EVOLUTIONARY_ALGORITHM = "EvolutionaryAlgorithm"


@dataclass
class StoppingCriteria:
    """Conditions checked once per epoch, in this order."""

    loss_goal: float = 0.0
    gradient_norm_goal: float = 0.0
    max_selection_failures: int = 100
    max_epochs: int = 1000
    max_time: float = 3600.0
    choose_best_selection: bool = False

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if self.gradient_norm_goal < 0:
            raise InvalidConfiguration(f"gradient_norm_goal must be non-negative, got {self.gradient_norm_goal}")
        if self.max_selection_failures < 1:
            raise InvalidConfiguration(
                f"max_selection_failures must be at least 1, got {self.max_selection_failures}"
            )
        if self.max_epochs < 0:
            raise InvalidConfiguration(f"max_epochs must be non-negative, got {self.max_epochs}")
        if self.max_time < 0:
            raise InvalidConfiguration(f"max_time must be non-negative, got {self.max_time}")

    def check(
        self,
        training_loss: float,
        gradient_norm: float,
        selection_failures: int,
        epoch: int,
        elapsed: float,
    ) -> StoppingCondition | None:
        if training_loss <= self.loss_goal:
            return StoppingCondition.LOSS_GOAL
        if gradient_norm <= self.gradient_norm_goal:
            return StoppingCondition.GRADIENT_NORM_GOAL
        if selection_failures >= self.max_selection_failures:
            return StoppingCondition.SELECTION_LOSS_INCREASES
        if epoch >= self.max_epochs:
            return StoppingCondition.MAXIMUM_EPOCHS
        if elapsed >= self.max_time:
            return StoppingCondition.MAXIMUM_TIME
        return None

    def to_tree(self) -> Dict[str, Any]:
        return {
            "loss_goal": self.loss_goal,
            "gradient_norm_goal": self.gradient_norm_goal,
            "max_selection_failures": self.max_selection_failures,
            "max_epochs": self.max_epochs,
            "max_time": self.max_time,
            "choose_best_selection": self.choose_best_selection,
        }

    @classmethod
    def from_tree(cls, tree: Dict[str, Any]) -> "StoppingCriteria":
        defaults = cls()
        return cls(
            loss_goal=float(tree.get("loss_goal", defaults.loss_goal)),
            gradient_norm_goal=float(tree.get("gradient_norm_goal", defaults.gradient_norm_goal)),
            max_selection_failures=int(tree.get("max_selection_failures", defaults.max_selection_failures)),
            max_epochs=int(tree.get("max_epochs", defaults.max_epochs)),
            max_time=float(tree.get("max_time", defaults.max_time)),
            choose_best_selection=bool(tree.get("choose_best_selection", defaults.choose_best_selection)),
        )


@dataclass
class OptimizerState:
    """Fields every optimizer keeps; kinds extend it with their own."""

    parameters: Array
    training_loss: float
    gradient: Array
    learning_rate: float = math.nan
    iteration: int = 0
    # Multiplies the next step; halved on every retreat.
    step_scale: float = 1.0


@dataclass(frozen=True)
class StepOutcome:
    training_loss: float
    gradient_norm: float
    learning_rate: float = math.nan


class Optimizer(Protocol):
    kind: ClassVar[OptimizerKind]
    config: Any

    def initialize(self, loss: LossIndex) -> OptimizerState:
        """Evaluate the starting point and create fresh per-run state."""

    def step(self, loss: LossIndex, state: OptimizerState) -> StepOutcome:
        """Apply one parameter update; the network holds the new parameters."""

    def retreat(self, state: OptimizerState) -> None:
        """Shrink the next step after a numerical failure."""


OptimizerFactory = Callable[[Any], Optimizer]

_REGISTRY: MutableMapping[OptimizerKind, Tuple[Type, Type]] = {}


def register_optimizer(kind: OptimizerKind, config_type: Type) -> Callable[[type], type]:
    """Class decorator registering an optimizer and its config record."""

    def _decorator(cls: type) -> type:
        cls.kind = kind
        _REGISTRY[kind] = (cls, config_type)
        return cls

    return _decorator


def optimizer_types(kind: OptimizerKind | str) -> Tuple[Type, Type]:
    kind = parse_enum(OptimizerKind, kind)
    try:
        return _REGISTRY[kind]
    except KeyError as exc:  # pragma: no cover - every kind registers on import
        raise InvalidConfiguration(f"No optimizer registered for {kind.value}") from exc


def build_optimizer(kind: OptimizerKind | str, config: Any = None) -> Optimizer:
    """Instantiate ``kind`` with ``config`` (a config record, a mapping or None)."""

    optimizer_cls, config_cls = optimizer_types(kind)
    if config is None:
        config = config_cls()
    elif isinstance(config, dict):
        config = config_cls.from_tree(config)
    elif not isinstance(config, config_cls):
        raise InvalidConfiguration(
            f"{parse_enum(OptimizerKind, kind).value} expects {config_cls.__name__}, got {type(config).__name__}"
        )
    return optimizer_cls(config)


def gradient_norm(gradient: Array) -> float:
    return float(np.linalg.norm(gradient))


def initial_state(loss: LossIndex) -> OptimizerState:
    """Evaluate loss and gradient over the training partition."""

    evaluation = loss.evaluate(loss.data_set.batch(InstanceUse.TRAINING))
    return OptimizerState(
        parameters=loss.network.get_parameters(),
        training_loss=evaluation.loss,
        gradient=evaluation.gradient,
    )


# ----------------------------------------------------------------------
# Epoch loop


def _emit_epoch(callbacks: Sequence[object], epoch: int, metrics: Dict[str, float]) -> None:
    for callback in callbacks:
        if hasattr(callback, "on_epoch"):
            callback.on_epoch(epoch, metrics)  # type: ignore[attr-defined]
        elif callable(callback):
            callback(epoch, metrics)


def _selection_error(loss: LossIndex) -> float:
    if loss.data_set.partition_size(InstanceUse.SELECTION) == 0:
        return math.nan
    return loss.calculate_error(InstanceUse.SELECTION)


def _format(value: float) -> str:
    return "nan" if not np.isfinite(value) else f"{value:.6g}"


@dataclass
class EpochLoop:
    """Drives an optimizer until the stopping predicate fires."""

    optimizer: Optimizer
    stopping: StoppingCriteria = field(default_factory=StoppingCriteria)
    callbacks: Sequence[object] = ()
    cancellation: CancellationToken | None = None
    display: bool = False
    display_period: int = 10

    def _cancelled(self) -> bool:
        return self.cancellation is not None and self.cancellation.cancelled

    def run(self, loss: LossIndex) -> TrainingResults:
        network = loss.network
        start = time.perf_counter()
        accepted = network.get_parameters()
        try:
            state = self.optimizer.initialize(loss)
            selection = _selection_error(loss)
        except NumericalFailure as exc:
            # The starting point itself cannot be evaluated.
            network.set_parameters(accepted)
            if self.display:
                print(f"Numerical failure: {exc}")
                print(f"Training stopped: {StoppingCondition.NUMERICAL_FAILURE.value}")
            return TrainingResults(
                parameters=accepted.copy(),
                stopping_condition=StoppingCondition.NUMERICAL_FAILURE,
                elapsed_time=time.perf_counter() - start,
                optimizer=self.optimizer.kind.value,
            )
        accepted = network.get_parameters()
        norm = gradient_norm(state.gradient)

        training_history = [float(state.training_loss)]
        selection_history = [float(selection)]
        norm_history = [norm]
        best_selection, best_parameters = selection, accepted.copy()
        previous_selection = selection
        failures = 0
        epoch = 0
        consecutive_failures = 0

        condition = None if self._cancelled() else self.stopping.check(state.training_loss, norm, failures, epoch, 0.0)
        while condition is None:
            if self._cancelled():
                condition = StoppingCondition.CANCELLED
                break
            try:
                outcome = self.optimizer.step(loss, state)
                selection = _selection_error(loss)
            except NumericalFailure as exc:
                consecutive_failures += 1
                network.set_parameters(accepted)
                if consecutive_failures >= 2:
                    if self.display:
                        print(f"Numerical failure: {exc}")
                    condition = StoppingCondition.NUMERICAL_FAILURE
                    break
                self.optimizer.retreat(state)
                continue
            consecutive_failures = 0
            epoch += 1
            accepted = network.get_parameters()

            if selection > previous_selection:
                failures += 1
            else:
                failures = 0
            previous_selection = selection
            if np.isfinite(selection) and not selection >= best_selection:
                best_selection, best_parameters = selection, accepted.copy()

            training_history.append(float(outcome.training_loss))
            selection_history.append(float(selection))
            norm_history.append(float(outcome.gradient_norm))
            elapsed = time.perf_counter() - start
            metrics = {
                "training_loss": float(outcome.training_loss),
                "selection_loss": float(selection),
                "gradient_norm": float(outcome.gradient_norm),
                "learning_rate": float(outcome.learning_rate),
                "elapsed_time": elapsed,
            }
            _emit_epoch(self.callbacks, epoch, metrics)
            if self.display and epoch % max(1, self.display_period) == 0:
                print(
                    f"Epoch {epoch}: training loss {_format(outcome.training_loss)}, "
                    f"selection loss {_format(selection)}, gradient norm {_format(outcome.gradient_norm)}, "
                    f"learning rate {_format(outcome.learning_rate)}"
                )
            condition = self.stopping.check(outcome.training_loss, outcome.gradient_norm, failures, epoch, elapsed)

        if self.stopping.choose_best_selection and np.isfinite(best_selection):
            network.set_parameters(best_parameters)
        if self.display:
            print(f"Training stopped: {condition.value}")
        return TrainingResults(
            parameters=network.get_parameters(),
            stopping_condition=condition,
            training_loss_history=training_history,
            selection_loss_history=selection_history,
            gradient_norm_history=norm_history,
            elapsed_time=time.perf_counter() - start,
            epochs=epoch,
            optimizer=self.optimizer.kind.value,
        )


__all__ = [
    "EpochLoop",
    "Optimizer",
    "OptimizerKind",
    "OptimizerState",
    "StepOutcome",
    "StoppingCriteria",
    "build_optimizer",
    "gradient_norm",
    "initial_state",
    "optimizer_types",
    "register_optimizer",
]
