"""Core typing contracts for tabnn."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Type, TypeVar

import numpy as np

from .errors import InvalidConfiguration

Array = np.ndarray

# Single real type shared by every tensor the library creates.
SCALAR = np.float64

E = TypeVar("E", bound=Enum)


def parse_enum(enum_type: Type[E], value: object) -> E:
    """Return the member of ``enum_type`` named by ``value``.

    Accepts a member, its value (``"HyperbolicTangent"``) or its Python name
    (``"HYPERBOLIC_TANGENT"``).
    """

    if isinstance(value, enum_type):
        return value
    text = str(value)
    for member in enum_type:
        if member.value == text or member.name == text:
            return member
    available = ", ".join(member.value for member in enum_type)
    raise InvalidConfiguration(
        f"Unknown {enum_type.__name__} {text!r}. Available: {available}"
    )


def as_array(values, *, ndmin: int = 1) -> Array:
    return np.array(values, dtype=SCALAR, ndmin=ndmin)


@dataclass(frozen=True)
class Batch:
    """A single mini-batch of data."""

    inputs: Array
    targets: Array

    @property
    def size(self) -> int:
        return int(self.inputs.shape[0])


class StoppingCondition(Enum):
    """Reason a training run ended."""

    LOSS_GOAL = "LossGoal"
    GRADIENT_NORM_GOAL = "GradientNormGoal"
    SELECTION_LOSS_INCREASES = "SelectionLossIncreases"
    MAXIMUM_EPOCHS = "MaximumEpochs"
    MAXIMUM_TIME = "MaximumTime"
    NUMERICAL_FAILURE = "NumericalFailure"
    CANCELLED = "Cancelled"


class CancellationToken:
    """Caller-visible flag checked by training loops before each epoch."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def reset(self) -> None:
        self._event.clear()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class TrainingResults:
    """Summary of a completed training run."""

    parameters: Array
    stopping_condition: StoppingCondition
    training_loss_history: List[float] = field(default_factory=list)
    selection_loss_history: List[float] = field(default_factory=list)
    gradient_norm_history: List[float] = field(default_factory=list)
    elapsed_time: float = 0.0
    epochs: int = 0
    optimizer: str = ""

    @property
    def final_training_loss(self) -> float:
        if not self.training_loss_history:
            return float("nan")
        return float(self.training_loss_history[-1])

    @property
    def final_selection_loss(self) -> float:
        if not self.selection_loss_history:
            return float("nan")
        return float(self.selection_loss_history[-1])

    @property
    def converged(self) -> bool:
        """False when the run diverged and its scores are meaningless."""

        if self.stopping_condition is StoppingCondition.NUMERICAL_FAILURE:
            return False
        return bool(np.isfinite(self.final_training_loss))

    def to_dict(self) -> Dict[str, object]:
        return {
            "optimizer": self.optimizer,
            "stopping_condition": self.stopping_condition.value,
            "epochs": int(self.epochs),
            "elapsed_time": float(self.elapsed_time),
            "final_training_loss": self.final_training_loss,
            "final_selection_loss": self.final_selection_loss,
            "training_loss_history": [float(v) for v in self.training_loss_history],
            "selection_loss_history": [float(v) for v in self.selection_loss_history],
            "gradient_norm_history": [float(v) for v in self.gradient_norm_history],
        }


@dataclass(frozen=True)
class RunResult:
    """Summary returned by :func:`tabnn.training.pipelines.run_pipeline`."""

    epochs: int
    stopping_condition: str
    metrics_path: str
    manifest_path: str
    summary_path: str = ""
    network_path: str = ""


__all__ = [
    "Array",
    "SCALAR",
    "Batch",
    "CancellationToken",
    "RunResult",
    "StoppingCondition",
    "TrainingResults",
    "as_array",
    "parse_enum",
]
