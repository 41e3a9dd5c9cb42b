"""Loss indices: an error term plus a regularization term."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Tuple

import numpy as np

from ..core.errors import InvalidConfiguration, NumericalFailure, UnboundReference
from ..core.types import Array, Batch, parse_enum
from ..data.dataset import DataSet, InstanceUse
from ..network import NeuralNetwork

# Probabilities are clamped to [CLAMP, 1 - CLAMP] before taking logarithms.
CROSS_ENTROPY_CLAMP = 1e-6

# Target variances below this leave the normalized error unnormalized.
NORMALIZATION_EPSILON = 1e-12


class ErrorKind(Enum):
    SUM_SQUARED = "SumSquaredError"
    MEAN_SQUARED = "MeanSquaredError"
    NORMALIZED_SQUARED = "NormalizedSquaredError"
    MINKOWSKI = "MinkowskiError"
    CROSS_ENTROPY = "CrossEntropyError"
    WEIGHTED_SQUARED = "WeightedSquaredError"


class RegularizationKind(Enum):
    NO_REGULARIZATION = "NoRegularization"
    L1 = "L1"
    L2 = "L2"


# Error kinds whose error is a sum of squared residuals.
SQUARED_FAMILY = (
    ErrorKind.SUM_SQUARED,
    ErrorKind.MEAN_SQUARED,
    ErrorKind.NORMALIZED_SQUARED,
    ErrorKind.WEIGHTED_SQUARED,
)


@dataclass
class LossConfig:
    """Error and regularization settings of a loss index."""

    error: ErrorKind = ErrorKind.NORMALIZED_SQUARED
    regularization: RegularizationKind = RegularizationKind.NO_REGULARIZATION
    regularization_weight: float = 0.01
    minkowski_parameter: float = 1.5
    positives_weight: float | None = None
    negatives_weight: float | None = None

    def __post_init__(self) -> None:
        self.error = parse_enum(ErrorKind, self.error)
        self.regularization = parse_enum(RegularizationKind, self.regularization)
        self.validate()

    def validate(self) -> None:
        if self.regularization_weight < 0:
            raise InvalidConfiguration(
                f"Regularization weight must be non-negative, got {self.regularization_weight}"
            )
        if not 1.0 <= self.minkowski_parameter <= 2.0:
            raise InvalidConfiguration(
                f"Minkowski parameter must lie in [1, 2], got {self.minkowski_parameter}"
            )
        for name in ("positives_weight", "negatives_weight"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise InvalidConfiguration(f"{name} must be non-negative, got {value}")

    def to_tree(self) -> Dict[str, Any]:
        return {
            "error": self.error.value,
            "regularization": self.regularization.value,
            "regularization_weight": self.regularization_weight,
            "minkowski_parameter": self.minkowski_parameter,
            "positives_weight": self.positives_weight,
            "negatives_weight": self.negatives_weight,
        }

    @classmethod
    def from_tree(cls, tree: Dict[str, Any]) -> "LossConfig":
        return cls(
            error=tree.get("error", ErrorKind.NORMALIZED_SQUARED.value),
            regularization=tree.get("regularization", RegularizationKind.NO_REGULARIZATION.value),
            regularization_weight=float(tree.get("regularization_weight", 0.01)),
            minkowski_parameter=float(tree.get("minkowski_parameter", 1.5)),
            positives_weight=tree.get("positives_weight"),
            negatives_weight=tree.get("negatives_weight"),
        )


@dataclass(frozen=True)
class ErrorTerms:
    """Per-batch constants an error function needs."""

    divisor: float = 1.0
    minkowski_parameter: float = 1.5
    positives_weight: float = 1.0
    negatives_weight: float = 1.0


@dataclass(frozen=True)
class LossEvaluation:
    error: float
    regularization: float
    loss: float
    gradient: Array


ErrorFn = Callable[[Array, Array, ErrorTerms], Tuple[float, Array]]


@dataclass(frozen=True)
class ErrorFunction:
    """Error wrapper returning both the scalar error and d error / d outputs."""

    kind: ErrorKind
    fn: ErrorFn

    def __call__(self, outputs: Array, targets: Array, terms: ErrorTerms) -> Tuple[float, Array]:
        return self.fn(outputs, targets, terms)


class ErrorRegistry:
    """Central registry for error functions keyed by :class:`ErrorKind`."""

    def __init__(self) -> None:
        self._registry: Dict[ErrorKind, ErrorFunction] = {}

    def register(self, kind: ErrorKind, fn: ErrorFn) -> None:
        self._registry[kind] = ErrorFunction(kind, fn)

    def get(self, kind: ErrorKind | str) -> ErrorFunction:
        kind = parse_enum(ErrorKind, kind)
        try:
            return self._registry[kind]
        except KeyError as exc:  # pragma: no cover - every kind registers below
            available = ", ".join(k.value for k in self.kinds())
            raise InvalidConfiguration(f"Unknown error {kind.value!r}. Available: {available}") from exc

    def kinds(self) -> Iterable[ErrorKind]:
        return sorted(self._registry, key=lambda kind: kind.value)


REGISTRY = ErrorRegistry()


def _squared(outputs: Array, targets: Array, terms: ErrorTerms) -> Tuple[float, Array]:
    diff = outputs - targets
    return float(np.sum(diff * diff)) / terms.divisor, 2.0 * diff / terms.divisor


def _minkowski(outputs: Array, targets: Array, terms: ErrorTerms) -> Tuple[float, Array]:
    p = terms.minkowski_parameter
    diff = outputs - targets
    magnitude = np.abs(diff)
    error = float(np.sum(magnitude**p)) / terms.divisor
    delta = p * magnitude ** (p - 1.0) * np.sign(diff) / terms.divisor
    return error, delta


def _cross_entropy(outputs: Array, targets: Array, terms: ErrorTerms) -> Tuple[float, Array]:
    clipped = np.clip(outputs, CROSS_ENTROPY_CLAMP, 1.0 - CROSS_ENTROPY_CLAMP)
    inside = (outputs > CROSS_ENTROPY_CLAMP) & (outputs < 1.0 - CROSS_ENTROPY_CLAMP)
    if outputs.shape[1] == 1:
        error = -np.sum(targets * np.log(clipped) + (1.0 - targets) * np.log(1.0 - clipped))
        delta = -targets / clipped + (1.0 - targets) / (1.0 - clipped)
    else:
        error = -np.sum(targets * np.log(clipped))
        delta = -targets / clipped
    return float(error) / terms.divisor, delta * inside / terms.divisor


def _weighted_squared(outputs: Array, targets: Array, terms: ErrorTerms) -> Tuple[float, Array]:
    weights = np.where(targets >= 0.5, terms.positives_weight, terms.negatives_weight)
    diff = outputs - targets
    error = float(np.sum(weights * diff * diff)) / terms.divisor
    return error, 2.0 * weights * diff / terms.divisor


REGISTRY.register(ErrorKind.SUM_SQUARED, _squared)
REGISTRY.register(ErrorKind.MEAN_SQUARED, _squared)
REGISTRY.register(ErrorKind.NORMALIZED_SQUARED, _squared)
REGISTRY.register(ErrorKind.MINKOWSKI, _minkowski)
REGISTRY.register(ErrorKind.CROSS_ENTROPY, _cross_entropy)
REGISTRY.register(ErrorKind.WEIGHTED_SQUARED, _weighted_squared)


def regularization_term(kind: RegularizationKind, weight: float, parameters: Array) -> Tuple[float, Array]:
    if kind is RegularizationKind.L1:
        return weight * float(np.sum(np.abs(parameters))), weight * np.sign(parameters)
    if kind is RegularizationKind.L2:
        return weight * float(np.sum(parameters * parameters)), 2.0 * weight * parameters
    return 0.0, np.zeros_like(parameters)


def _check_finite(where: str, *values) -> None:
    for value in values:
        if not np.all(np.isfinite(value)):
            raise NumericalFailure(f"{where}: non-finite value encountered")


class LossIndex:
    """Borrows a network and a data set and evaluates loss and gradient."""

    def __init__(
        self,
        network: NeuralNetwork | None,
        data_set: DataSet | None,
        config: LossConfig | None = None,
    ) -> None:
        if network is None:
            raise UnboundReference("Loss index has no neural network")
        if data_set is None:
            raise UnboundReference("Loss index has no data set")
        self.network = network
        self.data_set = data_set
        self.config = config or LossConfig()
        self.error_function = REGISTRY.get(self.config.error)
        self._normalization: Dict[Tuple[InstanceUse, int], float] = {}
        self._class_weights: Tuple[int, Tuple[float, float]] | None = None

    @property
    def error_kind(self) -> ErrorKind:
        return self.config.error

    # ------------------------------------------------------------------
    # Coefficients

    def normalization_coefficient(self, use: InstanceUse = InstanceUse.TRAINING) -> float:
        """``sum((t - mean(t))^2)`` over ``use``, cached per data-set version."""

        key = (use, self.data_set.version)
        if key not in self._normalization:
            value = self.data_set.target_sum_squares(use)
            self._normalization[key] = value if value > NORMALIZATION_EPSILON else 1.0
        return self._normalization[key]

    def class_weights(self) -> Tuple[float, float]:
        """(positives weight, negatives weight) of the weighted squared error."""

        if self._class_weights is None or self._class_weights[0] != self.data_set.version:
            positives, negatives = self.data_set.positives_negatives(InstanceUse.TRAINING)
            default_positive = negatives / positives if positives else 1.0
            weights = (
                self.config.positives_weight if self.config.positives_weight is not None else default_positive,
                self.config.negatives_weight if self.config.negatives_weight is not None else 1.0,
            )
            self._class_weights = (self.data_set.version, weights)
        return self._class_weights[1]

    def error_terms(self, batch_size: int, use: InstanceUse = InstanceUse.TRAINING) -> ErrorTerms:
        kind = self.config.error
        divisor = 1.0
        positives, negatives = 1.0, 1.0
        if kind in (ErrorKind.MEAN_SQUARED, ErrorKind.CROSS_ENTROPY, ErrorKind.WEIGHTED_SQUARED):
            divisor = float(batch_size)
        elif kind is ErrorKind.NORMALIZED_SQUARED:
            partition = self.data_set.partition_size(use)
            divisor = self.normalization_coefficient(use) * batch_size / max(partition, 1)
        if kind is ErrorKind.WEIGHTED_SQUARED:
            positives, negatives = self.class_weights()
        return ErrorTerms(divisor, self.config.minkowski_parameter, positives, negatives)

    # ------------------------------------------------------------------
    # Evaluation

    def _outputs(self, batch: Batch):
        propagation = self.network.forward_propagate(batch.inputs)
        outputs = propagation.outputs.reshape(batch.size, -1)
        targets = batch.targets.reshape(batch.size, -1)
        if outputs.shape != targets.shape:
            raise InvalidConfiguration(
                f"Loss index: network produces {outputs.shape[1]} outputs for {targets.shape[1]} targets"
            )
        _check_finite("Loss index outputs", outputs)
        return propagation, outputs, targets

    def regularization(self, parameters: Array | None = None) -> Tuple[float, Array]:
        if parameters is None:
            parameters = self.network.get_parameters()
        return regularization_term(self.config.regularization, self.config.regularization_weight, parameters)

    def evaluate(self, batch: Batch, use: InstanceUse = InstanceUse.TRAINING) -> LossEvaluation:
        """Loss and flat gradient at the network's current parameters."""

        propagation, outputs, targets = self._outputs(batch)
        error, delta = self.error_function(outputs, targets, self.error_terms(batch.size, use))
        gradient = self.network.back_propagate(propagation, delta)
        penalty, penalty_gradient = self.regularization()
        gradient = gradient + penalty_gradient
        loss = error + penalty
        _check_finite("Loss index", loss, gradient)
        return LossEvaluation(error=error, regularization=penalty, loss=loss, gradient=gradient)

    def calculate_error(self, use: InstanceUse | str = InstanceUse.TRAINING) -> float:
        """Error term (no regularization) over a whole partition."""

        use = parse_enum(InstanceUse, use)
        batch = self.data_set.batch(use)
        _, outputs, targets = self._outputs(batch)
        error, _ = self.error_function(outputs, targets, self.error_terms(batch.size, use))
        _check_finite("Loss index", error)
        return error

    def loss_at(self, parameters: Array, batch: Batch, use: InstanceUse = InstanceUse.TRAINING) -> float:
        """Loss at ``parameters``; leaves the network holding them."""

        self.network.set_parameters(parameters)
        _, outputs, targets = self._outputs(batch)
        error, _ = self.error_function(outputs, targets, self.error_terms(batch.size, use))
        penalty, _ = self.regularization(parameters)
        loss = error + penalty
        _check_finite("Loss index", loss)
        return loss

    def squared_errors_jacobian(
        self, batch: Batch, use: InstanceUse = InstanceUse.TRAINING
    ) -> Tuple[Array, Array]:
        """Residuals ``r`` and ``J = dr/dparameters`` with ``error = sum(r^2)``."""

        kind = self.config.error
        if kind not in SQUARED_FAMILY:
            raise InvalidConfiguration(f"{kind.value} is not a sum of squared residuals")
        propagation, outputs, targets = self._outputs(batch)
        terms = self.error_terms(batch.size, use)
        scale = np.full_like(outputs, 1.0 / math.sqrt(terms.divisor))
        if kind is ErrorKind.WEIGHTED_SQUARED:
            weights = np.where(targets >= 0.5, terms.positives_weight, terms.negatives_weight)
            scale = scale * np.sqrt(weights)
        residuals = (scale * (outputs - targets)).reshape(-1)
        jacobian = self.network.calculate_jacobian(propagation) * scale.reshape(-1, 1)
        _check_finite("Loss index Jacobian", residuals, jacobian)
        return residuals, jacobian

    def to_tree(self) -> Dict[str, Any]:
        return {"LossIndex": self.config.to_tree()}


__all__ = [
    "ErrorKind",
    "ErrorRegistry",
    "ErrorTerms",
    "LossConfig",
    "LossEvaluation",
    "LossIndex",
    "REGISTRY",
    "RegularizationKind",
    "SQUARED_FAMILY",
    "regularization_term",
]
