"""Activation functions and their derivatives."""

from __future__ import annotations

from enum import Enum
from typing import Callable, Dict

import numpy as np

from .types import Array

SELU_ALPHA = 1.6732632423543772
SELU_LAMBDA = 1.0507009873554805
ELU_ALPHA = 1.0


class ActivationFunction(Enum):
    THRESHOLD = "Threshold"
    SYMMETRIC_THRESHOLD = "SymmetricThreshold"
    LOGISTIC = "Logistic"
    HYPERBOLIC_TANGENT = "HyperbolicTangent"
    LINEAR = "Linear"
    RECTIFIED_LINEAR = "RectifiedLinear"
    SCALED_EXPONENTIAL_LINEAR = "ScaledExponentialLinear"
    SOFT_PLUS = "SoftPlus"
    SOFT_SIGN = "SoftSign"
    HARD_SIGMOID = "HardSigmoid"
    EXPONENTIAL_LINEAR = "ExponentialLinear"


def relu(x: Array) -> Array:
    """Return the ReLU activation."""

    return np.maximum(x, 0.0)


def logistic(x: Array) -> Array:
    # Split by sign so that exp never overflows.
    out = np.empty_like(x, dtype=np.result_type(x, np.float64))
    positive = x >= 0
    out[positive] = 1.0 / (1.0 + np.exp(-x[positive]))
    exp_x = np.exp(x[~positive])
    out[~positive] = exp_x / (1.0 + exp_x)
    return out


def softmax(z: Array) -> Array:
    shifted = z - z.max(axis=1, keepdims=True)
    e = np.exp(shifted)
    return e / e.sum(axis=1, keepdims=True)


def _threshold(x: Array) -> Array:
    return np.where(x < 0, 0.0, 1.0)


def _symmetric_threshold(x: Array) -> Array:
    return np.where(x < 0, -1.0, 1.0)


def _selu(x: Array) -> Array:
    return SELU_LAMBDA * np.where(x > 0, x, SELU_ALPHA * np.expm1(np.minimum(x, 0.0)))


def _soft_plus(x: Array) -> Array:
    return np.logaddexp(0.0, x)


def _soft_sign(x: Array) -> Array:
    return x / (1.0 + np.abs(x))


def _hard_sigmoid(x: Array) -> Array:
    return np.clip(0.2 * x + 0.5, 0.0, 1.0)


def _elu(x: Array) -> Array:
    return np.where(x > 0, x, ELU_ALPHA * np.expm1(np.minimum(x, 0.0)))


_FUNCTIONS: Dict[ActivationFunction, Callable[[Array], Array]] = {
    ActivationFunction.THRESHOLD: _threshold,
    ActivationFunction.SYMMETRIC_THRESHOLD: _symmetric_threshold,
    ActivationFunction.LOGISTIC: logistic,
    ActivationFunction.HYPERBOLIC_TANGENT: np.tanh,
    ActivationFunction.LINEAR: lambda x: x.copy(),
    ActivationFunction.RECTIFIED_LINEAR: relu,
    ActivationFunction.SCALED_EXPONENTIAL_LINEAR: _selu,
    ActivationFunction.SOFT_PLUS: _soft_plus,
    ActivationFunction.SOFT_SIGN: _soft_sign,
    ActivationFunction.HARD_SIGMOID: _hard_sigmoid,
    ActivationFunction.EXPONENTIAL_LINEAR: _elu,
}


# Derivatives receive both the combinations and the activations so that the
# cheaper form can be used (e.g. tanh' = 1 - a^2).
_DERIVATIVES: Dict[ActivationFunction, Callable[[Array, Array], Array]] = {
    ActivationFunction.THRESHOLD: lambda z, a: np.zeros_like(z),
    ActivationFunction.SYMMETRIC_THRESHOLD: lambda z, a: np.zeros_like(z),
    ActivationFunction.LOGISTIC: lambda z, a: a * (1.0 - a),
    ActivationFunction.HYPERBOLIC_TANGENT: lambda z, a: 1.0 - a * a,
    ActivationFunction.LINEAR: lambda z, a: np.ones_like(z),
    ActivationFunction.RECTIFIED_LINEAR: lambda z, a: (z > 0).astype(z.dtype),
    ActivationFunction.SCALED_EXPONENTIAL_LINEAR: lambda z, a: np.where(
        z > 0, SELU_LAMBDA, a + SELU_LAMBDA * SELU_ALPHA
    ),
    ActivationFunction.SOFT_PLUS: lambda z, a: logistic(z),
    ActivationFunction.SOFT_SIGN: lambda z, a: 1.0 / (1.0 + np.abs(z)) ** 2,
    ActivationFunction.HARD_SIGMOID: lambda z, a: np.where(
        (z > -2.5) & (z < 2.5), 0.2, 0.0
    ),
    ActivationFunction.EXPONENTIAL_LINEAR: lambda z, a: np.where(z > 0, 1.0, a + ELU_ALPHA),
}

# Names used when a network exports its expression.
EXPRESSION_NAMES: Dict[ActivationFunction, str] = {
    ActivationFunction.THRESHOLD: "threshold",
    ActivationFunction.SYMMETRIC_THRESHOLD: "symmetric_threshold",
    ActivationFunction.LOGISTIC: "logistic",
    ActivationFunction.HYPERBOLIC_TANGENT: "tanh",
    ActivationFunction.LINEAR: "",
    ActivationFunction.RECTIFIED_LINEAR: "ReLU",
    ActivationFunction.SCALED_EXPONENTIAL_LINEAR: "SELU",
    ActivationFunction.SOFT_PLUS: "soft_plus",
    ActivationFunction.SOFT_SIGN: "soft_sign",
    ActivationFunction.HARD_SIGMOID: "hard_sigmoid",
    ActivationFunction.EXPONENTIAL_LINEAR: "ELU",
}


def activate(function: ActivationFunction, combinations: Array) -> Array:
    return _FUNCTIONS[function](combinations)


def derivative(function: ActivationFunction, combinations: Array, activations: Array) -> Array:
    return _DERIVATIVES[function](combinations, activations)


def expression(function: ActivationFunction, argument: str) -> str:
    name = EXPRESSION_NAMES[function]
    return f"{name}({argument})" if name else argument


__all__ = [
    "ActivationFunction",
    "activate",
    "derivative",
    "expression",
    "logistic",
    "relu",
    "softmax",
]
