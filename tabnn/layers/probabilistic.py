"""Output layer producing class probabilities."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Sequence

import numpy as np

from ..core import tensor
from ..core.activations import logistic, softmax
from ..core.device import Device
from ..core.errors import InvalidConfiguration
from ..core.types import SCALAR, Array, parse_enum
from .base import (
    LayerForward,
    LayerKind,
    Shape,
    check_features,
    glorot_uniform,
    pack_blocks,
    register_layer,
    tree_array,
    unpack_blocks,
)
from .perceptron import dense_terms


class ProbabilisticActivation(Enum):
    LOGISTIC = "Logistic"
    SOFTMAX = "Softmax"
    COMPETITIVE = "Competitive"


def default_activation(neurons_number: int) -> ProbabilisticActivation:
    if neurons_number == 1:
        return ProbabilisticActivation.LOGISTIC
    return ProbabilisticActivation.SOFTMAX


@register_layer(LayerKind.PROBABILISTIC)
@dataclass
class ProbabilisticLayer:
    """Dense combination followed by a probabilistic activation.

    Packing order matches :class:`PerceptronLayer`: biases, then weights.
    """

    inputs_number: int
    neurons_number: int
    activation: ProbabilisticActivation | None = None
    decision_threshold: float = 0.5
    name: str = "probabilistic_layer"
    biases: Array = field(default=None, repr=False)  # type: ignore[assignment]
    synaptic_weights: Array = field(default=None, repr=False)  # type: ignore[assignment]

    kind: ClassVar[LayerKind]

    def __post_init__(self) -> None:
        if self.activation is None:
            self.activation = default_activation(self.neurons_number)
        self.activation = parse_enum(ProbabilisticActivation, self.activation)
        if self.activation is ProbabilisticActivation.LOGISTIC and self.neurons_number != 1:
            raise InvalidConfiguration(f"{self.name}: Logistic activation needs exactly one output")
        if not 0.0 < self.decision_threshold < 1.0:
            raise InvalidConfiguration(
                f"{self.name}: decision threshold must lie in (0, 1), got {self.decision_threshold}"
            )
        if self.biases is None:
            self.biases = np.zeros(self.neurons_number, dtype=SCALAR)
        if self.synaptic_weights is None:
            self.synaptic_weights = np.zeros((self.inputs_number, self.neurons_number), dtype=SCALAR)
        self.biases = np.asarray(self.biases, dtype=SCALAR)
        self.synaptic_weights = np.asarray(self.synaptic_weights, dtype=SCALAR)
        tensor.check_shape(self.biases, (self.neurons_number,), f"{self.name}.biases")
        tensor.check_shape(
            self.synaptic_weights,
            (self.inputs_number, self.neurons_number),
            f"{self.name}.synaptic_weights",
        )

    @property
    def input_shape(self) -> Shape:
        return (self.inputs_number,)

    @property
    def output_shape(self) -> Shape:
        return (self.neurons_number,)

    @property
    def trainable(self) -> bool:
        return True

    def _blocks(self) -> List[Array]:
        return [self.biases, self.synaptic_weights]

    def parameter_count(self) -> int:
        return self.neurons_number * (1 + self.inputs_number)

    def get_parameters(self) -> Array:
        out = np.empty(self.parameter_count(), dtype=SCALAR)
        self.pack_parameters(out)
        return out

    def pack_parameters(self, out: Array) -> None:
        pack_blocks(out, self._blocks(), self.name)

    def unpack_parameters(self, values: Array) -> None:
        unpack_blocks(values, self._blocks(), self.name)

    def set_parameters_random(self, rng: np.random.Generator) -> None:
        self.biases[...] = 0.0
        self.synaptic_weights[...] = glorot_uniform(
            rng, self.synaptic_weights.shape, self.inputs_number, self.neurons_number
        )

    def _activate(self, combinations: Array) -> Array:
        if self.activation is ProbabilisticActivation.LOGISTIC:
            return logistic(combinations)
        if self.activation is ProbabilisticActivation.SOFTMAX:
            return softmax(combinations)
        winners = tensor.argmax(combinations, axis=1)
        outputs = np.zeros_like(combinations)
        outputs[np.arange(combinations.shape[0]), winners] = 1.0
        return outputs

    def forward(self, inputs: Array, device: Device) -> LayerForward:
        flat = check_features(inputs, self.inputs_number, self.name)
        combinations = tensor.add_along(tensor.matmul(device, flat, self.synaptic_weights), self.biases)
        return LayerForward(combinations=combinations, activations=self._activate(combinations))

    def _combination_delta(self, forward: LayerForward, delta: Array) -> Array:
        a = forward.activations
        if self.activation is ProbabilisticActivation.LOGISTIC:
            return delta * a * (1.0 - a)
        if self.activation is ProbabilisticActivation.SOFTMAX:
            return a * (delta - np.sum(delta * a, axis=1, keepdims=True))
        raise InvalidConfiguration(f"{self.name}: Competitive activation is not differentiable")

    def backward(self, inputs: Array, forward: LayerForward, delta: Array, device: Device):
        flat = check_features(inputs, self.inputs_number, self.name)
        tensor.check_shape(delta, forward.activations.shape, f"{self.name}.backward")
        dz = self._combination_delta(forward, delta)
        bias_gradient = tensor.reduce_sum(device, dz, axis=0)
        weight_gradient = tensor.matmul(device, flat.T, dz)
        input_delta = tensor.matmul(device, dz, self.synaptic_weights.T).reshape(inputs.shape)
        return input_delta, np.concatenate([bias_gradient.reshape(-1), weight_gradient.reshape(-1)])

    def per_sample_gradient(self, inputs: Array, forward: LayerForward, delta: Array) -> Array:
        flat = check_features(inputs, self.inputs_number, self.name)
        dz = self._combination_delta(forward, delta)
        weights = flat[:, :, None] * dz[:, None, :]
        return np.concatenate([dz, weights.reshape(flat.shape[0], -1)], axis=1)

    def classify(self, probabilities: Array) -> Array:
        """Hard labels: thresholded for one output, arg-max otherwise."""

        if self.neurons_number == 1:
            return (probabilities[:, 0] >= self.decision_threshold).astype(int)
        return tensor.argmax(probabilities, axis=1)

    def write_expression(self, input_names: Sequence[str], output_names: Sequence[str]) -> List[str]:
        lines = []
        combos = []
        for idx, target in enumerate(output_names):
            combo = f"{self.name}_combination_{idx}"
            combos.append(combo)
            lines.append(f"{combo} = {dense_terms(self.synaptic_weights, self.biases, input_names, idx)};")
        if self.activation is ProbabilisticActivation.LOGISTIC:
            lines.append(f"{output_names[0]} = logistic({combos[0]});")
        elif self.activation is ProbabilisticActivation.SOFTMAX:
            total = " + ".join(f"exp({combo})" for combo in combos)
            for combo, target in zip(combos, output_names):
                lines.append(f"{target} = exp({combo})/({total});")
        else:
            for idx, target in enumerate(output_names):
                others = ", ".join(combos)
                lines.append(f"{target} = competitive({idx}, {others});")
        return lines

    def to_tree(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "name": self.name,
            "inputs_number": self.inputs_number,
            "neurons_number": self.neurons_number,
            "activation": self.activation.value,
            "decision_threshold": float(self.decision_threshold),
            "biases": self.biases.tolist(),
            "synaptic_weights": self.synaptic_weights.reshape(-1).tolist(),
        }

    @classmethod
    def from_tree(cls, tree: Dict[str, Any]) -> "ProbabilisticLayer":
        inputs_number = int(tree["inputs_number"])
        neurons_number = int(tree["neurons_number"])
        return cls(
            inputs_number=inputs_number,
            neurons_number=neurons_number,
            activation=tree.get("activation"),
            decision_threshold=float(tree.get("decision_threshold", 0.5)),
            name=str(tree.get("name", "probabilistic_layer")),
            biases=tree_array(tree, "biases", (neurons_number,)),
            synaptic_weights=tree_array(tree, "synaptic_weights", (inputs_number, neurons_number)),
        )


__all__ = ["ProbabilisticActivation", "ProbabilisticLayer", "default_activation"]
