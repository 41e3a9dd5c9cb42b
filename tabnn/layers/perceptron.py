"""Fully connected layer ``activation(x W + b)``."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Sequence

import numpy as np

from ..core import tensor
from ..core.activations import ActivationFunction, activate, derivative, expression
from ..core.device import Device
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


def dense_terms(weights: Array, biases: Array, input_names: Sequence[str], index: int) -> str:
    """Return ``b + w0*x0 + ...`` for output ``index``."""

    terms = [f"{biases[index]:.12g}"]
    for row, name in enumerate(input_names):
        terms.append(f"({weights[row, index]:.12g}*{name})")
    return " + ".join(terms)


@register_layer(LayerKind.PERCEPTRON)
@dataclass
class PerceptronLayer:
    """Dense layer.

    Packing order: ``biases`` [neurons] followed by ``synaptic_weights``
    [inputs, neurons] in row-major order. Inputs of rank > 2 are flattened.
    """

    inputs_number: int
    neurons_number: int
    activation: ActivationFunction = ActivationFunction.HYPERBOLIC_TANGENT
    name: str = "perceptron_layer"
    biases: Array = field(default=None, repr=False)  # type: ignore[assignment]
    synaptic_weights: Array = field(default=None, repr=False)  # type: ignore[assignment]

    kind: ClassVar[LayerKind]

    def __post_init__(self) -> None:
        self.activation = parse_enum(ActivationFunction, self.activation)
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

    def forward(self, inputs: Array, device: Device) -> LayerForward:
        flat = check_features(inputs, self.inputs_number, self.name)
        combinations = tensor.add_along(tensor.matmul(device, flat, self.synaptic_weights), self.biases)
        activations = tensor.map_elementwise(
            device, lambda z: activate(self.activation, z), combinations
        )
        return LayerForward(combinations=combinations, activations=activations)

    def _combination_delta(self, forward: LayerForward, delta: Array) -> Array:
        slope = derivative(self.activation, forward.combinations, forward.activations)
        return delta * slope

    def backward(self, inputs: Array, forward: LayerForward, delta: Array, device: Device):
        flat = check_features(inputs, self.inputs_number, self.name)
        tensor.check_shape(delta, forward.activations.shape, f"{self.name}.backward")
        dz = self._combination_delta(forward, delta)
        bias_gradient = tensor.reduce_sum(device, dz, axis=0)
        weight_gradient = tensor.matmul(device, flat.T, dz)
        input_delta = tensor.matmul(device, dz, self.synaptic_weights.T).reshape(inputs.shape)
        return input_delta, np.concatenate([bias_gradient.reshape(-1), weight_gradient.reshape(-1)])

    def per_sample_gradient(self, inputs: Array, forward: LayerForward, delta: Array) -> Array:
        """Gradient of each sample's seeded output, shape [batch, parameters]."""

        flat = check_features(inputs, self.inputs_number, self.name)
        dz = self._combination_delta(forward, delta)
        weights = flat[:, :, None] * dz[:, None, :]
        return np.concatenate([dz, weights.reshape(flat.shape[0], -1)], axis=1)

    def write_expression(self, input_names: Sequence[str], output_names: Sequence[str]) -> List[str]:
        return [
            f"{target} = {expression(self.activation, dense_terms(self.synaptic_weights, self.biases, input_names, idx))};"
            for idx, target in enumerate(output_names)
        ]

    def to_tree(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "name": self.name,
            "inputs_number": self.inputs_number,
            "neurons_number": self.neurons_number,
            "activation": self.activation.value,
            "biases": self.biases.tolist(),
            "synaptic_weights": self.synaptic_weights.reshape(-1).tolist(),
        }

    @classmethod
    def from_tree(cls, tree: Dict[str, Any]) -> "PerceptronLayer":
        inputs_number = int(tree["inputs_number"])
        neurons_number = int(tree["neurons_number"])
        return cls(
            inputs_number=inputs_number,
            neurons_number=neurons_number,
            activation=tree.get("activation", "HyperbolicTangent"),
            name=str(tree.get("name", "perceptron_layer")),
            biases=tree_array(tree, "biases", (neurons_number,)),
            synaptic_weights=tree_array(tree, "synaptic_weights", (inputs_number, neurons_number)),
        )


__all__ = ["PerceptronLayer", "dense_terms"]
