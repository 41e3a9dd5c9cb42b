"""Recurrent and long short-term memory layers.

Both treat the rows of a batch as consecutive time steps. The hidden state
(and the LSTM cell state) is carried across ``timesteps`` rows and reset to
zero at the start of every sequence, i.e. at rows ``0, timesteps,
2*timesteps, ...``. Gradients are computed by back-propagation through time
within each sequence.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Sequence

import numpy as np

from ..core import tensor
from ..core.activations import ActivationFunction, activate, derivative, expression
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

GATES = ("forget", "input", "state", "output")


def sequence_starts(rows: int, timesteps: int) -> Array:
    """Boolean mask of the rows that open a new sequence."""

    return (np.arange(rows) % timesteps) == 0


def _check_timesteps(timesteps: int, where: str) -> int:
    timesteps = int(timesteps)
    if timesteps < 1:
        raise InvalidConfiguration(f"{where}: timesteps must be positive, got {timesteps}")
    return timesteps


@register_layer(LayerKind.RECURRENT)
@dataclass
class RecurrentLayer:
    """``h_t = activation(x_t W + h_{t-1} R + b)``.

    Packing order: biases [neurons], input weights [inputs, neurons],
    recurrent weights [neurons, neurons].
    """

    inputs_number: int
    neurons_number: int
    timesteps: int = 1
    activation: ActivationFunction = ActivationFunction.HYPERBOLIC_TANGENT
    name: str = "recurrent_layer"
    biases: Array = field(default=None, repr=False)  # type: ignore[assignment]
    input_weights: Array = field(default=None, repr=False)  # type: ignore[assignment]
    recurrent_weights: Array = field(default=None, repr=False)  # type: ignore[assignment]

    kind: ClassVar[LayerKind]

    def __post_init__(self) -> None:
        self.activation = parse_enum(ActivationFunction, self.activation)
        self.timesteps = _check_timesteps(self.timesteps, self.name)
        n_in, n = self.inputs_number, self.neurons_number
        if self.biases is None:
            self.biases = np.zeros(n, dtype=SCALAR)
        if self.input_weights is None:
            self.input_weights = np.zeros((n_in, n), dtype=SCALAR)
        if self.recurrent_weights is None:
            self.recurrent_weights = np.zeros((n, n), dtype=SCALAR)
        self.biases = np.asarray(self.biases, dtype=SCALAR)
        self.input_weights = np.asarray(self.input_weights, dtype=SCALAR)
        self.recurrent_weights = np.asarray(self.recurrent_weights, dtype=SCALAR)
        tensor.check_shape(self.biases, (n,), f"{self.name}.biases")
        tensor.check_shape(self.input_weights, (n_in, n), f"{self.name}.input_weights")
        tensor.check_shape(self.recurrent_weights, (n, n), f"{self.name}.recurrent_weights")

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
        return [self.biases, self.input_weights, self.recurrent_weights]

    def parameter_count(self) -> int:
        n = self.neurons_number
        return n * (1 + self.inputs_number + n)

    def get_parameters(self) -> Array:
        out = np.empty(self.parameter_count(), dtype=SCALAR)
        self.pack_parameters(out)
        return out

    def pack_parameters(self, out: Array) -> None:
        pack_blocks(out, self._blocks(), self.name)

    def unpack_parameters(self, values: Array) -> None:
        unpack_blocks(values, self._blocks(), self.name)

    def set_parameters_random(self, rng: np.random.Generator) -> None:
        n = self.neurons_number
        self.biases[...] = 0.0
        self.input_weights[...] = glorot_uniform(rng, self.input_weights.shape, self.inputs_number, n)
        self.recurrent_weights[...] = glorot_uniform(rng, self.recurrent_weights.shape, n, n)

    def forward(self, inputs: Array, device: Device) -> LayerForward:
        flat = check_features(inputs, self.inputs_number, self.name)
        rows = flat.shape[0]
        projected = tensor.add_along(tensor.matmul(device, flat, self.input_weights), self.biases)
        starts = sequence_starts(rows, self.timesteps)
        combinations = np.empty_like(projected)
        activations = np.empty_like(projected)
        previous = np.zeros((rows, self.neurons_number), dtype=SCALAR)
        hidden = np.zeros(self.neurons_number, dtype=SCALAR)
        for t in range(rows):
            if starts[t]:
                hidden = np.zeros(self.neurons_number, dtype=SCALAR)
            previous[t] = hidden
            combinations[t] = projected[t] + hidden @ self.recurrent_weights
            hidden = activate(self.activation, combinations[t])
            activations[t] = hidden
        return LayerForward(combinations, activations, {"previous": previous, "starts": starts})

    def _combination_deltas(self, forward: LayerForward, delta: Array) -> Array:
        slope = derivative(self.activation, forward.combinations, forward.activations)
        starts = forward.cache["starts"]
        dz = np.zeros_like(delta)
        carry = np.zeros(self.neurons_number, dtype=SCALAR)
        for t in range(delta.shape[0] - 1, -1, -1):
            dz[t] = (delta[t] + carry) * slope[t]
            carry = np.zeros_like(carry) if starts[t] else dz[t] @ self.recurrent_weights.T
        return dz

    def backward(self, inputs: Array, forward: LayerForward, delta: Array, device: Device):
        flat = check_features(inputs, self.inputs_number, self.name)
        tensor.check_shape(delta, forward.activations.shape, f"{self.name}.backward")
        dz = self._combination_deltas(forward, delta)
        gradient = np.concatenate(
            [
                tensor.reduce_sum(device, dz, axis=0).reshape(-1),
                tensor.matmul(device, flat.T, dz).reshape(-1),
                tensor.matmul(device, forward.cache["previous"].T, dz).reshape(-1),
            ]
        )
        input_delta = tensor.matmul(device, dz, self.input_weights.T).reshape(inputs.shape)
        return input_delta, gradient

    def write_expression(self, input_names: Sequence[str], output_names: Sequence[str]) -> List[str]:
        state = [f"{self.name}_hidden_state_{idx}" for idx in range(self.neurons_number)]
        lines = []
        for idx, target in enumerate(output_names):
            terms = [f"{self.biases[idx]:.12g}"]
            terms += [f"({self.input_weights[row, idx]:.12g}*{name})" for row, name in enumerate(input_names)]
            terms += [f"({self.recurrent_weights[row, idx]:.12g}*{name})" for row, name in enumerate(state)]
            lines.append(f"{target} = {expression(self.activation, ' + '.join(terms))};")
        lines += [f"{name} = {target};" for name, target in zip(state, output_names)]
        return lines

    def to_tree(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "name": self.name,
            "inputs_number": self.inputs_number,
            "neurons_number": self.neurons_number,
            "timesteps": self.timesteps,
            "activation": self.activation.value,
            "biases": self.biases.tolist(),
            "input_weights": self.input_weights.reshape(-1).tolist(),
            "recurrent_weights": self.recurrent_weights.reshape(-1).tolist(),
        }

    @classmethod
    def from_tree(cls, tree: Dict[str, Any]) -> "RecurrentLayer":
        n_in = int(tree["inputs_number"])
        n = int(tree["neurons_number"])
        return cls(
            inputs_number=n_in,
            neurons_number=n,
            timesteps=int(tree.get("timesteps", 1)),
            activation=tree.get("activation", "HyperbolicTangent"),
            name=str(tree.get("name", "recurrent_layer")),
            biases=tree_array(tree, "biases", (n,)),
            input_weights=tree_array(tree, "input_weights", (n_in, n)),
            recurrent_weights=tree_array(tree, "recurrent_weights", (n, n)),
        )


@register_layer(LayerKind.LONG_SHORT_TERM_MEMORY)
@dataclass
class LongShortTermMemoryLayer:
    """LSTM layer with forget, input, state and output gates.

    Parameters are stacked per gate in the order of :data:`GATES`; packing
    order is the four bias vectors, the four input-weight matrices
    [inputs, neurons] and the four recurrent-weight matrices
    [neurons, neurons].
    """

    inputs_number: int
    neurons_number: int
    timesteps: int = 1
    activation: ActivationFunction = ActivationFunction.HYPERBOLIC_TANGENT
    recurrent_activation: ActivationFunction = ActivationFunction.LOGISTIC
    name: str = "long_short_term_memory_layer"
    biases: Array = field(default=None, repr=False)  # type: ignore[assignment]
    input_weights: Array = field(default=None, repr=False)  # type: ignore[assignment]
    recurrent_weights: Array = field(default=None, repr=False)  # type: ignore[assignment]

    kind: ClassVar[LayerKind]

    def __post_init__(self) -> None:
        self.activation = parse_enum(ActivationFunction, self.activation)
        self.recurrent_activation = parse_enum(ActivationFunction, self.recurrent_activation)
        self.timesteps = _check_timesteps(self.timesteps, self.name)
        n_in, n = self.inputs_number, self.neurons_number
        if self.biases is None:
            self.biases = np.zeros((4, n), dtype=SCALAR)
        if self.input_weights is None:
            self.input_weights = np.zeros((4, n_in, n), dtype=SCALAR)
        if self.recurrent_weights is None:
            self.recurrent_weights = np.zeros((4, n, n), dtype=SCALAR)
        self.biases = np.asarray(self.biases, dtype=SCALAR)
        self.input_weights = np.asarray(self.input_weights, dtype=SCALAR)
        self.recurrent_weights = np.asarray(self.recurrent_weights, dtype=SCALAR)
        tensor.check_shape(self.biases, (4, n), f"{self.name}.biases")
        tensor.check_shape(self.input_weights, (4, n_in, n), f"{self.name}.input_weights")
        tensor.check_shape(self.recurrent_weights, (4, n, n), f"{self.name}.recurrent_weights")

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
        return [self.biases, self.input_weights, self.recurrent_weights]

    def parameter_count(self) -> int:
        n = self.neurons_number
        return 4 * n * (1 + self.inputs_number + n)

    def get_parameters(self) -> Array:
        out = np.empty(self.parameter_count(), dtype=SCALAR)
        self.pack_parameters(out)
        return out

    def pack_parameters(self, out: Array) -> None:
        pack_blocks(out, self._blocks(), self.name)

    def unpack_parameters(self, values: Array) -> None:
        unpack_blocks(values, self._blocks(), self.name)

    def set_parameters_random(self, rng: np.random.Generator) -> None:
        n = self.neurons_number
        self.biases[...] = 0.0
        for gate in range(4):
            self.input_weights[gate] = glorot_uniform(rng, (self.inputs_number, n), self.inputs_number, n)
            self.recurrent_weights[gate] = glorot_uniform(rng, (n, n), n, n)

    def forward(self, inputs: Array, device: Device) -> LayerForward:
        flat = check_features(inputs, self.inputs_number, self.name)
        rows, n = flat.shape[0], self.neurons_number
        projected = [
            tensor.add_along(tensor.matmul(device, flat, self.input_weights[g]), self.biases[g])
            for g in range(4)
        ]
        starts = sequence_starts(rows, self.timesteps)
        combos = np.empty((4, rows, n), dtype=SCALAR)
        gates = np.empty((4, rows, n), dtype=SCALAR)
        cells = np.empty((rows, n), dtype=SCALAR)
        previous_hidden = np.zeros((rows, n), dtype=SCALAR)
        previous_cells = np.zeros((rows, n), dtype=SCALAR)
        outputs = np.empty((rows, n), dtype=SCALAR)
        hidden = np.zeros(n, dtype=SCALAR)
        cell = np.zeros(n, dtype=SCALAR)
        for t in range(rows):
            if starts[t]:
                hidden = np.zeros(n, dtype=SCALAR)
                cell = np.zeros(n, dtype=SCALAR)
            previous_hidden[t] = hidden
            previous_cells[t] = cell
            for g in range(4):
                combos[g, t] = projected[g][t] + hidden @ self.recurrent_weights[g]
                function = self.activation if GATES[g] == "state" else self.recurrent_activation
                gates[g, t] = activate(function, combos[g, t])
            forget, inp, candidate, out = gates[:, t]
            cell = forget * cell + inp * candidate
            hidden = out * activate(self.activation, cell)
            cells[t] = cell
            outputs[t] = hidden
        cache = {
            "combos": combos,
            "gates": gates,
            "previous_hidden": previous_hidden,
            "previous_cells": previous_cells,
            "starts": starts,
        }
        return LayerForward(combinations=cells, activations=outputs, cache=cache)

    def _combination_deltas(self, forward: LayerForward, delta: Array) -> Array:
        cache = forward.cache
        combos, gates, starts = cache["combos"], cache["gates"], cache["starts"]
        cells = forward.combinations
        cell_act = activate(self.activation, cells)
        cell_slope = derivative(self.activation, cells, cell_act)
        slopes = [
            derivative(
                self.activation if GATES[g] == "state" else self.recurrent_activation,
                combos[g],
                gates[g],
            )
            for g in range(4)
        ]
        n = self.neurons_number
        dz = np.zeros_like(combos)
        hidden_carry = np.zeros(n, dtype=SCALAR)
        cell_carry = np.zeros(n, dtype=SCALAR)
        for t in range(delta.shape[0] - 1, -1, -1):
            forget, inp, candidate, out = gates[:, t]
            dh = delta[t] + hidden_carry
            dc = dh * out * cell_slope[t] + cell_carry
            dz[0, t] = dc * cache["previous_cells"][t] * slopes[0][t]
            dz[1, t] = dc * candidate * slopes[1][t]
            dz[2, t] = dc * inp * slopes[2][t]
            dz[3, t] = dh * cell_act[t] * slopes[3][t]
            if starts[t]:
                hidden_carry = np.zeros(n, dtype=SCALAR)
                cell_carry = np.zeros(n, dtype=SCALAR)
            else:
                hidden_carry = sum(dz[g, t] @ self.recurrent_weights[g].T for g in range(4))
                cell_carry = dc * forget
        return dz

    def backward(self, inputs: Array, forward: LayerForward, delta: Array, device: Device):
        flat = check_features(inputs, self.inputs_number, self.name)
        tensor.check_shape(delta, forward.activations.shape, f"{self.name}.backward")
        dz = self._combination_deltas(forward, delta)
        previous = forward.cache["previous_hidden"]
        bias_gradient = np.stack([tensor.reduce_sum(device, dz[g], axis=0) for g in range(4)])
        input_gradient = np.stack([tensor.matmul(device, flat.T, dz[g]) for g in range(4)])
        recurrent_gradient = np.stack([tensor.matmul(device, previous.T, dz[g]) for g in range(4)])
        input_delta = sum(tensor.matmul(device, dz[g], self.input_weights[g].T) for g in range(4))
        gradient = np.concatenate(
            [bias_gradient.reshape(-1), input_gradient.reshape(-1), recurrent_gradient.reshape(-1)]
        )
        return input_delta.reshape(inputs.shape), gradient

    def write_expression(self, input_names: Sequence[str], output_names: Sequence[str]) -> List[str]:
        hidden = [f"{self.name}_hidden_state_{idx}" for idx in range(self.neurons_number)]
        cell = [f"{self.name}_cell_state_{idx}" for idx in range(self.neurons_number)]
        lines = []
        for g, gate in enumerate(GATES):
            function = self.activation if gate == "state" else self.recurrent_activation
            for idx in range(self.neurons_number):
                terms = [f"{self.biases[g, idx]:.12g}"]
                terms += [
                    f"({self.input_weights[g, row, idx]:.12g}*{name})" for row, name in enumerate(input_names)
                ]
                terms += [
                    f"({self.recurrent_weights[g, row, idx]:.12g}*{name})" for row, name in enumerate(hidden)
                ]
                lines.append(f"{self.name}_{gate}_gate_{idx} = {expression(function, ' + '.join(terms))};")
        for idx, target in enumerate(output_names):
            lines.append(
                f"{cell[idx]} = {self.name}_forget_gate_{idx}*{cell[idx]}"
                f" + {self.name}_input_gate_{idx}*{self.name}_state_gate_{idx};"
            )
            lines.append(
                f"{target} = {self.name}_output_gate_{idx}*{expression(self.activation, cell[idx])};"
            )
        lines += [f"{name} = {target};" for name, target in zip(hidden, output_names)]
        return lines

    def to_tree(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "name": self.name,
            "inputs_number": self.inputs_number,
            "neurons_number": self.neurons_number,
            "timesteps": self.timesteps,
            "activation": self.activation.value,
            "recurrent_activation": self.recurrent_activation.value,
            "biases": self.biases.reshape(-1).tolist(),
            "input_weights": self.input_weights.reshape(-1).tolist(),
            "recurrent_weights": self.recurrent_weights.reshape(-1).tolist(),
        }

    @classmethod
    def from_tree(cls, tree: Dict[str, Any]) -> "LongShortTermMemoryLayer":
        n_in = int(tree["inputs_number"])
        n = int(tree["neurons_number"])
        return cls(
            inputs_number=n_in,
            neurons_number=n,
            timesteps=int(tree.get("timesteps", 1)),
            activation=tree.get("activation", "HyperbolicTangent"),
            recurrent_activation=tree.get("recurrent_activation", "Logistic"),
            name=str(tree.get("name", "long_short_term_memory_layer")),
            biases=tree_array(tree, "biases", (4, n)),
            input_weights=tree_array(tree, "input_weights", (4, n_in, n)),
            recurrent_weights=tree_array(tree, "recurrent_weights", (4, n, n)),
        )


__all__ = ["GATES", "LongShortTermMemoryLayer", "RecurrentLayer", "sequence_starts"]
