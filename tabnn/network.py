"""Layered neural network with a flat parameter vector."""

from __future__ import annotations

import copy
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Sequence

import numpy as np

from .core.activations import ActivationFunction
from .core.descriptives import Descriptives
from .core.device import Device
from .core.errors import InvalidConfiguration, ShapeMismatch, UnboundReference
from .core.types import SCALAR, Array, parse_enum
from .layers import (
    BoundingLayer,
    Layer,
    LayerForward,
    LayerKind,
    LongShortTermMemoryLayer,
    PerceptronLayer,
    ProbabilisticLayer,
    ScalingLayer,
    UnscalingLayer,
    layer_from_tree,
)

# Keys holding parameter values in layer trees; dropped when a layer is resized.
_PARAMETER_KEYS = ("biases", "synaptic_weights", "input_weights", "recurrent_weights", "filters")

# Kinds whose width can be changed by model selection.
_RESIZABLE = (
    LayerKind.PERCEPTRON,
    LayerKind.PROBABILISTIC,
    LayerKind.RECURRENT,
    LayerKind.LONG_SHORT_TERM_MEMORY,
)


class ModelType(Enum):
    APPROXIMATION = "Approximation"
    CLASSIFICATION = "Classification"
    FORECASTING = "Forecasting"
    IMAGE_APPROXIMATION = "ImageApproximation"
    IMAGE_CLASSIFICATION = "ImageClassification"


@dataclass
class ForwardPropagation:
    """Per-layer inputs and :class:`LayerForward` records of one batch."""

    inputs: List[Array] = field(default_factory=list)
    layers: List[LayerForward] = field(default_factory=list)

    @property
    def outputs(self) -> Array:
        if not self.layers:
            return self.inputs[0]
        return self.layers[-1].activations


@dataclass
class NetworkSnapshot:
    layers: List[Layer]
    input_names: List[str]
    output_names: List[str]


def _resized(layer: Layer, *, inputs_number: int | None = None, neurons_number: int | None = None) -> Layer:
    if layer.kind not in _RESIZABLE:
        raise InvalidConfiguration(f"{layer.name}: {layer.kind.value} layers cannot be resized")
    tree = {key: value for key, value in layer.to_tree().items() if key not in _PARAMETER_KEYS}
    if inputs_number is not None:
        tree["inputs_number"] = int(inputs_number)
    if neurons_number is not None:
        tree["neurons_number"] = int(neurons_number)
        if layer.kind is LayerKind.PROBABILISTIC:
            tree.pop("activation", None)
    return layer_from_tree(tree)


def _compatible(previous: Sequence[int], following: Sequence[int]) -> bool:
    # Dense layers accept flattened images and image layers accept flat rows.
    return tuple(previous) == tuple(following) or math.prod(previous) == math.prod(following)


class NeuralNetwork:
    """Ordered pipeline of layers.

    Parameters live inside the layers; :meth:`get_parameters` and
    :meth:`set_parameters` map them to one flat vector in layer order.
    """

    def __init__(
        self,
        model_type: ModelType | str = ModelType.APPROXIMATION,
        layers: Sequence[Layer] | None = None,
        input_names: Sequence[str] | None = None,
        output_names: Sequence[str] | None = None,
        device: Device | None = None,
        display: bool = True,
    ) -> None:
        self.model_type = parse_enum(ModelType, model_type)
        self.device = device or Device.single_threaded()
        self.display = bool(display)
        self.layers: List[Layer] = []
        self.input_names: List[str] = []
        self.output_names: List[str] = []
        for layer in layers or []:
            self.add_layer(layer)
        if input_names:
            self.input_names = list(input_names)
        if output_names:
            self.output_names = list(output_names)
        self._check_names()

    # ------------------------------------------------------------------
    # Construction

    @classmethod
    def from_architecture(
        cls,
        model_type: ModelType | str,
        architecture: Sequence[int],
        *,
        input_dimensions: Sequence[int] | None = None,
        input_names: Sequence[str] | None = None,
        output_names: Sequence[str] | None = None,
        device: Device | None = None,
        display: bool = True,
        seed: int | None = None,
    ) -> "NeuralNetwork":
        """Build the default layer stack for ``model_type``.

        ``architecture`` is ``[inputs, hidden_1, ..., hidden_k, outputs]``.
        Image models take ``input_dimensions`` (channels, rows, columns) and
        only receive a scaling layer.
        """

        model_type = parse_enum(ModelType, model_type)
        network = cls(model_type, device=device, display=display)
        if model_type in (ModelType.IMAGE_APPROXIMATION, ModelType.IMAGE_CLASSIFICATION):
            if input_dimensions is None:
                raise InvalidConfiguration("Image models need input_dimensions (channels, rows, columns)")
            dims = tuple(int(v) for v in input_dimensions)
            network.add_layer(ScalingLayer(Descriptives.default(math.prod(dims)), sample_shape=dims))
        else:
            sizes = [int(v) for v in architecture]
            if len(sizes) < 2 or min(sizes) < 1:
                raise InvalidConfiguration(f"Architecture needs positive inputs and outputs, got {sizes}")
            inputs, hidden, outputs = sizes[0], sizes[1:-1], sizes[-1]
            network.add_layer(ScalingLayer(Descriptives.default(inputs)))
            width = inputs
            if model_type is ModelType.FORECASTING and hidden:
                network.add_layer(LongShortTermMemoryLayer(width, hidden[0]))
                width, hidden = hidden[0], hidden[1:]
            for idx, neurons in enumerate(hidden, start=1):
                network.add_layer(PerceptronLayer(width, neurons, name=f"perceptron_layer_{idx}"))
                width = neurons
            if model_type is ModelType.CLASSIFICATION:
                network.add_layer(ProbabilisticLayer(width, outputs))
            else:
                network.add_layer(
                    PerceptronLayer(
                        width,
                        outputs,
                        activation=ActivationFunction.LINEAR,
                        name=f"perceptron_layer_{len(hidden) + 1}",
                    )
                )
                network.add_layer(UnscalingLayer(Descriptives.default(outputs)))
                if model_type is ModelType.APPROXIMATION:
                    network.add_layer(BoundingLayer(outputs))
        if input_names:
            network.input_names = list(input_names)
        if output_names:
            network.output_names = list(output_names)
        network._check_names()
        network.set_parameters_random(seed)
        return network

    @staticmethod
    def _default_names(prefix: str, count: int) -> List[str]:
        return [f"{prefix}_{idx + 1}" for idx in range(count)]

    def _check_names(self) -> None:
        if self.layers and len(self.input_names) != self.inputs_number:
            raise ShapeMismatch(f"{len(self.input_names)} input names for {self.inputs_number} inputs")
        if self.layers and len(self.output_names) != self.outputs_number:
            raise ShapeMismatch(f"{len(self.output_names)} output names for {self.outputs_number} outputs")

    def add_layer(self, layer: Layer) -> None:
        if layer.kind is LayerKind.SCALING and self.layers:
            raise InvalidConfiguration("A scaling layer may only be the first layer")
        if self.layers:
            previous = self.layers[-1]
            if not _compatible(previous.output_shape, layer.input_shape):
                raise ShapeMismatch(
                    f"{layer.name}: input shape {layer.input_shape} does not follow "
                    f"{previous.name} output shape {previous.output_shape}"
                )
            if any(existing.name == layer.name for existing in self.layers):
                layer.name = f"{layer.name}_{len(self.layers)}"
        self.layers.append(layer)
        if len(self.input_names) != self.inputs_number:
            self.input_names = self._default_names("input", self.inputs_number)
        if len(self.output_names) != self.outputs_number:
            self.output_names = self._default_names("output", self.outputs_number)

    # ------------------------------------------------------------------
    # Accessors

    @property
    def inputs_number(self) -> int:
        return math.prod(self.layers[0].input_shape) if self.layers else 0

    @property
    def outputs_number(self) -> int:
        return math.prod(self.layers[-1].output_shape) if self.layers else 0

    def is_empty(self) -> bool:
        return not self.layers

    def check_layout(self) -> None:
        """A non-empty network starts with its only scaling layer."""

        if not self.layers:
            return
        if self.layers[0].kind is not LayerKind.SCALING:
            raise InvalidConfiguration(
                f"Neural network must start with a scaling layer, found {self.layers[0].name}"
            )
        if any(layer.kind is LayerKind.SCALING for layer in self.layers[1:]):
            raise InvalidConfiguration("Neural network has more than one scaling layer")

    def has_layer(self, kind: LayerKind | str) -> bool:
        kind = parse_enum(LayerKind, kind)
        return any(layer.kind is kind for layer in self.layers)

    def _first(self, kind: LayerKind) -> Layer | None:
        return next((layer for layer in self.layers if layer.kind is kind), None)

    def scaling_layer(self) -> ScalingLayer | None:
        return self._first(LayerKind.SCALING)  # type: ignore[return-value]

    def unscaling_layer(self) -> UnscalingLayer | None:
        return self._first(LayerKind.UNSCALING)  # type: ignore[return-value]

    def bounding_layer(self) -> BoundingLayer | None:
        return self._first(LayerKind.BOUNDING)  # type: ignore[return-value]

    def probabilistic_layer(self) -> ProbabilisticLayer | None:
        return self._first(LayerKind.PROBABILISTIC)  # type: ignore[return-value]

    def trainable_layers(self) -> List[Layer]:
        return [layer for layer in self.layers if layer.trainable]

    def set_display(self, display: bool) -> None:
        self.display = bool(display)

    def set_descriptives(
        self,
        inputs: Descriptives | None = None,
        targets: Descriptives | None = None,
    ) -> None:
        """Install data statistics in the scaling and unscaling layers."""

        scaling, unscaling = self.scaling_layer(), self.unscaling_layer()
        if inputs is not None and scaling is not None:
            if inputs.size != scaling.features:
                raise ShapeMismatch(f"{scaling.name}: {inputs.size} descriptives for {scaling.features} inputs")
            scaling.descriptives = inputs
        if targets is not None and unscaling is not None:
            if targets.size != unscaling.features:
                raise ShapeMismatch(f"{unscaling.name}: {targets.size} descriptives for {unscaling.features} outputs")
            unscaling.descriptives = targets

    def describe(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": layer.name,
                "kind": layer.kind.value,
                "input_shape": list(layer.input_shape),
                "output_shape": list(layer.output_shape),
                "parameters": layer.parameter_count(),
            }
            for layer in self.layers
        ]

    def architecture_string(self) -> str:
        if not self.layers:
            return "(empty)"
        widths = [str(self.inputs_number)]
        widths += ["x".join(str(v) for v in layer.output_shape) for layer in self.layers if layer.trainable]
        return "-".join(widths)

    # ------------------------------------------------------------------
    # Parameters

    def parameter_count(self) -> int:
        return sum(layer.parameter_count() for layer in self.trainable_layers())

    def get_parameters(self) -> Array:
        out = np.empty(self.parameter_count(), dtype=SCALAR)
        offset = 0
        for layer in self.trainable_layers():
            count = layer.parameter_count()
            layer.pack_parameters(out[offset : offset + count])
            offset += count
        return out

    def set_parameters(self, parameters) -> None:
        parameters = np.asarray(parameters, dtype=SCALAR)
        expected = self.parameter_count()
        if parameters.shape != (expected,):
            raise ShapeMismatch(f"set_parameters: expected ({expected},), got {parameters.shape}")
        offset = 0
        for layer in self.trainable_layers():
            count = layer.parameter_count()
            layer.unpack_parameters(parameters[offset : offset + count])
            offset += count

    def set_parameters_random(self, seed: int | None = None) -> None:
        rng = np.random.default_rng(seed)
        for layer in self.layers:
            layer.set_parameters_random(rng)

    # ------------------------------------------------------------------
    # Propagation

    def _check_inputs(self, inputs: Array) -> Array:
        if not self.layers:
            raise UnboundReference("Neural network has no layers")
        inputs = np.asarray(inputs, dtype=SCALAR)
        if inputs.ndim < 2 or inputs.shape[0] == 0:
            raise ShapeMismatch(f"Neural network: expected a non-empty batch, got {inputs.shape}")
        if math.prod(inputs.shape[1:]) != self.inputs_number:
            raise ShapeMismatch(
                f"Neural network: expected {self.inputs_number} inputs per sample, got {inputs.shape[1:]}"
            )
        return inputs

    def forward_propagate(self, inputs: Array) -> ForwardPropagation:
        current = self._check_inputs(inputs)
        propagation = ForwardPropagation()
        for layer in self.layers:
            propagation.inputs.append(current)
            result = layer.forward(current, self.device)
            propagation.layers.append(result)
            current = result.activations
        return propagation

    def calculate_outputs(self, inputs: Array) -> Array:
        outputs = self.forward_propagate(inputs).outputs
        return outputs.reshape(outputs.shape[0], -1).copy()

    def back_propagate(self, propagation: ForwardPropagation, output_delta: Array) -> Array:
        """Flat d loss / d parameters for ``output_delta`` = d loss / d outputs."""

        delta = np.asarray(output_delta, dtype=SCALAR).reshape(propagation.outputs.shape)
        gradients: List[Array] = []
        first_trainable = next((idx for idx, layer in enumerate(self.layers) if layer.trainable), None)
        for idx in range(len(self.layers) - 1, -1, -1):
            if first_trainable is None or idx < first_trainable:
                break
            layer = self.layers[idx]
            delta, gradient = layer.backward(propagation.inputs[idx], propagation.layers[idx], delta, self.device)
            if layer.trainable:
                gradients.append(gradient)
        if not gradients:
            return np.zeros(0, dtype=SCALAR)
        return np.concatenate(gradients[::-1])

    def calculate_jacobian(self, propagation: ForwardPropagation) -> Array:
        """d outputs / d parameters per sample, shape [batch * outputs, parameters].

        Row ``s * outputs + k`` holds the gradient of output ``k`` of sample
        ``s``. Only layers whose samples are independent support this.
        """

        for layer in self.trainable_layers():
            if not hasattr(layer, "per_sample_gradient"):
                raise InvalidConfiguration(
                    f"{layer.name}: {layer.kind.value} layers do not provide per-sample Jacobians"
                )
        outputs = propagation.outputs.reshape(propagation.outputs.shape[0], -1)
        batch, count = outputs.shape
        first_trainable = next(idx for idx, layer in enumerate(self.layers) if layer.trainable)
        columns = []
        for k in range(count):
            seed = np.zeros_like(outputs)
            seed[:, k] = 1.0
            delta = seed.reshape(propagation.outputs.shape)
            blocks: List[Array] = []
            for idx in range(len(self.layers) - 1, first_trainable - 1, -1):
                layer = self.layers[idx]
                inputs, forward = propagation.inputs[idx], propagation.layers[idx]
                if layer.trainable:
                    blocks.append(layer.per_sample_gradient(inputs, forward, delta))
                if idx > first_trainable:
                    delta, _ = layer.backward(inputs, forward, delta, self.device)
            columns.append(np.concatenate(blocks[::-1], axis=1))
        return np.stack(columns, axis=1).reshape(batch * count, -1)

    # ------------------------------------------------------------------
    # Model-selection hooks

    def set_inputs_number(
        self,
        inputs_number: int,
        input_names: Sequence[str] | None = None,
        descriptives: Descriptives | None = None,
        seed: int | None = None,
    ) -> None:
        """Rebuild the input side for ``inputs_number`` inputs with fresh parameters."""

        if not self.layers:
            raise UnboundReference("Neural network has no layers")
        if inputs_number < 1:
            raise InvalidConfiguration(f"Neural network needs at least one input, got {inputs_number}")
        rng = np.random.default_rng(seed)
        position = 0
        scaling = self.scaling_layer()
        if scaling is not None:
            stats = descriptives or Descriptives.default(inputs_number)
            self.layers[0] = ScalingLayer(stats, method=scaling.method, name=scaling.name)
            position = 1
        if position >= len(self.layers):
            raise InvalidConfiguration("Neural network has no layer after its scaling layer")
        resized = _resized(self.layers[position], inputs_number=inputs_number)
        resized.set_parameters_random(rng)
        self.layers[position] = resized
        self.input_names = list(input_names) if input_names else self._default_names("input", inputs_number)
        self._check_names()

    def hidden_layer_indices(self) -> List[int]:
        trainable = [idx for idx, layer in enumerate(self.layers) if layer.trainable]
        return trainable[:-1]

    def set_hidden_neurons(self, neurons_number: int, layer_index: int | None = None, seed: int | None = None) -> None:
        """Resize a hidden layer (default: the first) and the trainable layer after it."""

        if neurons_number < 1:
            raise InvalidConfiguration(f"Hidden layers need at least one neuron, got {neurons_number}")
        hidden = self.hidden_layer_indices()
        if not hidden:
            raise InvalidConfiguration("Neural network has no hidden layer to resize")
        index = hidden[0] if layer_index is None else layer_index
        if index not in hidden:
            raise InvalidConfiguration(f"Layer {index} is not a hidden layer")
        following = next(idx for idx in range(index + 1, len(self.layers)) if self.layers[idx].trainable)
        if following != index + 1:
            raise InvalidConfiguration(f"Layer {index} is not directly followed by a trainable layer")
        rng = np.random.default_rng(seed)
        self.layers[index] = _resized(self.layers[index], neurons_number=neurons_number)
        self.layers[following] = _resized(self.layers[following], inputs_number=neurons_number)
        self.layers[index].set_parameters_random(rng)
        self.layers[following].set_parameters_random(rng)

    def hidden_neurons(self, layer_index: int | None = None) -> int:
        hidden = self.hidden_layer_indices()
        if not hidden:
            return 0
        index = hidden[0] if layer_index is None else layer_index
        return math.prod(self.layers[index].output_shape)

    def snapshot(self) -> NetworkSnapshot:
        return NetworkSnapshot(copy.deepcopy(self.layers), list(self.input_names), list(self.output_names))

    def restore(self, snapshot: NetworkSnapshot) -> None:
        self.layers = copy.deepcopy(snapshot.layers)
        self.input_names = list(snapshot.input_names)
        self.output_names = list(snapshot.output_names)

    # ------------------------------------------------------------------
    # Export

    def write_expression(self) -> str:
        if not self.layers:
            raise UnboundReference("Neural network has no layers")
        lines: List[str] = []
        names = list(self.input_names)
        for idx, layer in enumerate(self.layers):
            if idx == len(self.layers) - 1:
                outputs = list(self.output_names)
            else:
                outputs = [f"{layer.name}_output_{j}" for j in range(math.prod(layer.output_shape))]
            lines.extend(layer.write_expression(names, outputs))
            names = outputs
        return "\n".join(lines)

    def to_tree(self) -> Dict[str, Any]:
        return {
            "model_type": self.model_type.value,
            "input_names": list(self.input_names),
            "output_names": list(self.output_names),
            "display": self.display,
            "layers": [layer.to_tree() for layer in self.layers],
        }

    @classmethod
    def from_tree(cls, tree: Dict[str, Any], device: Device | None = None) -> "NeuralNetwork":
        layers = [layer_from_tree(item) for item in tree.get("layers", [])]
        return cls(
            model_type=tree.get("model_type", "Approximation"),
            layers=layers,
            input_names=tree.get("input_names"),
            output_names=tree.get("output_names"),
            device=device,
            display=bool(tree.get("display", True)),
        )


__all__ = ["ForwardPropagation", "ModelType", "NetworkSnapshot", "NeuralNetwork"]
