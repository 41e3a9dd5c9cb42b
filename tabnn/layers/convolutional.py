"""Two-dimensional convolution and pooling over [batch, channels, rows, columns]."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Sequence, Tuple

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from ..core import tensor
from ..core.activations import ActivationFunction, activate, derivative, expression
from ..core.device import Device
from ..core.errors import InvalidConfiguration, ShapeMismatch
from ..core.types import SCALAR, Array, parse_enum
from .base import (
    LayerForward,
    LayerKind,
    Shape,
    empty_gradient,
    glorot_uniform,
    pack_blocks,
    register_layer,
    tree_array,
    unpack_blocks,
)


class PaddingMethod(Enum):
    VALID = "Valid"
    SAME = "Same"


class PoolingMethod(Enum):
    NO_POOLING = "NoPooling"
    MAX_POOLING = "MaxPooling"
    AVERAGE_POOLING = "AveragePooling"


def _pair(value, where: str) -> Tuple[int, int]:
    if isinstance(value, (int, np.integer)):
        value = (value, value)
    pair = tuple(int(v) for v in value)
    if len(pair) != 2 or min(pair) < 1:
        raise InvalidConfiguration(f"{where}: expected two positive integers, got {value}")
    return pair  # type: ignore[return-value]


def _as_images(inputs: Array, shape: Shape, where: str) -> Array:
    """Return ``inputs`` as [batch, *shape], accepting flattened samples."""

    if inputs.ndim < 2:
        raise ShapeMismatch(f"{where}: expected a batch, got shape {inputs.shape}")
    if tuple(inputs.shape[1:]) == tuple(shape):
        return inputs
    if math.prod(inputs.shape[1:]) != math.prod(shape):
        raise ShapeMismatch(f"{where}: expected samples of shape {tuple(shape)}, got {inputs.shape[1:]}")
    return inputs.reshape((inputs.shape[0],) + tuple(shape))


def _windows(images: Array, size: Tuple[int, int], stride: Tuple[int, int]) -> Array:
    """[batch, channels, out_rows, out_columns, size_r, size_c] view."""

    view = sliding_window_view(images, size, axis=(2, 3))
    return view[:, :, :: stride[0], :: stride[1]]


def _strided(offset: int, stride: int, count: int) -> slice:
    return slice(offset, offset + stride * (count - 1) + 1, stride)


@register_layer(LayerKind.CONVOLUTIONAL)
@dataclass
class ConvolutionalLayer:
    """Convolution with ``filters`` [filters, channels, kernel_rows, kernel_columns].

    Packing order: biases [filters], then the filters in row-major order.
    """

    input_dimensions: Tuple[int, int, int]
    filters_number: int
    kernel_size: Tuple[int, int] = (3, 3)
    stride: Tuple[int, int] = (1, 1)
    padding: PaddingMethod = PaddingMethod.VALID
    activation: ActivationFunction = ActivationFunction.RECTIFIED_LINEAR
    name: str = "convolutional_layer"
    biases: Array = field(default=None, repr=False)  # type: ignore[assignment]
    filters: Array = field(default=None, repr=False)  # type: ignore[assignment]

    kind: ClassVar[LayerKind]

    def __post_init__(self) -> None:
        self.input_dimensions = tuple(int(v) for v in self.input_dimensions)  # type: ignore[assignment]
        if len(self.input_dimensions) != 3:
            raise ShapeMismatch(f"{self.name}: input dimensions must be (channels, rows, columns)")
        self.kernel_size = _pair(self.kernel_size, f"{self.name}.kernel_size")
        self.stride = _pair(self.stride, f"{self.name}.stride")
        self.padding = parse_enum(PaddingMethod, self.padding)
        self.activation = parse_enum(ActivationFunction, self.activation)
        channels, rows, columns = self.input_dimensions
        if self.padding is PaddingMethod.VALID and (
            self.kernel_size[0] > rows or self.kernel_size[1] > columns
        ):
            raise ShapeMismatch(f"{self.name}: kernel {self.kernel_size} larger than input {(rows, columns)}")
        filter_shape = (self.filters_number, channels) + self.kernel_size
        if self.biases is None:
            self.biases = np.zeros(self.filters_number, dtype=SCALAR)
        if self.filters is None:
            self.filters = np.zeros(filter_shape, dtype=SCALAR)
        self.biases = np.asarray(self.biases, dtype=SCALAR)
        self.filters = np.asarray(self.filters, dtype=SCALAR)
        tensor.check_shape(self.biases, (self.filters_number,), f"{self.name}.biases")
        tensor.check_shape(self.filters, filter_shape, f"{self.name}.filters")

    def _padding(self) -> Tuple[Tuple[int, int], Tuple[int, int]]:
        if self.padding is PaddingMethod.VALID:
            return (0, 0), (0, 0)
        pads = []
        for extent, kernel, step in zip(self.input_dimensions[1:], self.kernel_size, self.stride):
            out = -(-extent // step)
            total = max((out - 1) * step + kernel - extent, 0)
            pads.append((total // 2, total - total // 2))
        return pads[0], pads[1]

    def _output_extent(self) -> Tuple[int, int]:
        (top, bottom), (left, right) = self._padding()
        _, rows, columns = self.input_dimensions
        return (
            (rows + top + bottom - self.kernel_size[0]) // self.stride[0] + 1,
            (columns + left + right - self.kernel_size[1]) // self.stride[1] + 1,
        )

    @property
    def input_shape(self) -> Shape:
        return tuple(self.input_dimensions)

    @property
    def output_shape(self) -> Shape:
        return (self.filters_number,) + self._output_extent()

    @property
    def trainable(self) -> bool:
        return True

    def _blocks(self) -> List[Array]:
        return [self.biases, self.filters]

    def parameter_count(self) -> int:
        return self.biases.size + self.filters.size

    def get_parameters(self) -> Array:
        out = np.empty(self.parameter_count(), dtype=SCALAR)
        self.pack_parameters(out)
        return out

    def pack_parameters(self, out: Array) -> None:
        pack_blocks(out, self._blocks(), self.name)

    def unpack_parameters(self, values: Array) -> None:
        unpack_blocks(values, self._blocks(), self.name)

    def set_parameters_random(self, rng: np.random.Generator) -> None:
        channels = self.input_dimensions[0]
        area = self.kernel_size[0] * self.kernel_size[1]
        self.biases[...] = 0.0
        self.filters[...] = glorot_uniform(
            rng, self.filters.shape, channels * area, self.filters_number * area
        )

    def _padded(self, images: Array) -> Array:
        (top, bottom), (left, right) = self._padding()
        if not (top or bottom or left or right):
            return images
        return np.pad(images, ((0, 0), (0, 0), (top, bottom), (left, right)))

    def forward(self, inputs: Array, device: Device) -> LayerForward:
        images = _as_images(inputs, self.input_shape, self.name)
        windows = _windows(self._padded(images), self.kernel_size, self.stride)
        combinations = np.einsum("bchwij,fcij->bfhw", windows, self.filters, optimize=True)
        combinations = tensor.add_along(combinations, self.biases, axis=1)
        activations = tensor.map_elementwise(
            device, lambda z: activate(self.activation, z), combinations
        )
        return LayerForward(combinations, activations, {"windows": windows})

    def backward(self, inputs: Array, forward: LayerForward, delta: Array, device: Device):
        images = _as_images(inputs, self.input_shape, self.name)
        delta = _as_images(delta, self.output_shape, self.name)
        dz = delta * derivative(self.activation, forward.combinations, forward.activations)
        windows = forward.cache["windows"]
        bias_gradient = dz.sum(axis=(0, 2, 3))
        filter_gradient = np.einsum("bchwij,bfhw->fcij", windows, dz, optimize=True)

        (top, _), (left, _) = self._padding()
        padded_shape = self._padded(images[:1]).shape[1:]
        padded_delta = np.zeros((images.shape[0],) + padded_shape, dtype=SCALAR)
        out_rows, out_columns = dz.shape[2:]
        for i in range(self.kernel_size[0]):
            for j in range(self.kernel_size[1]):
                contribution = np.einsum("bfhw,fc->bchw", dz, self.filters[:, :, i, j])
                padded_delta[
                    :, :, _strided(i, self.stride[0], out_rows), _strided(j, self.stride[1], out_columns)
                ] += contribution
        _, rows, columns = self.input_dimensions
        input_delta = padded_delta[:, :, top : top + rows, left : left + columns]
        gradient = np.concatenate([bias_gradient, filter_gradient.reshape(-1)])
        return input_delta.reshape(inputs.shape), gradient

    def per_sample_gradient(self, inputs: Array, forward: LayerForward, delta: Array) -> Array:
        delta = _as_images(delta, self.output_shape, self.name)
        dz = delta * derivative(self.activation, forward.combinations, forward.activations)
        windows = forward.cache["windows"]
        filters = np.einsum("bchwij,bfhw->bfcij", windows, dz, optimize=True)
        return np.concatenate([dz.sum(axis=(2, 3)), filters.reshape(dz.shape[0], -1)], axis=1)

    def write_expression(self, input_names: Sequence[str], output_names: Sequence[str]) -> List[str]:
        channels, rows, columns = self.input_dimensions
        (top, _), (left, _) = self._padding()
        names = np.asarray(input_names, dtype=object).reshape(channels, rows, columns)
        targets = np.asarray(output_names, dtype=object).reshape(self.output_shape)
        lines = []
        for f, h, w in np.ndindex(*self.output_shape):
            terms = [f"{self.biases[f]:.12g}"]
            for c, i, j in np.ndindex(channels, *self.kernel_size):
                r = h * self.stride[0] + i - top
                s = w * self.stride[1] + j - left
                if 0 <= r < rows and 0 <= s < columns:
                    terms.append(f"({self.filters[f, c, i, j]:.12g}*{names[c, r, s]})")
            lines.append(f"{targets[f, h, w]} = {expression(self.activation, ' + '.join(terms))};")
        return lines

    def to_tree(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "name": self.name,
            "input_dimensions": list(self.input_dimensions),
            "filters_number": self.filters_number,
            "kernel_size": list(self.kernel_size),
            "stride": list(self.stride),
            "padding": self.padding.value,
            "activation": self.activation.value,
            "biases": self.biases.tolist(),
            "filters": self.filters.reshape(-1).tolist(),
        }

    @classmethod
    def from_tree(cls, tree: Dict[str, Any]) -> "ConvolutionalLayer":
        dimensions = tuple(int(v) for v in tree["input_dimensions"])
        filters_number = int(tree["filters_number"])
        kernel = _pair(tree.get("kernel_size", (3, 3)), "kernel_size")
        return cls(
            input_dimensions=dimensions,  # type: ignore[arg-type]
            filters_number=filters_number,
            kernel_size=kernel,
            stride=_pair(tree.get("stride", (1, 1)), "stride"),
            padding=tree.get("padding", "Valid"),
            activation=tree.get("activation", "RectifiedLinear"),
            name=str(tree.get("name", "convolutional_layer")),
            biases=tree_array(tree, "biases", (filters_number,)),
            filters=tree_array(tree, "filters", (filters_number, dimensions[0]) + kernel),
        )


@register_layer(LayerKind.POOLING)
@dataclass
class PoolingLayer:
    """Max or average pooling; the stride defaults to the pool size."""

    input_dimensions: Tuple[int, int, int]
    pool_size: Tuple[int, int] = (2, 2)
    stride: Tuple[int, int] | None = None
    method: PoolingMethod = PoolingMethod.MAX_POOLING
    name: str = "pooling_layer"

    kind: ClassVar[LayerKind]

    def __post_init__(self) -> None:
        self.input_dimensions = tuple(int(v) for v in self.input_dimensions)  # type: ignore[assignment]
        if len(self.input_dimensions) != 3:
            raise ShapeMismatch(f"{self.name}: input dimensions must be (channels, rows, columns)")
        self.pool_size = _pair(self.pool_size, f"{self.name}.pool_size")
        self.stride = _pair(self.stride if self.stride is not None else self.pool_size, f"{self.name}.stride")
        self.method = parse_enum(PoolingMethod, self.method)
        _, rows, columns = self.input_dimensions
        if self.pool_size[0] > rows or self.pool_size[1] > columns:
            raise ShapeMismatch(f"{self.name}: pool {self.pool_size} larger than input {(rows, columns)}")

    @property
    def input_shape(self) -> Shape:
        return tuple(self.input_dimensions)

    @property
    def output_shape(self) -> Shape:
        if self.method is PoolingMethod.NO_POOLING:
            return tuple(self.input_dimensions)
        channels, rows, columns = self.input_dimensions
        return (
            channels,
            (rows - self.pool_size[0]) // self.stride[0] + 1,
            (columns - self.pool_size[1]) // self.stride[1] + 1,
        )

    @property
    def trainable(self) -> bool:
        return False

    def parameter_count(self) -> int:
        return 0

    def get_parameters(self) -> Array:
        return empty_gradient()

    def pack_parameters(self, out: Array) -> None:
        pack_blocks(out, [], self.name)

    def unpack_parameters(self, values: Array) -> None:
        unpack_blocks(values, [], self.name)

    def set_parameters_random(self, rng: np.random.Generator) -> None:
        return None

    def forward(self, inputs: Array, device: Device) -> LayerForward:
        images = _as_images(inputs, self.input_shape, self.name)
        if self.method is PoolingMethod.NO_POOLING:
            return LayerForward(images, images.copy())
        windows = _windows(images, self.pool_size, self.stride)
        if self.method is PoolingMethod.MAX_POOLING:
            outputs = windows.max(axis=(4, 5))
        else:
            outputs = windows.mean(axis=(4, 5))
        return LayerForward(outputs, outputs, {"windows": windows})

    def backward(self, inputs: Array, forward: LayerForward, delta: Array, device: Device):
        images = _as_images(inputs, self.input_shape, self.name)
        if self.method is PoolingMethod.NO_POOLING:
            return delta.reshape(inputs.shape).copy(), empty_gradient()
        delta = _as_images(delta, self.output_shape, self.name)
        input_delta = np.zeros_like(images, dtype=SCALAR)
        out_rows, out_columns = delta.shape[2:]
        pr, pc = self.pool_size
        if self.method is PoolingMethod.AVERAGE_POOLING:
            share = delta / (pr * pc)
            for i in range(pr):
                for j in range(pc):
                    input_delta[
                        :, :, _strided(i, self.stride[0], out_rows), _strided(j, self.stride[1], out_columns)
                    ] += share
            return input_delta.reshape(inputs.shape), empty_gradient()
        windows = forward.cache["windows"]
        winners = windows.reshape(windows.shape[:4] + (pr * pc,)).argmax(axis=4)
        b, c, h, w = np.indices(winners.shape)
        rows = h * self.stride[0] + winners // pc
        columns = w * self.stride[1] + winners % pc
        np.add.at(input_delta, (b, c, rows, columns), delta)
        return input_delta.reshape(inputs.shape), empty_gradient()

    def write_expression(self, input_names: Sequence[str], output_names: Sequence[str]) -> List[str]:
        names = np.asarray(input_names, dtype=object).reshape(self.input_shape)
        if self.method is PoolingMethod.NO_POOLING:
            return [f"{t} = {s};" for s, t in zip(names.reshape(-1), output_names)]
        targets = np.asarray(output_names, dtype=object).reshape(self.output_shape)
        pr, pc = self.pool_size
        lines = []
        for c, h, w in np.ndindex(*self.output_shape):
            cells = [
                str(names[c, h * self.stride[0] + i, w * self.stride[1] + j])
                for i, j in np.ndindex(pr, pc)
            ]
            if self.method is PoolingMethod.MAX_POOLING:
                lines.append(f"{targets[c, h, w]} = max({', '.join(cells)});")
            else:
                lines.append(f"{targets[c, h, w]} = ({' + '.join(cells)})/{pr * pc};")
        return lines

    def to_tree(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "name": self.name,
            "input_dimensions": list(self.input_dimensions),
            "pool_size": list(self.pool_size),
            "stride": list(self.stride),
            "method": self.method.value,
        }

    @classmethod
    def from_tree(cls, tree: Dict[str, Any]) -> "PoolingLayer":
        return cls(
            input_dimensions=tuple(int(v) for v in tree["input_dimensions"]),  # type: ignore[arg-type]
            pool_size=_pair(tree.get("pool_size", (2, 2)), "pool_size"),
            stride=tree.get("stride"),
            method=tree.get("method", "MaxPooling"),
            name=str(tree.get("name", "pooling_layer")),
        )


__all__ = ["ConvolutionalLayer", "PaddingMethod", "PoolingLayer", "PoolingMethod"]
