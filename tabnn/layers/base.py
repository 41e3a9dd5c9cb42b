"""Layer contract shared by every layer kind.

Layers form a tagged variant: each kind is an independent dataclass carrying a
``kind`` tag and implementing :class:`Layer`; nothing inherits from a common
base. The registry maps tags back to classes for deserialisation.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, List, MutableMapping, Protocol, Sequence, Tuple

import numpy as np

from ..core.device import Device
from ..core.errors import InvalidConfiguration, ShapeMismatch
from ..core.types import SCALAR, Array, parse_enum

Shape = Tuple[int, ...]


class LayerKind(Enum):
    SCALING = "Scaling"
    UNSCALING = "Unscaling"
    BOUNDING = "Bounding"
    PERCEPTRON = "Perceptron"
    PROBABILISTIC = "Probabilistic"
    RECURRENT = "Recurrent"
    LONG_SHORT_TERM_MEMORY = "LongShortTermMemory"
    CONVOLUTIONAL = "Convolutional"
    POOLING = "Pooling"
    PRINCIPAL_COMPONENTS = "PrincipalComponents"


@dataclass
class LayerForward:
    """Combinations and activations of one layer for one batch."""

    combinations: Array
    activations: Array
    cache: Dict[str, Any] = field(default_factory=dict)


class Layer(Protocol):
    """Operations every layer kind provides."""

    kind: ClassVar[LayerKind]
    name: str

    @property
    def input_shape(self) -> Shape:
        """Shape of one sample entering the layer."""

    @property
    def output_shape(self) -> Shape:
        """Shape of one sample leaving the layer."""

    @property
    def trainable(self) -> bool:
        """Whether the layer owns parameters updated by optimizers."""

    def parameter_count(self) -> int:
        ...

    def get_parameters(self) -> Array:
        ...

    def pack_parameters(self, out: Array) -> None:
        """Write the parameters into ``out`` (a slice of the network vector)."""

    def unpack_parameters(self, values: Array) -> None:
        """Read the parameters from ``values``."""

    def set_parameters_random(self, rng: np.random.Generator) -> None:
        ...

    def forward(self, inputs: Array, device: Device) -> LayerForward:
        ...

    def backward(
        self, inputs: Array, forward: LayerForward, delta: Array, device: Device
    ) -> tuple[Array, Array]:
        """Return (d loss / d inputs, flat d loss / d parameters)."""

    def write_expression(self, input_names: Sequence[str], output_names: Sequence[str]) -> List[str]:
        ...

    def to_tree(self) -> Dict[str, Any]:
        ...


LayerFactory = Callable[[Dict[str, Any]], Layer]

_REGISTRY: MutableMapping[LayerKind, LayerFactory] = {}


def register_layer(kind: LayerKind) -> Callable[[type], type]:
    """Class decorator registering ``cls.from_tree`` for ``kind``."""

    def _decorator(cls: type) -> type:
        cls.kind = kind
        _REGISTRY[kind] = cls.from_tree  # type: ignore[attr-defined]
        return cls

    return _decorator


def layer_from_tree(tree: Dict[str, Any]) -> Layer:
    kind = parse_enum(LayerKind, tree.get("kind"))
    try:
        factory = _REGISTRY[kind]
    except KeyError as exc:  # pragma: no cover - every kind registers on import
        raise InvalidConfiguration(f"No layer registered for {kind.value}") from exc
    return factory(tree)


# ----------------------------------------------------------------------
# Helpers shared by several kinds


def flatten_samples(inputs: Array) -> Array:
    return inputs.reshape(inputs.shape[0], -1)


def check_features(inputs: Array, expected: int, where: str) -> Array:
    """Return ``inputs`` as [batch, expected], flattening non-batch axes."""

    if inputs.ndim < 2:
        raise ShapeMismatch(f"{where}: expected a batch, got shape {inputs.shape}")
    flat = flatten_samples(inputs)
    if flat.shape[1] != expected:
        raise ShapeMismatch(
            f"{where}: expected {expected} features per sample, got {inputs.shape[1:]}"
        )
    return flat


def pack_blocks(out: Array, blocks: Sequence[Array], where: str) -> None:
    expected = sum(block.size for block in blocks)
    if out.shape != (expected,):
        raise ShapeMismatch(f"{where}: parameter slice of {out.shape} for {expected} parameters")
    offset = 0
    for block in blocks:
        out[offset : offset + block.size] = block.reshape(-1)
        offset += block.size


def unpack_blocks(values: Array, blocks: Sequence[Array], where: str) -> None:
    expected = sum(block.size for block in blocks)
    values = np.asarray(values, dtype=SCALAR)
    if values.shape != (expected,):
        raise ShapeMismatch(f"{where}: parameter slice of {values.shape} for {expected} parameters")
    offset = 0
    for block in blocks:
        block[...] = values[offset : offset + block.size].reshape(block.shape)
        offset += block.size


def glorot_uniform(rng: np.random.Generator, shape: Sequence[int], fan_in: int, fan_out: int) -> Array:
    limit = math.sqrt(6.0 / max(1, fan_in + fan_out))
    return rng.uniform(-limit, limit, size=tuple(shape)).astype(SCALAR)


def empty_gradient() -> Array:
    return np.zeros(0, dtype=SCALAR)


def tree_array(tree: Dict[str, Any], key: str, shape: Sequence[int]) -> Array | None:
    if key not in tree or tree[key] is None:
        return None
    array = np.asarray(tree[key], dtype=SCALAR)
    if array.size != math.prod(shape):
        raise ShapeMismatch(f"{key}: stored {array.size} values for shape {tuple(shape)}")
    return array.reshape(tuple(shape))


__all__ = [
    "Layer",
    "LayerForward",
    "LayerKind",
    "Shape",
    "check_features",
    "empty_gradient",
    "flatten_samples",
    "glorot_uniform",
    "layer_from_tree",
    "pack_blocks",
    "register_layer",
    "tree_array",
    "unpack_blocks",
]
