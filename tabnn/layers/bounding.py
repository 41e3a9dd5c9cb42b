"""Element-wise clamp of the network outputs."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Sequence

import numpy as np

from ..core.device import Device
from ..core.errors import InvalidConfiguration, ShapeMismatch
from ..core.types import SCALAR, Array, parse_enum
from .base import (
    LayerForward,
    LayerKind,
    Shape,
    check_features,
    empty_gradient,
    pack_blocks,
    register_layer,
    unpack_blocks,
)


class BoundingMethod(Enum):
    NO_BOUNDING = "NoBounding"
    BOUNDING = "Bounding"


@register_layer(LayerKind.BOUNDING)
@dataclass
class BoundingLayer:
    features: int
    method: BoundingMethod = BoundingMethod.NO_BOUNDING
    lower_bounds: Array = field(default=None)  # type: ignore[assignment]
    upper_bounds: Array = field(default=None)  # type: ignore[assignment]
    name: str = "bounding_layer"

    kind: ClassVar[LayerKind]

    def __post_init__(self) -> None:
        self.method = parse_enum(BoundingMethod, self.method)
        if self.lower_bounds is None:
            self.lower_bounds = np.full(self.features, -np.inf)
        if self.upper_bounds is None:
            self.upper_bounds = np.full(self.features, np.inf)
        self.lower_bounds = np.asarray(self.lower_bounds, dtype=SCALAR).reshape(-1)
        self.upper_bounds = np.asarray(self.upper_bounds, dtype=SCALAR).reshape(-1)
        if self.lower_bounds.size != self.features or self.upper_bounds.size != self.features:
            raise ShapeMismatch(
                f"{self.name}: {self.features} features but bounds of "
                f"{self.lower_bounds.size}/{self.upper_bounds.size}"
            )
        if np.any(self.lower_bounds > self.upper_bounds):
            raise InvalidConfiguration(f"{self.name}: lower bound above upper bound")

    @property
    def input_shape(self) -> Shape:
        return (self.features,)

    @property
    def output_shape(self) -> Shape:
        return (self.features,)

    @property
    def trainable(self) -> bool:
        return False

    def set_bounds(self, lower, upper) -> None:
        self.lower_bounds = np.asarray(lower, dtype=SCALAR).reshape(self.features)
        self.upper_bounds = np.asarray(upper, dtype=SCALAR).reshape(self.features)
        self.method = BoundingMethod.BOUNDING

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
        flat = check_features(inputs, self.features, self.name)
        if self.method is BoundingMethod.NO_BOUNDING:
            outputs = flat.copy()
        else:
            outputs = np.clip(flat, self.lower_bounds, self.upper_bounds)
        return LayerForward(combinations=flat, activations=outputs)

    def backward(self, inputs: Array, forward: LayerForward, delta: Array, device: Device):
        if self.method is BoundingMethod.NO_BOUNDING:
            return delta.copy(), empty_gradient()
        flat = check_features(inputs, self.features, self.name)
        inside = (flat > self.lower_bounds) & (flat < self.upper_bounds)
        return delta * inside, empty_gradient()

    def write_expression(self, input_names: Sequence[str], output_names: Sequence[str]) -> List[str]:
        lines = []
        for idx, (source, target) in enumerate(zip(input_names, output_names)):
            if self.method is BoundingMethod.NO_BOUNDING:
                lines.append(f"{target} = {source};")
                continue
            lower = self.lower_bounds[idx]
            upper = self.upper_bounds[idx]
            lines.append(f"{target} = min(max({source}, {lower:.12g}), {upper:.12g});")
        return lines

    def to_tree(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "name": self.name,
            "features": self.features,
            "method": self.method.value,
            "lower_bounds": [float(v) for v in self.lower_bounds],
            "upper_bounds": [float(v) for v in self.upper_bounds],
        }

    @classmethod
    def from_tree(cls, tree: Dict[str, Any]) -> "BoundingLayer":
        return cls(
            features=int(tree["features"]),
            method=tree.get("method", "NoBounding"),
            lower_bounds=tree.get("lower_bounds"),
            upper_bounds=tree.get("upper_bounds"),
            name=str(tree.get("name", "bounding_layer")),
        )


__all__ = ["BoundingLayer", "BoundingMethod"]
