"""Scaling and unscaling layers.

Both apply the per-feature affine map ``y = a * x + b`` derived from the
variables' descriptives; the unscaling layer applies its inverse. Neither owns
trainable parameters.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, List, Sequence, Tuple

import numpy as np

from ..core.descriptives import Descriptives
from ..core.device import Device
from ..core.errors import ShapeMismatch
from ..core.types import Array, parse_enum
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

# Ranges narrower than this leave the feature untouched.
DEGENERATE_RANGE = 1e-12


class ScalingMethod(Enum):
    NO_SCALING = "NoScaling"
    MINIMUM_MAXIMUM = "MinimumMaximum"
    MEAN_STANDARD_DEVIATION = "MeanStandardDeviation"
    STANDARD_DEVIATION = "StandardDeviation"


def scaling_coefficients(descriptives: Descriptives, method: ScalingMethod) -> Tuple[Array, Array]:
    """Return per-feature ``(a, b)`` such that ``scaled = a * x + b``."""

    size = descriptives.size
    slope = np.ones(size)
    intercept = np.zeros(size)
    if method is ScalingMethod.NO_SCALING:
        return slope, intercept
    if method is ScalingMethod.MINIMUM_MAXIMUM:
        span = descriptives.maximum - descriptives.minimum
        ok = span > DEGENERATE_RANGE
        slope[ok] = 2.0 / span[ok]
        intercept[ok] = -2.0 * descriptives.minimum[ok] / span[ok] - 1.0
        return slope, intercept
    std = descriptives.standard_deviation
    ok = std > DEGENERATE_RANGE
    slope[ok] = 1.0 / std[ok]
    if method is ScalingMethod.MEAN_STANDARD_DEVIATION:
        intercept[ok] = -descriptives.mean[ok] / std[ok]
    return slope, intercept


def _format(value: float) -> str:
    return f"{value:.12g}"


@dataclass
class _AffineLayer:
    descriptives: Descriptives
    method: ScalingMethod = ScalingMethod.MEAN_STANDARD_DEVIATION
    name: str = ""
    sample_shape: Tuple[int, ...] | None = None

    kind: ClassVar[LayerKind]

    def __post_init__(self) -> None:
        self.method = parse_enum(ScalingMethod, self.method)
        if self.sample_shape is None:
            self.sample_shape = (self.descriptives.size,)
        self.sample_shape = tuple(int(v) for v in self.sample_shape)
        if math.prod(self.sample_shape) != self.descriptives.size:
            raise ShapeMismatch(
                f"{self.kind.value} layer: {self.descriptives.size} descriptives for "
                f"sample shape {self.sample_shape}"
            )
        if not self.name:
            self.name = f"{self.kind.value.lower()}_layer"

    @property
    def features(self) -> int:
        return self.descriptives.size

    @property
    def input_shape(self) -> Shape:
        return self.sample_shape

    @property
    def output_shape(self) -> Shape:
        return self.sample_shape

    @property
    def trainable(self) -> bool:
        return False

    def coefficients(self) -> Tuple[Array, Array]:
        return scaling_coefficients(self.descriptives, self.method)

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

    def to_tree(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "name": self.name,
            "method": self.method.value,
            "sample_shape": list(self.sample_shape),
            "descriptives": self.descriptives.to_tree(),
        }

    @classmethod
    def from_tree(cls, tree: Dict[str, Any]):
        return cls(
            descriptives=Descriptives.from_tree(tree["descriptives"]),
            method=parse_enum(ScalingMethod, tree.get("method", "MeanStandardDeviation")),
            name=str(tree.get("name", "")),
            sample_shape=tuple(tree.get("sample_shape") or ()) or None,
        )


@register_layer(LayerKind.SCALING)
@dataclass
class ScalingLayer(_AffineLayer):
    """Maps raw inputs onto a standard range before the hidden layers."""

    def forward(self, inputs: Array, device: Device) -> LayerForward:
        flat = check_features(inputs, self.features, self.name)
        slope, intercept = self.coefficients()
        outputs = (flat * slope + intercept).reshape(inputs.shape)
        return LayerForward(combinations=outputs, activations=outputs)

    def backward(self, inputs: Array, forward: LayerForward, delta: Array, device: Device):
        slope, _ = self.coefficients()
        flat = check_features(delta, self.features, self.name)
        return (flat * slope).reshape(delta.shape), empty_gradient()

    def write_expression(self, input_names: Sequence[str], output_names: Sequence[str]) -> List[str]:
        slope, intercept = self.coefficients()
        lines = []
        for idx, (source, target) in enumerate(zip(input_names, output_names)):
            if self.method is ScalingMethod.NO_SCALING:
                lines.append(f"{target} = {source};")
            else:
                lines.append(
                    f"{target} = {source}*{_format(slope[idx])}+{_format(intercept[idx])};"
                )
        return lines


@register_layer(LayerKind.UNSCALING)
@dataclass
class UnscalingLayer(_AffineLayer):
    """Maps network outputs back to the targets' original units."""

    def forward(self, inputs: Array, device: Device) -> LayerForward:
        flat = check_features(inputs, self.features, self.name)
        slope, intercept = self.coefficients()
        outputs = ((flat - intercept) / slope).reshape(inputs.shape)
        return LayerForward(combinations=outputs, activations=outputs)

    def backward(self, inputs: Array, forward: LayerForward, delta: Array, device: Device):
        slope, _ = self.coefficients()
        flat = check_features(delta, self.features, self.name)
        return (flat / slope).reshape(delta.shape), empty_gradient()

    def write_expression(self, input_names: Sequence[str], output_names: Sequence[str]) -> List[str]:
        slope, intercept = self.coefficients()
        lines = []
        for idx, (source, target) in enumerate(zip(input_names, output_names)):
            if self.method is ScalingMethod.NO_SCALING:
                lines.append(f"{target} = {source};")
            else:
                lines.append(
                    f"{target} = {source}*{_format(1.0 / slope[idx])}"
                    f"+{_format(-intercept[idx] / slope[idx])};"
                )
        return lines


__all__ = ["ScalingLayer", "ScalingMethod", "UnscalingLayer", "scaling_coefficients"]
