"""Projection of the inputs onto their leading principal components."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Sequence

import numpy as np
from sklearn.decomposition import PCA

from ..core import tensor
from ..core.device import Device
from ..core.errors import InvalidConfiguration, ShapeMismatch
from ..core.types import SCALAR, Array
from .base import (
    LayerForward,
    LayerKind,
    Shape,
    check_features,
    empty_gradient,
    pack_blocks,
    register_layer,
    tree_array,
    unpack_blocks,
)


@register_layer(LayerKind.PRINCIPAL_COMPONENTS)
@dataclass
class PrincipalComponentsLayer:
    """``(x - means) basis`` with ``basis`` [inputs, components].

    The basis is fitted once from data and is not changed by training.
    """

    inputs_number: int
    principal_components_number: int
    name: str = "principal_components_layer"
    means: Array = field(default=None, repr=False)  # type: ignore[assignment]
    basis: Array = field(default=None, repr=False)  # type: ignore[assignment]
    explained_variance: Array = field(default=None, repr=False)  # type: ignore[assignment]

    kind: ClassVar[LayerKind]

    def __post_init__(self) -> None:
        n_in, k = self.inputs_number, self.principal_components_number
        if not 0 < k <= n_in:
            raise InvalidConfiguration(f"{self.name}: {k} components for {n_in} inputs")
        if self.means is None:
            self.means = np.zeros(n_in, dtype=SCALAR)
        if self.basis is None:
            self.basis = np.eye(n_in, k, dtype=SCALAR)
        if self.explained_variance is None:
            self.explained_variance = np.zeros(k, dtype=SCALAR)
        self.means = np.asarray(self.means, dtype=SCALAR)
        self.basis = np.asarray(self.basis, dtype=SCALAR)
        self.explained_variance = np.asarray(self.explained_variance, dtype=SCALAR)
        tensor.check_shape(self.means, (n_in,), f"{self.name}.means")
        tensor.check_shape(self.basis, (n_in, k), f"{self.name}.basis")

    @classmethod
    def fit(cls, data: Array, components: int, name: str = "principal_components_layer") -> "PrincipalComponentsLayer":
        data = np.asarray(data, dtype=SCALAR)
        if data.ndim != 2:
            raise ShapeMismatch(f"{name}: expected a [rows, inputs] matrix, got {data.shape}")
        if components > min(data.shape):
            raise InvalidConfiguration(f"{name}: cannot extract {components} components from {data.shape}")
        pca = PCA(n_components=components, svd_solver="full").fit(data)
        return cls(
            inputs_number=data.shape[1],
            principal_components_number=components,
            name=name,
            means=pca.mean_,
            basis=pca.components_.T,
            explained_variance=pca.explained_variance_ratio_,
        )

    @property
    def input_shape(self) -> Shape:
        return (self.inputs_number,)

    @property
    def output_shape(self) -> Shape:
        return (self.principal_components_number,)

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
        flat = check_features(inputs, self.inputs_number, self.name)
        centered = tensor.add_along(flat, -self.means)
        outputs = tensor.matmul(device, centered, self.basis)
        return LayerForward(combinations=outputs, activations=outputs)

    def backward(self, inputs: Array, forward: LayerForward, delta: Array, device: Device):
        tensor.check_shape(delta, forward.activations.shape, f"{self.name}.backward")
        return tensor.matmul(device, delta, self.basis.T).reshape(inputs.shape), empty_gradient()

    def write_expression(self, input_names: Sequence[str], output_names: Sequence[str]) -> List[str]:
        lines = []
        for idx, target in enumerate(output_names):
            terms = [
                f"({self.basis[row, idx]:.12g}*({name} - {self.means[row]:.12g}))"
                for row, name in enumerate(input_names)
            ]
            lines.append(f"{target} = {' + '.join(terms)};")
        return lines

    def to_tree(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "name": self.name,
            "inputs_number": self.inputs_number,
            "principal_components_number": self.principal_components_number,
            "means": self.means.tolist(),
            "basis": self.basis.reshape(-1).tolist(),
            "explained_variance": self.explained_variance.tolist(),
        }

    @classmethod
    def from_tree(cls, tree: Dict[str, Any]) -> "PrincipalComponentsLayer":
        n_in = int(tree["inputs_number"])
        k = int(tree["principal_components_number"])
        return cls(
            inputs_number=n_in,
            principal_components_number=k,
            name=str(tree.get("name", "principal_components_layer")),
            means=tree_array(tree, "means", (n_in,)),
            basis=tree_array(tree, "basis", (n_in, k)),
            explained_variance=tree_array(tree, "explained_variance", (k,)),
        )


__all__ = ["PrincipalComponentsLayer"]
