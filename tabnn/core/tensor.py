"""Shape-checked dense primitives executed on an explicit :class:`Device`."""

from __future__ import annotations

from typing import Callable, Sequence

import numpy as np

from .device import Device
from .errors import ShapeMismatch, shape_error
from .types import SCALAR, Array


def check_shape(array: Array, expected: Sequence[int | None], where: str) -> Array:
    """Raise :class:`ShapeMismatch` unless ``array`` has ``expected`` shape.

    ``None`` entries in ``expected`` match any extent.
    """

    actual = tuple(array.shape)
    if len(actual) != len(expected) or any(
        want is not None and want != got for want, got in zip(expected, actual)
    ):
        raise shape_error(where, tuple(expected), actual)
    return array


def check_rank(array: Array, ranks: Sequence[int], where: str) -> Array:
    if array.ndim not in ranks:
        raise ShapeMismatch(f"{where}: expected rank in {tuple(ranks)}, got shape {array.shape}")
    return array


def matmul(device: Device, a: Array, b: Array) -> Array:
    """Matrix product of [m, k] and [k, n] operands."""

    if a.ndim != 2 or b.ndim != 2 or a.shape[1] != b.shape[0]:
        raise ShapeMismatch(f"matmul: cannot multiply {a.shape} by {b.shape}")
    blocks = device.blocks(a.shape[0])
    if len(blocks) == 1:
        return a @ b
    parts = device.map(lambda rows: a[rows] @ b, blocks)
    return np.concatenate(parts, axis=0)


def map_elementwise(device: Device, fn: Callable[[Array], Array], x: Array) -> Array:
    """Apply an element-wise ``fn`` in row blocks."""

    if x.ndim == 0:
        return fn(x)
    blocks = device.blocks(x.shape[0])
    if len(blocks) == 1:
        return fn(x)
    parts = device.map(lambda rows: fn(x[rows]), blocks)
    return np.concatenate(parts, axis=0)


def _check_along(x: Array, vector: Array, axis: int, where: str) -> tuple:
    if vector.ndim != 1:
        raise ShapeMismatch(f"{where}: expected a rank-1 vector, got {vector.shape}")
    if x.shape[axis] != vector.shape[0]:
        raise ShapeMismatch(
            f"{where}: vector of length {vector.shape[0]} does not match axis {axis} of {x.shape}"
        )
    shape = [1] * x.ndim
    shape[axis] = vector.shape[0]
    return tuple(shape)


def add_along(x: Array, vector: Array, axis: int = -1) -> Array:
    """Broadcast-add ``vector`` along ``axis`` of ``x``."""

    axis = axis % x.ndim
    return x + vector.reshape(_check_along(x, vector, axis, "add_along"))


def multiply_along(x: Array, vector: Array, axis: int = -1) -> Array:
    """Broadcast-multiply ``vector`` along ``axis`` of ``x``."""

    axis = axis % x.ndim
    return x * vector.reshape(_check_along(x, vector, axis, "multiply_along"))


def row_slice(x: Array, start: int, stop: int) -> Array:
    """Contiguous view of rows ``[start, stop)``."""

    if not 0 <= start <= stop <= x.shape[0]:
        raise ShapeMismatch(f"row_slice: [{start}, {stop}) out of range for {x.shape}")
    return x[start:stop]


def _pairwise(parts: list, combine: Callable[[Array, Array], Array]) -> Array:
    # Fixed-shape tree so that the combination order never depends on timing.
    while len(parts) > 1:
        merged = [combine(parts[idx], parts[idx + 1]) for idx in range(0, len(parts) - 1, 2)]
        if len(parts) % 2:
            merged.append(parts[-1])
        parts = merged
    return parts[0]


def reduce_sum(device: Device, x: Array, axis: int | None = None) -> Array | float:
    """Deterministic sum over ``axis`` (or every element when ``None``)."""

    if x.ndim == 0:
        return x
    if axis is None:
        flat = x.reshape(-1)
        blocks = device.blocks(flat.shape[0])
        parts = device.map(lambda rows: np.sum(flat[rows]), blocks)
        return SCALAR(_pairwise(parts, np.add))
    axis = axis % x.ndim
    moved = np.moveaxis(x, axis, 0)
    blocks = device.blocks(moved.shape[0])
    parts = device.map(lambda rows: np.sum(moved[rows], axis=0), blocks)
    return _pairwise(parts, np.add)


def reduce_mean(device: Device, x: Array, axis: int | None = None) -> Array | float:
    count = x.size if axis is None else x.shape[axis]
    if count == 0:
        raise ShapeMismatch(f"reduce_mean: empty reduction over shape {x.shape}")
    return reduce_sum(device, x, axis) / count


def reduce_max(device: Device, x: Array, axis: int | None = None) -> Array | float:
    if x.size == 0:
        raise ShapeMismatch(f"reduce_max: empty reduction over shape {x.shape}")
    if axis is None:
        return SCALAR(np.max(x))
    return np.max(x, axis=axis)


def argmax(x: Array, axis: int = -1) -> Array:
    if x.size == 0:
        raise ShapeMismatch(f"argmax: empty tensor {x.shape}")
    return np.argmax(x, axis=axis)


def fill(x: Array, value: float) -> Array:
    """Fill ``x`` in place and return it."""

    x.fill(value)
    return x


def zeros(shape: Sequence[int]) -> Array:
    return np.zeros(tuple(shape), dtype=SCALAR)


__all__ = [
    "add_along",
    "argmax",
    "check_rank",
    "check_shape",
    "fill",
    "map_elementwise",
    "matmul",
    "multiply_along",
    "reduce_max",
    "reduce_mean",
    "reduce_sum",
    "row_slice",
    "zeros",
]
