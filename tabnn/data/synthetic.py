"""Pure in-memory synthetic data sets."""

from __future__ import annotations

from typing import Sequence

import numpy as np

from .dataset import DataSet, InstanceUse
from .registry import register_dataset


@register_dataset("xor")
def make_xor(*, repeats: int = 1, **_: object) -> DataSet:
    """The four XOR rows; every row is used for training and selection.

    Rows are repeated ``repeats`` times and alternate between the training
    and selection partitions so that both cover the truth table.
    """

    table = np.array([[0, 0, 0], [0, 1, 1], [1, 0, 1], [1, 1, 0]], dtype=float)
    data = np.vstack([table] * max(2, 2 * repeats))
    uses = [InstanceUse.TRAINING if (row // 4) % 2 == 0 else InstanceUse.SELECTION for row in range(len(data))]
    return DataSet(data, ["x1", "x2", "y"], instance_uses=uses)


@register_dataset("linear_regression")
def make_linear_regression(
    *,
    n_points: int = 200,
    noise: float = 0.0,
    seed: int = 0,
    training: float = 0.6,
    selection: float = 0.2,
    testing: float = 0.2,
    **_: object,
) -> DataSet:
    """``y = 3 x1 - 2 x2 + 1`` over uniform inputs in [-1, 1]."""

    rng = np.random.default_rng(seed)
    x = rng.uniform(-1.0, 1.0, size=(n_points, 2))
    y = 3.0 * x[:, 0] - 2.0 * x[:, 1] + 1.0
    if noise > 0:
        y = y + noise * rng.standard_normal(n_points)
    data_set = DataSet(np.column_stack([x, y]), ["x1", "x2", "y"])
    data_set.split_instances(training, selection, testing, seed=seed)
    return data_set


@register_dataset("relevant_subset")
def make_relevant_subset(
    *,
    n_points: int = 300,
    n_features: int = 6,
    relevant: Sequence[int] = (0, 2),
    noise: float = 0.05,
    seed: int = 0,
    training: float = 0.6,
    selection: float = 0.2,
    testing: float = 0.2,
    **_: object,
) -> DataSet:
    """Gaussian features where only ``relevant`` columns drive the target."""

    rng = np.random.default_rng(seed)
    x = rng.standard_normal((n_points, n_features))
    weights = np.linspace(2.0, 1.0, num=len(relevant))
    y = x[:, list(relevant)] @ weights + noise * rng.standard_normal(n_points)
    names = [f"x{i + 1}" for i in range(n_features)] + ["y"]
    data_set = DataSet(np.column_stack([x, y]), names)
    data_set.split_instances(training, selection, testing, seed=seed)
    return data_set


@register_dataset("sine_series")
def make_sine_series(
    *,
    n_points: int = 240,
    lags: int = 4,
    steps_ahead: int = 1,
    noise: float = 0.0,
    seed: int = 0,
    training: float = 0.6,
    selection: float = 0.2,
    testing: float = 0.2,
    **_: object,
) -> DataSet:
    """Lagged windows of a noisy sine wave for forecasting models."""

    rng = np.random.default_rng(seed)
    t = np.linspace(0.0, 8.0 * np.pi, n_points)
    values = np.sin(t) + noise * rng.standard_normal(n_points)
    data_set = DataSet.from_time_series(values, lags=lags, steps_ahead=steps_ahead, names=["signal"])
    data_set.split_instances(training, selection, testing, seed=seed)
    return data_set


__all__ = ["make_linear_regression", "make_relevant_subset", "make_sine_series", "make_xor"]
