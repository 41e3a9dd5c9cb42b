"""Utility helpers for data sets and their factories."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Sequence

import numpy as np

from ..core.errors import EmptyPartition, InvalidConfiguration

# Tolerance on the sum of split ratios.
RATIO_TOLERANCE = 1e-9


@dataclass(frozen=True)
class SplitIndices:
    """Row indices of the training, selection and testing partitions."""

    training: np.ndarray
    selection: np.ndarray
    testing: np.ndarray


def split_indices(
    n_samples: int,
    *,
    training: float = 0.6,
    selection: float = 0.2,
    testing: float = 0.2,
    seed: int = 0,
) -> SplitIndices:
    """Shuffle ``n_samples`` rows and cut them by the given ratios.

    Ratios must be non-negative and sum to one. Every non-zero ratio receives
    at least one row when the data allows it; the training partition takes
    the remainder.
    """

    ratios = (training, selection, testing)
    if any(r < 0 for r in ratios):
        raise InvalidConfiguration(f"Split ratios must be non-negative, got {ratios}")
    if abs(sum(ratios) - 1.0) > RATIO_TOLERANCE:
        raise InvalidConfiguration(f"Split ratios must sum to 1, got {sum(ratios):.6f}")
    if n_samples < 1:
        raise EmptyPartition("Cannot split an empty data set")

    rng = np.random.default_rng(seed)
    indices = np.arange(n_samples)
    rng.shuffle(indices)

    test_size = int(round(n_samples * testing))
    selection_size = int(round(n_samples * selection))
    test_size = min(max(test_size, 1 if testing > 0 else 0), n_samples)
    remaining = n_samples - test_size
    selection_size = min(max(selection_size, 1 if selection > 0 else 0), remaining)
    train_size = n_samples - selection_size - test_size
    if training > 0 and train_size <= 0:
        raise EmptyPartition("Not enough samples for the requested splits")

    return SplitIndices(
        training=np.sort(indices[test_size + selection_size :]),
        selection=np.sort(indices[test_size : test_size + selection_size]),
        testing=np.sort(indices[:test_size]),
    )


def minibatch_indices(
    indices: Sequence[int],
    batch_size: int,
    rng: np.random.Generator | None = None,
) -> Iterator[np.ndarray]:
    """Yield consecutive chunks of ``indices``, shuffled when ``rng`` is given."""

    if batch_size < 1:
        raise InvalidConfiguration(f"Batch size must be positive, got {batch_size}")
    order = np.asarray(indices, dtype=int)
    if rng is not None:
        order = order[rng.permutation(order.size)]
    for start in range(0, order.size, batch_size):
        yield order[start : start + batch_size]


__all__ = ["SplitIndices", "minibatch_indices", "split_indices"]
