"""Per-variable descriptive statistics."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

import numpy as np

from .errors import ShapeMismatch
from .types import SCALAR, Array


@dataclass
class Descriptives:
    """Minimum, maximum, mean and standard deviation of each variable."""

    minimum: Array
    maximum: Array
    mean: Array
    standard_deviation: Array

    def __post_init__(self) -> None:
        self.minimum = np.asarray(self.minimum, dtype=SCALAR).reshape(-1)
        self.maximum = np.asarray(self.maximum, dtype=SCALAR).reshape(-1)
        self.mean = np.asarray(self.mean, dtype=SCALAR).reshape(-1)
        self.standard_deviation = np.asarray(self.standard_deviation, dtype=SCALAR).reshape(-1)
        sizes = {a.size for a in (self.minimum, self.maximum, self.mean, self.standard_deviation)}
        if len(sizes) != 1:
            raise ShapeMismatch(f"Descriptives: inconsistent lengths {sorted(sizes)}")

    @property
    def size(self) -> int:
        return int(self.mean.size)

    @classmethod
    def of(cls, data: Array) -> "Descriptives":
        """Column statistics of a [rows, variables] matrix."""

        data = np.asarray(data, dtype=SCALAR)
        if data.ndim != 2 or data.shape[0] == 0:
            raise ShapeMismatch(f"Descriptives.of: expected a non-empty matrix, got {data.shape}")
        std = data.std(axis=0, ddof=1) if data.shape[0] > 1 else np.zeros(data.shape[1])
        return cls(data.min(axis=0), data.max(axis=0), data.mean(axis=0), std)

    @classmethod
    def default(cls, size: int) -> "Descriptives":
        return cls(-np.ones(size), np.ones(size), np.zeros(size), np.ones(size))

    def subset(self, indices) -> "Descriptives":
        indices = np.asarray(indices, dtype=int)
        return Descriptives(
            self.minimum[indices],
            self.maximum[indices],
            self.mean[indices],
            self.standard_deviation[indices],
        )

    def to_tree(self) -> Dict[str, List[float]]:
        return {
            "minimum": self.minimum.tolist(),
            "maximum": self.maximum.tolist(),
            "mean": self.mean.tolist(),
            "standard_deviation": self.standard_deviation.tolist(),
        }

    @classmethod
    def from_tree(cls, tree: Dict[str, List[float]]) -> "Descriptives":
        return cls(tree["minimum"], tree["maximum"], tree["mean"], tree["standard_deviation"])


__all__ = ["Descriptives"]
