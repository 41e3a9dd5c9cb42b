"""Wisconsin breast cancer data set bundled with scikit-learn."""

from __future__ import annotations

import numpy as np
from sklearn.datasets import load_breast_cancer

from .dataset import DataSet
from .registry import register_dataset


@register_dataset("breast_cancer")
def build_breast_cancer_dataset(
    *,
    training: float = 0.6,
    selection: float = 0.2,
    testing: float = 0.2,
    seed: int = 0,
    **_: object,
) -> DataSet:
    """569 instances, 30 inputs and a binary target (1 = malignant).

    scikit-learn codes malignant tumours as 0; the target is flipped so the
    positive class is the malignant one.
    """

    bunch = load_breast_cancer()
    inputs = np.asarray(bunch.data, dtype=float)
    target = 1.0 - np.asarray(bunch.target, dtype=float)
    names = [str(name).replace(" ", "_") for name in bunch.feature_names] + ["diagnosis"]
    data_set = DataSet(np.column_stack([inputs, target]), names)
    data_set.split_instances(training, selection, testing, seed=seed)
    return data_set


__all__ = ["build_breast_cancer_dataset"]
