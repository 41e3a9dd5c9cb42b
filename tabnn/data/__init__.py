"""Data sets and data set factories."""

# Ensure built-in data sets register themselves when the package is imported.
from . import breast_cancer as _breast_cancer  # noqa: F401
from . import csv_generic as _csv_generic  # noqa: F401
from . import synthetic as _synthetic  # noqa: F401
from .dataset import DataSet, InstanceUse, VariableUse
from .registry import available_datasets, get_dataset, register_dataset

__all__ = [
    "DataSet",
    "InstanceUse",
    "VariableUse",
    "available_datasets",
    "get_dataset",
    "register_dataset",
]
