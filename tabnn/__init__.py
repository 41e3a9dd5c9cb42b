"""tabnn public API."""

from .analysis import TestingAnalysis
from .core import activations  # noqa: F401
from .core import types  # noqa: F401
from .core.device import Device
from .core.errors import (
    Cancelled,
    EmptyPartition,
    InvalidConfiguration,
    NumericalFailure,
    ShapeMismatch,
    TabnnError,
    UnboundReference,
)
from .core.types import CancellationToken, StoppingCondition, TrainingResults
from .data import DataSet, InstanceUse, VariableUse, get_dataset
from .network import ModelType, NeuralNetwork
from .persistence import load, save
from .selection import ModelSelection
from .training import LossConfig, OptimizerKind, StoppingCriteria, TrainingStrategy
from .training.pipelines import load_preset, presets, run_pipeline

__all__ = [
    "CancellationToken",
    "Cancelled",
    "DataSet",
    "Device",
    "EmptyPartition",
    "InstanceUse",
    "InvalidConfiguration",
    "LossConfig",
    "ModelSelection",
    "ModelType",
    "NeuralNetwork",
    "NumericalFailure",
    "OptimizerKind",
    "ShapeMismatch",
    "StoppingCondition",
    "StoppingCriteria",
    "TabnnError",
    "TestingAnalysis",
    "TrainingResults",
    "TrainingStrategy",
    "UnboundReference",
    "VariableUse",
    "activations",
    "get_dataset",
    "load",
    "load_preset",
    "presets",
    "run_pipeline",
    "save",
    "types",
]
