"""Neurons and inputs selection."""

from .base import SelectionRecord, SelectionResults, SelectionStoppingCondition
from .genetic import CrossoverMethod, GeneticAlgorithm, GeneticAlgorithmConfig
from .inputs import GrowingInputs, GrowingInputsConfig, PruningInputs, PruningInputsConfig
from .model_selection import (
    InputsSelectionMethod,
    ModelSelection,
    ModelSelectionResults,
    NeuronsSelectionMethod,
)
from .neurons import IncrementalNeurons, IncrementalNeuronsConfig

__all__ = [
    "CrossoverMethod",
    "GeneticAlgorithm",
    "GeneticAlgorithmConfig",
    "GrowingInputs",
    "GrowingInputsConfig",
    "IncrementalNeurons",
    "IncrementalNeuronsConfig",
    "InputsSelectionMethod",
    "ModelSelection",
    "ModelSelectionResults",
    "NeuronsSelectionMethod",
    "PruningInputs",
    "PruningInputsConfig",
    "SelectionRecord",
    "SelectionResults",
    "SelectionStoppingCondition",
]
