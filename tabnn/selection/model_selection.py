"""Model-selection driver combining a neurons and an inputs selection method."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping

from ..core.errors import InvalidConfiguration, UnboundReference
from ..core.types import parse_enum
from ..training.strategy import TrainingStrategy
from .base import SelectionResults
from .genetic import GeneticAlgorithm, GeneticAlgorithmConfig
from .inputs import GrowingInputs, GrowingInputsConfig, PruningInputs, PruningInputsConfig
from .neurons import IncrementalNeurons, IncrementalNeuronsConfig


class NeuronsSelectionMethod(Enum):
    NO_NEURONS_SELECTION = "NoNeuronsSelection"
    INCREMENTAL_NEURONS = "IncrementalNeurons"


class InputsSelectionMethod(Enum):
    NO_INPUTS_SELECTION = "NoInputsSelection"
    GROWING_INPUTS = "GrowingInputs"
    PRUNING_INPUTS = "PruningInputs"
    GENETIC_ALGORITHM = "GeneticAlgorithm"


NEURONS_SELECTORS = {
    NeuronsSelectionMethod.INCREMENTAL_NEURONS: (IncrementalNeurons, IncrementalNeuronsConfig),
}

INPUTS_SELECTORS = {
    InputsSelectionMethod.GROWING_INPUTS: (GrowingInputs, GrowingInputsConfig),
    InputsSelectionMethod.PRUNING_INPUTS: (PruningInputs, PruningInputsConfig),
    InputsSelectionMethod.GENETIC_ALGORITHM: (GeneticAlgorithm, GeneticAlgorithmConfig),
}


def _config(table, method, config):
    if method not in table:
        return None
    config_cls = table[method][1]
    if config is None:
        return config_cls()
    if isinstance(config, Mapping):
        return config_cls.from_tree(dict(config))
    if not isinstance(config, config_cls):
        raise InvalidConfiguration(f"{method.value} expects {config_cls.__name__}, got {type(config).__name__}")
    return config


@dataclass
class ModelSelectionResults:
    inputs: SelectionResults | None = None
    neurons: SelectionResults | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inputs": None if self.inputs is None else self.inputs.to_dict(),
            "neurons": None if self.neurons is None else self.neurons.to_dict(),
        }


class ModelSelection:
    """Borrows a training strategy and searches inputs and hidden widths."""

    def __init__(
        self,
        strategy: TrainingStrategy | None,
        *,
        neurons_method: NeuronsSelectionMethod | str = NeuronsSelectionMethod.INCREMENTAL_NEURONS,
        inputs_method: InputsSelectionMethod | str = InputsSelectionMethod.GROWING_INPUTS,
        neurons_config: Any = None,
        inputs_config: Any = None,
        display: bool = True,
    ) -> None:
        self.strategy = strategy
        self.neurons_method = parse_enum(NeuronsSelectionMethod, neurons_method)
        self.inputs_method = parse_enum(InputsSelectionMethod, inputs_method)
        self.neurons_config = _config(NEURONS_SELECTORS, self.neurons_method, neurons_config)
        self.inputs_config = _config(INPUTS_SELECTORS, self.inputs_method, inputs_config)
        self.display = display

    def check(self) -> None:
        if self.strategy is None:
            raise UnboundReference("Model selection has no training strategy")
        self.strategy.validate()
        if self.neurons_method is not NeuronsSelectionMethod.NO_NEURONS_SELECTION:
            if not self.strategy.network.hidden_layer_indices():
                raise InvalidConfiguration("Neurons selection needs a neural network with a hidden layer")
        if self.inputs_method is not InputsSelectionMethod.NO_INPUTS_SELECTION:
            if not self.strategy.data_set.candidate_input_indices():
                raise InvalidConfiguration("Inputs selection needs a data set with candidate inputs")

    def perform_neurons_selection(self) -> SelectionResults | None:
        self.check()
        if self.neurons_method is NeuronsSelectionMethod.NO_NEURONS_SELECTION:
            return None
        selector_cls, _ = NEURONS_SELECTORS[self.neurons_method]
        return selector_cls(self.strategy, self.neurons_config, display=self.display).perform()

    def perform_inputs_selection(self) -> SelectionResults | None:
        self.check()
        if self.inputs_method is InputsSelectionMethod.NO_INPUTS_SELECTION:
            return None
        selector_cls, _ = INPUTS_SELECTORS[self.inputs_method]
        return selector_cls(self.strategy, self.inputs_config, display=self.display).perform()

    def perform_model_selection(self) -> ModelSelectionResults:
        """Inputs first, then neurons on the selected inputs."""

        results = ModelSelectionResults()
        results.inputs = self.perform_inputs_selection()
        if self.strategy.cancellation.cancelled:
            return results
        results.neurons = self.perform_neurons_selection()
        return results

    def to_tree(self) -> Dict[str, Any]:
        neurons = {"method": self.neurons_method.value}
        if self.neurons_config is not None:
            neurons["config"] = self.neurons_config.to_tree()
        inputs = {"method": self.inputs_method.value}
        if self.inputs_config is not None:
            inputs["config"] = self.inputs_config.to_tree()
        return {
            "ModelSelection": {
                "NeuronsSelection": neurons,
                "InputsSelection": inputs,
                "display": self.display,
            }
        }

    @classmethod
    def from_tree(cls, tree: Mapping[str, Any], strategy: TrainingStrategy | None = None) -> "ModelSelection":
        body = tree.get("ModelSelection", tree)
        neurons = body.get("NeuronsSelection", {})
        inputs = body.get("InputsSelection", {})
        return cls(
            strategy,
            neurons_method=neurons.get("method", NeuronsSelectionMethod.INCREMENTAL_NEURONS.value),
            inputs_method=inputs.get("method", InputsSelectionMethod.GROWING_INPUTS.value),
            neurons_config=neurons.get("config"),
            inputs_config=inputs.get("config"),
            display=bool(body.get("display", True)),
        )


__all__ = [
    "INPUTS_SELECTORS",
    "InputsSelectionMethod",
    "ModelSelection",
    "ModelSelectionResults",
    "NEURONS_SELECTORS",
    "NeuronsSelectionMethod",
]
