import pytest

from tabnn.core.errors import InvalidConfiguration, UnboundReference
from tabnn.core.types import CancellationToken
from tabnn.data import get_dataset
from tabnn.selection import (
    GeneticAlgorithm,
    GeneticAlgorithmConfig,
    GrowingInputs,
    IncrementalNeurons,
    IncrementalNeuronsConfig,
    ModelSelection,
    PruningInputs,
    PruningInputsConfig,
    SelectionStoppingCondition,
)
from tabnn.training import LossConfig, StoppingCriteria, TrainingStrategy
from tabnn.training.pipelines import build_network


def _strategy(hidden=(2,), cancellation=None):
    data_set = get_dataset("relevant_subset", n_points=120, n_features=4, relevant=[0, 2], seed=2)
    network = build_network({"model_type": "Approximation", "hidden": list(hidden), "seed": 0}, data_set, display=False)
    return TrainingStrategy(
        network,
        data_set,
        loss=LossConfig(error="NormalizedSquaredError"),
        optimizer="QuasiNewtonMethod",
        stopping=StoppingCriteria(max_epochs=30, max_selection_failures=5),
        cancellation=cancellation,
        display=False,
    )


def test_incremental_neurons_installs_the_best_width():
    strategy = _strategy()
    config = IncrementalNeuronsConfig(minimum_neurons=1, maximum_neurons=3, max_selection_failures=10)
    results = IncrementalNeurons(strategy, config, display=False).perform()
    assert [record.candidate for record in results.records] == [1, 2, 3]
    assert results.stopping_condition is SelectionStoppingCondition.ALGORITHM_FINISHED
    best = min(results.records, key=lambda record: record.selection_loss)
    assert results.optimal_candidate == best.candidate
    assert strategy.network.hidden_neurons() == best.candidate
    assert strategy.loss_index().calculate_error("Selection") == pytest.approx(best.selection_loss)


def test_growing_inputs_keeps_the_relevant_columns():
    strategy = _strategy()
    results = GrowingInputs(strategy, display=False).perform()
    chosen = set(results.optimal_candidate)
    assert {0, 2} <= chosen
    assert strategy.data_set.input_indices() == sorted(chosen)
    assert strategy.network.inputs_number == len(chosen)
    assert strategy.network.input_names == strategy.data_set.input_names()


def test_pruning_inputs_never_drops_below_the_minimum():
    strategy = _strategy()
    config = PruningInputsConfig(minimum_inputs=2, max_selection_failures=3)
    results = PruningInputs(strategy, config, display=False).perform()
    assert len(results.records[0].candidate) == 4
    assert all(len(record.candidate) >= 2 for record in results.records)
    assert {0, 2} <= set(results.optimal_candidate)
    assert strategy.network.inputs_number == len(results.optimal_candidate)


def test_genetic_algorithm_caches_masks_and_installs_the_optimum():
    strategy = _strategy()
    config = GeneticAlgorithmConfig(population_size=6, maximum_generations=3, elitism_size=1, seed=4)
    results = GeneticAlgorithm(strategy, config, display=False).perform()
    candidates = [record.candidate for record in results.records]
    assert len(candidates) == len(set(candidates))
    assert results.stopping_condition in (
        SelectionStoppingCondition.MAXIMUM_GENERATIONS,
        SelectionStoppingCondition.MAXIMUM_SELECTION_FAILURES,
    )
    assert results.optimum.selection_loss == min(record.selection_loss for record in results.records)
    assert strategy.data_set.input_indices() == list(results.optimal_candidate)


def test_cancelled_selection_stops_after_one_candidate():
    token = CancellationToken()
    token.cancel()
    strategy = _strategy(cancellation=token)
    config = IncrementalNeuronsConfig(minimum_neurons=1, maximum_neurons=5)
    results = IncrementalNeurons(strategy, config, display=False).perform()
    assert results.stopping_condition is SelectionStoppingCondition.CANCELLED
    assert len(results.records) == 1


def test_model_selection_runs_inputs_then_neurons():
    strategy = _strategy()
    selection = ModelSelection(
        strategy,
        inputs_method="GrowingInputs",
        neurons_method="IncrementalNeurons",
        inputs_config={"max_selection_failures": 1},
        neurons_config={"maximum_neurons": 2},
        display=False,
    )
    results = selection.perform_model_selection()
    assert results.inputs is not None and results.neurons is not None
    assert strategy.network.inputs_number == len(results.inputs.optimal_candidate)
    assert strategy.network.hidden_neurons() == results.neurons.optimal_candidate
    assert set(results.to_dict()) == {"inputs", "neurons"}


def test_model_selection_checks_its_inputs():
    with pytest.raises(UnboundReference):
        ModelSelection(None).perform_model_selection()
    strategy = _strategy(hidden=())
    with pytest.raises(InvalidConfiguration):
        ModelSelection(strategy, inputs_method="NoInputsSelection").perform_neurons_selection()
    assert ModelSelection(strategy, neurons_method="NoNeuronsSelection", inputs_method="NoInputsSelection").perform_model_selection().to_dict() == {
        "inputs": None,
        "neurons": None,
    }
