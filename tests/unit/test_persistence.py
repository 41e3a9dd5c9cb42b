import json

import numpy as np
import pytest

from tabnn import persistence
from tabnn.core.errors import InvalidConfiguration
from tabnn.data import get_dataset
from tabnn.network import ModelType, NeuralNetwork
from tabnn.selection import GrowingInputs, ModelSelection
from tabnn.training import LossConfig, LossIndex, OptimizerKind, StoppingCriteria, TrainingStrategy, build_optimizer


def _strategy():
    data_set = get_dataset("linear_regression", n_points=30, seed=0)
    network = NeuralNetwork.from_architecture(ModelType.APPROXIMATION, [2, 3, 1], seed=0)
    return TrainingStrategy(
        network,
        data_set,
        loss=LossConfig(error="MeanSquaredError", regularization="L2", regularization_weight=0.001),
        optimizer="ConjugateGradient",
        optimizer_config={"training_direction_method": "FR"},
        stopping=StoppingCriteria(max_epochs=7, loss_goal=1e-5),
        display=False,
    )


@pytest.mark.parametrize("suffix", [".json", ".yaml"])
def test_network_round_trip(tmp_path, suffix):
    network = NeuralNetwork.from_architecture(
        ModelType.CLASSIFICATION, [3, 4, 2], input_names=["a", "b", "c"], output_names=["no", "yes"], seed=5
    )
    path = persistence.save(network, tmp_path / f"network{suffix}")
    loaded = persistence.load(path)
    assert isinstance(loaded, NeuralNetwork)
    assert loaded.input_names == ["a", "b", "c"]
    assert loaded.model_type is ModelType.CLASSIFICATION
    inputs = np.random.default_rng(0).standard_normal((5, 3))
    np.testing.assert_allclose(loaded.calculate_outputs(inputs), network.calculate_outputs(inputs), rtol=1e-12)


def test_training_strategy_round_trip(tmp_path):
    strategy = _strategy()
    path = persistence.save(strategy, tmp_path / "strategy.yaml")
    loaded = persistence.load(path, network=strategy.network, data_set=strategy.data_set)
    assert isinstance(loaded, TrainingStrategy)
    assert loaded.to_tree() == json.loads(json.dumps(strategy.to_tree()))
    assert loaded.stopping.max_epochs == 7
    assert loaded.optimizer_kind is OptimizerKind.CONJUGATE_GRADIENT


def test_loss_index_and_optimizer_round_trip(tmp_path):
    strategy = _strategy()
    loss = strategy.loss_index()
    loaded_loss = persistence.load(
        persistence.save(loss, tmp_path / "loss.json"), network=strategy.network, data_set=strategy.data_set
    )
    assert isinstance(loaded_loss, LossIndex)
    assert loaded_loss.config == loss.config

    optimizer = build_optimizer("LevenbergMarquardtAlgorithm", {"damping_parameter": 0.5})
    loaded_optimizer = persistence.load(persistence.save(optimizer, tmp_path / "optimizer.json"))
    assert loaded_optimizer.kind is OptimizerKind.LEVENBERG_MARQUARDT
    assert loaded_optimizer.config.damping_parameter == 0.5


def test_selection_round_trip(tmp_path):
    strategy = _strategy()
    selection = ModelSelection(strategy, inputs_method="GeneticAlgorithm", inputs_config={"population_size": 6})
    loaded = persistence.load(persistence.save(selection, tmp_path / "selection.json"), strategy=strategy)
    assert loaded.inputs_config.population_size == 6

    growing = GrowingInputs(strategy, display=False)
    tree = persistence.to_tree(growing)
    assert list(tree) == ["InputsSelection"]
    rebuilt = persistence.from_tree(tree, strategy=strategy)
    assert isinstance(rebuilt, GrowingInputs)
    assert rebuilt.config == growing.config


def test_trees_need_a_single_known_root():
    with pytest.raises(InvalidConfiguration):
        persistence.from_tree({})
    with pytest.raises(InvalidConfiguration):
        persistence.from_tree({"NeuralNetwork": {}, "LossIndex": {}})
    with pytest.raises(InvalidConfiguration):
        persistence.from_tree({"Unknown": {}})


def test_unsupported_suffixes(tmp_path):
    network = NeuralNetwork.from_architecture(ModelType.APPROXIMATION, [1, 1])
    with pytest.raises(InvalidConfiguration):
        persistence.save(network, tmp_path / "network.xml")
    path = tmp_path / "list.json"
    path.write_text("[1, 2]")
    with pytest.raises(InvalidConfiguration):
        persistence.read(path)
    with pytest.raises(InvalidConfiguration):
        persistence.to_tree(object())
