import numpy as np
import pytest

from tabnn.analysis import TestingAnalysis
from tabnn.core.descriptives import Descriptives
from tabnn.core.errors import InvalidConfiguration, ShapeMismatch, UnboundReference
from tabnn.data import DataSet
from tabnn.layers import LayerKind, PerceptronLayer, ProbabilisticLayer
from tabnn.network import ModelType, NeuralNetwork
from tabnn.training import TrainingStrategy


def _approximation(seed=0):
    network = NeuralNetwork.from_architecture(ModelType.APPROXIMATION, [3, 4, 2], seed=seed)
    data = np.random.default_rng(seed).normal(2.0, 3.0, size=(30, 5))
    stats = Descriptives.of(data)
    network.set_descriptives(stats.subset([0, 1, 2]), stats.subset([3, 4]))
    return network


def test_default_stacks_per_model_type():
    approximation = NeuralNetwork.from_architecture("Approximation", [2, 3, 1])
    kinds = [layer.kind for layer in approximation.layers]
    assert kinds == [
        LayerKind.SCALING,
        LayerKind.PERCEPTRON,
        LayerKind.PERCEPTRON,
        LayerKind.UNSCALING,
        LayerKind.BOUNDING,
    ]
    classification = NeuralNetwork.from_architecture(ModelType.CLASSIFICATION, [2, 3, 3])
    assert [layer.kind for layer in classification.layers] == [
        LayerKind.SCALING,
        LayerKind.PERCEPTRON,
        LayerKind.PROBABILISTIC,
    ]
    forecasting = NeuralNetwork.from_architecture(ModelType.FORECASTING, [4, 3, 1])
    assert forecasting.layers[1].kind is LayerKind.LONG_SHORT_TERM_MEMORY
    assert approximation.inputs_number == 2 and approximation.outputs_number == 1


def test_parameter_round_trip():
    network = _approximation()
    values = np.random.default_rng(1).standard_normal(network.parameter_count())
    network.set_parameters(values)
    np.testing.assert_array_equal(network.get_parameters(), values)
    assert network.parameter_count() == 4 * (3 + 1) + 2 * (4 + 1)
    with pytest.raises(ShapeMismatch):
        network.set_parameters(values[:-1])


def test_forward_is_deterministic():
    network = _approximation()
    inputs = np.random.default_rng(2).standard_normal((7, 3))
    np.testing.assert_array_equal(network.calculate_outputs(inputs), network.calculate_outputs(inputs))


def test_calculate_outputs_checks_inputs():
    network = _approximation()
    with pytest.raises(ShapeMismatch):
        network.calculate_outputs(np.zeros((2, 4)))
    with pytest.raises(UnboundReference):
        NeuralNetwork().calculate_outputs(np.zeros((1, 1)))


def test_add_layer_rejects_incompatible_shapes():
    network = NeuralNetwork(layers=[PerceptronLayer(3, 4)])
    with pytest.raises(ShapeMismatch):
        network.add_layer(PerceptronLayer(5, 1))


def test_check_layout_needs_a_leading_scaling_layer():
    NeuralNetwork().check_layout()
    _approximation().check_layout()
    unscaled = NeuralNetwork(layers=[PerceptronLayer(3, 4), PerceptronLayer(4, 2)])
    with pytest.raises(InvalidConfiguration):
        unscaled.check_layout()
    data_set = DataSet(np.zeros((10, 5)), instance_uses=["Training"] * 5 + ["Selection"] * 3 + ["Testing"] * 2)
    with pytest.raises(InvalidConfiguration):
        TrainingStrategy(unscaled, data_set, display=False).perform_training()
    with pytest.raises(InvalidConfiguration):
        TestingAnalysis(unscaled, data_set, display=False).check()


def test_back_propagate_matches_finite_differences():
    network = _approximation()
    inputs = np.random.default_rng(3).standard_normal((5, 3))
    weights = np.random.default_rng(4).standard_normal((5, 2))
    propagation = network.forward_propagate(inputs)
    gradient = network.back_propagate(propagation, weights)

    parameters = network.get_parameters()
    numerical = np.zeros_like(parameters)
    step = 1e-6
    for idx in range(parameters.size):
        shifted = parameters.copy()
        shifted[idx] += step
        network.set_parameters(shifted)
        plus = np.sum(network.calculate_outputs(inputs) * weights)
        shifted[idx] -= 2 * step
        network.set_parameters(shifted)
        minus = np.sum(network.calculate_outputs(inputs) * weights)
        numerical[idx] = (plus - minus) / (2 * step)
    network.set_parameters(parameters)
    np.testing.assert_allclose(gradient, numerical, rtol=1e-4, atol=1e-6)


def test_jacobian_rows_are_per_sample_output_gradients():
    network = _approximation()
    inputs = np.random.default_rng(5).standard_normal((4, 3))
    propagation = network.forward_propagate(inputs)
    jacobian = network.calculate_jacobian(propagation)
    assert jacobian.shape == (4 * 2, network.parameter_count())
    for sample in range(4):
        for output in range(2):
            seed = np.zeros((4, 2))
            seed[sample, output] = 1.0
            expected = network.back_propagate(propagation, seed)
            np.testing.assert_allclose(jacobian[sample * 2 + output], expected, rtol=1e-10, atol=1e-12)


def test_set_hidden_neurons_resizes_both_sides():
    network = _approximation()
    network.set_hidden_neurons(6, seed=1)
    assert network.hidden_neurons() == 6
    first, second = network.trainable_layers()
    assert (first.inputs_number, first.neurons_number) == (3, 6)
    assert (second.inputs_number, second.neurons_number) == (6, 2)
    with pytest.raises(InvalidConfiguration):
        network.set_hidden_neurons(0)


def test_set_inputs_number_rebuilds_the_input_side():
    network = _approximation()
    network.set_inputs_number(2, input_names=["a", "b"], seed=2)
    assert network.inputs_number == 2
    assert network.input_names == ["a", "b"]
    assert network.scaling_layer().features == 2
    assert network.calculate_outputs(np.zeros((3, 2))).shape == (3, 2)


def test_snapshot_and_restore():
    network = _approximation()
    snapshot = network.snapshot()
    before = network.get_parameters()
    network.set_hidden_neurons(7, seed=3)
    network.restore(snapshot)
    assert network.hidden_neurons() == 4
    np.testing.assert_array_equal(network.get_parameters(), before)


def test_tree_round_trip_preserves_outputs():
    network = _approximation()
    network.bounding_layer().set_bounds([-50.0, -50.0], [50.0, 50.0])
    rebuilt = NeuralNetwork.from_tree(network.to_tree())
    inputs = np.random.default_rng(6).standard_normal((6, 3))
    np.testing.assert_array_equal(rebuilt.calculate_outputs(inputs), network.calculate_outputs(inputs))
    assert rebuilt.architecture_string() == network.architecture_string() == "3-4-2"


def test_set_descriptives_checks_sizes():
    network = _approximation()
    with pytest.raises(ShapeMismatch):
        network.set_descriptives(Descriptives.default(5))


def test_write_expression_names_every_output():
    network = NeuralNetwork(
        layers=[PerceptronLayer(2, 2), ProbabilisticLayer(2, 1)],
        input_names=["x", "y"],
        output_names=["p"],
    )
    text = network.write_expression()
    assert "p = logistic(" in text
    assert "x" in text and "y" in text
