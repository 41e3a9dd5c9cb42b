import numpy as np
import pytest

from tabnn.core.errors import InvalidConfiguration, UnboundReference
from tabnn.data import DataSet, InstanceUse
from tabnn.network import ModelType, NeuralNetwork
from tabnn.training.losses import ErrorKind, LossConfig, LossIndex, RegularizationKind

STEP = 1e-6


def _regression_setup(seed=0):
    rng = np.random.default_rng(seed)
    x = rng.uniform(-1.0, 1.0, size=(12, 3))
    y = np.column_stack([x[:, 0] - 0.5 * x[:, 2], np.sin(x[:, 1])])
    data_set = DataSet(np.column_stack([x, y]), variable_uses=["Input"] * 3 + ["Target"] * 2)
    network = NeuralNetwork.from_architecture(ModelType.APPROXIMATION, [3, 4, 2], seed=seed)
    return network, data_set


def _binary_setup(seed=0):
    rng = np.random.default_rng(seed)
    x = rng.standard_normal((16, 3))
    y = (x[:, 0] + x[:, 1] > 0).astype(float)
    data_set = DataSet(np.column_stack([x, y]))
    network = NeuralNetwork.from_architecture(ModelType.CLASSIFICATION, [3, 3, 1], seed=seed)
    return network, data_set


def _numerical_gradient(loss, batch, parameters):
    gradient = np.zeros_like(parameters)
    for idx in range(parameters.size):
        shifted = parameters.copy()
        shifted[idx] += STEP
        plus = loss.loss_at(shifted, batch)
        shifted[idx] -= 2 * STEP
        minus = loss.loss_at(shifted, batch)
        gradient[idx] = (plus - minus) / (2 * STEP)
    loss.network.set_parameters(parameters)
    return gradient


@pytest.mark.parametrize(
    "error",
    [ErrorKind.SUM_SQUARED, ErrorKind.MEAN_SQUARED, ErrorKind.NORMALIZED_SQUARED, ErrorKind.MINKOWSKI],
)
@pytest.mark.parametrize("regularization", list(RegularizationKind))
def test_regression_gradients_match_finite_differences(error, regularization):
    network, data_set = _regression_setup()
    loss = LossIndex(network, data_set, LossConfig(error=error, regularization=regularization, regularization_weight=0.01))
    batch = data_set.batch(InstanceUse.TRAINING)
    evaluation = loss.evaluate(batch)
    numerical = _numerical_gradient(loss, batch, network.get_parameters())
    np.testing.assert_allclose(evaluation.gradient, numerical, rtol=1e-4, atol=1e-6)
    assert evaluation.loss == pytest.approx(evaluation.error + evaluation.regularization)


@pytest.mark.parametrize("error", [ErrorKind.CROSS_ENTROPY, ErrorKind.WEIGHTED_SQUARED])
def test_classification_gradients_match_finite_differences(error):
    network, data_set = _binary_setup()
    loss = LossIndex(network, data_set, LossConfig(error=error))
    batch = data_set.batch(InstanceUse.TRAINING)
    evaluation = loss.evaluate(batch)
    numerical = _numerical_gradient(loss, batch, network.get_parameters())
    np.testing.assert_allclose(evaluation.gradient, numerical, rtol=1e-4, atol=1e-6)


def test_error_values_follow_their_definitions():
    network, data_set = _regression_setup()
    batch = data_set.batch(InstanceUse.TRAINING)
    outputs = network.calculate_outputs(batch.inputs)
    residual = outputs - batch.targets
    sse = float(np.sum(residual**2))

    def error_of(kind, **options):
        return LossIndex(network, data_set, LossConfig(error=kind, **options)).calculate_error()

    assert error_of(ErrorKind.SUM_SQUARED) == pytest.approx(sse)
    assert error_of(ErrorKind.MEAN_SQUARED) == pytest.approx(sse / batch.size)
    deviation = float(np.sum((batch.targets - batch.targets.mean(axis=0)) ** 2))
    assert error_of(ErrorKind.NORMALIZED_SQUARED) == pytest.approx(sse / deviation)
    assert error_of(ErrorKind.MINKOWSKI, minkowski_parameter=1.0) == pytest.approx(float(np.sum(np.abs(residual))))


def test_normalized_error_of_the_mean_predictor_is_one():
    data = np.column_stack([np.arange(6.0), [1.0, 3.0, 2.0, 5.0, 4.0, 6.0]])
    data_set = DataSet(data)
    network = NeuralNetwork.from_architecture(ModelType.APPROXIMATION, [1, 1], seed=0)
    # Zero weights and a bias at the target mean.
    network.set_parameters([data[:, 1].mean(), 0.0])
    loss = LossIndex(network, data_set, LossConfig(error=ErrorKind.NORMALIZED_SQUARED))
    assert loss.calculate_error() == pytest.approx(1.0)


def test_regularization_terms():
    network, data_set = _regression_setup()
    parameters = network.get_parameters()
    l1 = LossIndex(network, data_set, LossConfig(regularization="L1", regularization_weight=0.5))
    l2 = LossIndex(network, data_set, LossConfig(regularization="L2", regularization_weight=0.5))
    none = LossIndex(network, data_set, LossConfig())
    assert l1.regularization()[0] == pytest.approx(0.5 * np.sum(np.abs(parameters)))
    assert l2.regularization()[0] == pytest.approx(0.5 * np.sum(parameters**2))
    np.testing.assert_allclose(l2.regularization()[1], parameters)
    assert none.regularization()[0] == 0.0


def test_squared_errors_jacobian_is_consistent_with_the_gradient():
    network, data_set = _regression_setup()
    loss = LossIndex(network, data_set, LossConfig(error=ErrorKind.MEAN_SQUARED))
    batch = data_set.batch(InstanceUse.TRAINING)
    residuals, jacobian = loss.squared_errors_jacobian(batch)
    evaluation = loss.evaluate(batch)
    assert float(residuals @ residuals) == pytest.approx(evaluation.error)
    np.testing.assert_allclose(2.0 * jacobian.T @ residuals, evaluation.gradient, rtol=1e-9, atol=1e-12)


def test_squared_errors_jacobian_rejects_other_errors():
    network, data_set = _binary_setup()
    loss = LossIndex(network, data_set, LossConfig(error=ErrorKind.CROSS_ENTROPY))
    with pytest.raises(InvalidConfiguration):
        loss.squared_errors_jacobian(data_set.batch())


def test_weighted_squared_error_defaults_to_class_ratio():
    network, data_set = _binary_setup()
    loss = LossIndex(network, data_set, LossConfig(error=ErrorKind.WEIGHTED_SQUARED))
    positives, negatives = data_set.positives_negatives()
    assert loss.class_weights() == pytest.approx((negatives / positives, 1.0))


def test_normalization_coefficient_tracks_data_set_version():
    network, data_set = _regression_setup()
    loss = LossIndex(network, data_set, LossConfig())
    first = loss.normalization_coefficient()
    data_set.split_instances(0.5, 0.5, 0.0, seed=1)
    assert loss.normalization_coefficient() != pytest.approx(first)


def test_loss_config_validation():
    with pytest.raises(InvalidConfiguration):
        LossConfig(minkowski_parameter=2.5)
    with pytest.raises(InvalidConfiguration):
        LossConfig(regularization_weight=-1.0)
    with pytest.raises(InvalidConfiguration):
        LossConfig(error="AbsoluteError")
    config = LossConfig(error="MinkowskiError", regularization="L2", regularization_weight=0.1)
    assert LossConfig.from_tree(config.to_tree()) == config


def test_loss_index_needs_network_and_data():
    network, data_set = _regression_setup()
    with pytest.raises(UnboundReference):
        LossIndex(None, data_set)
    with pytest.raises(UnboundReference):
        LossIndex(network, None)
