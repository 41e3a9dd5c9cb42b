import numpy as np
import pytest

from tabnn.analysis import TestingAnalysis, binary_tests, linear_regression
from tabnn.core.activations import ActivationFunction
from tabnn.core.descriptives import Descriptives
from tabnn.core.errors import EmptyPartition, InvalidConfiguration, ShapeMismatch, UnboundReference
from tabnn.data import DataSet, InstanceUse
from tabnn.layers import PerceptronLayer, ScalingLayer
from tabnn.network import NeuralNetwork

SCORES = [0.9, 0.8, 0.4, 0.6, 0.2, 0.1]
LABELS = [1.0, 1.0, 1.0, 0.0, 0.0, 0.0]


def _identity_network(width=1):
    layer = PerceptronLayer(width, width, activation=ActivationFunction.LINEAR, synaptic_weights=np.eye(width))
    return NeuralNetwork(layers=[ScalingLayer(Descriptives.default(width)), layer])


def _scored(scores, labels, use=InstanceUse.TESTING):
    data_set = DataSet(np.column_stack([scores, labels]), instance_uses=[use] * len(scores))
    return TestingAnalysis(_identity_network(), data_set, display=False)


def test_binary_confusion_and_tests():
    analysis = _scored(SCORES, LABELS)
    confusion = analysis.calculate_confusion()
    assert confusion.tolist() == [[2, 1], [1, 2]]
    tests = analysis.calculate_binary_classification_tests()
    assert tests.accuracy == pytest.approx(4 / 6)
    assert tests.error_rate == pytest.approx(2 / 6)
    assert tests.sensitivity == pytest.approx(2 / 3)
    assert tests.specificity == pytest.approx(2 / 3)
    assert tests.precision == pytest.approx(2 / 3)
    assert tests.f1_score == pytest.approx(2 / 3)
    assert tests.positive_likelihood == pytest.approx(2.0)
    assert tests.matthews_correlation == pytest.approx(1 / 3)
    assert tests.informedness == pytest.approx(1 / 3)
    assert tests.markedness == pytest.approx(1 / 3)
    assert set(tests.to_dict()) >= {"accuracy", "negative_predictive_value", "false_discovery_rate"}


def test_decision_threshold_moves_the_confusion():
    analysis = _scored(SCORES, LABELS)
    assert analysis.calculate_confusion(decision_threshold=0.3).tolist() == [[3, 0], [1, 2]]


def test_perfect_classification_has_unit_likelihoods():
    tests = binary_tests(np.array([[3, 0], [0, 2]]))
    assert tests.accuracy == 1.0
    assert tests.positive_likelihood == 1.0 and tests.negative_likelihood == 1.0
    assert tests.matthews_correlation == pytest.approx(1.0)


def test_degenerate_confusion_has_no_division_errors():
    tests = binary_tests(np.array([[0, 0], [0, 4]]))
    assert tests.sensitivity == 0.0
    assert tests.precision == 0.0
    assert tests.matthews_correlation == 0.0


def test_roc_curve_and_area():
    analysis = _scored(SCORES, LABELS)
    curve = analysis.calculate_roc_curve()
    assert curve.shape[1] == 3
    assert tuple(curve[0, :2]) == (0.0, 0.0)
    assert tuple(curve[-1, :2]) == (1.0, 1.0)
    assert curve[0, 2] > max(SCORES)
    assert analysis.calculate_area_under_curve() == pytest.approx(8 / 9)
    assert analysis.calculate_optimal_threshold() in (pytest.approx(0.8), pytest.approx(0.4))


def test_perfect_separation_has_unit_area():
    analysis = _scored([0.9, 0.7, 0.3, 0.1], [1.0, 1.0, 0.0, 0.0])
    assert analysis.calculate_area_under_curve() == pytest.approx(1.0)
    threshold = analysis.calculate_optimal_threshold()
    assert 0.3 < threshold <= 0.7


def test_roc_needs_both_classes():
    analysis = _scored([0.2, 0.4], [1.0, 1.0])
    with pytest.raises(EmptyPartition):
        analysis.calculate_roc_curve()


def test_multiple_confusion_uses_argmax():
    outputs = np.array([[0.9, 0.1], [0.3, 0.7], [0.6, 0.4], [0.2, 0.8]])
    targets = np.array([[1.0, 0.0], [0.0, 1.0], [0.0, 1.0], [0.0, 1.0]])
    data_set = DataSet(np.column_stack([outputs, targets]), variable_uses=["Input", "Input", "Target", "Target"])
    data_set.set_instance_uses(["Testing"] * 4)
    analysis = TestingAnalysis(_identity_network(2), data_set, display=False)
    assert analysis.calculate_confusion().tolist() == [[1, 0], [1, 2]]
    with pytest.raises(InvalidConfiguration):
        analysis.calculate_binary_classification_tests()


def test_errors_per_partition():
    values = np.array([1.0, 2.0, 3.0, 4.0])
    targets = values + np.array([0.5, -0.5, 0.0, 1.0])
    data_set = DataSet(
        np.column_stack([values, targets]),
        instance_uses=["Training", "Training", "Testing", "Testing"],
    )
    errors = TestingAnalysis(_identity_network(), data_set, display=False).calculate_errors()
    assert set(errors) == {"Training", "Testing"}
    assert errors["Training"].sum_squared_error == pytest.approx(0.5)
    assert errors["Training"].mean_squared_error == pytest.approx(0.25)
    assert errors["Testing"].root_mean_squared_error == pytest.approx(np.sqrt(0.5))
    deviation = np.sum((targets[2:] - targets[2:].mean()) ** 2)
    assert errors["Testing"].normalized_squared_error == pytest.approx(1.0 / deviation)


def test_linear_regression_analysis():
    analysis = _scored([1.0, 2.0, 3.0, 5.0], [1.0, 2.0, 3.0, 5.0])
    (fit,) = analysis.perform_linear_regression_analysis()
    assert fit.slope == pytest.approx(1.0)
    assert fit.intercept == pytest.approx(0.0, abs=1e-12)
    assert fit.correlation == pytest.approx(1.0)
    constant = linear_regression(np.full(3, 2.0), np.full(3, 2.0))
    assert constant.correlation == 1.0 and constant.slope == 0.0


def test_analysis_checks_its_bindings():
    data_set = DataSet(np.zeros((3, 3)), instance_uses=["Testing"] * 3)
    with pytest.raises(UnboundReference):
        TestingAnalysis(None, data_set).check()
    with pytest.raises(UnboundReference):
        TestingAnalysis(_identity_network(), None).check()
    with pytest.raises(ShapeMismatch):
        TestingAnalysis(_identity_network(), data_set).check()
