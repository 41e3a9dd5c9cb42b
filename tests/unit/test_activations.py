import numpy as np
import pytest

from tabnn.core.activations import ActivationFunction, activate, derivative, logistic, softmax

SMOOTH = [
    ActivationFunction.LOGISTIC,
    ActivationFunction.HYPERBOLIC_TANGENT,
    ActivationFunction.LINEAR,
    ActivationFunction.SCALED_EXPONENTIAL_LINEAR,
    ActivationFunction.SOFT_PLUS,
    ActivationFunction.SOFT_SIGN,
    ActivationFunction.EXPONENTIAL_LINEAR,
]


@pytest.mark.parametrize("function", SMOOTH, ids=lambda f: f.value)
def test_derivative_matches_central_difference(function):
    z = np.array([-2.1, -0.7, 0.3, 1.9])
    h = 1e-6
    numerical = (activate(function, z + h) - activate(function, z - h)) / (2 * h)
    analytical = derivative(function, z, activate(function, z))
    np.testing.assert_allclose(analytical, numerical, rtol=1e-5, atol=1e-8)


def test_logistic_is_stable_for_large_inputs():
    out = logistic(np.array([-1000.0, 0.0, 1000.0]))
    np.testing.assert_allclose(out, [0.0, 0.5, 1.0])
    assert np.all(np.isfinite(out))


def test_softmax_rows_sum_to_one():
    z = np.array([[1.0, 2.0, 3.0], [1000.0, 1000.0, 1000.0]])
    out = softmax(z)
    np.testing.assert_allclose(out.sum(axis=1), [1.0, 1.0])
    np.testing.assert_allclose(out[1], [1 / 3] * 3)


def test_threshold_and_relu_values():
    z = np.array([-1.0, 0.0, 2.0])
    np.testing.assert_array_equal(activate(ActivationFunction.THRESHOLD, z), [0.0, 1.0, 1.0])
    np.testing.assert_array_equal(activate(ActivationFunction.SYMMETRIC_THRESHOLD, z), [-1.0, 1.0, 1.0])
    np.testing.assert_array_equal(activate(ActivationFunction.RECTIFIED_LINEAR, z), [0.0, 0.0, 2.0])
    np.testing.assert_array_equal(activate(ActivationFunction.HARD_SIGMOID, np.array([-3.0, 0.0, 3.0])), [0.0, 0.5, 1.0])
