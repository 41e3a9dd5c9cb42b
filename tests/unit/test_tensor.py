import numpy as np
import pytest

from tabnn.core import tensor
from tabnn.core.descriptives import Descriptives
from tabnn.core.device import Device
from tabnn.core.errors import ShapeMismatch


@pytest.fixture(params=["single", "pool"])
def device(request):
    if request.param == "single":
        yield Device.single_threaded()
        return
    with Device.thread_pool(4) as pooled:
        yield pooled


def test_matmul_matches_numpy_for_large_blocks(device):
    rng = np.random.default_rng(0)
    a = rng.standard_normal((600, 7))
    b = rng.standard_normal((7, 3))
    np.testing.assert_allclose(tensor.matmul(device, a, b), a @ b)


def test_matmul_rejects_mismatched_operands():
    with pytest.raises(ShapeMismatch):
        tensor.matmul(Device.single_threaded(), np.ones((2, 3)), np.ones((2, 3)))


def test_reduce_sum_is_identical_across_repeats(device):
    rng = np.random.default_rng(1)
    x = rng.standard_normal((1000, 5))
    first = tensor.reduce_sum(device, x)
    second = tensor.reduce_sum(device, x)
    assert first == second
    assert first == pytest.approx(float(np.sum(x)))
    np.testing.assert_allclose(tensor.reduce_sum(device, x, axis=0), x.sum(axis=0))


def test_reduce_mean_of_empty_tensor_raises():
    with pytest.raises(ShapeMismatch):
        tensor.reduce_mean(Device.single_threaded(), np.zeros((0, 3)), axis=0)


def test_add_and_multiply_along_axis():
    x = np.zeros((2, 3))
    np.testing.assert_allclose(tensor.add_along(x, np.array([1.0, 2.0, 3.0])), [[1, 2, 3], [1, 2, 3]])
    np.testing.assert_allclose(tensor.multiply_along(np.ones((2, 3)), np.array([2.0, 3.0]), axis=0), [[2] * 3, [3] * 3])
    with pytest.raises(ShapeMismatch):
        tensor.add_along(x, np.array([1.0, 2.0]))


def test_row_slice_bounds():
    x = np.arange(12.0).reshape(4, 3)
    np.testing.assert_array_equal(tensor.row_slice(x, 1, 3), x[1:3])
    with pytest.raises(ShapeMismatch):
        tensor.row_slice(x, 2, 5)


def test_check_shape_accepts_wildcards():
    x = np.zeros((5, 2))
    assert tensor.check_shape(x, (None, 2), "test") is x
    with pytest.raises(ShapeMismatch):
        tensor.check_shape(x, (5, 3), "test")


def test_argmax_and_fill():
    x = np.array([[0.1, 0.7, 0.2], [0.5, 0.3, 0.2]])
    np.testing.assert_array_equal(tensor.argmax(x), [1, 0])
    assert np.all(tensor.fill(np.empty(3), 2.5) == 2.5)


def test_descriptives_of_columns():
    data = np.array([[1.0, 10.0], [3.0, 30.0]])
    stats = Descriptives.of(data)
    np.testing.assert_allclose(stats.minimum, [1.0, 10.0])
    np.testing.assert_allclose(stats.maximum, [3.0, 30.0])
    np.testing.assert_allclose(stats.mean, [2.0, 20.0])
    np.testing.assert_allclose(stats.standard_deviation, [np.sqrt(2.0), np.sqrt(200.0)])
    assert stats.subset([1]).size == 1
    assert Descriptives.from_tree(stats.to_tree()).to_tree() == stats.to_tree()
