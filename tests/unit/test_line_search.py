import math

import pytest

from tabnn.core.errors import InvalidConfiguration
from tabnn.training.line_search import LearningRateAlgorithm, LearningRateMethod, minimize_along


def _parabola(minimum):
    calls = []

    def objective(rate):
        calls.append(rate)
        return (rate - minimum) ** 2 + 1.0

    return objective, calls


@pytest.mark.parametrize("method", [LearningRateMethod.GOLDEN_SECTION, LearningRateMethod.BRENT_METHOD])
def test_refinement_finds_the_minimum(method):
    objective, _ = _parabola(2.0)
    config = LearningRateAlgorithm(method=method, learning_rate_tolerance=1e-6)
    result = minimize_along(objective, objective(0.0), config)
    assert result.bracketed
    assert result.rate == pytest.approx(2.0, abs=1e-3)
    assert result.loss == pytest.approx(1.0, abs=1e-6)


def test_rate_is_capped_by_the_maximum():
    objective, _ = _parabola(500.0)
    config = LearningRateAlgorithm(training_rate_max=10.0)
    result = minimize_along(objective, objective(0.0), config)
    assert result.rate <= 10.0
    assert result.loss < objective(0.0)


def test_fixed_rate_skips_the_search():
    objective, calls = _parabola(2.0)
    config = LearningRateAlgorithm(method=LearningRateMethod.FIXED, fixed_rate=0.25)
    result = minimize_along(objective, objective(0.0), config)
    assert result.rate == 0.25
    assert calls == [0.0, 0.25]


def test_no_descent_falls_back_without_bracketing():
    config = LearningRateAlgorithm(fallback_rate=1e-3)
    result = minimize_along(lambda rate: 1.0 + rate, 1.0, config)
    assert not result.bracketed
    assert result.rate == 1e-3


def test_diverging_points_are_not_chosen():
    def objective(rate):
        return math.inf if rate > 1.0 else (rate - 0.5) ** 2

    result = minimize_along(objective, 0.25, LearningRateAlgorithm())
    assert 0.0 < result.rate <= 1.0
    assert math.isfinite(result.loss)


def test_configuration_is_validated():
    with pytest.raises(InvalidConfiguration):
        LearningRateAlgorithm(initial_rate=0.0)
    with pytest.raises(InvalidConfiguration):
        LearningRateAlgorithm(initial_rate=5.0, training_rate_max=1.0)
    with pytest.raises(InvalidConfiguration):
        LearningRateAlgorithm(maximum_bracketing_iterations=0)
    config = LearningRateAlgorithm(method="GoldenSection", initial_rate=0.1)
    assert LearningRateAlgorithm.from_tree(config.to_tree()) == config
