import math

import numpy as np
import pytest

from tabnn.core.errors import EmptyPartition, InvalidConfiguration, NumericalFailure, ShapeMismatch, UnboundReference
from tabnn.core.types import CancellationToken, StoppingCondition
from tabnn.data import InstanceUse, get_dataset
from tabnn.network import ModelType, NeuralNetwork
from tabnn.training import LossConfig, OptimizerKind, StoppingCriteria, TrainingStrategy
from tabnn.training.optimizers import StepOutcome
from tabnn.training.optimizers.base import gradient_norm, initial_state
from tabnn.training.pipelines import build_network


def _regression(hidden=(3,), seed=0):
    data_set = get_dataset("linear_regression", n_points=60, seed=seed)
    network = build_network({"model_type": "Approximation", "hidden": list(hidden), "seed": seed}, data_set, display=False)
    return network, data_set


class ScriptedOptimizer:
    """Moves the first bias by ``shift`` each epoch, or fails when told to."""

    kind = OptimizerKind.GRADIENT_DESCENT

    def __init__(self, shift=1.0, failures=0):
        self.config = None
        self.shift = shift
        self.failures = failures
        self.retreats = 0

    def initialize(self, loss):
        return initial_state(loss)

    def step(self, loss, state):
        if self.failures:
            self.failures -= 1
            loss.network.set_parameters(state.parameters + 1e3)
            raise NumericalFailure("scripted failure")
        parameters = state.parameters.copy()
        parameters[0] += self.shift
        loss.network.set_parameters(parameters)
        evaluation = loss.evaluate(loss.data_set.batch(InstanceUse.TRAINING))
        state.parameters = parameters
        state.training_loss = evaluation.loss
        state.gradient = evaluation.gradient
        return StepOutcome(evaluation.loss, gradient_norm(evaluation.gradient))

    def retreat(self, state):
        self.retreats += 1
        state.step_scale *= 0.5


def _scripted_strategy(optimizer, stopping, **kwargs):
    network, data_set = _regression(hidden=())
    # Far above the optimum, so every further shift raises the selection error.
    parameters = network.get_parameters()
    parameters[0] = 50.0
    network.set_parameters(parameters)
    strategy = TrainingStrategy(network, data_set, loss=LossConfig(error="MeanSquaredError"), stopping=stopping, display=False, **kwargs)
    strategy.optimizer = optimizer
    return strategy


def test_gradient_descent_with_a_small_fixed_rate_is_monotone():
    network, data_set = _regression(hidden=())
    strategy = TrainingStrategy(
        network,
        data_set,
        loss=LossConfig(error="MeanSquaredError"),
        optimizer="GradientDescent",
        optimizer_config={"learning_rate_algorithm": {"method": "Fixed", "fixed_rate": 0.01}},
        stopping=StoppingCriteria(max_epochs=40),
        display=False,
    )
    results = strategy.perform_training()
    history = results.training_loss_history
    assert results.epochs == 40
    assert all(later <= earlier for earlier, later in zip(history, history[1:]))
    assert history[-1] < history[0]


def test_training_stops_exactly_at_max_selection_failures():
    strategy = _scripted_strategy(ScriptedOptimizer(), StoppingCriteria(max_selection_failures=3, max_epochs=100))
    results = strategy.perform_training()
    assert results.stopping_condition is StoppingCondition.SELECTION_LOSS_INCREASES
    assert results.epochs == 3
    selection = results.selection_loss_history
    assert all(later > earlier for earlier, later in zip(selection, selection[1:]))


def test_choose_best_selection_restores_the_best_parameters():
    stopping = StoppingCriteria(max_selection_failures=2, max_epochs=100, choose_best_selection=True)
    strategy = _scripted_strategy(ScriptedOptimizer(), stopping)
    start = strategy.network.get_parameters()
    results = strategy.perform_training()
    np.testing.assert_array_equal(results.parameters, start)
    np.testing.assert_array_equal(strategy.network.get_parameters(), start)


def test_cancellation_before_training():
    token = CancellationToken()
    token.cancel()
    strategy = _scripted_strategy(ScriptedOptimizer(), StoppingCriteria(max_epochs=10), cancellation=token)
    results = strategy.perform_training()
    assert results.stopping_condition is StoppingCondition.CANCELLED
    assert results.epochs == 0


def test_cancellation_between_epochs():
    token = CancellationToken()

    def cancel_at_two(epoch, metrics):
        if epoch == 2:
            token.cancel()

    strategy = _scripted_strategy(
        ScriptedOptimizer(shift=-1e-3),
        StoppingCriteria(max_epochs=10, max_selection_failures=100),
        cancellation=token,
        callbacks=[cancel_at_two],
    )
    results = strategy.perform_training()
    assert results.stopping_condition is StoppingCondition.CANCELLED
    assert results.epochs == 2


def test_single_numerical_failure_retreats_and_continues():
    optimizer = ScriptedOptimizer(shift=-1e-3, failures=1)
    strategy = _scripted_strategy(optimizer, StoppingCriteria(max_epochs=3, max_selection_failures=100))
    results = strategy.perform_training()
    assert optimizer.retreats == 1
    assert results.stopping_condition is StoppingCondition.MAXIMUM_EPOCHS
    assert results.epochs == 3


def test_repeated_numerical_failure_stops_with_last_accepted_parameters():
    optimizer = ScriptedOptimizer(failures=5)
    strategy = _scripted_strategy(optimizer, StoppingCriteria(max_epochs=10))
    start = strategy.network.get_parameters()
    results = strategy.perform_training()
    assert results.stopping_condition is StoppingCondition.NUMERICAL_FAILURE
    assert results.epochs == 0
    assert not results.converged
    np.testing.assert_array_equal(strategy.network.get_parameters(), start)


def test_stopping_conditions_are_checked_in_order():
    criteria = StoppingCriteria(loss_goal=1.0, gradient_norm_goal=1.0, max_selection_failures=1, max_epochs=1, max_time=1.0)
    assert criteria.check(0.5, 0.5, 1, 1, 1.0) is StoppingCondition.LOSS_GOAL
    assert criteria.check(2.0, 0.5, 1, 1, 1.0) is StoppingCondition.GRADIENT_NORM_GOAL
    assert criteria.check(2.0, 2.0, 1, 1, 1.0) is StoppingCondition.SELECTION_LOSS_INCREASES
    assert criteria.check(2.0, 2.0, 0, 1, 1.0) is StoppingCondition.MAXIMUM_EPOCHS
    assert criteria.check(2.0, 2.0, 0, 0, 1.0) is StoppingCondition.MAXIMUM_TIME
    assert criteria.check(2.0, 2.0, 0, 0, 0.0) is None


def test_zero_epochs_returns_the_initial_state():
    network, data_set = _regression()
    start = network.get_parameters()
    strategy = TrainingStrategy(network, data_set, stopping=StoppingCriteria(max_epochs=0), display=False)
    results = strategy.perform_training()
    assert results.stopping_condition is StoppingCondition.MAXIMUM_EPOCHS
    assert results.epochs == 0
    assert len(results.training_loss_history) == 1
    np.testing.assert_array_equal(network.get_parameters(), start)


def test_cancelled_token_wins_over_zero_epochs():
    network, data_set = _regression()
    token = CancellationToken()
    token.cancel()
    strategy = TrainingStrategy(
        network, data_set, stopping=StoppingCriteria(max_epochs=0), cancellation=token, display=False
    )
    results = strategy.perform_training()
    assert results.stopping_condition is StoppingCondition.CANCELLED
    assert results.epochs == 0


def test_non_finite_starting_loss_is_reported_not_raised():
    network, data_set = _regression(hidden=())
    network.set_parameters(np.full(network.parameter_count(), 1e200))
    start = network.get_parameters()
    with np.errstate(all="ignore"):
        results = TrainingStrategy(network, data_set, display=False).perform_training()
    assert results.stopping_condition is StoppingCondition.NUMERICAL_FAILURE
    assert results.epochs == 0
    assert not results.converged
    np.testing.assert_array_equal(results.parameters, start)
    np.testing.assert_array_equal(network.get_parameters(), start)


def test_levenberg_marquardt_needs_a_squared_error():
    data_set = get_dataset("breast_cancer", seed=0)
    network = build_network({"model_type": "Classification", "hidden": [2]}, data_set, display=False)
    strategy = TrainingStrategy(
        network, data_set, loss=LossConfig(error="CrossEntropyError"), optimizer="LevenbergMarquardtAlgorithm", display=False
    )
    with pytest.raises(InvalidConfiguration):
        strategy.perform_training()


OPTIMIZER_CONFIGS = {
    OptimizerKind.GRADIENT_DESCENT: None,
    OptimizerKind.CONJUGATE_GRADIENT: {"training_direction_method": "FR"},
    OptimizerKind.QUASI_NEWTON: {"inverse_hessian_approximation": "DFP"},
    OptimizerKind.LEVENBERG_MARQUARDT: None,
    OptimizerKind.STOCHASTIC_GRADIENT_DESCENT: {"initial_learning_rate": 0.01, "momentum": 0.5, "batch_size": 8},
    OptimizerKind.ADAPTIVE_MOMENT_ESTIMATION: {"initial_learning_rate": 0.01, "batch_size": 8},
    OptimizerKind.EVOLUTIONARY_ALGORITHM: {"population_size": 12, "seed": 1},
}


@pytest.mark.parametrize("kind", list(OptimizerKind))
def test_every_optimizer_lowers_the_training_loss(kind):
    network, data_set = _regression()
    strategy = TrainingStrategy(
        network,
        data_set,
        loss=LossConfig(error="MeanSquaredError"),
        optimizer=kind,
        optimizer_config=OPTIMIZER_CONFIGS[kind],
        stopping=StoppingCriteria(max_epochs=15, max_selection_failures=100),
        display=False,
    )
    results = strategy.perform_training()
    assert results.optimizer == kind.value
    assert results.epochs == 15
    assert math.isfinite(results.final_training_loss)
    if kind is OptimizerKind.EVOLUTIONARY_ALGORITHM:
        history = results.training_loss_history
        assert all(later <= earlier for earlier, later in zip(history, history[1:]))
    else:
        assert results.final_training_loss < results.training_loss_history[0]


def test_strategy_validates_its_bindings():
    network, data_set = _regression()
    with pytest.raises(UnboundReference):
        TrainingStrategy(None, data_set).perform_training()
    other = NeuralNetwork.from_architecture(ModelType.APPROXIMATION, [5, 1])
    with pytest.raises(ShapeMismatch):
        TrainingStrategy(other, data_set, display=False).perform_training()
    data_set.split_instances(1.0, 0.0, 0.0)
    with pytest.raises(EmptyPartition):
        TrainingStrategy(network, data_set, display=False).perform_training()
