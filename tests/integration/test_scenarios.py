import json
from pathlib import Path

import numpy as np
import pytest

from tabnn.analysis import TestingAnalysis
from tabnn.core.types import StoppingCondition
from tabnn.data import InstanceUse
from tabnn.training import pipelines


def _assemble(name):
    cfg = pipelines.load_preset(name)
    cfg["training"]["display"] = False
    data_set = pipelines.build_data_set(cfg["data"])
    network = pipelines.build_network(cfg["model"], data_set, display=False)
    strategy = pipelines.build_strategy(cfg["training"], network, data_set)
    return cfg, data_set, network, strategy


@pytest.mark.slow
def test_breast_cancer_quasi_newton_classifies_the_testing_partition():
    _, data_set, network, strategy = _assemble("breast_cancer_quasi_newton")
    results = strategy.perform_training()

    assert results.converged
    assert results.training_loss_history[-1] < results.training_loss_history[0]
    tests = TestingAnalysis(network, data_set, display=False).calculate_binary_classification_tests()
    assert tests.accuracy > 0.9
    auc = TestingAnalysis(network, data_set, display=False).calculate_area_under_curve()
    assert auc > 0.95


@pytest.mark.slow
def test_xor_levenberg_marquardt_fits_the_truth_table():
    _, data_set, network, strategy = _assemble("xor_levenberg_marquardt")
    results = strategy.perform_training()

    assert results.converged
    assert results.final_training_loss < 0.5 * results.training_loss_history[0]
    assert results.stopping_condition in (StoppingCondition.LOSS_GOAL, StoppingCondition.MAXIMUM_EPOCHS, StoppingCondition.GRADIENT_NORM_GOAL)


@pytest.mark.slow
def test_linear_regression_conjugate_gradient_recovers_the_plane():
    _, data_set, network, strategy = _assemble("linear_regression_conjugate_gradient")
    results = strategy.perform_training()

    assert results.final_training_loss < 1e-6
    regression = TestingAnalysis(network, data_set, display=False).perform_linear_regression_analysis()[0]
    assert regression.correlation > 0.999
    assert regression.slope == pytest.approx(1.0, abs=1e-2)
    inputs = np.array([[0.5, -0.5], [0.0, 0.0]])
    assert network.calculate_outputs(inputs)[:, 0] == pytest.approx([3.5, 1.0], abs=1e-2)


@pytest.mark.slow
def test_growing_inputs_preset_finds_the_relevant_features(tmp_path):
    cfg = pipelines.load_preset("growing_inputs")
    cfg["training"]["run_dir"] = str(tmp_path)
    result = pipelines.run_pipeline(cfg)

    summary = json.loads(Path(result.summary_path).read_text())
    chosen = summary["selection"]["inputs"]["optimum"]["candidate"]
    assert {0, 2} <= set(chosen)
    assert (tmp_path / "model_selection.json").exists()


@pytest.mark.slow
def test_pruning_preset_keeps_the_relevant_features(tmp_path):
    cfg = pipelines.load_preset("relevant_subset_pruning")
    cfg["training"]["run_dir"] = str(tmp_path)
    cfg["selection"]["display"] = False
    result = pipelines.run_pipeline(cfg)

    selection = json.loads(Path(result.summary_path).read_text())["selection"]
    assert {1, 3} <= set(selection["inputs"]["optimum"]["candidate"])
    assert 1 <= selection["neurons"]["optimum"]["candidate"] <= 4


@pytest.mark.slow
def test_sine_series_forecast():
    cfg = {
        "data": {"name": "sine_series", "options": {"n_points": 200, "lags": 4, "seed": 0}},
        "model": {"model_type": "Forecasting", "hidden": [4], "seed": 0},
        "training": {
            "loss": {"error": "NormalizedSquaredError"},
            "optimizer": "QuasiNewtonMethod",
            "stopping": {"max_epochs": 150},
            "display": False,
        },
    }
    data_set = pipelines.build_data_set(cfg["data"])
    network = pipelines.build_network(cfg["model"], data_set, display=False)
    strategy = pipelines.build_strategy(cfg["training"], network, data_set)
    strategy.perform_training()

    errors = TestingAnalysis(network, data_set, display=False).calculate_errors()
    assert errors[InstanceUse.TESTING.value].normalized_squared_error < 0.05
    assert data_set.input_names() == ["signal_lag_4", "signal_lag_3", "signal_lag_2", "signal_lag_1"]
