import csv
import json
from pathlib import Path

import pytest

from tabnn import persistence
from tabnn.core.types import CancellationToken
from tabnn.network import NeuralNetwork
from tabnn.reporting.metrics import DEFAULT_FIELDS
from tabnn.training import pipelines


def _config(run_dir: Path, **training):
    cfg = {
        "data": {"name": "linear_regression", "options": {"n_points": 60, "noise": 0.05, "seed": 3}},
        "model": {"model_type": "Approximation", "hidden": [2], "seed": 3},
        "training": {
            "loss": {"error": "MeanSquaredError"},
            "optimizer": "QuasiNewtonMethod",
            "stopping": {"max_epochs": 5, "max_selection_failures": 100},
            "display": False,
            "run_dir": str(run_dir),
            "enable_plots": False,
        },
    }
    cfg["training"].update(training)
    return cfg


def _read_jsonl(path):
    return [json.loads(line) for line in Path(path).read_text().splitlines() if line.strip()]


def test_run_pipeline_writes_every_artifact(tmp_path):
    result = pipelines.run_pipeline(_config(tmp_path))

    assert result.epochs == 5
    assert result.stopping_condition == "MaximumEpochs"
    for name in ("metrics_train.jsonl", "metrics.csv", "network.json", "training_strategy.json", "summary.json", "config.json", "manifest.json"):
        assert (tmp_path / name).exists(), name
    assert not (tmp_path / "model_selection.json").exists()

    records = _read_jsonl(result.metrics_path)
    assert [record["epoch"] for record in records] == [1, 2, 3, 4, 5]
    assert all(record["split"] == "train" and record["seed"] == 3 for record in records)
    assert all("training_loss" in record and "selection_loss" in record for record in records)

    with (tmp_path / "metrics.csv").open() as handle:
        rows = list(csv.DictReader(handle))
    assert list(rows[0].keys()) == ["epoch", "split", *DEFAULT_FIELDS]
    assert len(rows) == 5

    manifest = json.loads(Path(result.manifest_path).read_text())
    assert manifest["config"]["data"]["name"] == "linear_regression"
    assert manifest["data_set"]["instances"] == 60
    assert set(manifest["artifacts"]) == {"metrics", "metrics_csv", "summary", "network"}

    summary = json.loads(Path(result.summary_path).read_text())
    assert summary["records"] == 5
    history = summary["training"]["training_loss_history"]
    assert len(history) == 6
    assert summary["metrics"]["training_loss"]["last"] == pytest.approx(history[-1])

    network = persistence.load(result.network_path)
    assert isinstance(network, NeuralNetwork)
    assert network.architecture_string() == "2-2-1"


def test_run_pipeline_is_deterministic(tmp_path):
    first = pipelines.run_pipeline(_config(tmp_path / "a"))
    second = pipelines.run_pipeline(_config(tmp_path / "b"))

    def history(result):
        return json.loads(Path(result.summary_path).read_text())["training"]["training_loss_history"]

    assert history(first) == history(second)
    assert Path(first.network_path).read_text() == Path(second.network_path).read_text()


def test_selection_section_writes_model_selection(tmp_path):
    cfg = {
        "data": {"name": "relevant_subset", "options": {"n_points": 90, "n_features": 3, "relevant": [1], "seed": 0}},
        "model": {"model_type": "Approximation", "hidden": [2], "seed": 0},
        "training": {
            "loss": {"error": "NormalizedSquaredError"},
            "optimizer": "QuasiNewtonMethod",
            "stopping": {"max_epochs": 10},
            "display": False,
            "run_dir": str(tmp_path),
        },
        "selection": {
            "inputs_method": "GrowingInputs",
            "neurons_method": "NoNeuronsSelection",
            "inputs_config": {"max_selection_failures": 1},
        },
    }
    result = pipelines.run_pipeline(cfg)

    assert (tmp_path / "model_selection.json").exists()
    stored = persistence.read(tmp_path / "model_selection.json")
    assert stored["ModelSelection"]["InputsSelection"]["method"] == "GrowingInputs"

    summary = json.loads(Path(result.summary_path).read_text())
    inputs = summary["selection"]["inputs"]
    assert 1 in inputs["optimum"]["candidate"]
    assert summary["selection"]["neurons"] is None
    network = persistence.load(result.network_path)
    assert network.inputs_number == len(inputs["optimum"]["candidate"])


def test_cancelled_pipeline_still_writes_summary(tmp_path):
    token = CancellationToken()
    token.cancel()
    result = pipelines.run_pipeline(_config(tmp_path), cancellation=token)
    assert result.epochs == 0
    assert result.stopping_condition == "Cancelled"
    summary = json.loads(Path(result.summary_path).read_text())
    assert summary["records"] == 0


def test_presets_and_config_files(tmp_path):
    names = set(pipelines.presets())
    assert {"breast_cancer_quasi_newton", "xor_levenberg_marquardt", "relevant_subset_pruning"} <= names
    with pytest.raises(KeyError, match="Available"):
        pipelines.load_preset("missing")

    partial = tmp_path / "partial.yaml"
    partial.write_text("data:\n  name: xor\n")
    with pytest.raises(KeyError, match="model, training"):
        pipelines.read_config(partial)
    with pytest.raises(KeyError):
        pipelines.run_pipeline({"data": {"name": "xor"}})

    full = tmp_path / "full.json"
    full.write_text(json.dumps(_config(tmp_path / "run")))
    assert pipelines.read_config(full)["model"]["hidden"] == [2]
