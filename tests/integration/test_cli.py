import json
from pathlib import Path

import pytest

from cli.main import main


def _last_payload(capsys):
    lines = capsys.readouterr().out.strip().splitlines()
    assert lines, "CLI should emit at least one line"
    return json.loads(lines[-1])


def test_cli_lists_presets(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["--list-presets"])
    assert excinfo.value.code == 0
    names = capsys.readouterr().out.split()
    assert "xor_levenberg_marquardt" in names
    assert "relevant_subset_pruning" in names


def test_cli_partial_override_and_dump(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    override = tmp_path / "override.yaml"
    override.write_text("training:\n  stopping:\n    max_epochs: 3\n")
    dump = tmp_path / "resolved" / "config.json"

    main([
        "--preset",
        "linear_regression_conjugate_gradient",
        "--config",
        str(override),
        "--run-dir",
        str(tmp_path / "run"),
        "--seed",
        "5",
        "--quiet",
        "--dump-config",
        str(dump),
    ])
    payload = _last_payload(capsys)

    resolved = json.loads(dump.read_text())
    assert resolved["training"]["stopping"]["max_epochs"] == 3
    assert resolved["training"]["optimizer"] == "ConjugateGradient"
    assert resolved["training"]["display"] is False
    assert resolved["data"]["options"]["seed"] == 5
    assert resolved["model"]["seed"] == 5

    assert payload["epochs"] <= 3
    assert Path(payload["metrics"]).exists()
    assert Path(payload["manifest"]).exists()
    assert Path(payload["network"]).parent == tmp_path / "run"


def test_cli_full_config_replaces_the_preset(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    config = {
        "data": {"name": "xor", "options": {"repeats": 1}},
        "model": {"model_type": "Approximation", "hidden": [2], "seed": 0},
        "training": {
            "loss": {"error": "MeanSquaredError"},
            "optimizer": "GradientDescent",
            "stopping": {"max_epochs": 4},
        },
    }
    path = tmp_path / "config.json"
    path.write_text(json.dumps(config))

    main(["--config", str(path), "--quiet"])
    payload = _last_payload(capsys)

    assert payload["epochs"] == 4
    assert payload["stopping_condition"] == "MaximumEpochs"
    # Without a run_dir the run lands under runs/<timestamp>/<dataset>/<optimizer>.
    metrics = Path(payload["metrics"])
    assert metrics.parts[0] == "runs"
    assert metrics.parent.name == "GradientDescent"
    assert metrics.parent.parent.name == "xor"


def test_cli_rejects_unknown_preset(capsys):
    with pytest.raises(SystemExit):
        main(["--preset", "missing"])
