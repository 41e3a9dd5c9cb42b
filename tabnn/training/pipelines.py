"""Pipeline assembly: data set, network, training strategy and optional model selection."""

from __future__ import annotations

import json
import time
from copy import deepcopy
from pathlib import Path
from typing import Dict, List, Mapping

from ..core.errors import InvalidConfiguration
from ..core.types import CancellationToken, RunResult, parse_enum
from ..data import get_dataset
from ..data.dataset import DataSet
from ..network import ModelType, NeuralNetwork
from ..persistence import save
from ..reporting.artifacts import write_manifest
from ..reporting.metrics import CsvSink, JsonlSink, MetricsCapture
from ..reporting.plots import PlotAdapter
from ..reporting.summary import write_summary
from ..selection.model_selection import InputsSelectionMethod, ModelSelection, NeuronsSelectionMethod
from .losses import LossConfig
from .optimizers import StoppingCriteria
from .strategy import TrainingStrategy

_PRESETS: Dict[str, Mapping[str, object]] = {
    "breast_cancer_quasi_newton": {
        "data": {
            "name": "breast_cancer",
            "options": {"training": 0.6, "selection": 0.2, "testing": 0.2, "seed": 0},
        },
        "model": {"model_type": "Classification", "hidden": [6], "seed": 0},
        "training": {
            "loss": {"error": "CrossEntropyError", "regularization": "L2", "regularization_weight": 0.001},
            "optimizer": "QuasiNewtonMethod",
            "stopping": {"max_epochs": 200, "max_selection_failures": 20, "choose_best_selection": True},
            "display_period": 20,
            "run_dir": "runs/breast-cancer-qn",
            "enable_plots": False,
        },
    },
    "xor_levenberg_marquardt": {
        "data": {"name": "xor", "options": {"repeats": 1}},
        "model": {"model_type": "Approximation", "hidden": [4], "seed": 1},
        "training": {
            "loss": {"error": "SumSquaredError"},
            "optimizer": "LevenbergMarquardtAlgorithm",
            "stopping": {"max_epochs": 500, "loss_goal": 1e-6, "max_selection_failures": 1000},
            "display_period": 50,
            "run_dir": "runs/xor-lm",
            "enable_plots": False,
        },
    },
    "linear_regression_conjugate_gradient": {
        "data": {"name": "linear_regression", "options": {"n_points": 200, "noise": 0.0, "seed": 0}},
        "model": {"model_type": "Approximation", "hidden": [], "seed": 0},
        "training": {
            "loss": {"error": "MeanSquaredError"},
            "optimizer": "ConjugateGradient",
            "optimizer_config": {"training_direction_method": "PR"},
            "stopping": {"max_epochs": 300, "gradient_norm_goal": 1e-8},
            "display_period": 25,
            "run_dir": "runs/linear-regression-cg",
            "enable_plots": False,
        },
    },
    "growing_inputs": {
        "data": {
            "name": "relevant_subset",
            "options": {"n_points": 300, "n_features": 6, "relevant": [0, 2], "seed": 0},
        },
        "model": {"model_type": "Approximation", "hidden": [3], "seed": 0},
        "training": {
            "loss": {"error": "NormalizedSquaredError"},
            "optimizer": "QuasiNewtonMethod",
            "stopping": {"max_epochs": 100, "max_selection_failures": 10},
            "display": False,
            "run_dir": "runs/growing-inputs",
            "enable_plots": False,
        },
        "selection": {
            "inputs_method": "GrowingInputs",
            "neurons_method": "NoNeuronsSelection",
            "inputs_config": {"max_selection_failures": 2, "seed": 0},
        },
    },
}

_PRESET_DIR = Path(__file__).resolve().parents[2] / "configs" / "presets"
_FILE_PRESETS_CACHE: Dict[str, Mapping[str, object]] | None = None
_REQUIRED_SECTIONS = {"data", "model", "training"}


def _read_preset_file(path: Path) -> Mapping[str, object]:
    text = path.read_text()
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        import yaml

        data = yaml.safe_load(text) or {}
    elif suffix == ".json":
        data = json.loads(text or "{}")
    else:
        raise InvalidConfiguration(f"Unsupported preset file type: {path.suffix}")

    if not isinstance(data, Mapping):
        raise InvalidConfiguration(f"Preset {path.name} must decode to a mapping")
    return data


def read_config(path: str | Path) -> Mapping[str, object]:
    """Load a pipeline config from a JSON or YAML file."""

    path = Path(path)
    data = _read_preset_file(path)
    _check_sections(data, path.name)
    return json.loads(json.dumps(data))


def _check_sections(config: Mapping[str, object], where: str) -> None:
    missing = _REQUIRED_SECTIONS - set(config)
    if missing:
        raise KeyError(f"{where} is missing required sections: {', '.join(sorted(missing))}")


def _file_presets() -> Dict[str, Mapping[str, object]]:
    global _FILE_PRESETS_CACHE
    if _FILE_PRESETS_CACHE is None:
        found: Dict[str, Mapping[str, object]] = {}
        if _PRESET_DIR.exists():
            for file in sorted(_PRESET_DIR.iterdir()):
                if file.suffix.lower() not in {".yaml", ".yml", ".json"}:
                    continue
                found[file.stem] = read_config(file)
        _FILE_PRESETS_CACHE = found
    return {name: deepcopy(cfg) for name, cfg in _FILE_PRESETS_CACHE.items()}


def presets() -> Mapping[str, Mapping[str, object]]:
    combined: Dict[str, Mapping[str, object]] = {}
    combined.update({name: deepcopy(cfg) for name, cfg in _PRESETS.items()})
    combined.update(_file_presets())
    return combined


def load_preset(name: str) -> Mapping[str, object]:
    file_overrides = _file_presets()
    if name in file_overrides:
        return file_overrides[name]
    try:
        return deepcopy(_PRESETS[name])
    except KeyError as exc:
        available = ", ".join(sorted(presets()))
        raise KeyError(f"Unknown preset: {name}. Available: {available}") from exc


def build_data_set(data_cfg: Mapping[str, object]) -> DataSet:
    return get_dataset(str(data_cfg["name"]), **dict(data_cfg.get("options", {})))


def build_network(model_cfg: Mapping[str, object], data_set: DataSet, *, display: bool = True) -> NeuralNetwork:
    """Default layer stack sized from ``data_set`` with its statistics installed."""

    model_type = parse_enum(ModelType, model_cfg.get("model_type", ModelType.APPROXIMATION.value))
    hidden = [int(h) for h in model_cfg.get("hidden", [])]
    architecture = [data_set.inputs_number, *hidden, data_set.targets_number]
    network = NeuralNetwork.from_architecture(
        model_type,
        architecture,
        input_names=data_set.input_names(),
        output_names=data_set.target_names(),
        display=display,
        seed=int(model_cfg.get("seed", 0)),
    )
    network.set_descriptives(data_set.input_descriptives(), data_set.target_descriptives())
    return network


def build_strategy(
    training_cfg: Mapping[str, object],
    network: NeuralNetwork,
    data_set: DataSet,
    *,
    cancellation: CancellationToken | None = None,
) -> TrainingStrategy:
    return TrainingStrategy(
        network,
        data_set,
        loss=LossConfig.from_tree(dict(training_cfg.get("loss", {}))),
        optimizer=str(training_cfg.get("optimizer", "QuasiNewtonMethod")),
        optimizer_config=dict(training_cfg.get("optimizer_config", {})),
        stopping=StoppingCriteria.from_tree(dict(training_cfg.get("stopping", {}))),
        cancellation=cancellation,
        display=bool(training_cfg.get("display", True)),
        display_period=int(training_cfg.get("display_period", 10)),
    )


def build_model_selection(selection_cfg: Mapping[str, object], strategy: TrainingStrategy) -> ModelSelection:
    return ModelSelection(
        strategy,
        neurons_method=str(selection_cfg.get("neurons_method", NeuronsSelectionMethod.NO_NEURONS_SELECTION.value)),
        inputs_method=str(selection_cfg.get("inputs_method", InputsSelectionMethod.NO_INPUTS_SELECTION.value)),
        neurons_config=selection_cfg.get("neurons_config"),
        inputs_config=selection_cfg.get("inputs_config"),
        display=bool(selection_cfg.get("display", strategy.display)),
    )


def run_pipeline(config: Mapping[str, object], *, cancellation: CancellationToken | None = None) -> RunResult:
    """Train once (after model selection when configured) and write the run artifacts."""

    _check_sections(config, "Pipeline config")
    data_cfg = dict(config["data"])
    model_cfg = dict(config["model"])
    training_cfg = dict(config["training"])
    selection_cfg = config.get("selection")

    data_set = build_data_set(data_cfg)
    network = build_network(model_cfg, data_set, display=bool(training_cfg.get("display", True)))
    strategy = build_strategy(training_cfg, network, data_set, cancellation=cancellation)

    run_dir = _resolve_run_dir(training_cfg, str(data_cfg["name"]), strategy.optimizer_kind.value)
    run_dir.mkdir(parents=True, exist_ok=True)

    _print_startup_summary(
        dataset_name=str(data_cfg["name"]),
        model_type=network.model_type.value,
        architecture=network.architecture_string(),
        optimizer=strategy.optimizer_kind.value,
        selection=_describe_selection(selection_cfg),
        param_count=network.parameter_count(),
    )

    selection_payload: Mapping[str, object] | None = None
    if selection_cfg:
        model_selection = build_model_selection(selection_cfg, strategy)
        selection_payload = model_selection.perform_model_selection().to_dict()
        save(model_selection, run_dir / "model_selection.json")

    train_jsonl = JsonlSink(run_dir / "metrics_train.jsonl", split="train", seed=int(model_cfg.get("seed", 0)))
    train_csv = CsvSink(run_dir / "metrics.csv", split="train")
    capture = MetricsCapture()
    plots = PlotAdapter(run_dir, enable_plots=bool(training_cfg.get("enable_plots", False)))
    for callback in (train_jsonl, train_csv, capture, plots):
        strategy.add_callback(callback)

    results = strategy.perform_training()
    plots.close()

    network_path = save(network, run_dir / "network.json")
    save(strategy, run_dir / "training_strategy.json")

    extra: Dict[str, object] = {"training": results.to_dict()}
    if selection_payload is not None:
        extra["selection"] = selection_payload
    summary_tail = int(training_cfg.get("summary_tail", 32))
    summary_path = write_summary(train_jsonl.path, run_dir / "summary.json", tail=summary_tail, extra=extra)

    safe = _safe_config(config)
    (run_dir / "config.json").write_text(json.dumps(safe, indent=2))
    manifest = write_manifest(
        run_dir / "manifest.json",
        config=safe,
        data_set=data_set.describe(),
        artifacts={
            "metrics": str(train_jsonl.path),
            "metrics_csv": str(train_csv.path),
            "summary": summary_path,
            "network": network_path,
        },
    )

    return RunResult(
        epochs=results.epochs,
        stopping_condition=results.stopping_condition.value,
        metrics_path=str(train_jsonl.path),
        manifest_path=manifest,
        summary_path=summary_path,
        network_path=network_path,
    )


def _resolve_run_dir(training_cfg: Mapping[str, object], dataset: str, optimizer: str) -> Path:
    if "run_dir" in training_cfg:
        return Path(str(training_cfg["run_dir"]))
    timestamp = time.strftime("%Y%m%d-%H%M%S")
    return Path("runs") / timestamp / dataset / optimizer


def _describe_selection(selection_cfg: Mapping[str, object] | None) -> str:
    if not selection_cfg:
        return "none"
    parts: List[str] = []
    for key in ("inputs_method", "neurons_method"):
        if key in selection_cfg:
            parts.append(str(selection_cfg[key]))
    return ", ".join(parts) or "none"


def _safe_config(config: Mapping[str, object]) -> Mapping[str, object]:
    return json.loads(json.dumps(config))


def _print_startup_summary(
    *,
    dataset_name: str,
    model_type: str,
    architecture: str,
    optimizer: str,
    selection: str,
    param_count: int,
) -> None:
    print("=== tabnn run ===")
    print(f"Dataset       : {dataset_name}")
    print(f"Model type    : {model_type}")
    print(f"Architecture  : {architecture}")
    print(f"Optimizer     : {optimizer}")
    print(f"Selection     : {selection}")
    print(f"Parameters    : {param_count}")
    print("=================")


__all__ = [
    "build_data_set",
    "build_model_selection",
    "build_network",
    "build_strategy",
    "load_preset",
    "presets",
    "read_config",
    "run_pipeline",
]
