"""Save and load components as JSON or YAML trees under their root names."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Mapping

from .core.device import Device
from .core.errors import InvalidConfiguration
from .core.types import parse_enum
from .data.dataset import DataSet
from .network import NeuralNetwork
from .selection.genetic import GeneticAlgorithm
from .selection.inputs import GrowingInputs, PruningInputs
from .selection.model_selection import (
    INPUTS_SELECTORS,
    NEURONS_SELECTORS,
    InputsSelectionMethod,
    ModelSelection,
    NeuronsSelectionMethod,
)
from .selection.neurons import IncrementalNeurons
from .training.losses import LossConfig, LossIndex
from .training.optimizers import OptimizerKind, build_optimizer, optimizer_types
from .training.strategy import TrainingStrategy

ROOT_NAMES = (
    "NeuralNetwork",
    "LossIndex",
    "OptimizationAlgorithm",
    "TrainingStrategy",
    "ModelSelection",
    "InputsSelection",
    "NeuronsSelection",
)

_SELECTORS = (IncrementalNeurons, GrowingInputs, PruningInputs, GeneticAlgorithm)


def to_tree(component: Any) -> Dict[str, Any]:
    """Plain tree of ``component`` under its root name."""

    if isinstance(component, NeuralNetwork):
        return {"NeuralNetwork": component.to_tree()}
    if isinstance(component, (LossIndex, TrainingStrategy, ModelSelection, *_SELECTORS)):
        return component.to_tree()
    if isinstance(component, LossConfig):
        return {"LossIndex": component.to_tree()}
    if hasattr(component, "kind") and isinstance(component.kind, OptimizerKind):
        return {"OptimizationAlgorithm": {"kind": component.kind.value, "config": component.config.to_tree()}}
    raise InvalidConfiguration(f"Cannot serialise {type(component).__name__}")


def _plain(tree: Mapping[str, Any]) -> Dict[str, Any]:
    # Tuples and numpy scalars become lists and floats.
    return json.loads(json.dumps(tree, default=float))


def dump(tree: Mapping[str, Any], path: str | Path) -> str:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        import yaml

        path.write_text(yaml.safe_dump(_plain(tree), sort_keys=False))
    elif suffix == ".json":
        path.write_text(json.dumps(_plain(tree), indent=2))
    else:
        raise InvalidConfiguration(f"Unsupported file type: {path.suffix}")
    return str(path)


def read(path: str | Path) -> Dict[str, Any]:
    path = Path(path)
    text = path.read_text()
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        import yaml

        data = yaml.safe_load(text) or {}
    elif suffix == ".json":
        data = json.loads(text or "{}")
    else:
        raise InvalidConfiguration(f"Unsupported file type: {path.suffix}")
    if not isinstance(data, Mapping):
        raise InvalidConfiguration(f"{path.name} must decode to a mapping")
    return dict(data)


def save(component: Any, path: str | Path) -> str:
    return dump(to_tree(component), path)


def from_tree(
    tree: Mapping[str, Any],
    *,
    device: Device | None = None,
    network: NeuralNetwork | None = None,
    data_set: DataSet | None = None,
    strategy: TrainingStrategy | None = None,
) -> Any:
    """Rebuild the component named by the tree's single root element."""

    roots = [name for name in tree if name in ROOT_NAMES]
    if len(roots) != 1:
        raise InvalidConfiguration(f"Expected exactly one root among {', '.join(ROOT_NAMES)}, got {list(tree)}")
    root = roots[0]
    body = tree[root]
    if root == "NeuralNetwork":
        return NeuralNetwork.from_tree(body, device=device)
    if root == "LossIndex":
        return LossIndex(network, data_set, LossConfig.from_tree(body))
    if root == "OptimizationAlgorithm":
        kind = parse_enum(OptimizerKind, body.get("kind", OptimizerKind.QUASI_NEWTON.value))
        _, config_cls = optimizer_types(kind)
        return build_optimizer(kind, config_cls.from_tree(body.get("config", {})))
    if root == "TrainingStrategy":
        return TrainingStrategy.from_tree(tree, network=network, data_set=data_set)
    if root == "ModelSelection":
        return ModelSelection.from_tree(tree, strategy=strategy)
    if root == "NeuronsSelection":
        method = parse_enum(NeuronsSelectionMethod, body.get("method"))
        if method not in NEURONS_SELECTORS:
            raise InvalidConfiguration(f"{method.value} is not a neurons selection algorithm")
        selector_cls, config_cls = NEURONS_SELECTORS[method]
        return selector_cls(strategy, config_cls.from_tree(body.get("config", {})))
    method = parse_enum(InputsSelectionMethod, body.get("method"))
    if method not in INPUTS_SELECTORS:
        raise InvalidConfiguration(f"{method.value} is not an inputs selection algorithm")
    selector_cls, config_cls = INPUTS_SELECTORS[method]
    return selector_cls(strategy, config_cls.from_tree(body.get("config", {})))


def load(path: str | Path, **bindings: Any) -> Any:
    """Read ``path`` and rebuild its component; ``bindings`` go to :func:`from_tree`."""

    return from_tree(read(path), **bindings)


__all__ = ["ROOT_NAMES", "dump", "from_tree", "load", "read", "save", "to_tree"]
