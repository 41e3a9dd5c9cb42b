"""Training strategy: a loss index and an optimizer around a network and data set."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping

from ..core.errors import EmptyPartition, InvalidConfiguration, ShapeMismatch, UnboundReference
from ..core.types import CancellationToken, TrainingResults, parse_enum
from ..data.dataset import DataSet, InstanceUse
from ..network import NeuralNetwork
from .losses import LossConfig, LossIndex
from .optimizers import EpochLoop, Optimizer, OptimizerKind, StoppingCriteria, build_optimizer, optimizer_types


class TrainingStrategy:
    """Wires a loss kind and an optimizer kind around a borrowed network and data set.

    ``perform_training`` runs one training session and leaves the final
    parameters installed in the network. Callbacks receive
    ``on_epoch(epoch, metrics)`` (or are called as ``callback(epoch, metrics)``).
    """

    def __init__(
        self,
        network: NeuralNetwork | None = None,
        data_set: DataSet | None = None,
        *,
        loss: LossConfig | None = None,
        optimizer: OptimizerKind | str = OptimizerKind.QUASI_NEWTON,
        optimizer_config: Any = None,
        stopping: StoppingCriteria | None = None,
        callbacks: Iterable[object] | None = None,
        cancellation: CancellationToken | None = None,
        display: bool = True,
        display_period: int = 10,
    ) -> None:
        self.network = network
        self.data_set = data_set
        self.loss_config = loss or LossConfig()
        self.stopping = stopping or StoppingCriteria()
        self.callbacks: List[object] = list(callbacks or [])
        self.cancellation = cancellation or CancellationToken()
        self.display = display
        self.display_period = display_period
        self.set_optimizer(optimizer, optimizer_config)

    # ------------------------------------------------------------------
    # Configuration

    def set_optimizer(self, kind: OptimizerKind | str, config: Any = None) -> None:
        self.optimizer_kind = parse_enum(OptimizerKind, kind)
        self.optimizer: Optimizer = build_optimizer(self.optimizer_kind, config)

    @property
    def optimizer_config(self) -> Any:
        return self.optimizer.config

    def set_loss(self, config: LossConfig) -> None:
        config.validate()
        self.loss_config = config

    def add_callback(self, callback: object) -> None:
        self.callbacks.append(callback)

    def set_display(self, display: bool) -> None:
        self.display = display

    # ------------------------------------------------------------------
    # Validation

    def validate(self) -> None:
        if self.network is None:
            raise UnboundReference("Training strategy has no neural network")
        if self.data_set is None:
            raise UnboundReference("Training strategy has no data set")
        if self.network.is_empty():
            raise InvalidConfiguration("Training strategy: the neural network has no layers")
        self.network.check_layout()
        if self.network.inputs_number != self.data_set.inputs_number:
            raise ShapeMismatch(
                f"Training strategy: network takes {self.network.inputs_number} inputs, "
                f"data set provides {self.data_set.inputs_number}"
            )
        if self.network.outputs_number != self.data_set.targets_number:
            raise ShapeMismatch(
                f"Training strategy: network produces {self.network.outputs_number} outputs, "
                f"data set provides {self.data_set.targets_number} targets"
            )
        for use in (InstanceUse.TRAINING, InstanceUse.SELECTION):
            if self.data_set.partition_size(use) == 0:
                raise EmptyPartition(f"Training strategy: the {use.value.lower()} partition is empty")

    def loss_index(self) -> LossIndex:
        return LossIndex(self.network, self.data_set, self.loss_config)

    # ------------------------------------------------------------------
    # Training

    def _print_startup_summary(self, loss: LossIndex) -> None:
        print("=== tabnn training ===")
        print(f"Architecture  : {self.network.architecture_string()}")
        print(f"Loss          : {loss.error_kind.value} + {self.loss_config.regularization.value}")
        print(f"Optimizer     : {self.optimizer_kind.value}")
        print(f"Parameters    : {self.network.parameter_count()}")
        print(f"Instances     : {self.data_set.partition_sizes()}")
        print("======================")

    def perform_training(self) -> TrainingResults:
        self.validate()
        loss = self.loss_index()
        if self.display:
            self._print_startup_summary(loss)
        loop = EpochLoop(
            optimizer=self.optimizer,
            stopping=self.stopping,
            callbacks=self.callbacks,
            cancellation=self.cancellation,
            display=self.display,
            display_period=self.display_period,
        )
        return loop.run(loss)

    # ------------------------------------------------------------------
    # Persistence

    def to_tree(self) -> Dict[str, Any]:
        return {
            "TrainingStrategy": {
                "LossIndex": self.loss_config.to_tree(),
                "OptimizationAlgorithm": {
                    "kind": self.optimizer_kind.value,
                    "config": self.optimizer.config.to_tree(),
                    "stopping": self.stopping.to_tree(),
                },
                "display": self.display,
                "display_period": self.display_period,
            }
        }

    @classmethod
    def from_tree(
        cls,
        tree: Mapping[str, Any],
        network: NeuralNetwork | None = None,
        data_set: DataSet | None = None,
    ) -> "TrainingStrategy":
        body = tree.get("TrainingStrategy", tree)
        algorithm = body.get("OptimizationAlgorithm", {})
        kind = parse_enum(OptimizerKind, algorithm.get("kind", OptimizerKind.QUASI_NEWTON.value))
        _, config_cls = optimizer_types(kind)
        return cls(
            network,
            data_set,
            loss=LossConfig.from_tree(body.get("LossIndex", {})),
            optimizer=kind,
            optimizer_config=config_cls.from_tree(algorithm.get("config", {})),
            stopping=StoppingCriteria.from_tree(algorithm.get("stopping", {})),
            display=bool(body.get("display", True)),
            display_period=int(body.get("display_period", 10)),
        )


__all__ = ["TrainingStrategy"]
