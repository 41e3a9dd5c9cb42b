"""Loss indices, optimizers and the training strategy."""

from .line_search import LearningRateAlgorithm, LearningRateMethod
from .losses import ErrorKind, LossConfig, LossIndex, RegularizationKind
from .optimizers import OptimizerKind, StoppingCriteria, build_optimizer
from .strategy import TrainingStrategy

__all__ = [
    "ErrorKind",
    "LearningRateAlgorithm",
    "LearningRateMethod",
    "LossConfig",
    "LossIndex",
    "OptimizerKind",
    "RegularizationKind",
    "StoppingCriteria",
    "TrainingStrategy",
    "build_optimizer",
]
