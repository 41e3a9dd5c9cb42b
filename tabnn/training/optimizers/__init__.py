"""Optimizers sharing one stopping predicate and epoch loop."""

# Importing the kind modules registers them with ``build_optimizer``.
from .base import (
    EpochLoop,
    Optimizer,
    OptimizerKind,
    OptimizerState,
    StepOutcome,
    StoppingCriteria,
    build_optimizer,
    optimizer_types,
    register_optimizer,
)
from .conjugate_gradient import ConjugateGradient, ConjugateGradientConfig, TrainingDirectionMethod
from .evolutionary import (
    EvolutionaryAlgorithm,
    EvolutionaryAlgorithmConfig,
    MutationMethod,
    RecombinationMethod,
    SelectionMethod,
    select_parents,
)
from .gradient_descent import GradientDescent, GradientDescentConfig
from .levenberg_marquardt import LevenbergMarquardtAlgorithm, LevenbergMarquardtConfig
from .quasi_newton import InverseHessianApproximation, QuasiNewtonConfig, QuasiNewtonMethod
from .stochastic import (
    AdaptiveMomentEstimation,
    AdaptiveMomentEstimationConfig,
    StochasticGradientDescent,
    StochasticGradientDescentConfig,
)

__all__ = [
    "AdaptiveMomentEstimation",
    "AdaptiveMomentEstimationConfig",
    "ConjugateGradient",
    "ConjugateGradientConfig",
    "EpochLoop",
    "EvolutionaryAlgorithm",
    "EvolutionaryAlgorithmConfig",
    "GradientDescent",
    "GradientDescentConfig",
    "InverseHessianApproximation",
    "LevenbergMarquardtAlgorithm",
    "LevenbergMarquardtConfig",
    "MutationMethod",
    "Optimizer",
    "OptimizerKind",
    "OptimizerState",
    "QuasiNewtonConfig",
    "QuasiNewtonMethod",
    "RecombinationMethod",
    "SelectionMethod",
    "StepOutcome",
    "StochasticGradientDescent",
    "StochasticGradientDescentConfig",
    "StoppingCriteria",
    "TrainingDirectionMethod",
    "build_optimizer",
    "optimizer_types",
    "register_optimizer",
    "select_parents",
]
