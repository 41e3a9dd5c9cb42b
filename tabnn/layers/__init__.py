"""Layer kinds composing a :class:`~tabnn.network.NeuralNetwork`."""

from .base import Layer, LayerForward, LayerKind, layer_from_tree
from .bounding import BoundingLayer, BoundingMethod
from .convolutional import ConvolutionalLayer, PaddingMethod, PoolingLayer, PoolingMethod
from .perceptron import PerceptronLayer
from .principal_components import PrincipalComponentsLayer
from .probabilistic import ProbabilisticActivation, ProbabilisticLayer
from .recurrent import LongShortTermMemoryLayer, RecurrentLayer
from .scaling import ScalingLayer, ScalingMethod, UnscalingLayer

__all__ = [
    "BoundingLayer",
    "BoundingMethod",
    "ConvolutionalLayer",
    "Layer",
    "LayerForward",
    "LayerKind",
    "LongShortTermMemoryLayer",
    "PaddingMethod",
    "PerceptronLayer",
    "PoolingLayer",
    "PoolingMethod",
    "PrincipalComponentsLayer",
    "ProbabilisticActivation",
    "ProbabilisticLayer",
    "RecurrentLayer",
    "ScalingLayer",
    "ScalingMethod",
    "UnscalingLayer",
    "layer_from_tree",
]
