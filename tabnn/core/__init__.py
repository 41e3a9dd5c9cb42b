"""Core numerical primitives for tabnn."""

from . import activations, descriptives, device, errors, tensor, types

__all__ = ["activations", "descriptives", "device", "errors", "tensor", "types"]
