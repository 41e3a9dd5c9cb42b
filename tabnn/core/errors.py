"""Error kinds raised by tabnn.

Every error derives from :class:`TabnnError` and from the builtin exception
that best describes it, so callers may catch either.
"""

from __future__ import annotations


class TabnnError(Exception):
    """Root of the tabnn error hierarchy."""


class ShapeMismatch(TabnnError, ValueError):
    """A tensor or layer shape is inconsistent with its consumer."""


class UnboundReference(TabnnError, RuntimeError):
    """A required collaborator (network, data set, loss index...) is missing."""


class EmptyPartition(TabnnError, ValueError):
    """A data-set partition required by the operation has no rows."""


class InvalidConfiguration(TabnnError, ValueError):
    """Unknown enum name or numerically invalid parameter."""


class NumericalFailure(TabnnError, ArithmeticError):
    """A loss or gradient evaluated to a non-finite value."""


class Cancelled(TabnnError):
    """Raised when cooperative cancellation is observed outside an epoch loop."""


def shape_error(where: str, expected: object, actual: object) -> ShapeMismatch:
    return ShapeMismatch(f"{where}: expected shape {expected}, got {actual}")


__all__ = [
    "TabnnError",
    "ShapeMismatch",
    "UnboundReference",
    "EmptyPartition",
    "InvalidConfiguration",
    "NumericalFailure",
    "Cancelled",
    "shape_error",
]
