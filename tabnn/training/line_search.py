"""One-dimensional minimisation along a training direction."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict

import numpy as np

from ..core.errors import InvalidConfiguration, NumericalFailure
from ..core.types import Array, Batch, parse_enum

GOLDEN_RATIO = (1.0 + math.sqrt(5.0)) / 2.0
INVERSE_GOLDEN = 1.0 / GOLDEN_RATIO
GOLDEN_SECTION = 1.0 - INVERSE_GOLDEN

# Hard cap on refinement iterations regardless of tolerance.
MAXIMUM_REFINEMENT_ITERATIONS = 200


class LearningRateMethod(Enum):
    GOLDEN_SECTION = "GoldenSection"
    BRENT_METHOD = "BrentMethod"
    FIXED = "Fixed"


@dataclass
class LearningRateAlgorithm:
    """Bracketing plus refinement of the learning rate."""

    method: LearningRateMethod = LearningRateMethod.BRENT_METHOD
    initial_rate: float = 0.01
    training_rate_max: float = 100.0
    maximum_bracketing_iterations: int = 50
    learning_rate_tolerance: float = 1e-6
    fallback_rate: float = 1e-3
    fixed_rate: float = 0.01

    def __post_init__(self) -> None:
        self.method = parse_enum(LearningRateMethod, self.method)
        self.validate()

    def validate(self) -> None:
        for name in ("initial_rate", "training_rate_max", "learning_rate_tolerance", "fallback_rate", "fixed_rate"):
            if getattr(self, name) <= 0:
                raise InvalidConfiguration(f"{name} must be positive, got {getattr(self, name)}")
        if self.initial_rate > self.training_rate_max:
            raise InvalidConfiguration("initial_rate exceeds training_rate_max")
        if self.maximum_bracketing_iterations < 1:
            raise InvalidConfiguration("maximum_bracketing_iterations must be at least 1")

    def to_tree(self) -> Dict[str, Any]:
        return {
            "method": self.method.value,
            "initial_rate": self.initial_rate,
            "training_rate_max": self.training_rate_max,
            "maximum_bracketing_iterations": self.maximum_bracketing_iterations,
            "learning_rate_tolerance": self.learning_rate_tolerance,
            "fallback_rate": self.fallback_rate,
            "fixed_rate": self.fixed_rate,
        }

    @classmethod
    def from_tree(cls, tree: Dict[str, Any]) -> "LearningRateAlgorithm":
        defaults = cls()
        return cls(
            method=tree.get("method", defaults.method.value),
            initial_rate=float(tree.get("initial_rate", defaults.initial_rate)),
            training_rate_max=float(tree.get("training_rate_max", defaults.training_rate_max)),
            maximum_bracketing_iterations=int(
                tree.get("maximum_bracketing_iterations", defaults.maximum_bracketing_iterations)
            ),
            learning_rate_tolerance=float(tree.get("learning_rate_tolerance", defaults.learning_rate_tolerance)),
            fallback_rate=float(tree.get("fallback_rate", defaults.fallback_rate)),
            fixed_rate=float(tree.get("fixed_rate", defaults.fixed_rate)),
        )


@dataclass(frozen=True)
class LineSearchResult:
    rate: float
    loss: float
    bracketed: bool = True


Objective = Callable[[float], float]


def _bracket(objective: Objective, loss0: float, config: LearningRateAlgorithm, initial: float):
    """Return ``(a, b, c, fb, fc)`` with ``f(b) < f(0)`` and ``f(b) <= f(c)``, or None."""

    b = min(max(initial, config.learning_rate_tolerance), config.training_rate_max)
    fb = objective(b)
    iterations = 1
    # Shrink until the first trial point improves on the start.
    c, fc = b, fb
    while not fb < loss0:
        if iterations >= config.maximum_bracketing_iterations or b <= config.learning_rate_tolerance:
            return None
        c, fc = b, fb
        b = b * INVERSE_GOLDEN
        fb = objective(b)
        iterations += 1
    if c > b:
        return 0.0, b, c, fb, fc
    # Expand until the loss rises again or the maximum rate is reached.
    a = 0.0
    while True:
        c = min(b * GOLDEN_RATIO, config.training_rate_max)
        fc = objective(c)
        iterations += 1
        if fc >= fb:
            return a, b, c, fb, fc
        if c >= config.training_rate_max or iterations >= config.maximum_bracketing_iterations:
            return b, c, c, fc, fc
        a, b, fb = b, c, fc


def _golden_section(objective: Objective, a: float, b: float, c: float, fb: float, tolerance: float):
    best_x, best_f = b, fb
    x1 = c - INVERSE_GOLDEN * (c - a)
    x2 = a + INVERSE_GOLDEN * (c - a)
    f1, f2 = objective(x1), objective(x2)
    for _ in range(MAXIMUM_REFINEMENT_ITERATIONS):
        if c - a <= tolerance:
            break
        if f1 < f2:
            c, x2, f2 = x2, x1, f1
            x1 = c - INVERSE_GOLDEN * (c - a)
            f1 = objective(x1)
        else:
            a, x1, f1 = x1, x2, f2
            x2 = a + INVERSE_GOLDEN * (c - a)
            f2 = objective(x2)
    for x, fx in ((x1, f1), (x2, f2)):
        if fx < best_f:
            best_x, best_f = x, fx
    return best_x, best_f


def _brent(objective: Objective, a: float, b: float, c: float, fb: float, tolerance: float):
    """Brent's parabolic interpolation with golden-section fallback on [a, c]."""

    lo, hi = a, c
    x = w = v = b
    fx = fw = fv = fb
    d = e = 0.0
    tol1 = 0.5 * tolerance
    for _ in range(MAXIMUM_REFINEMENT_ITERATIONS):
        mid = 0.5 * (lo + hi)
        if abs(x - mid) <= 2.0 * tol1 - 0.5 * (hi - lo):
            break
        use_golden = True
        if abs(e) > tol1:
            r = (x - w) * (fx - fv)
            q = (x - v) * (fx - fw)
            p = (x - v) * q - (x - w) * r
            q = 2.0 * (q - r)
            if q > 0:
                p = -p
            q = abs(q)
            previous_e = e
            e = d
            if abs(p) < abs(0.5 * q * previous_e) and q * (lo - x) < p < q * (hi - x):
                d = p / q
                u = x + d
                if u - lo < 2.0 * tol1 or hi - u < 2.0 * tol1:
                    d = math.copysign(tol1, mid - x)
                use_golden = False
        if use_golden:
            e = (lo - x) if x >= mid else (hi - x)
            d = GOLDEN_SECTION * e
        u = x + d if abs(d) >= tol1 else x + math.copysign(tol1, d)
        fu = objective(u)
        if fu <= fx:
            if u >= x:
                lo = x
            else:
                hi = x
            v, w, x = w, x, u
            fv, fw, fx = fw, fx, fu
        else:
            if u < x:
                lo = u
            else:
                hi = u
            if fu <= fw or w == x:
                v, w = w, u
                fv, fw = fw, fu
            elif fu <= fv or v == x or v == w:
                v, fv = u, fu
    return x, fx


def minimize_along(objective: Objective, loss0: float, config: LearningRateAlgorithm, initial_rate: float | None = None) -> LineSearchResult:
    """Minimise ``objective(rate)`` over ``(0, training_rate_max]``."""

    if config.method is LearningRateMethod.FIXED:
        return LineSearchResult(config.fixed_rate, objective(config.fixed_rate))
    bracket = _bracket(objective, loss0, config, initial_rate or config.initial_rate)
    if bracket is None:
        return LineSearchResult(config.fallback_rate, objective(config.fallback_rate), bracketed=False)
    a, b, c, fb, _ = bracket
    if b >= c or c - a <= config.learning_rate_tolerance:
        return LineSearchResult(b, fb)
    if config.method is LearningRateMethod.GOLDEN_SECTION:
        rate, value = _golden_section(objective, a, b, c, fb, config.learning_rate_tolerance)
    else:
        rate, value = _brent(objective, a, b, c, fb, config.learning_rate_tolerance)
    if value > fb:
        return LineSearchResult(b, fb)
    return LineSearchResult(rate, value)


def directional_objective(loss, parameters: Array, direction: Array, batch: Batch) -> Objective:
    """``rate -> loss(parameters + rate * direction)``; diverging points score +inf."""

    def _objective(rate: float) -> float:
        try:
            return loss.loss_at(parameters + rate * direction, batch)
        except NumericalFailure:
            return math.inf

    return _objective


def line_search(
    loss,
    parameters: Array,
    direction: Array,
    batch: Batch,
    loss0: float,
    config: LearningRateAlgorithm,
    initial_rate: float | None = None,
) -> LineSearchResult:
    """Search along ``direction`` and leave the network at the chosen point."""

    result = minimize_along(directional_objective(loss, parameters, direction, batch), loss0, config, initial_rate)
    loss.network.set_parameters(parameters + result.rate * np.asarray(direction))
    return result


__all__ = [
    "LearningRateAlgorithm",
    "LearningRateMethod",
    "LineSearchResult",
    "directional_objective",
    "line_search",
    "minimize_along",
]
