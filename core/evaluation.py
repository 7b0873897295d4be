"""
Dense forward-mode AD scalar and value materialization.

An Evaluation carries a value and the derivatives with respect to a fixed
number of primary variables. Intensive quantities are computed in this
representation; output code only needs the plain value, which
scalar_value() extracts from any supported numeric representation.
"""

from __future__ import annotations

import math
from typing import Union

import numpy as np

FloatArray = np.ndarray


class Evaluation:
    """Value plus dense gradient w.r.t. the primary variables."""

    __slots__ = ("value", "derivatives")

    def __init__(self, value: float, derivatives: FloatArray) -> None:
        self.value = float(value)
        self.derivatives = np.asarray(derivatives, dtype=np.float64)

    @classmethod
    def constant(cls, value: float, size: int) -> "Evaluation":
        return cls(value, np.zeros(size, dtype=np.float64))

    @classmethod
    def variable(cls, value: float, index: int, size: int) -> "Evaluation":
        d = np.zeros(size, dtype=np.float64)
        d[index] = 1.0
        return cls(value, d)

    @property
    def size(self) -> int:
        return int(self.derivatives.size)

    def _lift(self, other) -> "Evaluation":
        if isinstance(other, Evaluation):
            if other.size != self.size:
                raise ValueError(f"Derivative size mismatch: {self.size} vs {other.size}")
            return other
        return Evaluation.constant(float(other), self.size)

    def __add__(self, other) -> "Evaluation":
        o = self._lift(other)
        return Evaluation(self.value + o.value, self.derivatives + o.derivatives)

    __radd__ = __add__

    def __sub__(self, other) -> "Evaluation":
        o = self._lift(other)
        return Evaluation(self.value - o.value, self.derivatives - o.derivatives)

    def __rsub__(self, other) -> "Evaluation":
        return self._lift(other) - self

    def __mul__(self, other) -> "Evaluation":
        o = self._lift(other)
        return Evaluation(
            self.value * o.value,
            self.derivatives * o.value + o.derivatives * self.value,
        )

    __rmul__ = __mul__

    def __truediv__(self, other) -> "Evaluation":
        o = self._lift(other)
        inv = 1.0 / o.value
        return Evaluation(
            self.value * inv,
            (self.derivatives * o.value - o.derivatives * self.value) * inv * inv,
        )

    def __rtruediv__(self, other) -> "Evaluation":
        return self._lift(other) / self

    def __neg__(self) -> "Evaluation":
        return Evaluation(-self.value, -self.derivatives)

    def __pow__(self, exponent: float) -> "Evaluation":
        return ad_pow(self, exponent)

    def __lt__(self, other) -> bool:
        return self.value < scalar_value(other)

    def __le__(self, other) -> bool:
        return self.value <= scalar_value(other)

    def __gt__(self, other) -> bool:
        return self.value > scalar_value(other)

    def __ge__(self, other) -> bool:
        return self.value >= scalar_value(other)

    def __repr__(self) -> str:
        return f"Evaluation(value={self.value!r}, derivatives={self.derivatives.tolist()!r})"


Scalar = Union[Evaluation, float]


def ad_pow(base: Scalar, exponent: float) -> Scalar:
    """base**exponent for a constant exponent."""
    exponent = float(exponent)
    if not isinstance(base, Evaluation):
        return math.pow(float(base), exponent)
    val = math.pow(base.value, exponent)
    if base.value == 0.0:
        dval = 0.0 if exponent > 1.0 else math.inf
    else:
        dval = exponent * math.pow(base.value, exponent - 1.0)
    return Evaluation(val, base.derivatives * dval)


def ad_max(a: Scalar, b: Scalar) -> Scalar:
    """max() keeping the derivatives of the selected argument."""
    if scalar_value(a) >= scalar_value(b):
        return a
    return b


def scalar_value(x) -> float:
    """
    Materialize a plain float64 value.

    Accepts Evaluation, objects exposing a ``value`` attribute, numpy scalars
    (extended precision is narrowed to float64), 0-d arrays and Python numbers.
    """
    if isinstance(x, Evaluation):
        return x.value
    if isinstance(x, (float, int)):
        return float(x)
    if isinstance(x, (np.generic, np.ndarray)):
        if np.ndim(x) != 0:
            raise ValueError(f"Cannot materialize array of shape {np.shape(x)} as a scalar.")
        return float(np.asarray(x, dtype=np.float64))
    value = getattr(x, "value", None)
    if value is not None:
        return scalar_value(value() if callable(value) else value)
    return float(x)
