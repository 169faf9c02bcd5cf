"""
Message payloads and the catalog of distribution kinds.

Messages travel along interfaces of a factor graph. Each message wraps a
payload whose class belongs to a small fixed catalog:

- GaussianMeanVariance: Gaussian in (mean, variance) form
- GaussianWeightedMeanPrecision: Gaussian in (precision-weighted mean, precision) form
- Delta: point mass

The `Absent` marker class stands for "no message" and only appears in
inferred inbound type vectors, never as a payload.

Every distribution kind can produce a vague (maximally uninformative) value,
which is what expectation propagation uses to initialise its sites.
"""

from __future__ import annotations

from typing import Any, Dict, Tuple, Type

import numpy as np

TINY = 1e-12
"""Precision used for vague Gaussians in weighted-mean-precision form."""

HUGE = 1e12
"""Variance used for vague Gaussians in mean-variance form."""


class Absent:
    """Marker type for an inbound position that carries no message."""

    def __init__(self):
        raise TypeError("Absent is a type marker and cannot be instantiated")


class Distribution:
    """
    Base class for message payloads.

    Subclasses provide `vague()`, `is_proper()` and `parameters()`; the latter
    returns a flat numpy vector used for convergence monitoring.
    """

    @classmethod
    def vague(cls) -> "Distribution":
        raise NotImplementedError(f"{cls.__name__} has no vague value")

    @classmethod
    def placeholder(cls) -> "Distribution":
        """Return a value used to pre-allocate a message slot of this type."""
        return cls.vague()

    def is_proper(self) -> bool:
        return True

    def parameters(self) -> np.ndarray:
        raise NotImplementedError

    def copy(self) -> "Distribution":
        return type(self)(*self.parameters().tolist())


class Gaussian(Distribution):
    """Common base of the Gaussian parametrisations."""

    def mean(self) -> float:
        raise NotImplementedError

    def var(self) -> float:
        raise NotImplementedError

    def precision(self) -> float:
        return 1.0 / self.var()

    def weighted_mean(self) -> float:
        return self.mean() * self.precision()

    def to_mean_variance(self) -> "GaussianMeanVariance":
        return GaussianMeanVariance(self.mean(), self.var())

    def to_weighted_mean_precision(self) -> "GaussianWeightedMeanPrecision":
        return GaussianWeightedMeanPrecision(self.weighted_mean(), self.precision())

    def is_proper(self) -> bool:
        return bool(np.isfinite(self.var()) and self.var() > 0.0)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Gaussian):
            return NotImplemented
        return bool(
            np.isclose(self.mean(), other.mean()) and np.isclose(self.var(), other.var())
        )

    __hash__ = None


class GaussianMeanVariance(Gaussian):
    """Gaussian parametrised by mean `m` and variance `v`."""

    def __init__(self, m: float = 0.0, v: float = 1.0):
        self.m = float(m)
        self.v = float(v)

    @classmethod
    def vague(cls) -> "GaussianMeanVariance":
        return cls(0.0, HUGE)

    def mean(self) -> float:
        return self.m

    def var(self) -> float:
        return self.v

    def parameters(self) -> np.ndarray:
        return np.array([self.m, self.v])

    def __repr__(self) -> str:
        return f"GaussianMeanVariance(m={self.m:.6g}, v={self.v:.6g})"


class GaussianWeightedMeanPrecision(Gaussian):
    """Gaussian parametrised by precision-weighted mean `xi` and precision `w`."""

    def __init__(self, xi: float = 0.0, w: float = 1.0):
        self.xi = float(xi)
        self.w = float(w)

    @classmethod
    def vague(cls) -> "GaussianWeightedMeanPrecision":
        return cls(0.0, TINY)

    def mean(self) -> float:
        return self.xi / self.w

    def var(self) -> float:
        return 1.0 / self.w

    def precision(self) -> float:
        return self.w

    def weighted_mean(self) -> float:
        return self.xi

    def is_proper(self) -> bool:
        return bool(np.isfinite(self.w) and self.w > 0.0)

    def parameters(self) -> np.ndarray:
        return np.array([self.xi, self.w])

    def __repr__(self) -> str:
        return f"GaussianWeightedMeanPrecision(xi={self.xi:.6g}, w={self.w:.6g})"


class Delta(Distribution):
    """Point mass at `m`."""

    def __init__(self, m: float = 1.0):
        self.m = float(m)

    @classmethod
    def vague(cls) -> "Delta":
        raise ValueError("A point mass has no vague value")

    @classmethod
    def placeholder(cls) -> "Delta":
        return cls()

    def mean(self) -> float:
        return self.m

    def var(self) -> float:
        return 0.0

    def pdf(self, x: float) -> float:
        return 1.0 if x == self.m else 0.0

    def sample(self) -> float:
        return self.m

    def parameters(self) -> np.ndarray:
        return np.array([self.m])

    def __mul__(self, other: "Delta") -> "Delta":
        if not isinstance(other, Delta):
            return NotImplemented
        if self.m != other.m:
            raise ValueError(f"Product of point masses at {self.m} and {other.m} is undefined")
        return Delta(self.m)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Delta):
            return NotImplemented
        return self.m == other.m

    __hash__ = None

    def __repr__(self) -> str:
        return f"Delta(m={self.m:.6g})"


DISTRIBUTIONS: Dict[str, Type[Distribution]] = {
    "GaussianMeanVariance": GaussianMeanVariance,
    "GaussianWeightedMeanPrecision": GaussianWeightedMeanPrecision,
    "Delta": Delta,
}
"""Catalog of payload classes by name, used by the model compiler."""


class Message:
    """
    Single-slot container for the payload sent outward on an interface.

    The `Message` object stays attached to its interface for the lifetime of
    a prepared algorithm; execution only replaces `payload`.
    """

    def __init__(self, payload: Distribution):
        self.payload = payload

    @classmethod
    def vague(cls, dist_type: Type[Distribution]) -> "Message":
        return cls(dist_type.vague())

    @property
    def payload_type(self) -> type:
        return type(self.payload)

    def __repr__(self) -> str:
        return f"Message({self.payload!r})"


def matches(actual: type, expected: type | Tuple[type, ...]) -> bool:
    """
    Check whether an inferred message type satisfies an expected type.

    Args:
        actual: Inferred type (a `Distribution` subclass or `Absent`)
        expected: A type, a tuple of types (read as a union), or `object`
            to accept anything

    Returns:
        bool: True if `actual` is a subclass of (one of) `expected`
    """
    if expected is object:
        return True
    if not isinstance(actual, type):
        return False
    return issubclass(actual, expected)


def type_name(t: Any) -> str:
    """Readable name for a type or a tuple of types."""
    if isinstance(t, tuple):
        return "Union[" + ", ".join(type_name(x) for x in t) + "]"
    return getattr(t, "__name__", repr(t))


def distribution_from_dict(data: Dict[str, Any]) -> Distribution:
    """
    Build a payload from a mapping like ``{"type": "GaussianMeanVariance", "m": 0.0, "v": 1.0}``.

    Raises:
        ValueError: If the type name is unknown or the parameters do not fit
    """
    params = dict(data)
    name = params.pop("type", None)
    if name not in DISTRIBUTIONS:
        raise ValueError(f"Unknown distribution type: {name!r}")
    try:
        return DISTRIBUTIONS[name](**params)
    except TypeError as e:
        raise ValueError(f"Invalid parameters for {name}: {params}") from e
