"""
Built-in node kinds and their computation rules.

These rules are the collaborator side of the scheduling core: the core only
selects and validates them. Provided node kinds:

- prior (out): emits the distribution stored in ``params["prior"]``
- terminal (in): external sink; sends a vague Gaussian back into the model
- equality (1..n): all interfaces carry the same variable
- addition (in1, in2, out): out = in1 + in2
- probit (real, bin): bin = [real > 0]; real is updated by moment matching,
  which makes it the usual expectation propagation site
"""

from __future__ import annotations

import math
from typing import Any, List, Sequence

from .errors import ConfigurationError
from .graph import Node
from .messages import (
    Absent,
    Delta,
    Gaussian,
    GaussianMeanVariance,
    GaussianWeightedMeanPrecision,
)
from .rules import RuleCatalog

INTERFACE_NAMES = {
    "prior": ("out",),
    "terminal": ("in",),
    "addition": ("in1", "in2", "out"),
    "probit": ("real", "bin"),
}


def make_node(node_id: str, kind: str, degree: int = 3, **params: Any) -> Node:
    """
    Create a node of a built-in kind with the right interfaces.

    Args:
        node_id: Unique node identifier
        kind: One of 'prior', 'terminal', 'equality', 'addition', 'probit';
            unknown kinds get `degree` numbered interfaces
        degree: Number of interfaces for equality (and unknown) nodes
        **params: Node constants (e.g. ``prior=GaussianMeanVariance(0, 1)``)
    """
    names = INTERFACE_NAMES.get(kind) or tuple(str(i) for i in range(1, degree + 1))
    return Node.create(node_id, kind, names, **params)


def _one_absent_rest_gaussian(inbound_types: Sequence[type]) -> bool:
    absent = sum(1 for t in inbound_types if t is Absent)
    gaussian = sum(1 for t in inbound_types if isinstance(t, type) and issubclass(t, Gaussian))
    return len(inbound_types) >= 2 and absent == 1 and gaussian == len(inbound_types) - 1


def _all_gaussian(inbound_types: Sequence[type]) -> bool:
    return len(inbound_types) >= 2 and all(
        isinstance(t, type) and issubclass(t, Gaussian) for t in inbound_types
    )


def _product(messages: List[Gaussian]) -> GaussianWeightedMeanPrecision:
    xi = sum(m.weighted_mean() for m in messages)
    w = sum(m.precision() for m in messages)
    return GaussianWeightedMeanPrecision(xi, w)


def _prior_type(node: Node, inbound_types) -> type:
    if "prior" not in node.params:
        raise ConfigurationError(f"Prior node '{node.id}' needs a 'prior' distribution")
    return type(node.params["prior"])


def _std_normal_pdf(z: float) -> float:
    return math.exp(-0.5 * z * z) / math.sqrt(2.0 * math.pi)


def _std_normal_cdf(z: float) -> float:
    return 0.5 * (1.0 + math.erf(z / math.sqrt(2.0)))


def register_builtin_rules(catalog: RuleCatalog) -> RuleCatalog:
    """Register the rules of all built-in node kinds on `catalog`."""

    @catalog.sum_product_rule("prior", inbound_types=(Absent,), outbound_type=_prior_type)
    def SPPriorOut(node, outbound_id, inbounds):
        return node.params["prior"].copy()

    @catalog.sum_product_rule(
        "terminal", inbound_types=(Absent,), outbound_type=GaussianWeightedMeanPrecision
    )
    def SPTerminalIn(node, outbound_id, inbounds):
        return GaussianWeightedMeanPrecision.vague()

    @catalog.sum_product_rule(
        "equality",
        is_applicable=_one_absent_rest_gaussian,
        outbound_type=GaussianWeightedMeanPrecision,
    )
    def SPEqualityGaussian(node, outbound_id, inbounds):
        return _product([m for m in inbounds if m is not None])

    # Gaussian site on an equality node: the moment-matched marginal is exact,
    # so marginal / cavity is the product of the non-cavity messages.
    @catalog.expectation_rule(
        "equality", is_applicable=_all_gaussian, outbound_type=GaussianWeightedMeanPrecision
    )
    def EPEqualityGaussian(node, outbound_id, inbounds):
        others = [m for i, m in enumerate(inbounds, start=1) if i != outbound_id]
        return _product(others)

    @catalog.sum_product_rule(
        "addition",
        inbound_types=(Gaussian, Gaussian, Absent),
        outbound_type=GaussianMeanVariance,
        outbound_id=3,
    )
    def SPAdditionOutGG(node, outbound_id, inbounds):
        in1, in2, _ = inbounds
        return GaussianMeanVariance(in1.mean() + in2.mean(), in1.var() + in2.var())

    @catalog.sum_product_rule(
        "addition",
        inbound_types=(Absent, Gaussian, Gaussian),
        outbound_type=GaussianMeanVariance,
        outbound_id=1,
    )
    def SPAdditionIn1GG(node, outbound_id, inbounds):
        _, in2, out = inbounds
        return GaussianMeanVariance(out.mean() - in2.mean(), out.var() + in2.var())

    @catalog.sum_product_rule(
        "addition",
        inbound_types=(Gaussian, Absent, Gaussian),
        outbound_type=GaussianMeanVariance,
        outbound_id=2,
    )
    def SPAdditionIn2GG(node, outbound_id, inbounds):
        in1, _, out = inbounds
        return GaussianMeanVariance(out.mean() - in1.mean(), out.var() + in1.var())

    @catalog.expectation_rule(
        "probit",
        inbound_types=(Gaussian, Delta),
        outbound_type=GaussianWeightedMeanPrecision,
        outbound_id=1,
    )
    def EPProbitReal(node, outbound_id, inbounds):
        """Moment-matched site message for a probit likelihood with observation 0 or 1."""
        cavity, observation = inbounds
        y = observation.mean()
        if y not in (0.0, 1.0):
            raise ValueError(f"Probit observation must be 0 or 1, got {y}")
        m, v = cavity.mean(), cavity.var()
        sign = 2.0 * y - 1.0
        denom = math.sqrt(1.0 + v)
        z = sign * m / denom
        cdf = _std_normal_cdf(z)
        if cdf <= 0.0:
            raise ValueError(f"Probit moment matching underflow at z={z:.6g}")
        ratio = _std_normal_pdf(z) / cdf
        m_post = m + sign * v * ratio / denom
        v_post = v - v * v * ratio * (z + ratio) / (1.0 + v)
        return GaussianWeightedMeanPrecision(
            m_post / v_post - m / v, 1.0 / v_post - 1.0 / v
        )

    return catalog
